"""The Cloudflare implementation of the updater's DNS and WAF handle."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Optional, Union

import httpx

from cfddns.client import CloudflareClient
from cfddns.model import Handle
from cfddns.records import CloudflareRecords
from cfddns.waf import CloudflareWAF

logger = logging.getLogger(__name__)


class CloudflareHandle(CloudflareRecords, CloudflareWAF, Handle):
    """Updates DNS records and WAF lists through the Cloudflare API."""

    def __enter__(self) -> CloudflareHandle:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.client.close()


@dataclass(frozen=True)
class CloudflareAuth:
    """Authentication data from which a CloudflareHandle is made.

    An empty base_url selects the public Cloudflare API.
    """

    token: str = field(repr=False)
    base_url: str = ""
    transport: Optional[httpx.BaseTransport] = field(default=None, repr=False)

    def new(self, cache_expiration: Union[float, timedelta]) -> CloudflareHandle:
        """Create a handle whose cached responses expire after cache_expiration."""
        try:
            client = CloudflareClient(
                self.token, base_url=self.base_url or None, transport=self.transport
            )
        except ValueError as error:
            logger.error("Failed to prepare the Cloudflare authentication: %s", error)
            raise
        return CloudflareHandle(client, cache_expiration)