"""DNS records managed through the Cloudflare API."""

from __future__ import annotations

import ipaddress
import logging
from collections.abc import Sequence
from datetime import timedelta
from typing import Any, Union

from cfddns.client import (
    AuthenticationError,
    AuthorizationError,
    CloudflareBase,
    CloudflareClient,
    CloudflareError,
    describe_free_form_string,
)
from cfddns.model import (
    DeletionMode,
    Domain,
    IPAddress,
    IPNetwork,
    Record,
    RecordParams,
)
from cfddns.ttl import TTL

logger = logging.getLogger(__name__)

ZONE_PAGE_SIZE = 50
DNS_RECORD_PAGE_SIZE = 100

# Zones in these states still hold records, but some features may not work.
_LIMITED_ZONE_STATUSES = frozenset({"deactivated", "initializing", "moved", "pending"})

_RECORD_PERMISSION_HINT = (
    'Double check your API token. Make sure you granted the "Edit" permission of "Zone - DNS"'
)


def _english_join(items: Sequence[str]) -> str:
    if len(items) <= 2:
        return " and ".join(items)
    return ", ".join(items[:-1]) + ", and " + items[-1]


def _fetch_pages(
    client: CloudflareClient, path: str, params: dict[str, Any]
) -> list[dict[str, Any]]:
    """Collect the results of every page of a paginated listing."""
    page = int(params.get("page", 1))
    results: list[dict[str, Any]] = []
    while True:
        envelope = client.request("GET", path, params=params)
        result = envelope.get("result")
        if not isinstance(result, list):
            raise CloudflareError(f"invalid listing returned by GET {path}")
        results.extend(item for item in result if isinstance(item, dict))
        info = envelope.get("result_info")
        total_pages = info.get("total_pages", 1) if isinstance(info, dict) else 1
        if not isinstance(total_pages, int) or page >= total_pages:
            return results
        page += 1
        params = {**params, "page": page}


def _result_object(envelope: dict[str, Any], what: str) -> dict[str, Any]:
    result = envelope.get("result")
    if not isinstance(result, dict):
        raise CloudflareError(f"invalid response when {what}")
    return result


def _parse_address(content: Any) -> IPAddress:
    if not isinstance(content, str):
        raise ValueError(f"{content!r} is not a string")
    return ipaddress.ip_address(content)


def _params_of(raw: dict[str, Any]) -> RecordParams:
    ttl = raw.get("ttl")
    return RecordParams(
        ttl=TTL(ttl if isinstance(ttl, int) else 0),
        proxied=raw.get("proxied") is True,
        comment=raw.get("comment") or "",
    )


def _hint_mismatched_ttl(
    ip_network: IPNetwork, domain: Domain, record_id: str, current: TTL, expected: TTL
) -> None:
    logger.warning(
        "The TTL for the %s record of %s (ID: %s) is %s. However, it is expected to be %s. "
        "You can either change the TTL to %s in the Cloudflare dashboard "
        "or change the expected TTL with TTL=%d.",
        ip_network.record_type(),
        domain.describe(),
        record_id,
        current.describe(),
        expected.describe(),
        expected.describe(),
        int(current),
    )


def _hint_mismatched_proxied(
    ip_network: IPNetwork, domain: Domain, record_id: str, current: bool, expected: bool
) -> None:
    descriptions = {True: "proxied", False: "not proxied (DNS only)"}
    negation = {True: "", False: "not "}
    logger.warning(
        'The %s record of %s (ID: %s) is %s. However, it is %sexpected to be proxied. '
        'You can either change the proxy status to "%s" in the Cloudflare dashboard '
        "or change the value of PROXIED to match the current setting.",
        ip_network.record_type(),
        domain.describe(),
        record_id,
        descriptions[current],
        negation[expected],
        descriptions[expected],
    )


def _hint_mismatched_comment(
    ip_network: IPNetwork, domain: Domain, record_id: str, current: str, expected: str
) -> None:
    logger.warning(
        "The comment for %s record of %s (ID: %s) is %s. However, it is expected to be %s. "
        "You can either change the comment in the Cloudflare dashboard "
        "or change the value of RECORD_COMMENT to match the current comment.",
        ip_network.record_type(),
        domain.describe(),
        record_id,
        describe_free_form_string(current),
        describe_free_form_string(expected),
    )


class CloudflareRecords(CloudflareBase):
    """Lists, creates, updates and deletes DNS records, caching what it reads."""

    def __init__(
        self, client: CloudflareClient, cache_expiration: Union[float, timedelta]
    ) -> None:
        super().__init__(client, cache_expiration)
        self._record_permission_hinted = False

    def _hint_record_permission(self, error: CloudflareError) -> None:
        if self._record_permission_hinted:
            return
        if isinstance(error, (AuthenticationError, AuthorizationError)):
            self._record_permission_hinted = True
            logger.warning("%s", _RECORD_PERMISSION_HINT)

    def list_zones(self, name: str) -> list[str]:
        """Return the IDs of the usable zones with the given name."""
        # The root zone is never managed by Cloudflare.
        if name == "":
            return []

        cached = self.zones_cache.get(name)
        if cached is not None:
            return list(cached)

        try:
            zones = _fetch_pages(
                self.client, "/zones", {"name": name, "per_page": ZONE_PAGE_SIZE}
            )
        except CloudflareError as error:
            logger.error(
                "Failed to check the existence of a zone named %s: %s", name, error
            )
            self._hint_record_permission(error)
            raise

        ids: list[str] = []
        for zone in zones:
            status = zone.get("status")
            zone_id = str(zone.get("id", ""))
            if status == "active":
                ids.append(zone_id)
            elif status in _LIMITED_ZONE_STATUSES:
                logger.warning(
                    'DNS zone %s is "%s" in your Cloudflare account; '
                    "some features (e.g., proxying) might not work as expected",
                    name,
                    status,
                )
                ids.append(zone_id)
            elif status == "deleted":
                logger.info(
                    'DNS zone %s is "%s" in your Cloudflare account and thus skipped',
                    name,
                    status,
                )
            else:
                logger.warning(
                    'DNS zone %s is in an undocumented status "%s" '
                    "in your Cloudflare account; please report this",
                    name,
                    status,
                )
                ids.append(zone_id)

        self.zones_cache[name] = ids
        return list(ids)

    def zone_id_of_domain(self, domain: Domain) -> str:
        """Find the ID of the zone that governs the domain."""
        key = domain.dns_name()
        cached = self.zone_id_cache.get(key)
        if cached is not None:
            return cached

        for zone_name in domain.zones():
            zones = self.list_zones(zone_name)
            if not zones:
                continue
            if len(zones) == 1:
                self.zone_id_cache[key] = zones[0]
                return zones[0]
            message = (
                f"Found multiple active zones named {zone_name} "
                f"(IDs: {_english_join(zones)}); please report this"
            )
            logger.error("%s", message)
            raise CloudflareError(message)

        message = f"Failed to find the zone of {domain.describe()}"
        logger.error("%s", message)
        raise CloudflareError(message)

    def list_records(
        self, ip_network: IPNetwork, domain: Domain, expected_params: RecordParams
    ) -> tuple[list[Record], bool]:
        """Return the matching records and whether they came from the cache."""
        key = domain.dns_name()
        cache = self.records_cache[ip_network]
        cached = cache.get(key)
        if cached is not None:
            return list(cached), True

        zone_id = self.zone_id_of_domain(domain)
        record_type = ip_network.record_type()
        try:
            raw_records = _fetch_pages(
                self.client,
                f"/zones/{zone_id}/dns_records",
                {
                    "name": key,
                    "type": record_type,
                    "page": 1,
                    "per_page": DNS_RECORD_PAGE_SIZE,
                },
            )
        except CloudflareError as error:
            logger.error(
                "Failed to retrieve %s records of %s: %s",
                record_type,
                domain.describe(),
                error,
            )
            self._hint_record_permission(error)
            raise

        records: list[Record] = []
        for raw in raw_records:
            record_id = str(raw.get("id", ""))
            try:
                ip = _parse_address(raw.get("content"))
            except ValueError as error:
                message = (
                    f"Failed to parse the IP address in an {record_type} record "
                    f"of {domain.describe()} (ID: {record_id}): {error}"
                )
                logger.error("%s", message)
                raise CloudflareError(message) from error

            params = _params_of(raw)
            if params.ttl != expected_params.ttl:
                _hint_mismatched_ttl(
                    ip_network, domain, record_id, params.ttl, expected_params.ttl
                )
            if params.proxied != expected_params.proxied:
                _hint_mismatched_proxied(
                    ip_network, domain, record_id, params.proxied, expected_params.proxied
                )
            if params.comment != expected_params.comment:
                _hint_mismatched_comment(
                    ip_network, domain, record_id, params.comment, expected_params.comment
                )
            records.append(Record(id=record_id, ip=ip, params=params))

        cache[key] = records
        return list(records), False

    def delete_record(
        self, ip_network: IPNetwork, domain: Domain, record_id: str, mode: DeletionMode
    ) -> None:
        """Delete one record; a regular failure drops the cached records."""
        zone_id = self.zone_id_of_domain(domain)
        key = domain.dns_name()
        cache = self.records_cache[ip_network]

        try:
            self.client.request("DELETE", f"/zones/{zone_id}/dns_records/{record_id}")
        except CloudflareError as error:
            logger.error(
                "Failed to delete a stale %s record of %s (ID: %s): %s",
                ip_network.record_type(),
                domain.describe(),
                record_id,
                error,
            )
            self._hint_record_permission(error)
            if mode is DeletionMode.REGULAR:
                cache.pop(key, None)
            raise

        cached = cache.get(key)
        if cached is not None:
            cached[:] = [record for record in cached if record.id != record_id]

    def update_record(
        self,
        ip_network: IPNetwork,
        domain: Domain,
        record_id: str,
        ip: IPAddress,
        current_params: RecordParams,
        expected_params: RecordParams,
    ) -> None:
        """Point one record at a new address."""
        zone_id = self.zone_id_of_domain(domain)
        key = domain.dns_name()
        cache = self.records_cache[ip_network]

        try:
            envelope = self.client.request(
                "PATCH",
                f"/zones/{zone_id}/dns_records/{record_id}",
                json={"id": record_id, "content": str(ip)},
            )
            updated = _result_object(envelope, "updating a DNS record")
        except CloudflareError as error:
            logger.error(
                "Failed to update a stale %s record of %s (ID: %s): %s",
                ip_network.record_type(),
                domain.describe(),
                record_id,
                error,
            )
            self._hint_record_permission(error)
            cache.pop(key, None)
            raise

        params = _params_of(updated)
        if params.ttl not in (current_params.ttl, expected_params.ttl):
            _hint_mismatched_ttl(
                ip_network, domain, record_id, params.ttl, expected_params.ttl
            )
        if params.proxied not in (current_params.proxied, expected_params.proxied):
            _hint_mismatched_proxied(
                ip_network, domain, record_id, params.proxied, expected_params.proxied
            )
        if params.comment not in (current_params.comment, expected_params.comment):
            _hint_mismatched_comment(
                ip_network, domain, record_id, params.comment, expected_params.comment
            )

        cached = cache.get(key)
        if cached is not None:
            cached[:] = [
                Record(id=record_id, ip=ip, params=params) if record.id == record_id else record
                for record in cached
            ]

    def create_record(
        self, ip_network: IPNetwork, domain: Domain, ip: IPAddress, params: RecordParams
    ) -> str:
        """Create one record and return its ID."""
        zone_id = self.zone_id_of_domain(domain)
        key = domain.dns_name()
        cache = self.records_cache[ip_network]

        try:
            envelope = self.client.request(
                "POST",
                f"/zones/{zone_id}/dns_records",
                json={
                    "name": key,
                    "type": ip_network.record_type(),
                    "content": str(ip),
                    "ttl": int(params.ttl),
                    "proxied": params.proxied,
                    "comment": params.comment,
                },
            )
            created = _result_object(envelope, "creating a DNS record")
        except CloudflareError as error:
            logger.error(
                "Failed to add a new %s record of %s: %s",
                ip_network.record_type(),
                domain.describe(),
                error,
            )
            self._hint_record_permission(error)
            cache.pop(key, None)
            raise

        record_id = str(created.get("id", ""))
        cached = cache.get(key)
        if cached is not None:
            cached.insert(0, Record(id=record_id, ip=ip, params=params))
        return record_id