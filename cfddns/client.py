"""A small client for the Cloudflare REST API, and the cache it feeds."""

from __future__ import annotations

import sys
from datetime import timedelta
from typing import Any, Union

import cachetools
import httpx

from cfddns.model import IPNetwork

DEFAULT_BASE_URL = "https://api.cloudflare.com/client/v4"

_MAX_ENTRIES = sys.maxsize


class CloudflareError(Exception):
    """An operation against Cloudflare failed."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        errors: tuple[dict[str, Any], ...] = (),
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.errors = errors


class AuthenticationError(CloudflareError):
    """The API token was rejected (HTTP 401)."""


class AuthorizationError(CloudflareError):
    """The API token lacks a permission (HTTP 403)."""


def _describe_errors(errors: tuple[dict[str, Any], ...]) -> str:
    parts = [f"{error.get('message', '')} ({error.get('code', '?')})" for error in errors]
    return ", ".join(parts) or "no error details"


def _error_for(status_code: int, errors: tuple[dict[str, Any], ...]) -> CloudflareError:
    message = f"HTTP status {status_code}: {_describe_errors(errors)}"
    if status_code == 401:
        return AuthenticationError(message, status_code=status_code, errors=errors)
    if status_code == 403:
        return AuthorizationError(message, status_code=status_code, errors=errors)
    return CloudflareError(message, status_code=status_code, errors=errors)


class CloudflareClient:
    """Sends authenticated requests and unwraps Cloudflare's JSON envelopes."""

    def __init__(
        self,
        token: str,
        base_url: str | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        if not token:
            raise ValueError("the API token must not be empty")
        self._http = httpx.Client(
            base_url=base_url or DEFAULT_BASE_URL,
            transport=transport,
            headers={"Authorization": f"Bearer {token}", "Accept": "application/json"},
            timeout=30.0,
        )

    def request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json: Any = None,
    ) -> dict[str, Any]:
        """Send a request and return the decoded response envelope.

        Raises CloudflareError (or a subclass) when the request fails.
        """
        try:
            response = self._http.request(method, path, params=params, json=json)
        except httpx.HTTPError as error:
            raise CloudflareError(f"{method} {path} failed: {error}") from error

        try:
            envelope = response.json()
        except ValueError:
            envelope = None

        errors: tuple[dict[str, Any], ...] = ()
        if isinstance(envelope, dict) and isinstance(envelope.get("errors"), list):
            errors = tuple(e for e in envelope["errors"] if isinstance(e, dict))

        if response.status_code >= 400:
            raise _error_for(response.status_code, errors)
        if not isinstance(envelope, dict):
            raise CloudflareError(
                f"invalid response from {method} {path}", status_code=response.status_code
            )
        if envelope.get("success") is False:
            raise _error_for(response.status_code, errors)
        return envelope

    def close(self) -> None:
        """Release the underlying connections."""
        self._http.close()

    def __enter__(self) -> CloudflareClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def _new_cache(expiration: float) -> cachetools.Cache:
    if expiration <= 0:
        return cachetools.Cache(maxsize=_MAX_ENTRIES)
    return cachetools.TTLCache(maxsize=_MAX_ENTRIES, ttl=expiration)


class CloudflareBase:
    """Holds the API client and caches of earlier API responses.

    Entries expire cache_expiration after they are stored (seconds or a
    timedelta); a non-positive value keeps them until flushed.
    """

    def __init__(
        self, client: CloudflareClient, cache_expiration: Union[float, timedelta]
    ) -> None:
        if isinstance(cache_expiration, timedelta):
            expiration = cache_expiration.total_seconds()
        else:
            expiration = float(cache_expiration)
        self.client = client
        self.zones_cache = _new_cache(expiration)
        self.zone_id_cache = _new_cache(expiration)
        self.records_cache = {network: _new_cache(expiration) for network in IPNetwork}
        self.waf_lists_cache = _new_cache(expiration)
        self.waf_list_id_cache = _new_cache(expiration)
        self.waf_list_items_cache = _new_cache(expiration)

    def _all_caches(self) -> list[cachetools.Cache]:
        return [
            self.zones_cache,
            self.zone_id_cache,
            *self.records_cache.values(),
            self.waf_lists_cache,
            self.waf_list_id_cache,
            self.waf_list_items_cache,
        ]

    def flush_cache(self) -> None:
        """Forget every cached response."""
        for cache in self._all_caches():
            cache.clear()


def _quote_char(char: str) -> str:
    escapes = {
        '"': '\\"',
        "\\": "\\\\",
        "\a": "\\a",
        "\b": "\\b",
        "\f": "\\f",
        "\n": "\\n",
        "\r": "\\r",
        "\t": "\\t",
        "\v": "\\v",
    }
    if char in escapes:
        return escapes[char]
    if char.isprintable():
        return char
    code = ord(char)
    if code < 0x80:
        return f"\\x{code:02x}"
    if code <= 0xFFFF:
        return f"\\u{code:04x}"
    return f"\\U{code:08x}"


def describe_free_form_string(text: str) -> str:
    """Quote a free-form string for printing, or say it is empty."""
    if text == "":
        return "empty"
    return '"' + "".join(_quote_char(char) for char in text) + '"'