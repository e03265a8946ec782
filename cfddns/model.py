"""Core data types shared by the DNS record and WAF list updaters."""

from __future__ import annotations

import abc
import enum
import ipaddress
import logging
from collections.abc import Iterator, Sequence
from dataclasses import dataclass
from typing import Union

from cfddns.ttl import TTL

logger = logging.getLogger(__name__)

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]
IPPrefix = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]


class IPNetwork(enum.Enum):
    """The IP family a DNS record belongs to."""

    IP4 = 4
    IP6 = 6

    def record_type(self) -> str:
        """Return the DNS record type holding addresses of this family."""
        return "A" if self is IPNetwork.IP4 else "AAAA"


@dataclass(frozen=True)
class Domain:
    """A domain name, stored in its ASCII form, possibly a wildcard."""

    name: str
    is_wildcard: bool = False

    def dns_name(self) -> str:
        """Return the ASCII name as used in DNS records."""
        if self.is_wildcard:
            return f"*.{self.name}" if self.name else "*"
        return self.name

    def describe(self) -> str:
        """Return a human-readable (Unicode) form of the name."""
        try:
            readable = self.name.encode("ascii").decode("idna")
        except UnicodeError:
            readable = self.name
        if self.is_wildcard:
            return f"*.{readable}" if readable else "*"
        return readable

    def zones(self) -> Iterator[str]:
        """Yield the candidate zone names, from the longest to the root."""
        name = self.name
        while name:
            yield name
            _, _, name = name.partition(".")
        yield ""


def _to_ascii(name: str) -> str:
    name = name.strip().rstrip(".").lower()
    return name.encode("idna").decode("ascii")


def fqdn(name: str) -> Domain:
    """Make a plain domain from a (possibly internationalised) name."""
    return Domain(_to_ascii(name))


def wildcard(name: str) -> Domain:
    """Make a wildcard domain covering the subdomains of name."""
    return Domain(_to_ascii(name), is_wildcard=True)


@dataclass(frozen=True)
class WAFList:
    """A WAF list identified by its account and its name."""

    account_id: str
    name: str

    def describe(self) -> str:
        """Return the list as account/name."""
        return f"{self.account_id}/{self.name}"


@dataclass(frozen=True)
class RecordParams:
    """The parameters of a DNS record other than its address."""

    ttl: TTL
    proxied: bool
    comment: str


@dataclass(frozen=True)
class Record:
    """A DNS record."""

    id: str
    ip: IPAddress
    params: RecordParams


@dataclass(frozen=True)
class WAFListItem:
    """An item of a WAF list: its ID and its IP range."""

    id: str
    prefix: IPPrefix


class DeletionMode(enum.Enum):
    """Whether a failed deletion should force re-reading of cached data."""

    REGULAR = "regular"
    FINAL = "final"


def _parse_prefix(text: str) -> IPPrefix:
    if "/" not in text:
        raise ValueError(f"no '/' in {text!r}")
    return ipaddress.ip_network(text, strict=False)


def parse_prefix_or_ip(text: str) -> IPPrefix:
    """Parse an IP range, or a single address as a full-length range.

    Raises ValueError when text is neither.
    """
    try:
        return _parse_prefix(text)
    except ValueError as prefix_error:
        try:
            address = ipaddress.ip_address(text)
        except ValueError as address_error:
            logger.warning("Failed to parse %r as an IP range: %s", text, prefix_error)
            logger.warning(
                "Failed to parse %r as an IP address as well: %s", text, address_error
            )
            raise ValueError(
                f"{text!r} is neither an IP range nor an IP address"
            ) from address_error
        return ipaddress.ip_network(address)


def describe_prefix_or_ip(prefix: IPPrefix) -> str:
    """Format a range, writing a single-address range as the bare address."""
    if prefix.prefixlen == prefix.max_prefixlen:
        return str(prefix.network_address)
    return str(prefix)


class Handle(abc.ABC):
    """A service that updates DNS records and WAF lists.

    Every operation raises an error when it fails.
    """

    @abc.abstractmethod
    def list_records(
        self, ip_network: IPNetwork, domain: Domain, expected_params: RecordParams
    ) -> tuple[list[Record], bool]:
        """Return the matching records and whether they came from the cache."""

    @abc.abstractmethod
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

    @abc.abstractmethod
    def create_record(
        self, ip_network: IPNetwork, domain: Domain, ip: IPAddress, params: RecordParams
    ) -> str:
        """Create one record and return its ID."""

    @abc.abstractmethod
    def delete_record(
        self, ip_network: IPNetwork, domain: Domain, record_id: str, mode: DeletionMode
    ) -> None:
        """Delete one record."""

    @abc.abstractmethod
    def list_waf_list_items(
        self, waf_list: WAFList, expected_description: str
    ) -> tuple[list[WAFListItem], bool, bool]:
        """Return the items, whether the list existed, and whether cached.

        The list is created empty when it does not exist yet.
        """

    @abc.abstractmethod
    def final_clear_waf_list_async(
        self, waf_list: WAFList, expected_description: str
    ) -> bool:
        """Delete the list, or start clearing it; return whether it was deleted."""

    @abc.abstractmethod
    def delete_waf_list_items(
        self, waf_list: WAFList, expected_description: str, ids: Sequence[str]
    ) -> None:
        """Remove items from a WAF list."""

    @abc.abstractmethod
    def create_waf_list_items(
        self,
        waf_list: WAFList,
        expected_description: str,
        prefixes: Sequence[IPPrefix],
        comment: str,
    ) -> None:
        """Add IP ranges to a WAF list."""