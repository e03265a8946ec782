"""Time-to-live values of DNS records."""

from __future__ import annotations

from typing import Final


class TTL(int):
    """A time-to-live value of a DNS record, in seconds.

    The value 1 is the special "automatic" TTL of Cloudflare servers.
    """

    __slots__ = ()

    def __repr__(self) -> str:
        return f"TTL({int(self)})"

    def __str__(self) -> str:
        return str(int(self))

    def describe(self) -> str:
        """Return a human-readable description suitable for printing."""
        if self == TTL_AUTO:
            return "1 (auto)"
        return str(int(self))


TTL_AUTO: Final = TTL(1)