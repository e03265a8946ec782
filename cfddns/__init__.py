"""Cloudflare API layer for keeping DNS records and WAF IP lists in sync with IP addresses."""

__version__ = "0.1.0"