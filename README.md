# cfddns

`cfddns` is a library that keeps Cloudflare DNS records and WAF IP lists
pointed at your current IP addresses. It makes the Cloudflare API calls and
keeps a cache of the responses it has already fetched. It also logs a warning
when a record's TTL, proxy status or comment, or a list's description, is not
the value you expect.

## Installation

```
pip install .
```

To run the test suite:

```
pip install ".[test]"
pytest
```

## Modules

- `cfddns.ttl`: `TTL`, an `int` subclass for a record's time-to-live, and the
  constant `TTL_AUTO` (the value `1`, meaning "automatic").
  `TTL(1).describe()` returns `"1 (auto)"`. Any other value is described as
  its number.
- `cfddns.model`: the shared data types.
  - `IPNetwork.IP4` / `IPNetwork.IP6`. `record_type()` returns `"A"` or
    `"AAAA"`.
  - `Domain` is built with `fqdn(name)` or `wildcard(name)`. Names are
    stripped of surrounding whitespace and a trailing dot, lower-cased, and
    IDNA-encoded. `dns_name()` gives the ASCII name, with a wildcard written
    as `*.name`. `describe()` gives the readable Unicode form. `zones()`
    yields the candidate zone names, from the full name down to the root
    (`""`).
  - `WAFList(account_id, name)`. `describe()` returns `account_id/name`.
  - The frozen dataclasses `RecordParams(ttl, proxied, comment)`,
    `Record(id, ip, params)` and `WAFListItem(id, prefix)`.
  - `DeletionMode.REGULAR` / `DeletionMode.FINAL`.
  - `parse_prefix_or_ip(text)` reads a CIDR range, or a single address as a
    full-length range. It raises `ValueError` when the text is neither.
    `describe_prefix_or_ip(prefix)` writes a full-length range as the bare
    address.
  - `Handle`, the abstract interface for updating records and lists.
- `cfddns.client`:
  - `CloudflareClient(token, base_url=None, transport=None)` sends
    bearer-authenticated requests and returns the decoded JSON envelope from
    `request(method, path, params=None, json=None)`. It raises
    `AuthenticationError` on HTTP 401 and `AuthorizationError` on HTTP 403.
    It raises `CloudflareError` for any other failure, including an envelope
    with `"success": false`. An empty token raises `ValueError`. `close()`
    releases the connections. The client can also be used as a context
    manager.
  - `CloudflareBase` holds the client and the response caches.
    `flush_cache()` empties every cache.
  - `describe_free_form_string(text)` quotes a string for messages, and
    returns `"empty"` for `""`.
- `cfddns.records`: `CloudflareRecords` provides these operations:
  - `list_zones(name)`. Zones with status `deleted` are skipped.
  - `zone_id_of_domain(domain)`. Raises when no zone matches, or when more
    than one zone of the same name matches.
  - `list_records`, `create_record`, `update_record` and `delete_record`.
- `cfddns.waf`: `CloudflareWAF` provides these operations:
  - `list_waf_lists(account_id)`. Only lists of kind `ip` are returned, as
    `WAFListMeta`.
  - `waf_list_id`, which returns `None` when there is no such list.
  - `find_waf_list`, which raises when there is no such list.
  - `list_waf_list_items`, which creates an empty list if none exists.
  - `create_waf_list_items` and `delete_waf_list_items`. Both wait for the
    bulk operation to complete and then re-read the items.
  - `final_clear_waf_list_async`, which deletes the list. If the deletion
    fails, it starts clearing the list instead and returns `False`.

  `WAF_LIST_MAX_BIT_LEN` gives the longest prefix a list accepts per family:
  32 for IPv4 and 64 for IPv6.
- `cfddns.handle`:
  - `CloudflareHandle` combines both sets of operations and implements
    `Handle`. Used as a context manager, it closes its client on exit.
  - `CloudflareAuth(token, base_url="", transport=None)` creates a handle
    with `new(cache_expiration)`.

## Usage

```python
from datetime import timedelta
from ipaddress import ip_address, ip_network

from cfddns.handle import CloudflareAuth
from cfddns.model import IPNetwork, RecordParams, WAFList, fqdn
from cfddns.ttl import TTL_AUTO

auth = CloudflareAuth(token="token")
with auth.new(timedelta(hours=6)) as handle:
    domain = fqdn("home.example.com")
    params = RecordParams(ttl=TTL_AUTO, proxied=False, comment="")

    records, cached = handle.list_records(IPNetwork.IP6, domain, params)
    for record in records:
        handle.update_record(
            IPNetwork.IP6, domain, record.id, ip_address("2001:db8::1"), record.params, params
        )

    waf_list = WAFList(account_id="account123", name="home")
    items, existed, cached = handle.list_waf_list_items(waf_list, "my addresses")
    handle.create_waf_list_items(waf_list, "my addresses", [ip_network("2001:db8::/64")], "")
```

## Errors, logging and caching

A failed operation raises `CloudflareError` or one of its subclasses. It does
not return a status flag.

Failures and mismatches are also reported through the standard `logging`
module, under the `cfddns.*` loggers. When the token is rejected, a hint about
the API token's permissions is logged once per handle. The package does not
configure logging itself.

Cached responses expire `cache_expiration` after they are stored. The value
can be given in seconds or as a `timedelta`. A value of zero or less keeps
entries until `flush_cache()` is called.

Successful creates, updates and deletes also update the cached records and
list items. Failed ones drop the affected cache entries, so the data is read
again next time.

Pass an `httpx` transport (for example `httpx.MockTransport`) to
`CloudflareAuth` or `CloudflareClient` to point the handle somewhere other
than the live API. You can do the same with `base_url`.

## What this package does not do

`cfddns` is only the API layer. It has no command-line program, and it does
not:

- detect your current IP addresses;
- read configuration from the environment;
- schedule periodic updates;
- send notifications or monitoring pings.

Deciding which records or list items to create, update or delete is left to
the code that uses the handle.