import json
import time
from datetime import timedelta

import httpx
import pytest

from cfddns.client import (
    AuthenticationError,
    AuthorizationError,
    CloudflareBase,
    CloudflareClient,
    CloudflareError,
    describe_free_form_string,
)
from cfddns.model import IPNetwork

BASE_URL = "https://api.example.com/client/v4"


def make_client(handler):
    return CloudflareClient("token", BASE_URL, httpx.MockTransport(handler))


def ok_envelope(result):
    return {"success": True, "errors": [], "messages": [], "result": result}


def test_request_sends_token_and_returns_envelope():
    seen = {}

    def handler(request):
        seen["auth"] = request.headers["Authorization"]
        seen["path"] = request.url.path
        seen["name"] = request.url.params.get("name")
        return httpx.Response(200, json=ok_envelope([{"id": "zone"}]))

    with make_client(handler) as client:
        envelope = client.request("GET", "/zones", params={"name": "test.org"})
    assert envelope["result"] == [{"id": "zone"}]
    assert seen["auth"] == "Bearer token"
    assert seen["path"] == "/client/v4/zones"
    assert seen["name"] == "test.org"


def test_request_sends_json_body():
    seen = {}

    def handler(request):
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json=ok_envelope({"id": "record1"}))

    client = make_client(handler)
    envelope = client.request("POST", "/zones/z/dns_records", json={"content": "::1"})
    client.close()
    assert seen["body"] == {"content": "::1"}
    assert envelope["result"]["id"] == "record1"


def test_unauthorized_raises_authentication_error():
    def handler(request):
        return httpx.Response(
            401,
            json={
                "success": False,
                "errors": [{"code": 9109, "message": "Invalid access token"}],
                "messages": [],
                "result": None,
            },
        )

    with pytest.raises(AuthenticationError) as info:
        make_client(handler).request("GET", "/zones")
    assert info.value.status_code == 401
    assert info.value.errors[0]["code"] == 9109


def test_forbidden_raises_authorization_error():
    def handler(request):
        return httpx.Response(
            403,
            json={"success": False, "errors": [{"code": 10000, "message": "Authentication error"}]},
        )

    with pytest.raises(AuthorizationError) as info:
        make_client(handler).request("GET", "/accounts/account456/rules/lists")
    assert "Authentication error" in str(info.value)


def test_empty_error_body():
    with pytest.raises(AuthenticationError):
        make_client(lambda request: httpx.Response(401)).request("GET", "/zones")


def test_server_error_is_generic():
    with pytest.raises(CloudflareError) as info:
        make_client(lambda request: httpx.Response(500)).request("GET", "/zones")
    assert not isinstance(info.value, (AuthenticationError, AuthorizationError))
    assert info.value.status_code == 500


def test_unsuccessful_envelope_raises():
    def handler(request):
        return httpx.Response(200, json={"success": False, "errors": [], "result": None})

    with pytest.raises(CloudflareError):
        make_client(handler).request("GET", "/zones")


def test_invalid_json_raises():
    with pytest.raises(CloudflareError):
        make_client(lambda request: httpx.Response(200, content=b"not json")).request(
            "GET", "/zones"
        )


def test_transport_error_raises():
    def handler(request):
        raise httpx.ConnectError("unreachable", request=request)

    with pytest.raises(CloudflareError):
        make_client(handler).request("GET", "/zones")


def test_empty_token_rejected():
    with pytest.raises(ValueError):
        CloudflareClient("")


def make_base(expiration):
    client = make_client(lambda request: httpx.Response(500))
    return CloudflareBase(client, expiration)


def test_flush_cache_clears_everything():
    base = make_base(60)
    base.zones_cache["test.org"] = ["zone"]
    base.zone_id_cache["sub.test.org"] = "zone"
    base.records_cache[IPNetwork.IP6]["sub.test.org"] = []
    base.waf_list_items_cache["list"] = []
    base.flush_cache()
    assert len(base.zones_cache) == 0
    assert len(base.zone_id_cache) == 0
    assert all(len(cache) == 0 for cache in base.records_cache.values())
    assert len(base.waf_list_items_cache) == 0


def test_records_cache_per_network_is_separate():
    base = make_base(60)
    base.records_cache[IPNetwork.IP4]["test.org"] = []
    assert "test.org" not in base.records_cache[IPNetwork.IP6]


def test_timedelta_and_seconds_agree():
    assert make_base(timedelta(minutes=1)).zone_id_cache.ttl == make_base(60).zone_id_cache.ttl


def test_entries_expire():
    base = make_base(0.05)
    base.zones_cache["test.org"] = ["zone"]
    assert "test.org" in base.zones_cache
    time.sleep(0.15)
    assert "test.org" not in base.zones_cache


def test_non_positive_expiration_keeps_entries():
    base = make_base(0)
    base.zones_cache["test.org"] = ["zone"]
    time.sleep(0.05)
    assert base.zones_cache["test.org"] == ["zone"]


def test_describe_free_form_string_empty():
    assert describe_free_form_string("") == "empty"


def test_describe_free_form_string_quotes():
    assert describe_free_form_string("hello") == '"hello"'
    assert describe_free_form_string("description") == '"description"'


def test_describe_free_form_string_escapes():
    assert describe_free_form_string('a"b') == '"a\\"b"'
    assert describe_free_form_string("a\nb") == '"a\\nb"'