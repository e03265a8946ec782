"""WAF lists of IP ranges managed through the Cloudflare API."""

from __future__ import annotations

import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass
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
    IPNetwork,
    IPPrefix,
    WAFList,
    WAFListItem,
    describe_prefix_or_ip,
    parse_prefix_or_ip,
)

logger = logging.getLogger(__name__)

# The longest prefixes Cloudflare accepts in a WAF list, per IP family.
WAF_LIST_MAX_BIT_LEN = {IPNetwork.IP4: 32, IPNetwork.IP6: 64}

LIST_KIND_IP = "ip"

_WAF_PERMISSION_HINT = (
    "Double check your API token and account ID. "
    'Make sure you granted the "Edit" permission of "Account - Account Filter Lists"'
)


@dataclass(frozen=True)
class WAFListMeta:
    """The metadata of a WAF list."""

    id: str
    name: str
    description: str


def _lists_path(account_id: str) -> str:
    return f"/accounts/{account_id}/rules/lists"


def _result_object(envelope: dict[str, Any], what: str) -> dict[str, Any]:
    result = envelope.get("result")
    if not isinstance(result, dict):
        raise CloudflareError(f"invalid response when {what}")
    return result


def _operation_id(envelope: dict[str, Any]) -> str:
    operation_id = _result_object(envelope, "starting a bulk operation").get("operation_id")
    if not isinstance(operation_id, str) or not operation_id:
        raise CloudflareError("no operation ID in the response of a bulk operation")
    return operation_id


class CloudflareWAF(CloudflareBase):
    """Finds, creates, fills and clears WAF lists, caching what it reads."""

    bulk_poll_interval = 0.25
    bulk_poll_max_interval = 5.0
    bulk_poll_attempts = 30

    def __init__(
        self, client: CloudflareClient, cache_expiration: Union[float, timedelta]
    ) -> None:
        super().__init__(client, cache_expiration)
        self._waf_permission_hinted = False

    def _hint_waf_list_permission(self, error: CloudflareError) -> None:
        if self._waf_permission_hinted:
            return
        if isinstance(error, (AuthenticationError, AuthorizationError)):
            self._waf_permission_hinted = True
            logger.warning("%s", _WAF_PERMISSION_HINT)

    def list_waf_lists(self, account_id: str) -> list[WAFListMeta]:
        """Return the IP lists of an account."""
        cached = self.waf_lists_cache.get(account_id)
        if cached is not None:
            return list(cached)

        try:
            envelope = self.client.request("GET", _lists_path(account_id))
            raw_lists = envelope.get("result")
            if not isinstance(raw_lists, list):
                raise CloudflareError("invalid response when listing lists")
        except CloudflareError as error:
            logger.error("Failed to list existing lists: %s", error)
            self._hint_waf_list_permission(error)
            raise

        metas = [
            WAFListMeta(
                id=str(raw.get("id", "")),
                name=str(raw.get("name", "")),
                description=raw.get("description") or "",
            )
            for raw in raw_lists
            if isinstance(raw, dict) and raw.get("kind") == LIST_KIND_IP
        ]
        self.waf_lists_cache[account_id] = metas
        return list(metas)

    def waf_list_id(self, waf_list: WAFList, expected_description: str) -> str | None:
        """Return the ID of the list, or None when there is no such list."""
        cached = self.waf_list_id_cache.get(waf_list)
        if cached is not None:
            return cached

        found: WAFListMeta | None = None
        for meta in self.list_waf_lists(waf_list.account_id):
            if meta.name != waf_list.name:
                continue
            if found is not None:
                message = (
                    f'Found multiple lists named "{waf_list.name}" within the account '
                    f"{waf_list.account_id} (IDs: {found.id} and {meta.id}); please report this"
                )
                logger.error("%s", message)
                raise CloudflareError(message)
            if meta.description != expected_description:
                logger.warning(
                    "The description for the list %s (ID: %s) is %s. However, its description "
                    "is expected to be %s. You can either change the description in the "
                    "Cloudflare dashboard (account %s, Configurations > Lists) or change the "
                    "value of WAF_LIST_DESCRIPTION to match the current description.",
                    waf_list.describe(),
                    meta.id,
                    describe_free_form_string(meta.description),
                    describe_free_form_string(expected_description),
                    waf_list.account_id,
                )
            found = meta

        if found is None:
            return None
        self.waf_list_id_cache[waf_list] = found.id
        return found.id

    def find_waf_list(self, waf_list: WAFList, expected_description: str) -> str:
        """Return the ID of an existing list; raise when it cannot be found."""
        message = f"Failed to find the list {waf_list.describe()}"
        try:
            list_id = self.waf_list_id(waf_list, expected_description)
        except CloudflareError:
            logger.error("%s", message)
            raise
        if list_id is None:
            logger.error("%s", message)
            raise CloudflareError(message)
        return list_id

    def _drop_list(self, waf_list: WAFList) -> None:
        self.waf_list_items_cache.pop(waf_list, None)
        self.waf_list_id_cache.pop(waf_list, None)

    def final_clear_waf_list_async(
        self, waf_list: WAFList, expected_description: str
    ) -> bool:
        """Delete the list, or start clearing it; return whether it was deleted.

        The cached lists of the account are kept so that other lists of the
        same account need not be looked up again.
        """
        list_id = self.find_waf_list(waf_list, expected_description)
        lists_path = _lists_path(waf_list.account_id)

        try:
            self.client.request("DELETE", f"{lists_path}/{list_id}")
        except CloudflareError as delete_error:
            logger.error(
                "Failed to delete the list %s; clearing it instead: %s",
                waf_list.describe(),
                delete_error,
            )
            try:
                self.client.request("PUT", f"{lists_path}/{list_id}/items", json=[])
            except CloudflareError as error:
                logger.error(
                    "Failed to start clearing the list %s: %s", waf_list.describe(), error
                )
                self._hint_waf_list_permission(error)
                self._drop_list(waf_list)
                raise
            self._drop_list(waf_list)
            return False

        self._drop_list(waf_list)
        return True

    def _fetch_list_items(self, waf_list: WAFList, list_id: str) -> list[dict[str, Any]]:
        path = f"{_lists_path(waf_list.account_id)}/{list_id}/items"
        params: dict[str, Any] | None = None
        raw_items: list[dict[str, Any]] = []
        while True:
            envelope = self.client.request("GET", path, params=params)
            result = envelope.get("result")
            if not isinstance(result, list):
                raise CloudflareError(f"invalid listing returned by GET {path}")
            raw_items.extend(item for item in result if isinstance(item, dict))
            info = envelope.get("result_info")
            cursors = info.get("cursors") if isinstance(info, dict) else None
            after = cursors.get("after") if isinstance(cursors, dict) else None
            if not after:
                return raw_items
            params = {"cursor": after}

    def _wait_for_bulk_operation(self, account_id: str, operation_id: str) -> None:
        path = f"{_lists_path(account_id)}/bulk_operations/{operation_id}"
        delay = self.bulk_poll_interval
        for _ in range(self.bulk_poll_attempts):
            result = _result_object(
                self.client.request("GET", path), "checking a bulk operation"
            )
            status = result.get("status")
            if status == "completed":
                return
            if status == "failed":
                raise CloudflareError(
                    f"bulk operation {operation_id} failed: {result.get('error', '')}"
                )
            time.sleep(delay)
            delay = min(delay * 2, self.bulk_poll_max_interval)
        raise CloudflareError(f"bulk operation {operation_id} did not finish in time")

    def _read_items(
        self, waf_list: WAFList, raw_items: Sequence[dict[str, Any]]
    ) -> list[WAFListItem]:
        items: list[WAFListItem] = []
        for raw in raw_items:
            ip_text = raw.get("ip")
            if not isinstance(ip_text, str):
                message = f"Found a non-IP in the list {waf_list.describe()}"
                logger.error("%s", message)
                raise CloudflareError(message)
            try:
                prefix = parse_prefix_or_ip(ip_text)
            except ValueError as error:
                message = (
                    f'Found an invalid IP range/address "{ip_text}" '
                    f"in the list {waf_list.describe()}"
                )
                logger.error("%s", message)
                raise CloudflareError(message) from error
            comment = raw.get("comment") or ""
            if comment:
                logger.warning(
                    'The IP range/address "%s" in the list %s has a non-empty comment "%s"; '
                    "the comment might be lost during an IP update.",
                    ip_text,
                    waf_list.describe(),
                    comment,
                )
            items.append(WAFListItem(id=str(raw.get("id", "")), prefix=prefix))
        return items

    def list_waf_list_items(
        self, waf_list: WAFList, expected_description: str
    ) -> tuple[list[WAFListItem], bool, bool]:
        """Return the items, whether the list existed, and whether cached.

        The list is created empty when it does not exist yet.
        """
        cached = self.waf_list_items_cache.get(waf_list)
        if cached is not None:
            return list(cached), True, True

        try:
            list_id = self.waf_list_id(waf_list, expected_description)
        except CloudflareError:
            logger.error(
                "Failed to check the existence of the list %s", waf_list.describe()
            )
            raise

        if list_id is None:
            try:
                envelope = self.client.request(
                    "POST",
                    _lists_path(waf_list.account_id),
                    json={
                        "name": waf_list.name,
                        "description": expected_description,
                        "kind": LIST_KIND_IP,
                    },
                )
                created = _result_object(envelope, "creating a list")
            except CloudflareError as error:
                logger.error(
                    "Failed to create the list %s: %s", waf_list.describe(), error
                )
                self._hint_waf_list_permission(error)
                self.waf_lists_cache.pop(waf_list.account_id, None)
                raise

            list_id = str(created.get("id", ""))
            cached_lists = self.waf_lists_cache.get(waf_list.account_id)
            if cached_lists is not None:
                cached_lists.insert(
                    0,
                    WAFListMeta(
                        id=list_id, name=waf_list.name, description=expected_description
                    ),
                )
            self.waf_list_id_cache[waf_list] = list_id
            self.waf_list_items_cache[waf_list] = []
            return [], False, False

        try:
            raw_items = self._fetch_list_items(waf_list, list_id)
        except CloudflareError as error:
            logger.error(
                "Failed to retrieve items in the list %s: %s", waf_list.describe(), error
            )
            self._hint_waf_list_permission(error)
            raise

        items = self._read_items(waf_list, raw_items)
        self.waf_list_items_cache[waf_list] = items
        return list(items), True, False

    def delete_waf_list_items(
        self, waf_list: WAFList, expected_description: str, ids: Sequence[str]
    ) -> None:
        """Remove the items with the given IDs from a WAF list."""
        if not ids:
            return

        list_id = self.find_waf_list(waf_list, expected_description)
        try:
            envelope = self.client.request(
                "DELETE",
                f"{_lists_path(waf_list.account_id)}/{list_id}/items",
                json={"items": [{"id": item_id} for item_id in ids]},
            )
            self._wait_for_bulk_operation(waf_list.account_id, _operation_id(envelope))
            raw_items = self._fetch_list_items(waf_list, list_id)
        except CloudflareError as error:
            logger.error(
                "Failed to finish deleting items from the list %s: %s",
                waf_list.describe(),
                error,
            )
            self._hint_waf_list_permission(error)
            self.waf_list_items_cache.pop(waf_list, None)
            raise

        self.waf_list_items_cache[waf_list] = self._read_items(waf_list, raw_items)

    def create_waf_list_items(
        self,
        waf_list: WAFList,
        expected_description: str,
        prefixes: Sequence[IPPrefix],
        comment: str,
    ) -> None:
        """Add IP ranges, all with the same comment, to a WAF list."""
        if not prefixes:
            return

        list_id = self.find_waf_list(waf_list, expected_description)
        body = [
            {"ip": describe_prefix_or_ip(prefix), "comment": comment} for prefix in prefixes
        ]
        try:
            envelope = self.client.request(
                "POST", f"{_lists_path(waf_list.account_id)}/{list_id}/items", json=body
            )
            self._wait_for_bulk_operation(waf_list.account_id, _operation_id(envelope))
            raw_items = self._fetch_list_items(waf_list, list_id)
        except CloudflareError as error:
            logger.error(
                "Failed to finish adding items to the list %s: %s",
                waf_list.describe(),
                error,
            )
            self._hint_waf_list_permission(error)
            self.waf_list_items_cache.pop(waf_list, None)
            raise

        self.waf_list_items_cache[waf_list] = self._read_items(waf_list, raw_items)