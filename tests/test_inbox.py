"""Unit tests for the notification inbox."""

from __future__ import annotations

from typing import Any

import httpx
import pytest

from donorhub_realtime.inbox import DEFAULT_STYLE, NotificationInbox, present
from donorhub_realtime.toasts import ToastQueue
from donorhub_realtime.types import Notification


class FakeNotificationApi:
    def __init__(self, page: list[dict[str, Any]] | None = None, fail: bool = False) -> None:
        self.page = page or []
        self.fail = fail
        self.read_calls: list[str] = []
        self.read_all_calls = 0

    async def fetch_inbox(self, page: int = 1, limit: int = 20) -> list[dict[str, Any]]:
        if self.fail:
            raise httpx.ConnectError("offline")
        return self.page

    async def mark_read(self, notification_id: str) -> dict[str, Any]:
        self.read_calls.append(notification_id)
        if self.fail:
            raise httpx.ConnectError("offline")
        return {}

    async def mark_all_read(self) -> dict[str, Any]:
        self.read_all_calls += 1
        if self.fail:
            raise httpx.ConnectError("offline")
        return {}


def _note(nid: str, is_read: bool = False, category: str = "general") -> dict[str, Any]:
    return {
        "_id": nid,
        "type": category,
        "title": f"Title {nid}",
        "message": f"Message {nid}",
        "isRead": is_read,
        "createdAt": "2025-01-01T00:00:00Z",
    }


# ============================================================
#  Local mutations
# ============================================================


@pytest.mark.asyncio
async def test_push_read_and_read_all_flow() -> None:
    """Three pushes, one read, then read-all."""
    api = FakeNotificationApi()
    inbox = NotificationInbox(api)

    for nid in ("n1", "n2", "n3"):
        inbox.append(_note(nid))
    assert inbox.unread_count == 3
    assert [n.id for n in inbox.items] == ["n3", "n2", "n1"]

    assert await inbox.mark_read("n2") is True
    assert inbox.unread_count == 2
    assert api.read_calls == ["n2"]

    assert await inbox.mark_all_read() is True
    assert inbox.unread_count == 0
    assert all(n.is_read for n in inbox.items)
    assert api.read_all_calls == 1


def test_append_counts_only_unread_items() -> None:
    inbox = NotificationInbox()
    inbox.append(_note("n1", is_read=True))
    assert inbox.unread_count == 0
    inbox.append(_note("n2"))
    assert inbox.unread_count == 1


def test_duplicate_push_is_ignored() -> None:
    inbox = NotificationInbox()
    assert inbox.append(_note("n1")) is not None
    assert inbox.append(_note("n1")) is None
    assert len(inbox) == 1
    assert inbox.unread_count == 1


def test_load_initial_resets_regardless_of_prior_state() -> None:
    inbox = NotificationInbox()
    for nid in ("a", "b", "c", "d"):
        inbox.append(_note(nid))

    inbox.load_initial([_note("x"), _note("y", is_read=True), _note("z")])

    assert inbox.unread_count == 2
    assert [n.id for n in inbox.items] == ["x", "y", "z"]


def test_load_initial_accepts_models_and_skips_garbage() -> None:
    inbox = NotificationInbox()
    inbox.load_initial([Notification(_id="m1"), "junk", {"isRead": "not-a-bool"}])
    assert [n.id for n in inbox.items] == ["m1"]
    assert inbox.unread_count == 1


def test_malformed_push_gets_placeholders() -> None:
    inbox = NotificationInbox()
    item = inbox.append({"message": None, "title": None})
    assert item is not None
    assert item.title == "Notification"
    assert item.message == ""
    assert item.category == "general"
    assert item.id


def test_wrong_typed_fields_do_not_drop_the_push() -> None:
    inbox = NotificationInbox()
    item = inbox.append(
        {
            "_id": "n1",
            "title": "Pickup scheduled",
            "message": "Tomorrow at 10",
            "createdAt": 1700000000000,
            "isRead": "nope",
            "data": ["not", "a", "dict"],
        }
    )

    assert item is not None
    assert item.created_at == "2023-11-14T22:13:20+00:00"
    assert item.is_read is False
    assert item.data is None
    assert inbox.unread_count == 1

    odd = inbox.append({"_id": "n2", "createdAt": {"$date": "x"}, "isRead": 1})
    assert odd is not None
    assert odd.created_at is None
    assert odd.is_read is True
    assert inbox.unread_count == 1


@pytest.mark.asyncio
async def test_mark_read_twice_decrements_once() -> None:
    inbox = NotificationInbox(FakeNotificationApi())
    inbox.load_initial([_note("n1"), _note("n2")])

    await inbox.mark_read("n1")
    await inbox.mark_read("n1")

    assert inbox.unread_count == 1


@pytest.mark.asyncio
async def test_mark_read_unknown_id_is_noop() -> None:
    api = FakeNotificationApi()
    inbox = NotificationInbox(api)
    inbox.append(_note("n1"))

    assert await inbox.mark_read("missing") is False
    assert inbox.unread_count == 1
    assert api.read_calls == []


@pytest.mark.asyncio
async def test_mark_all_read_on_empty_inbox() -> None:
    inbox = NotificationInbox(FakeNotificationApi())
    await inbox.mark_all_read()
    assert inbox.unread_count == 0


def test_clear_all_only_touches_local_view() -> None:
    api = FakeNotificationApi()
    inbox = NotificationInbox(api)
    inbox.append(_note("n1"))

    inbox.clear_all()

    assert inbox.items == []
    assert inbox.unread_count == 0
    assert api.read_calls == [] and api.read_all_calls == 0


# ============================================================
#  Server reconciliation
# ============================================================


@pytest.mark.asyncio
async def test_open_loads_server_page() -> None:
    api = FakeNotificationApi(page=[_note("s1"), _note("s2", is_read=True)])
    inbox = NotificationInbox(api)
    inbox.append(_note("local"))

    assert await inbox.open() is True
    assert [n.id for n in inbox.items] == ["s1", "s2"]
    assert inbox.unread_count == 1


@pytest.mark.asyncio
async def test_open_failure_keeps_contents() -> None:
    inbox = NotificationInbox(FakeNotificationApi(fail=True))
    inbox.append(_note("n1"))

    assert await inbox.open() is False
    assert len(inbox) == 1


@pytest.mark.asyncio
async def test_confirmation_failure_keeps_local_change_and_warns() -> None:
    api = FakeNotificationApi(fail=True)
    toasts = ToastQueue()
    inbox = NotificationInbox(api, toasts=toasts)
    inbox.load_initial([_note("n1"), _note("n2")])

    assert await inbox.mark_read("n1") is False
    assert inbox.get("n1").is_read
    assert inbox.unread_count == 1
    assert inbox.needs_reconcile
    assert len(toasts) == 1
    assert toasts.active[0].icon == "⚠️"

    assert await inbox.mark_all_read() is False
    assert inbox.unread_count == 0

    api.fail = False
    api.page = [_note("n1", is_read=True), _note("n2")]
    await inbox.open()
    assert not inbox.needs_reconcile
    assert inbox.unread_count == 1
    toasts.close()


# ============================================================
#  Presentation
# ============================================================


def test_known_categories_have_distinct_styles() -> None:
    categories = [
        "donation_update",
        "event_registration",
        "help_request_update",
        "payment_confirmation",
        "admin_approval",
        "security_alert",
    ]
    styles = [present(c) for c in categories]
    assert len({s.icon for s in styles}) == len(categories)
    assert DEFAULT_STYLE not in styles
    assert present("donation_update").icon == "🎁"


def test_unknown_category_falls_back() -> None:
    assert present("brand_new_category") == DEFAULT_STYLE
    assert present(None) == DEFAULT_STYLE
