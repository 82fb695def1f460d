"""
Notification inbox.

Holds the most-recent-first notification list and its unread count.
The server is authoritative: :meth:`NotificationInbox.open` replaces the
local view with a fresh page, while push appends and read marks are
applied locally first and confirmed over REST afterwards.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Iterable, NamedTuple, Protocol

import httpx
from pydantic import ValidationError

from donorhub_realtime.types import Notification

if TYPE_CHECKING:
    from donorhub_realtime.toasts import ToastQueue

logger = logging.getLogger(__name__)


class CategoryStyle(NamedTuple):
    icon: str
    label: str


CATEGORY_STYLES: dict[str, CategoryStyle] = {
    "donation_update": CategoryStyle("🎁", "Donation update"),
    "event_registration": CategoryStyle("📅", "Event registration"),
    "help_request_update": CategoryStyle("🤝", "Help request update"),
    "payment_confirmation": CategoryStyle("💳", "Payment confirmation"),
    "admin_approval": CategoryStyle("✅", "Admin approval"),
    "security_alert": CategoryStyle("⚠️", "Security alert"),
}
DEFAULT_STYLE = CategoryStyle("📢", "Announcement")


def present(category: str | None) -> CategoryStyle:
    """Icon and label for a notification category."""
    return CATEGORY_STYLES.get(category or "", DEFAULT_STYLE)


class NotificationApi(Protocol):
    async def fetch_inbox(self, page: int = 1, limit: int = 20) -> list[dict[str, Any]]: ...

    async def mark_read(self, notification_id: str) -> Any: ...

    async def mark_all_read(self) -> Any: ...


class NotificationInbox:
    """Ordered, read/unread-tracked notification list for one session."""

    def __init__(
        self,
        api: NotificationApi | None = None,
        toasts: ToastQueue | None = None,
        page_size: int = 20,
    ) -> None:
        self._api = api
        self._toasts = toasts
        self._page_size = page_size
        self._items: list[Notification] = []
        self._unread = 0
        self.needs_reconcile = False

    @property
    def items(self) -> list[Notification]:
        return list(self._items)

    @property
    def unread_count(self) -> int:
        return self._unread

    def __len__(self) -> int:
        return len(self._items)

    def get(self, notification_id: str) -> Notification | None:
        for item in self._items:
            if item.id == notification_id:
                return item
        return None

    # ---- Local mutations ----

    def load_initial(self, items: Iterable[Notification | dict[str, Any]]) -> None:
        """Replace the contents; the unread count is recomputed from scratch."""
        loaded = [n for n in (self._coerce(i) for i in items) if n is not None]
        self._items = loaded
        self._unread = sum(1 for n in loaded if not n.is_read)

    def append(self, item: Notification | dict[str, Any]) -> Notification | None:
        """Prepend a pushed notification. Re-delivery of a known id is a no-op."""
        notification = self._coerce(item)
        if notification is None:
            return None
        if self.get(notification.id) is not None:
            logger.debug("Ignoring duplicate notification %s", notification.id)
            return None
        self._items.insert(0, notification)
        if not notification.is_read:
            self._unread += 1
        return notification

    def clear_all(self) -> None:
        """Empty the local view only; server history is untouched."""
        self._items = []
        self._unread = 0

    def _mark_local(self, item: Notification) -> None:
        if not item.is_read:
            item.is_read = True
            self._unread = max(0, self._unread - 1)

    def _mark_all_local(self) -> None:
        for item in self._items:
            item.is_read = True
        self._unread = 0

    # ---- Server-confirmed operations ----

    async def open(self) -> bool:
        """Fetch-on-open: reload the first page from the server."""
        if self._api is None:
            return False
        try:
            items = await self._api.fetch_inbox(page=1, limit=self._page_size)
        except httpx.HTTPError as exc:
            logger.warning("Failed to fetch notifications: %s", exc)
            return False
        self.load_initial(items)
        self.needs_reconcile = False
        return True

    async def mark_read(self, notification_id: str) -> bool:
        """Mark one notification read locally, then confirm with the server.

        Returns whether the server confirmed. A failed confirmation keeps the
        local change and flags the inbox for reconciliation on next open.
        """
        item = self.get(notification_id)
        if item is None:
            logger.debug("mark_read for unknown notification %s", notification_id)
            return False
        self._mark_local(item)
        if self._api is None:
            return True
        try:
            await self._api.mark_read(notification_id)
        except httpx.HTTPError as exc:
            self._confirmation_failed("mark notification %s read" % notification_id, exc)
            return False
        return True

    async def mark_all_read(self) -> bool:
        """Mark everything read locally, then confirm in bulk."""
        self._mark_all_local()
        if self._api is None:
            return True
        try:
            await self._api.mark_all_read()
        except httpx.HTTPError as exc:
            self._confirmation_failed("mark all notifications read", exc)
            return False
        return True

    # ---- Internal ----

    def _confirmation_failed(self, action: str, exc: Exception) -> None:
        logger.warning("Server did not confirm %s: %s", action, exc)
        self.needs_reconcile = True
        if self._toasts is not None:
            self._toasts.enqueue("Couldn't sync read status; it will refresh next time.", icon="⚠️")

    @staticmethod
    def _coerce(item: Notification | dict[str, Any]) -> Notification | None:
        if isinstance(item, Notification):
            return item
        if not isinstance(item, dict):
            logger.debug("Ignoring malformed notification payload %r", item)
            return None
        try:
            return Notification.model_validate(item)
        except ValidationError:
            logger.debug("Ignoring malformed notification payload", exc_info=True)
            return None
