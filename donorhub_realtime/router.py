"""
Event router.

:data:`EVENT_TABLE` is the single place that says what each server event
does on the client. Every entry is a tuple of :class:`Effect` descriptors;
:class:`EventRouter` walks the table and applies each effect to the cache,
inbox, toast queue or gamification tracker.

Every effect except ``toast`` is idempotent, so a re-delivered event
(e.g. after a reconnect) never corrupts state.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import TYPE_CHECKING, Mapping

from pydantic import BaseModel

from donorhub_realtime.rendering import render_template
from donorhub_realtime.types import CacheKey, RealtimeEvent

if TYPE_CHECKING:
    from donorhub_realtime.cache import QueryCacheCoordinator
    from donorhub_realtime.connection import ConnectionHandle
    from donorhub_realtime.gamification import GamificationTracker
    from donorhub_realtime.inbox import NotificationInbox
    from donorhub_realtime.toasts import ToastQueue

logger = logging.getLogger(__name__)

# Pseudo field name: the payload itself is the id (delete events).
PAYLOAD = "$payload"


class EffectKind(str, Enum):
    INVALIDATE = "invalidate"
    TOAST = "toast"
    INBOX_APPEND = "inbox_append"
    POINTS = "points"
    BADGE = "badge"


class Effect(BaseModel):
    """One typed side effect of an inbound event."""

    kind: EffectKind
    # invalidate
    resource: str | None = None
    id_fields: tuple[str, ...] = ()
    # toast
    template: str | None = None
    icon: str = "🔔"
    ttl_ms: int | None = None
    when: str | None = None

    model_config = {"frozen": True}


def invalidate(resource: str, *id_fields: str) -> Effect:
    """Invalidate ``resource``; with ``id_fields``, the item whose id is the
    first present field, otherwise the collection."""
    return Effect(kind=EffectKind.INVALIDATE, resource=resource, id_fields=id_fields)


def toast(template: str, icon: str = "✨", ttl_ms: int | None = None, when: str | None = None) -> Effect:
    return Effect(kind=EffectKind.TOAST, template=template, icon=icon, ttl_ms=ttl_ms, when=when)


INBOX_APPEND = Effect(kind=EffectKind.INBOX_APPEND)
POINTS = Effect(kind=EffectKind.POINTS)
BADGE = Effect(kind=EffectKind.BADGE)

NOTIFICATION_TTL_MS = 4000
ACTIVITY_TTL_MS = 3000
DONATION_TTL_MS = 5000

# Cache resource names
DONATIONS = "donations"
EVENTS = "events"
HELP_REQUESTS = "help-requests"
CERTIFICATES = "certificates"
BADGES = "badges"
LEADERBOARD = "leaderboard"
ACTIVITY = "activity"
TRANSACTIONS = "transactions"
PROGRESS = "progress"


EVENT_TABLE: Mapping[str, tuple[Effect, ...]] = {
    # Generic
    "notification": (
        INBOX_APPEND,
        toast("{message}", icon="🔔", ttl_ms=NOTIFICATION_TTL_MS),
    ),
    "activity:new": (
        invalidate(ACTIVITY),
        toast("New activity recorded!", icon="✨", ttl_ms=ACTIVITY_TTL_MS),
    ),
    # Donations
    "donation:created": (invalidate(DONATIONS),),
    "donation:updated": (invalidate(DONATIONS), invalidate(DONATIONS, "_id")),
    "donation:accepted": (
        invalidate(DONATIONS),
        invalidate(DONATIONS, "donationId", "_id"),
        toast("{ngoName} has accepted your donation!", icon="✅", ttl_ms=DONATION_TTL_MS),
    ),
    "donation:completed": (
        invalidate(DONATIONS),
        invalidate(DONATIONS, "donationId", "_id"),
        toast("Your donation has been successfully picked up!", icon="🎉", ttl_ms=DONATION_TTL_MS),
    ),
    "donation:cancelled": (
        invalidate(DONATIONS),
        invalidate(DONATIONS, "donationId", "_id"),
        toast("A donation has been cancelled", icon="⚠️", ttl_ms=DONATION_TTL_MS),
    ),
    "payment:completed": (invalidate(DONATIONS), invalidate(TRANSACTIONS)),
    "ngo:contacted": (
        toast("You have a new message from {ngoName}", icon="📞", ttl_ms=DONATION_TTL_MS),
    ),
    # Events
    "event:created": (invalidate(EVENTS),),
    "event:updated": (invalidate(EVENTS), invalidate(EVENTS, "_id")),
    "event:deleted": (invalidate(EVENTS), invalidate(EVENTS, PAYLOAD, "_id")),
    "event:joined": (invalidate(EVENTS), invalidate(EVENTS, "eventId")),
    "event:attended": (invalidate(EVENTS, "eventId"), invalidate(PROGRESS)),
    # Help requests
    "help-request:created": (invalidate(HELP_REQUESTS),),
    "help-request:updated": (invalidate(HELP_REQUESTS), invalidate(HELP_REQUESTS, "_id")),
    "help-request:deleted": (
        invalidate(HELP_REQUESTS),
        invalidate(HELP_REQUESTS, PAYLOAD, "_id"),
    ),
    # Gamification
    "certificate:earned": (
        invalidate(CERTIFICATES),
        toast("New certificate earned! 🏆", icon="✨", ttl_ms=ACTIVITY_TTL_MS),
    ),
    "badge:earned": (
        BADGE,
        invalidate(BADGES),
        toast("Badge earned: {name}", icon="🏅", ttl_ms=ACTIVITY_TTL_MS),
    ),
    "points:earned": (
        POINTS,
        invalidate(PROGRESS),
        toast("Level Up! 🎉 You reached {newLevel}!", icon="⭐", ttl_ms=NOTIFICATION_TTL_MS, when="levelUp"),
    ),
    "leaderboard:updated": (invalidate(LEADERBOARD),),
}


def _resolve_id(event: RealtimeEvent, fields: tuple[str, ...]) -> str | None:
    for name in fields:
        if name == PAYLOAD:
            if isinstance(event.payload, (str, int)) and not isinstance(event.payload, bool):
                return str(event.payload)
            continue
        value = event.field(name)
        if isinstance(value, (str, int)) and not isinstance(value, bool) and value != "":
            return str(value)
    return None


class EventRouter:
    """Fans each inbound event out to the effects listed in its table entry.

    Unknown event names are ignored so newer servers stay compatible.
    """

    def __init__(
        self,
        cache: QueryCacheCoordinator,
        inbox: NotificationInbox,
        toasts: ToastQueue,
        gamification: GamificationTracker,
        table: Mapping[str, tuple[Effect, ...]] = EVENT_TABLE,
    ) -> None:
        self._cache = cache
        self._inbox = inbox
        self._toasts = toasts
        self._gamification = gamification
        self._table = table

    @property
    def event_names(self) -> list[str]:
        return list(self._table)

    def effects_for(self, name: str) -> tuple[Effect, ...]:
        return self._table.get(name, ())

    def attach(self, handle: ConnectionHandle) -> None:
        """Register this router's handler for every event in the table."""
        for name in self._table:
            handle.on(name, self.route)

    def detach(self, handle: ConnectionHandle) -> None:
        """Remove only this router's handlers from ``handle``."""
        for name in self._table:
            handle.off(name, self.route)

    def route(self, event: RealtimeEvent) -> None:
        effects = self._table.get(event.name)
        if effects is None:
            logger.debug("Ignoring unknown event %s", event.name)
            return
        for effect in effects:
            try:
                self.apply(effect, event)
            except Exception:
                logger.exception("Effect %s failed for %s", effect.kind.value, event.name)

    def apply(self, effect: Effect, event: RealtimeEvent) -> None:
        if effect.kind is EffectKind.INVALIDATE:
            self._invalidate(effect, event)
        elif effect.kind is EffectKind.TOAST:
            self._toast(effect, event)
        elif effect.kind is EffectKind.INBOX_APPEND:
            self._append(event)
        elif effect.kind is EffectKind.POINTS:
            self._gamification.apply_points_event(
                event.field("totalPoints"),
                level_up=bool(event.field("levelUp", False)),
                new_level=event.field("newLevel"),
            )
        elif effect.kind is EffectKind.BADGE:
            self._gamification.apply_badge_event(event.field("_id") or event.field("name"))

    def _invalidate(self, effect: Effect, event: RealtimeEvent) -> None:
        if not effect.id_fields:
            self._cache.invalidate(CacheKey(effect.resource))
            return
        item_id = _resolve_id(event, effect.id_fields)
        if item_id is None:
            logger.debug("No id in %s payload for %s", event.name, effect.resource)
            return
        self._cache.invalidate(CacheKey(effect.resource, item_id))

    def _append(self, event: RealtimeEvent) -> None:
        if not isinstance(event.payload, dict):
            logger.debug("Ignoring %s without a notification body", event.name)
            return
        self._inbox.append(event.payload)

    def _toast(self, effect: Effect, event: RealtimeEvent) -> None:
        if effect.when and not event.field(effect.when, False):
            return
        ttl = None if effect.ttl_ms is None else effect.ttl_ms / 1000.0
        self._toasts.enqueue(render_template(effect.template or "", event.payload), ttl=ttl, icon=effect.icon)
