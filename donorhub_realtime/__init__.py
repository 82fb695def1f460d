"""
DonorHub real-time client for Python.

Keeps a donor/NGO client's query cache, notification inbox, toast queue
and gamification display in step with server-pushed events over one
authenticated socket per session.

Example::

    from donorhub_realtime import RealtimeCoordinator, Session

    coordinator = RealtimeCoordinator(
        api_url="https://donorhub.example.org/api",
        session=Session(id="u1", token="jwt..."),
    )
    coordinator.cache.register("events", load_events)

    await coordinator.start()
    await coordinator.inbox.open()
    print(f"{coordinator.inbox.unread_count} unread")

    # Clean up at logout
    await coordinator.stop()
"""

from donorhub_realtime.client import RealtimeCoordinator
from donorhub_realtime.cache import QueryCacheCoordinator
from donorhub_realtime.connection import ConnectionHandle, ConnectionManager
from donorhub_realtime.gamification import GamificationTracker
from donorhub_realtime.inbox import NotificationInbox, present
from donorhub_realtime.router import EVENT_TABLE, Effect, EffectKind, EventRouter
from donorhub_realtime.toasts import ToastQueue
from donorhub_realtime.types import (
    CacheEntry,
    CacheKey,
    CelebrationState,
    ConnectionState,
    CoordinatorConfig,
    GamificationState,
    Notification,
    RealtimeEvent,
    ReconnectConfig,
    Session,
    ToastMessage,
)

__all__ = [
    "RealtimeCoordinator",
    "QueryCacheCoordinator",
    "ConnectionHandle",
    "ConnectionManager",
    "GamificationTracker",
    "NotificationInbox",
    "present",
    "EVENT_TABLE",
    "Effect",
    "EffectKind",
    "EventRouter",
    "ToastQueue",
    "CacheEntry",
    "CacheKey",
    "CelebrationState",
    "ConnectionState",
    "CoordinatorConfig",
    "GamificationState",
    "Notification",
    "RealtimeEvent",
    "ReconnectConfig",
    "Session",
    "ToastMessage",
]

__version__ = "0.1.0"
