"""
Connection manager for the DonorHub real-time channel.

Owns the single authenticated WebSocket per session. Credentials travel
as handshake headers; after every successful handshake the manager joins
the caller's personal room and, for organizational roles, the NGO room.
Dropped connections are retried with bounded exponential backoff.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable

import websockets

from donorhub_realtime.events import EventHandler, EventManager
from donorhub_realtime.types import (
    ConnectionState,
    RealtimeEvent,
    ReconnectConfig,
    Session,
)

logger = logging.getLogger(__name__)

Connector = Callable[..., Awaitable[Any]]

# Local lifecycle notifications; never sent on the wire.
CONNECT = "connect"
DISCONNECT = "disconnect"

JOIN_PERSONAL = "user:join"
JOIN_ORGANIZATIONAL = "ngo:join"


class ConnectionHandle:
    """A live (or reconnecting) connection for one session."""

    def __init__(
        self,
        url: str,
        session: Session,
        reconnect: ReconnectConfig,
        org_roles: frozenset[str],
        connector: Connector,
    ) -> None:
        self._url = url
        self._session = session
        self._reconnect = reconnect
        self._org_roles = org_roles
        self._connector = connector
        self._events = EventManager()
        self._ws: Any | None = None
        self._task: asyncio.Task[None] | None = None
        self._state = ConnectionState.DISCONNECTED
        self._closed = False

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def session(self) -> Session:
        return self._session

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def done(self) -> bool:
        """True once the manager has given up or been torn down."""
        return self._task is not None and self._task.done()

    # ---- Listener API ----

    def on(self, name: str, handler: EventHandler) -> None:
        """Subscribe to an inbound event (or ``connect``/``disconnect``)."""
        self._events.subscribe(name, handler)

    def off(self, name: str, handler: EventHandler | None = None) -> None:
        """Unsubscribe one handler, or every handler for ``name``."""
        self._events.unsubscribe(name, handler)

    def listener_count(self, name: str | None = None) -> int:
        return self._events.handler_count(name)

    async def emit(self, name: str, payload: Any = None) -> bool:
        """Send a command frame. Returns False when not connected."""
        if self._ws is None or self._closed:
            logger.debug("Dropping %s: socket not connected", name)
            return False
        try:
            await self._ws.send(json.dumps({"type": name, "data": payload}))
        except Exception as exc:
            logger.warning("Failed to emit %s: %s", name, exc)
            return False
        return True

    # ---- Lifecycle ----

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._run())

    async def close(self) -> None:
        """Tear down: stop retrying, close the socket, drop every listener."""
        if self._closed:
            return
        self._closed = True
        self._events.clear()
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        await self._close_ws()
        self._state = ConnectionState.DISCONNECTED
        logger.info("Real-time connection closed for %s", self._session.identity)

    async def wait_closed(self) -> None:
        """Wait until the manager gives up reconnecting or is torn down."""
        if self._task is not None:
            await asyncio.shield(self._task)

    # ---- Internal ----

    def _handshake_headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._session.auth_token}",
            "X-Identity": self._session.identity,
        }

    async def _close_ws(self) -> None:
        if self._ws is not None:
            try:
                await self._ws.close()
            except Exception:
                logger.debug("Error while closing socket", exc_info=True)
            self._ws = None

    async def _join_rooms(self) -> None:
        await self.emit(JOIN_PERSONAL, self._session.identity)
        if self._session.role in self._org_roles and self._session.org_id:
            await self.emit(JOIN_ORGANIZATIONAL, self._session.org_id)

    async def _notify(self, name: str) -> None:
        await self._events.dispatch(RealtimeEvent(name=name, payload={"state": self._state.value}))

    async def _run(self) -> None:
        failures = 0
        # A drop counts as the first backoff step.
        dropped = 0
        self._state = ConnectionState.CONNECTING
        while not self._closed:
            try:
                self._ws = await self._connector(
                    self._url, additional_headers=self._handshake_headers()
                )
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                failures += 1
                if failures > self._reconnect.max_retries:
                    logger.error(
                        "Giving up on real-time connection after %d attempts: %s",
                        failures, exc,
                    )
                    self._state = ConnectionState.DISCONNECTED
                    return
                self._state = ConnectionState.RECONNECTING
                delay = self._reconnect.delay_for(failures + dropped)
                logger.warning(
                    "Real-time connection failed (attempt %d/%d), retrying in %.1fs: %s",
                    failures, self._reconnect.max_retries + 1, delay, exc,
                )
                await asyncio.sleep(delay)
                continue

            failures = 0
            dropped = 0
            self._state = ConnectionState.CONNECTED
            logger.info("Real-time connection established for %s", self._session.identity)
            await self._join_rooms()
            await self._notify(CONNECT)

            try:
                await self._events.listen(self._ws)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.warning("Real-time connection dropped: %s", exc)
            await self._close_ws()
            if self._closed:
                return

            self._state = ConnectionState.RECONNECTING
            await self._notify(DISCONNECT)
            dropped = 1
            delay = self._reconnect.delay_for(dropped)
            logger.info("Reconnecting in %.1fs", delay)
            await asyncio.sleep(delay)


class ConnectionManager:
    """Creates the per-session connection handle.

    Args:
        url: WebSocket endpoint (``ws://`` or ``wss://``).
        reconnect: Backoff policy for establishing the connection.
        org_roles: Roles that also join their organization's room.
        connector: Coroutine factory opening a socket; defaults to
            :func:`websockets.connect`.
    """

    def __init__(
        self,
        url: str,
        reconnect: ReconnectConfig | None = None,
        org_roles: frozenset[str] = frozenset({"ngo_admin"}),
        connector: Connector | None = None,
    ) -> None:
        self._url = url
        self._reconnect = reconnect or ReconnectConfig()
        self._org_roles = org_roles
        self._connector = connector or websockets.connect

    def establish(self, session: Session | None) -> ConnectionHandle | None:
        """Start connecting for ``session``.

        Returns ``None`` without any connection attempt when there is no
        session or its token is empty. Must be called from a running event
        loop.
        """
        if session is None or not session.is_authenticated:
            logger.debug("No authenticated session, skipping real-time connection")
            return None
        handle = ConnectionHandle(
            self._url,
            session,
            reconnect=self._reconnect,
            org_roles=self._org_roles,
            connector=self._connector,
        )
        handle.start()
        return handle
