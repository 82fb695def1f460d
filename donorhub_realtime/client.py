"""
DonorHub real-time client.

:class:`RealtimeCoordinator` is the per-session context object: it owns the
socket connection, the query cache, the notification inbox, the toast
queue and the gamification tracker, wires them together through the event
router, and tears everything down at logout. REST calls go through
``httpx``; push events arrive over ``websockets``.

Usage::

    from donorhub_realtime import RealtimeCoordinator, Session

    coordinator = RealtimeCoordinator(
        api_url="https://donorhub.example.org/api",
        session=Session(id="u1", token="jwt...", role="ngo_admin", ngo="n1"),
    )
    coordinator.cache.register("events", load_events)
    await coordinator.start()
    # ... render coordinator.inbox, coordinator.toasts.active, etc.
    await coordinator.stop()
"""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Any
from urllib.parse import quote as url_quote

import httpx

from donorhub_realtime.cache import QueryCacheCoordinator
from donorhub_realtime.connection import (
    CONNECT,
    ConnectionHandle,
    ConnectionManager,
    Connector,
)
from donorhub_realtime.gamification import GamificationTracker
from donorhub_realtime.inbox import NotificationInbox
from donorhub_realtime.router import EventRouter
from donorhub_realtime.toasts import ToastQueue
from donorhub_realtime.types import (
    ConnectionState,
    CoordinatorConfig,
    RealtimeEvent,
    Session,
)

logger = logging.getLogger(__name__)


class _HttpClient:
    """Thin wrapper around httpx for API requests."""

    def __init__(self, api_url: str, token: str, timeout: float = 30.0) -> None:
        self.base_url = api_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={"Authorization": f"Bearer {token}"},
            timeout=timeout,
        )

    async def request(
        self,
        method: str,
        path: str,
        body: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
        _retries: int = 3,
        _attempt: int = 0,
    ) -> Any:
        """Make an authenticated request to the API.

        Automatically retries on 429 (rate limited) with exponential backoff.
        Default: up to 3 retries with 1s → 2s → 4s delays (jittered).
        """
        response = await self._client.request(
            method=method,
            url=path,
            json=body,
            params=params,
        )

        if response.status_code == 429 and _retries > 0:
            retry_after = float(response.headers.get("retry-after", "0"))
            exp_delay = min(2 ** _attempt, 30)
            delay = max(retry_after, exp_delay)
            # ±20% jitter
            delay *= 0.8 + random.random() * 0.4
            logger.info(
                "Rate limited (429), retrying in %.1fs (attempt %d/%d)",
                delay, _attempt + 1, _attempt + _retries,
            )
            await asyncio.sleep(delay)
            return await self.request(method, path, body, params, _retries - 1, _attempt + 1)

        # Don't use raise_for_status(): it puts the full response body
        # in the exception message.
        if response.status_code >= 400:
            try:
                err_data = response.json()
                err_msg = err_data.get("message", err_data.get("error", "Request failed"))
            except (ValueError, AttributeError):
                err_msg = "Request failed"
            raise httpx.HTTPStatusError(
                f"API request failed ({response.status_code}): {err_msg}",
                request=response.request,
                response=response,
            )

        if response.status_code == 204 or not response.content:
            return {}

        return response.json()

    def set_token(self, token: str) -> None:
        self._client.headers["Authorization"] = f"Bearer {token}"

    async def close(self) -> None:
        await self._client.aclose()


class _NotificationApi:
    """REST collaborator for the notification inbox."""

    def __init__(self, http: _HttpClient) -> None:
        self._http = http

    async def fetch_inbox(self, page: int = 1, limit: int = 20) -> list[dict[str, Any]]:
        data = await self._http.request(
            "GET", "/notifications", params={"page": page, "limit": limit}
        )
        if isinstance(data, dict):
            data = data.get("data", data)
        if isinstance(data, dict):
            data = data.get("notifications", [])
        if not isinstance(data, list):
            return []
        return [n for n in data if isinstance(n, dict)]

    async def mark_read(self, notification_id: str) -> dict[str, Any]:
        return await self._http.request(
            "PATCH", f"/notifications/{url_quote(notification_id, safe='')}/read", {}
        )

    async def mark_all_read(self) -> dict[str, Any]:
        return await self._http.request("PATCH", "/notifications/read-all", {})


class RealtimeCoordinator:
    """
    Per-session real-time state for the DonorHub client.

    Created at login, stopped at logout. Consumers receive it by reference
    and talk to its components only through their public methods.
    """

    def __init__(
        self,
        api_url: str | None = None,
        session: Session | None = None,
        config: CoordinatorConfig | None = None,
        connector: Connector | None = None,
    ) -> None:
        if config is None:
            if api_url is None:
                raise ValueError("api_url or config is required")
            config = CoordinatorConfig(api_url=api_url)
        self.config = config
        self.session = session

        self._http = _HttpClient(
            config.api_url,
            session.auth_token if session else "",
            timeout=config.request_timeout,
        )
        self.notifications_api = _NotificationApi(self._http)

        # Components
        self.cache = QueryCacheCoordinator()
        self.toasts = ToastQueue(default_ttl_ms=config.toast_ttl_ms)
        self.inbox = NotificationInbox(
            self.notifications_api, toasts=self.toasts, page_size=config.inbox_page_size
        )
        self.gamification = GamificationTracker(
            celebration_duration_ms=config.celebration_duration_ms
        )
        self.router = EventRouter(self.cache, self.inbox, self.toasts, self.gamification)
        self.connections = ConnectionManager(
            config.resolved_socket_url(),
            reconnect=config.reconnect,
            org_roles=config.org_roles,
            connector=connector,
        )

        # State
        self._handle: ConnectionHandle | None = None
        self._connected_once = False

    @property
    def handle(self) -> ConnectionHandle | None:
        return self._handle

    @property
    def state(self) -> ConnectionState:
        if self._handle is None:
            return ConnectionState.DISCONNECTED
        return self._handle.state

    @property
    def is_connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED

    async def start(self) -> ConnectionHandle | None:
        """Open the real-time connection for the session, if authenticated."""
        if self._handle is not None:
            if not self._handle.done:
                return self._handle
            await self._close_handle()
        self._handle = self.connections.establish(self.session)
        if self._handle is None:
            return None
        self.router.attach(self._handle)
        self._handle.on(CONNECT, self._on_connect)
        return self._handle

    async def restart(self, session: Session | None = None) -> ConnectionHandle | None:
        """Re-establish after the manager gave up, optionally with a refreshed session."""
        if session is not None:
            self.session = session
            self._http.set_token(session.auth_token)
        await self._close_handle()
        return await self.start()

    async def stop(self) -> None:
        """Logout/teardown: close the connection and release every resource."""
        await self._close_handle()
        await self.cache.close()
        self.toasts.close()
        self.gamification.close()
        await self._http.close()
        logger.info("Real-time coordinator stopped")

    async def refresh(self) -> None:
        """Manual refresh: reload the inbox and mark every cached query stale."""
        self.cache.invalidate_all()
        await self.inbox.open()

    # ---- Internal ----

    async def _close_handle(self) -> None:
        if self._handle is not None:
            self.router.detach(self._handle)
            await self._handle.close()
            self._handle = None

    def _on_connect(self, event: RealtimeEvent) -> None:
        # Events may have been missed while disconnected.
        if self._connected_once:
            logger.info("Reconnected; marking cached queries stale")
            self.cache.invalidate_all()
        self._connected_once = True
