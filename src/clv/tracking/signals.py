"""Identity and connectivity signals consumed by the sync scheduler.

Both collaborators expose explicit observer registration. Handlers may be
plain functions or coroutines; coroutine handlers are awaited in
registration order. A failing handler is logged and does not stop the
others from being told.

- IdentityProvider: who is signed in, and transitions between identities
- ConnectivityMonitor: online/offline flag, optionally driven by a reachability check
"""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Awaitable, Callable
from typing import Any

import structlog
from pydantic import BaseModel

from src.clv.tracking.schemas import Identity

logger = structlog.get_logger(__name__)


async def _notify(handlers: list[Callable[..., Any]], *args: Any, event: str) -> None:
    for handler in list(handlers):
        try:
            result = handler(*args)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.warning(event, handler=getattr(handler, "__qualname__", repr(handler)), exc_info=True)


# ── Identity ────────────────────────────────────────────────────────────────


class IdentityChange(BaseModel):
    """One identity transition as seen by subscribers."""

    previous: Identity | None = None
    current: Identity | None = None
    is_new_user: bool = False

    @property
    def signed_in(self) -> bool:
        """True on an unauthenticated to authenticated transition."""
        return self.previous is None and self.current is not None


IdentityHandler = Callable[[IdentityChange], Any]


class IdentityProvider:
    """Holds the current identity and tells subscribers when it changes.

    The token and session lifecycle belong to whatever authenticates the
    user; this class only mirrors the outcome.
    """

    def __init__(self, identity: Identity | None = None) -> None:
        self._identity = identity
        self._handlers: list[IdentityHandler] = []

    def current_identity(self) -> Identity | None:
        return self._identity

    def is_authenticated(self) -> bool:
        return self._identity is not None

    def subscribe(self, handler: IdentityHandler) -> None:
        if handler not in self._handlers:
            self._handlers.append(handler)

    def unsubscribe(self, handler: IdentityHandler) -> None:
        if handler in self._handlers:
            self._handlers.remove(handler)

    async def sign_in(self, identity: Identity, is_new_user: bool = False) -> None:
        """Make ``identity`` current and notify subscribers."""
        change = IdentityChange(
            previous=self._identity, current=identity, is_new_user=is_new_user
        )
        self._identity = identity
        logger.info(
            "identity.signed_in",
            uid=identity.uid,
            provider=identity.provider,
            is_new_user=is_new_user,
        )
        await _notify(self._handlers, change, event="identity.handler_failed")

    async def sign_out(self) -> None:
        if self._identity is None:
            return
        change = IdentityChange(previous=self._identity, current=None)
        self._identity = None
        logger.info("identity.signed_out", uid=change.previous.uid)
        await _notify(self._handlers, change, event="identity.handler_failed")


# ── Connectivity ────────────────────────────────────────────────────────────


ConnectivityHandler = Callable[[bool], Any]
ReachabilityCheck = Callable[[], Awaitable[bool]]


class ConnectivityMonitor:
    """Online/offline flag with transition notifications.

    ``set_online`` can be driven directly (for example from an API call), or
    ``start`` runs ``watch`` in the background against a reachability check.
    """

    def __init__(self, online: bool = True) -> None:
        self._online = online
        self._handlers: list[ConnectivityHandler] = []
        self._task: asyncio.Task | None = None

    @property
    def online(self) -> bool:
        return self._online

    def subscribe(self, handler: ConnectivityHandler) -> None:
        if handler not in self._handlers:
            self._handlers.append(handler)

    def unsubscribe(self, handler: ConnectivityHandler) -> None:
        if handler in self._handlers:
            self._handlers.remove(handler)

    async def set_online(self, online: bool) -> None:
        """Update the flag; subscribers hear only about real transitions."""
        if online == self._online:
            return
        self._online = online
        logger.info("connectivity.online" if online else "connectivity.offline")
        await _notify(self._handlers, online, event="connectivity.handler_failed")

    async def watch(self, check: ReachabilityCheck, interval: float) -> None:
        """Poll ``check`` every ``interval`` seconds until cancelled.

        A check that raises counts as offline.
        """
        while True:
            try:
                try:
                    reachable = bool(await check())
                except Exception:
                    logger.debug("connectivity.check_failed", exc_info=True)
                    reachable = False
                await self.set_online(reachable)
                await asyncio.sleep(interval)
            except asyncio.CancelledError:
                logger.info("connectivity.watch_cancelled")
                break

    def start(self, check: ReachabilityCheck, interval: float) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(
                self.watch(check, interval), name="connectivity_watch"
            )

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
