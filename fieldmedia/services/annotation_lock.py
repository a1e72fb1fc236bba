"""Advisory edit locks on annotation documents.

Lock storage lives behind `LockBackend`; the manager here only consumes
lock state, keeps its own lock alive with a heartbeat and warns shortly
before it would expire.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Callable

from fieldmedia.config import LockConfig, get_settings
from fieldmedia.errors import LockUnavailable
from fieldmedia.models.base import as_utc
from fieldmedia.schemas.lock import Lock, LockAcquireResult, LockState

logger = logging.getLogger(__name__)


def lock_state_from(lock: Lock | None, user_id: str | None, now: datetime | None = None) -> LockState:
    """Interpret a stored lock for `user_id`. Expired locks read as unlocked."""
    now = now or datetime.now(timezone.utc)
    if lock is None or as_utc(lock.expires_at) <= now:
        return LockState()
    return LockState(
        is_locked=True,
        is_own_lock=user_id is not None and lock.holder_id == user_id,
        lock_holder=lock.holder_id,
        lock_holder_name=lock.holder_name or None,
        expires_at=lock.expires_at,
    )


class LockBackend(ABC):
    @abstractmethod
    async def acquire(self, resource_id: str, user_id: str, ttl_seconds: int) -> LockAcquireResult:
        """Take or extend the lock. Fails if someone else holds an unexpired lock."""
        ...

    @abstractmethod
    async def release(self, resource_id: str, user_id: str) -> bool:
        ...

    @abstractmethod
    async def get(self, resource_id: str) -> Lock | None:
        ...


class InMemoryLockBackend(LockBackend):
    """Process-local lock table, for a single server process and tests."""

    def __init__(self, names: dict[str, str] | None = None):
        self.names = names or {}
        self._locks: dict[str, Lock] = {}

    async def acquire(self, resource_id: str, user_id: str, ttl_seconds: int) -> LockAcquireResult:
        now = datetime.now(timezone.utc)
        held = self._locks.get(resource_id)
        if held is not None and held.holder_id != user_id and held.expires_at > now:
            name = held.holder_name or held.holder_id
            return LockAcquireResult(
                success=False,
                expires_at=held.expires_at,
                locked_by=held.holder_id,
                locked_by_name=held.holder_name or None,
                message=f"Photo is being edited by {name}",
            )
        acquired_at = held.acquired_at if held is not None and held.holder_id == user_id else now
        lock = Lock(
            resource_id=resource_id,
            holder_id=user_id,
            holder_name=self.names.get(user_id, ""),
            acquired_at=acquired_at,
            expires_at=now + timedelta(seconds=ttl_seconds),
        )
        self._locks[resource_id] = lock
        return LockAcquireResult(success=True, expires_at=lock.expires_at, message="Lock acquired")

    async def release(self, resource_id: str, user_id: str) -> bool:
        held = self._locks.get(resource_id)
        if held is None or held.holder_id != user_id:
            return False
        del self._locks[resource_id]
        return True

    async def get(self, resource_id: str) -> Lock | None:
        return self._locks.get(resource_id)


async def _call(callback, *args):
    if callback is None:
        return
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


class AnnotationLockManager:
    """Editor-side lock client for one photo.

    Used by an annotation editor session, not by the HTTP routes: the
    routes in `fieldmedia.api.annotations` only acquire, read and release
    through a `LockBackend`. The manager adds the editor behaviour on top,
    renewing the lock on a heartbeat and calling back when the lock is
    denied, about to expire, or lost to another editor.
    """

    def __init__(
        self,
        backend: LockBackend,
        media_id: str,
        user_id: str,
        config: LockConfig | None = None,
        on_lock_denied: Callable | None = None,
        on_lock_expiring: Callable | None = None,
        on_lock_lost: Callable | None = None,
    ):
        self.backend = backend
        self.media_id = media_id
        self.user_id = user_id
        self.config = config or get_settings().lock
        self.on_lock_denied = on_lock_denied
        self.on_lock_expiring = on_lock_expiring
        self.on_lock_lost = on_lock_lost
        self.state = LockState()
        self._heartbeat: asyncio.Task | None = None
        self._expiry_warning: asyncio.Task | None = None

    async def acquire(self) -> LockAcquireResult:
        result = await self.backend.acquire(self.media_id, self.user_id, self.config.ttl_seconds)
        if result.success:
            self.state = LockState(
                is_locked=True, is_own_lock=True, lock_holder=self.user_id, expires_at=result.expires_at,
            )
            self._start_heartbeat()
            self._schedule_expiry_warning(result.expires_at)
        else:
            self.state = LockState(
                is_locked=True,
                lock_holder=result.locked_by,
                lock_holder_name=result.locked_by_name,
                expires_at=result.expires_at,
            )
            logger.info("Lock on %s denied: %s", self.media_id, result.message)
            if result.locked_by_name:
                await _call(self.on_lock_denied, result.locked_by_name)
        return result

    async def extend(self) -> bool:
        """Renew our lock. Losing it to another editor stops the heartbeat."""
        result = await self.backend.acquire(self.media_id, self.user_id, self.config.ttl_seconds)
        if result.success:
            self.state = self.state.model_copy(update={"expires_at": result.expires_at})
            self._schedule_expiry_warning(result.expires_at)
            return True

        self.state = LockState(
            is_locked=True,
            lock_holder=result.locked_by,
            lock_holder_name=result.locked_by_name,
            expires_at=result.expires_at,
        )
        logger.warning("Lost lock on %s to %s", self.media_id, result.locked_by_name or result.locked_by)
        self._stop_expiry_warning()
        if self._heartbeat is not None and self._heartbeat is not asyncio.current_task():
            self._heartbeat.cancel()
        self._heartbeat = None
        await _call(self.on_lock_lost)
        return False

    async def release(self) -> bool:
        self._stop_heartbeat()
        self._stop_expiry_warning()
        released = await self.backend.release(self.media_id, self.user_id)
        self.state = LockState()
        return released

    async def check(self) -> LockState:
        self.state = lock_state_from(await self.backend.get(self.media_id), self.user_id)
        return self.state

    async def close(self):
        """Release our lock if we hold it, and stop background tasks."""
        if self.state.is_own_lock:
            await self.release()
        else:
            self._stop_heartbeat()
            self._stop_expiry_warning()

    async def __aenter__(self) -> AnnotationLockManager:
        result = await self.acquire()
        if not result.success:
            raise LockUnavailable(result.message or f"Annotation {self.media_id} is locked")
        return self

    async def __aexit__(self, *exc):
        await self.close()

    # ── background tasks ─────────────────────────────────────

    def _start_heartbeat(self):
        self._stop_heartbeat()
        self._heartbeat = asyncio.create_task(self._heartbeat_loop())

    def _stop_heartbeat(self):
        if self._heartbeat is not None:
            self._heartbeat.cancel()
            self._heartbeat = None

    async def _heartbeat_loop(self):
        while True:
            await asyncio.sleep(self.config.heartbeat_interval)
            try:
                if not await self.extend():
                    return
            except Exception:
                logger.exception("Lock heartbeat for %s failed", self.media_id)

    def _schedule_expiry_warning(self, expires_at: datetime | None):
        self._stop_expiry_warning()
        if expires_at is None:
            return
        delay = (as_utc(expires_at) - datetime.now(timezone.utc)).total_seconds() - self.config.expiry_warning
        if delay > 0:
            self._expiry_warning = asyncio.create_task(self._warn_after(delay, expires_at))

    def _stop_expiry_warning(self):
        if self._expiry_warning is not None:
            self._expiry_warning.cancel()
            self._expiry_warning = None

    async def _warn_after(self, delay: float, expires_at: datetime):
        await asyncio.sleep(delay)
        logger.info("Lock on %s expires at %s", self.media_id, expires_at.isoformat())
        await _call(self.on_lock_expiring, expires_at)
