"""Connectivity check that flips the upload engine online/offline."""

from __future__ import annotations

import asyncio
import logging

import httpx

from fieldmedia.config import RemoteConfig, get_settings
from fieldmedia.services.upload_queue import UploadQueueEngine

logger = logging.getLogger(__name__)


class ConnectivityMonitor:
    def __init__(
        self,
        engine: UploadQueueEngine,
        config: RemoteConfig | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.engine = engine
        self.config = config or get_settings().remote
        self._client = client or httpx.AsyncClient(timeout=5.0)
        self._task: asyncio.Task | None = None

    @property
    def url(self) -> str:
        return self.config.connectivity_url or self.config.base_url

    async def is_reachable(self) -> bool:
        """One reachability check. Any HTTP response counts as online."""
        if not self.url:
            return True
        try:
            await self._client.head(self.url)
        except httpx.HTTPError as exc:
            logger.debug("Connectivity check against %s failed: %s", self.url, exc)
            return False
        return True

    async def check_once(self) -> bool:
        online = await self.is_reachable()
        await self.engine.set_online(online)
        return online

    async def _run(self):
        while True:
            try:
                await self.check_once()
            except Exception:
                logger.exception("Connectivity check failed")
            await asyncio.sleep(self.config.connectivity_interval)

    def start(self):
        if self._task is None:
            self._task = asyncio.create_task(self._run())

    async def stop(self):
        if self._task is not None:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None
        await self._client.aclose()
