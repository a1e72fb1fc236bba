"""Contracts for the remote services the upload queue calls.

The engine only knows these interfaces; `remote` implements them over
HTTP and `local_media` over the local filesystem.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from fieldmedia.errors import NotAuthenticated


@dataclass
class Identity:
    user_id: str
    business_id: str
    display_name: str = ""


class IdentityResolver(ABC):
    """Yields the current actor and active business."""

    @abstractmethod
    async def resolve(self) -> Identity:
        """Return the identity or raise NotAuthenticated."""
        ...


class StaticIdentityResolver(IdentityResolver):
    """Fixed identity, for CLI use and tests. None means signed out."""

    def __init__(self, identity: Identity | None):
        self.identity = identity

    async def resolve(self) -> Identity:
        if self.identity is None:
            raise NotAuthenticated("Not authenticated")
        if not self.identity.business_id:
            raise NotAuthenticated("No active business")
        return self.identity


class BlobStore(ABC):
    bucket: str = "job-media"

    @abstractmethod
    async def put(self, path: str, data: bytes, content_type: str) -> None:
        """Store bytes under path. Raise on failure."""
        ...

    @abstractmethod
    async def signed_url(self, path: str, expires_in: int) -> str:
        ...


class MetadataStore(ABC):
    @abstractmethod
    async def insert(self, record: dict[str, Any]) -> dict[str, Any]:
        """Insert a media row; the returned row carries its new `id`."""
        ...


class ProcessingTrigger(ABC):
    """Downstream processing (thumbnails) for a freshly stored media row."""

    @abstractmethod
    async def trigger(self, media_id: str, storage_path: str, bucket: str) -> None:
        ...
