"""Process-local preview handles for queued files.

The handle lets a UI show a just-captured photo before it reaches remote
storage. Handles are never persisted; after a restart they are recreated
from the queue store.
"""

from __future__ import annotations

PREVIEW_SCHEME = "preview://"


class PreviewRegistry:
    def __init__(self):
        self._previews: dict[str, tuple[bytes, str]] = {}

    @staticmethod
    def url_for(item_id: str) -> str:
        return f"{PREVIEW_SCHEME}{item_id}"

    def create(self, item_id: str, data: bytes, mime_type: str) -> str:
        self._previews[item_id] = (data, mime_type)
        return self.url_for(item_id)

    def get(self, url_or_id: str) -> tuple[bytes, str] | None:
        return self._previews.get(url_or_id.removeprefix(PREVIEW_SCHEME))

    def revoke(self, url_or_id: str):
        self._previews.pop(url_or_id.removeprefix(PREVIEW_SCHEME), None)

    def clear(self):
        self._previews.clear()

    def __contains__(self, url_or_id: str) -> bool:
        return url_or_id.removeprefix(PREVIEW_SCHEME) in self._previews

    def __len__(self) -> int:
        return len(self._previews)
