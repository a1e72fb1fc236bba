"""HTTP implementations of the upload collaborators.

Talks to a Supabase-style backend: storage objects under
/storage/v1, table rows under /rest/v1, edge functions under
/functions/v1 and the signed-in user under /auth/v1.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from fieldmedia.config import RemoteConfig, get_settings
from fieldmedia.errors import NotAuthenticated, TransientUploadFailure
from fieldmedia.services.collaborators import (
    BlobStore, Identity, IdentityResolver, MetadataStore, ProcessingTrigger,
)

logger = logging.getLogger(__name__)


class RemoteClient:
    """Shared httpx client with the backend's auth headers and error mapping."""

    def __init__(
        self,
        config: RemoteConfig | None = None,
        access_token: str = "",
        client: httpx.AsyncClient | None = None,
    ):
        self.config = config or get_settings().remote
        self.access_token = access_token or self.config.api_key
        self._client = client or httpx.AsyncClient(timeout=self.config.timeout)

    @property
    def base_url(self) -> str:
        return self.config.base_url.rstrip("/")

    def _headers(self, extra: dict[str, str] | None = None) -> dict[str, str]:
        headers = {
            "apikey": self.config.api_key,
            "Authorization": f"Bearer {self.access_token}",
        }
        if extra:
            headers.update(extra)
        return headers

    async def request(self, method: str, path: str, headers: dict[str, str] | None = None, **kwargs) -> httpx.Response:
        url = f"{self.base_url}{path}"
        try:
            response = await self._client.request(method, url, headers=self._headers(headers), **kwargs)
        except httpx.HTTPError as exc:
            raise TransientUploadFailure(f"{method} {path} failed: {exc}") from exc

        if response.status_code == 401:
            raise NotAuthenticated("Not authenticated")
        if response.status_code >= 400:
            logger.warning("%s %s returned %d: %s", method, path, response.status_code, response.text[:200])
            raise TransientUploadFailure(f"{method} {path} returned {response.status_code}")
        return response

    async def aclose(self):
        await self._client.aclose()


class RemoteIdentityResolver(IdentityResolver):
    def __init__(self, client: RemoteClient, business_id: str):
        self.client = client
        self.business_id = business_id

    async def resolve(self) -> Identity:
        response = await self.client.request("GET", "/auth/v1/user")
        user = response.json()
        if not user or not user.get("id"):
            raise NotAuthenticated("Not authenticated")
        if not self.business_id:
            raise NotAuthenticated("No active business")
        meta = user.get("user_metadata") or {}
        return Identity(
            user_id=user["id"],
            business_id=self.business_id,
            display_name=meta.get("full_name") or user.get("email", ""),
        )


class RemoteBlobStore(BlobStore):
    def __init__(self, client: RemoteClient, bucket: str | None = None):
        self.client = client
        self.bucket = bucket or get_settings().queue.storage_bucket

    async def put(self, path: str, data: bytes, content_type: str) -> None:
        await self.client.request(
            "POST",
            f"/storage/v1/object/{self.bucket}/{path}",
            headers={"Content-Type": content_type, "cache-control": "3600", "x-upsert": "false"},
            content=data,
        )

    async def signed_url(self, path: str, expires_in: int) -> str:
        response = await self.client.request(
            "POST",
            f"/storage/v1/object/sign/{self.bucket}/{path}",
            json={"expiresIn": expires_in},
        )
        signed = response.json().get("signedURL", "")
        if not signed:
            raise TransientUploadFailure(f"No signed URL returned for {path}")
        if signed.startswith("http"):
            return signed
        return f"{self.client.base_url}/storage/v1{signed}"


class RemoteMetadataStore(MetadataStore):
    def __init__(self, client: RemoteClient, table: str = "job_media"):
        self.client = client
        self.table = table

    async def insert(self, record: dict[str, Any]) -> dict[str, Any]:
        response = await self.client.request(
            "POST",
            f"/rest/v1/{self.table}",
            headers={"Prefer": "return=representation"},
            json=record,
        )
        rows = response.json()
        row = rows[0] if isinstance(rows, list) and rows else rows
        if not isinstance(row, dict) or "id" not in row:
            raise TransientUploadFailure(f"Insert into {self.table} returned no row")
        return row


class RemoteProcessingTrigger(ProcessingTrigger):
    def __init__(self, client: RemoteClient, function: str = "process-photo-upload"):
        self.client = client
        self.function = function

    async def trigger(self, media_id: str, storage_path: str, bucket: str) -> None:
        await self.client.request(
            "POST",
            f"/functions/v1/{self.function}",
            json={"mediaId": media_id, "storagePath": storage_path, "bucket": bucket},
        )
