"""Blob storage gateway for agreement PDFs (Supabase Storage REST API)."""
from __future__ import annotations

import base64
import json
import logging
import time
from datetime import datetime, timezone
from typing import Optional, Protocol
from urllib.parse import quote

import httpx

from errors import StorageError

logger = logging.getLogger(__name__)

PDF_CONTENT_TYPE = "application/pdf"
KEY_PREFIX = "agreements"


class BlobStore(Protocol):
    async def upload(self, agreement_id: str, data: bytes) -> str: ...

    async def delete(self, key: str) -> None: ...


def build_object_key(agreement_id: str, epoch_millis: Optional[int] = None) -> str:
    """agreements/agreement-{id}-{epochMillis}.pdf; unique per generation."""
    if epoch_millis is None:
        epoch_millis = time.time_ns() // 1_000_000
    return f"{KEY_PREFIX}/agreement-{agreement_id}-{epoch_millis}.pdf"


class SupabaseBlobStore:
    """Uploads PDFs and issues long-lived signed URLs, degrading to the public URL."""

    def __init__(
        self,
        supabase_url: str,
        api_key: str,
        authorization: str,
        bucket: str = "agreements",
        signed_url_expires_in: int = 31536000,
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = supabase_url.rstrip("/")
        self.base_api_url = f"{self.url}/storage/v1"
        self.bucket = bucket
        self.signed_url_expires_in = signed_url_expires_in
        self.timeout = timeout
        self._transport = transport
        self.headers = {"apikey": api_key, "Authorization": authorization}

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self._transport, timeout=self.timeout)

    def _object_path(self, key: str) -> str:
        return f"{self.bucket}/{quote(key)}"

    def public_url(self, key: str) -> str:
        return f"{self.base_api_url}/object/public/{self._object_path(key)}"

    async def upload(self, agreement_id: str, data: bytes) -> str:
        """Upload the document and return a URL for it. Raises StorageError if the upload fails."""
        key = build_object_key(agreement_id)
        metadata = {"agreementId": agreement_id, "uploadedAt": datetime.now(timezone.utc).isoformat()}
        headers = {
            **self.headers,
            "Content-Type": PDF_CONTENT_TYPE,
            "x-upsert": "false",
            "x-metadata": base64.b64encode(json.dumps(metadata).encode()).decode(),
        }
        try:
            async with self._client() as client:
                response = await client.post(
                    f"{self.base_api_url}/object/{self._object_path(key)}",
                    headers=headers,
                    content=data,
                )
        except httpx.HTTPError as e:
            logger.error(f"Error uploading PDF to storage: {e}")
            raise StorageError(f"Storage upload failed: {e}") from e

        if response.status_code != 200:
            logger.error(f"Storage upload error ({response.status_code}) for {key}")
            raise StorageError(f"Storage upload failed: {response.text}")

        return await self._signed_or_public_url(key)

    async def _signed_or_public_url(self, key: str) -> str:
        # The object already exists, so a signing failure degrades to the public URL.
        try:
            async with self._client() as client:
                response = await client.post(
                    f"{self.base_api_url}/object/sign/{self._object_path(key)}",
                    headers=self.headers,
                    json={"expiresIn": self.signed_url_expires_in},
                )
            response.raise_for_status()
            signed_path = response.json().get("signedURL")
            if not signed_path:
                raise ValueError("response did not contain signedURL")
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Signed URL error for {key}, falling back to public URL: {e}")
            return self.public_url(key)

        if signed_path.startswith("/"):
            return f"{self.base_api_url}{signed_path}"
        return signed_path

    async def delete(self, key: str) -> None:
        try:
            async with self._client() as client:
                response = await client.request(
                    "DELETE",
                    f"{self.base_api_url}/object/{self.bucket}",
                    headers=self.headers,
                    json={"prefixes": [key]},
                )
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"Error deleting PDF from storage: {e}")
            raise StorageError(f"Storage delete failed: {e}") from e
