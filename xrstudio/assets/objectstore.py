"""S3-compatible object storage for uploaded documents and 3D assets.

Objects are addressed by key (``documents/<name>``); reads go through
short-lived presigned URLs. The boto3 client is created lazily so a missing
configuration only fails the first call that needs storage.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Protocol
from urllib.parse import quote

from ..config import StudioSettings, settings

log = logging.getLogger(__name__)

DOCUMENT_PREFIX = "documents"


class ObjectStoreNotConfigured(Exception):
    """Raised when the XRSTUDIO_COS_* settings are incomplete."""


class ObjectStore(Protocol):
    async def upload(self, content: bytes, filename: str, mime_type: str) -> str: ...

    async def signed_url(self, key: str, expires_in: int = 3600) -> str: ...

    async def delete(self, key: str) -> None: ...


def document_key(filename: str) -> str:
    if not filename:
        raise ValueError("Filename is required")
    return f"{DOCUMENT_PREFIX}/{quote(filename, safe='')}"


class S3ObjectStore:
    def __init__(self, settings_obj: StudioSettings | None = None, *, client: Any = None):
        self.settings = settings_obj or settings
        self._client = client

    @property
    def bucket(self) -> str:
        return self.settings.cos_bucket_name or ""

    def _get_client(self):
        if self._client is None:
            cfg = self.settings
            if not cfg.object_store_configured:
                log.error(
                    "Object storage config incomplete: endpoint=%s access_key=%s secret=%s bucket=%s",
                    bool(cfg.cos_endpoint), bool(cfg.cos_access_key_id),
                    bool(cfg.cos_secret_access_key), bool(cfg.cos_bucket_name),
                )
                raise ObjectStoreNotConfigured("Missing required object storage configuration")

            import boto3

            endpoint = cfg.cos_endpoint or ""
            if not endpoint.startswith(("http://", "https://")):
                endpoint = f"https://{endpoint}"
            log.info("Initializing object storage client for bucket %s at %s", cfg.cos_bucket_name, endpoint)
            self._client = boto3.client(
                "s3",
                endpoint_url=endpoint,
                aws_access_key_id=cfg.cos_access_key_id,
                aws_secret_access_key=cfg.cos_secret_access_key,
                region_name=cfg.cos_region,
            )
        return self._client

    async def upload(self, content: bytes, filename: str, mime_type: str) -> str:
        key = document_key(filename)
        client = self._get_client()
        log.info("Uploading %s (%d bytes, %s)", key, len(content), mime_type)
        await asyncio.to_thread(
            client.put_object,
            Bucket=self.bucket,
            Key=key,
            Body=content,
            ContentType=mime_type,
        )
        return key

    async def signed_url(self, key: str, expires_in: int = 3600) -> str:
        if not key:
            raise ValueError("Key is required")
        client = self._get_client()
        return await asyncio.to_thread(
            client.generate_presigned_url,
            "get_object",
            Params={"Bucket": self.bucket, "Key": key},
            ExpiresIn=expires_in,
        )

    async def delete(self, key: str) -> None:
        if not key:
            raise ValueError("Key is required")
        client = self._get_client()
        await asyncio.to_thread(client.delete_object, Bucket=self.bucket, Key=key)


_object_store: S3ObjectStore | None = None


def get_object_store() -> S3ObjectStore:
    global _object_store
    if _object_store is None:
        _object_store = S3ObjectStore(settings)
    return _object_store
