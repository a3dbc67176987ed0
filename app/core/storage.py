"""
Artifact storage for uploaded and generated media.

Records store *references* (public URLs) returned by ``put``. ``get`` accepts
those references, raw object keys, or foreign http(s) URLs, and resolves them
back to bytes.
"""

from __future__ import annotations

import asyncio
import logging
import re
from pathlib import Path
from typing import List, Optional
from urllib.parse import urlparse, unquote

import boto3
import httpx
from botocore.exceptions import BotoCoreError, ClientError

from app.core.config import get_settings

logger = logging.getLogger(__name__)

REMOTE_FETCH_TIMEOUT_SECONDS = 20.0


class ArtifactError(Exception):
    """Raised when an artifact reference cannot be resolved to bytes."""


class ArtifactNotFound(ArtifactError):
    """The referenced artifact does not exist."""


async def fetch_remote(url: str) -> bytes:
    """Download an external URL (used for refs this store did not issue)."""
    try:
        async with httpx.AsyncClient(timeout=REMOTE_FETCH_TIMEOUT_SECONDS, follow_redirects=True) as client:
            response = await client.get(url)
    except httpx.HTTPError as e:
        raise ArtifactNotFound(f"Failed to fetch {url}: {e}") from e
    if response.status_code != 200:
        raise ArtifactNotFound(f"Failed to fetch {url}: HTTP {response.status_code}")
    return response.content


class ArtifactStore:
    """Key -> blob storage with get/put/list semantics."""

    async def put(self, key: str, data: bytes, content_type: str) -> str:
        raise NotImplementedError

    async def list(self, prefix: str = "") -> List[str]:
        raise NotImplementedError

    async def delete(self, key: str) -> None:
        raise NotImplementedError

    async def read_key(self, key: str) -> bytes:
        raise NotImplementedError

    def key_for_ref(self, ref: Optional[str]) -> Optional[str]:
        raise NotImplementedError

    async def get(self, ref: str) -> bytes:
        if not ref or not ref.strip():
            raise ArtifactNotFound("Empty artifact reference.")
        key = self.key_for_ref(ref)
        if key:
            return await self.read_key(key)
        if ref.startswith(("http://", "https://")):
            return await fetch_remote(ref)
        raise ArtifactNotFound(f"Unrecognized artifact reference: {ref}")


class S3ArtifactStore(ArtifactStore):
    """Artifacts in an S3 bucket; refs are virtual-hosted public URLs."""

    def __init__(self, client=None, bucket: Optional[str] = None, region: Optional[str] = None):
        settings = get_settings()
        self.bucket = self._validated_bucket_name(bucket if bucket is not None else settings.AWS_S3_BUCKET)
        self.region = region or settings.AWS_REGION
        self._client = client or boto3.client(
            "s3",
            aws_access_key_id=settings.AWS_ACCESS_KEY_ID or None,
            aws_secret_access_key=settings.AWS_SECRET_ACCESS_KEY or None,
            region_name=self.region,
        )

    @staticmethod
    def _validated_bucket_name(bucket: str) -> str:
        bucket = (bucket or "").strip()
        if not bucket:
            raise ValueError("AWS_S3_BUCKET is not configured.")
        # https://docs.aws.amazon.com/AmazonS3/latest/userguide/bucketnamingrules.html
        if not re.fullmatch(r"[a-z0-9][a-z0-9.-]{1,61}[a-z0-9]", bucket):
            raise ValueError(f"Invalid AWS_S3_BUCKET value '{bucket}'.")
        return bucket

    def public_url(self, key: str) -> str:
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{key}"

    async def put(self, key: str, data: bytes, content_type: str) -> str:
        try:
            await asyncio.to_thread(
                self._client.put_object,
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
            )
        except ClientError as e:
            logger.error(f"Error uploading {key} to S3: {e}")
            raise
        return self.public_url(key)

    async def read_key(self, key: str) -> bytes:
        try:
            response = await asyncio.to_thread(self._client.get_object, Bucket=self.bucket, Key=key)
            return await asyncio.to_thread(response["Body"].read)
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "")
            if code in ("NoSuchKey", "404", "NotFound"):
                raise ArtifactNotFound(f"Artifact {key} does not exist.") from e
            logger.error(f"Error downloading {key} from S3: {e}")
            raise ArtifactError(f"Artifact {key} could not be read ({code or 'ClientError'}).") from e
        except BotoCoreError as e:
            logger.error(f"Error downloading {key} from S3: {e}")
            raise ArtifactError(f"Artifact {key} could not be read: {e}") from e

    async def list(self, prefix: str = "") -> List[str]:
        keys: List[str] = []

        def _collect():
            paginator = self._client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
                for obj in page.get("Contents", []):
                    keys.append(obj["Key"])

        await asyncio.to_thread(_collect)
        return keys

    async def delete(self, key: str) -> None:
        try:
            await asyncio.to_thread(self._client.delete_object, Bucket=self.bucket, Key=key)
        except ClientError as e:
            logger.error(f"Error deleting {key} from S3: {e}")
            raise

    def key_for_ref(self, ref: Optional[str]) -> Optional[str]:
        """
        Normalize an S3 reference into an object key.

        Accepts raw keys, ``s3://bucket/key``, virtual-hosted and path style
        URLs (query strings ignored). Returns None for non-S3 URLs.
        """
        if not ref or not isinstance(ref, str):
            return None
        raw = ref.strip()
        if not raw:
            return None

        bucket = self.bucket
        if not raw.startswith(("http://", "https://", "s3://")):
            key = raw.lstrip("/")
            if key.startswith(f"{bucket}/"):
                key = key[len(bucket) + 1 :]
            return key or None

        if raw.startswith("s3://"):
            maybe_bucket, _, key = raw[len("s3://") :].partition("/")
            if maybe_bucket != bucket or not key:
                return None
            return unquote(key.lstrip("/"))

        parsed = urlparse(raw)
        host = (parsed.hostname or "").lower()
        path = unquote(parsed.path or "").lstrip("/")
        if "amazonaws.com" not in host:
            return None

        virtual_hosts = {
            f"{bucket}.s3.{self.region}.amazonaws.com",
            f"{bucket}.s3.amazonaws.com",
            f"{bucket}.s3-{self.region}.amazonaws.com",
        }
        path_hosts = {
            f"s3.{self.region}.amazonaws.com",
            "s3.amazonaws.com",
            f"s3-{self.region}.amazonaws.com",
        }

        if host in virtual_hosts:
            return path or None
        if host in path_hosts and path.startswith(f"{bucket}/"):
            return path[len(bucket) + 1 :] or None
        return None


class LocalArtifactStore(ArtifactStore):
    """Artifacts in a local directory, served by the app under ``url_prefix``."""

    def __init__(self, root: Optional[str] = None, url_prefix: Optional[str] = None):
        settings = get_settings()
        self.root = Path(root or settings.LOCAL_STORAGE_DIR).resolve()
        self.url_prefix = "/" + (url_prefix or settings.LOCAL_STORAGE_URL_PREFIX).strip("/")
        self.root.mkdir(parents=True, exist_ok=True)

    def _path_for(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if self.root not in path.parents:
            raise ArtifactNotFound(f"Artifact key escapes storage root: {key}")
        return path

    async def put(self, key: str, data: bytes, content_type: str) -> str:
        path = self._path_for(key)

        def _write():
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)

        await asyncio.to_thread(_write)
        return f"{self.url_prefix}/{key}"

    async def read_key(self, key: str) -> bytes:
        path = self._path_for(key)
        if not path.is_file():
            raise ArtifactNotFound(f"Artifact {key} does not exist.")
        try:
            return await asyncio.to_thread(path.read_bytes)
        except OSError as e:
            raise ArtifactError(f"Artifact {key} could not be read: {e}") from e

    async def list(self, prefix: str = "") -> List[str]:
        def _collect():
            return sorted(
                p.relative_to(self.root).as_posix()
                for p in self.root.rglob("*")
                if p.is_file() and p.relative_to(self.root).as_posix().startswith(prefix)
            )

        return await asyncio.to_thread(_collect)

    async def delete(self, key: str) -> None:
        path = self._path_for(key)
        await asyncio.to_thread(path.unlink, True)

    def key_for_ref(self, ref: Optional[str]) -> Optional[str]:
        if not ref or not isinstance(ref, str):
            return None
        raw = ref.strip()
        if raw.startswith(("http://", "https://")):
            raw = unquote(urlparse(raw).path or "")
            if not raw.startswith(self.url_prefix + "/"):
                return None
        if raw.startswith(self.url_prefix + "/"):
            raw = raw[len(self.url_prefix) + 1 :]
        key = raw.lstrip("/")
        return key or None


def create_artifact_store() -> ArtifactStore:
    """Build the store selected by STORAGE_BACKEND."""
    backend = (get_settings().STORAGE_BACKEND or "local").strip().lower()
    if backend == "s3":
        return S3ArtifactStore()
    if backend == "local":
        return LocalArtifactStore()
    raise RuntimeError(f"Unsupported STORAGE_BACKEND: {backend}")
