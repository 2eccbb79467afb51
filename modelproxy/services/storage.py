"""
Asset Storage Service
Durable storage for finished models - supports Google Cloud Storage, S3, and local filesystem.
"""

import hashlib
import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath
from typing import Optional

from starlette.concurrency import run_in_threadpool

from modelproxy.core.config import Settings
from modelproxy.workers.base import ErrorCode, StorageError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UploadResult:
    """Where an uploaded asset landed."""
    url: str
    key: str
    checksum: str  # sha256 hex digest
    size: int


class StorageBackend(ABC):
    """Blocking object-store primitives. AssetStore runs them in the threadpool."""

    name = "storage"

    @abstractmethod
    def put(self, key: str, data: bytes, content_type: str) -> None:
        ...

    @abstractmethod
    def get(self, key: str) -> bytes:
        ...

    @abstractmethod
    def size(self, key: str) -> Optional[int]:
        """Stored object size in bytes, or None when missing."""

    @abstractmethod
    def delete(self, key: str) -> None:
        ...

    def public_url(self, key: str) -> Optional[str]:
        """Direct URL when the backend can serve objects itself."""
        return None

    def health_check(self) -> bool:
        return True


class GCSBackend(StorageBackend):
    """Google Cloud Storage bucket."""

    name = "gcs"

    def __init__(self, bucket_name: str, project_id: str = ""):
        from google.cloud import storage
        self.client = storage.Client(project=project_id or None)
        self.bucket = self.client.bucket(bucket_name)
        logger.info(f"[Storage] Using Google Cloud Storage: {bucket_name}")

    def put(self, key: str, data: bytes, content_type: str) -> None:
        blob = self.bucket.blob(key)
        blob.upload_from_string(data, content_type=content_type)

    def get(self, key: str) -> bytes:
        return self.bucket.blob(key).download_as_bytes()

    def size(self, key: str) -> Optional[int]:
        blob = self.bucket.get_blob(key)
        return None if blob is None else blob.size

    def delete(self, key: str) -> None:
        self.bucket.blob(key).delete()

    def health_check(self) -> bool:
        return self.bucket.exists()


class S3Backend(StorageBackend):
    """S3 or any S3-compatible endpoint."""

    name = "s3"

    def __init__(self, bucket: str, endpoint: str = "", access_key: str = "",
                 secret_key: str = "", region: str = "us-east-1"):
        import boto3
        from botocore.config import Config
        self.s3 = boto3.client(
            "s3",
            endpoint_url=endpoint or None,
            aws_access_key_id=access_key or None,
            aws_secret_access_key=secret_key or None,
            region_name=region,
            config=Config(signature_version="s3v4", retries={"max_attempts": 3, "mode": "standard"})
        )
        self.bucket = bucket
        logger.info(f"[Storage] Using S3: {self.bucket}")

    def put(self, key: str, data: bytes, content_type: str) -> None:
        self.s3.put_object(Bucket=self.bucket, Key=key, Body=data, ContentType=content_type)

    def get(self, key: str) -> bytes:
        response = self.s3.get_object(Bucket=self.bucket, Key=key)
        return response["Body"].read()

    def size(self, key: str) -> Optional[int]:
        from botocore.exceptions import ClientError
        try:
            response = self.s3.head_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("404", "NoSuchKey", "NotFound"):
                return None
            raise
        return int(response["ContentLength"])

    def delete(self, key: str) -> None:
        self.s3.delete_object(Bucket=self.bucket, Key=key)

    def health_check(self) -> bool:
        self.s3.head_bucket(Bucket=self.bucket)
        return True


class LocalBackend(StorageBackend):
    """Directory on the local filesystem."""

    name = "local"

    def __init__(self, base_path: str):
        self.base_path = Path(base_path)
        self.base_path.mkdir(parents=True, exist_ok=True)
        logger.info(f"[Storage] Using local storage: {self.base_path}")

    def _path(self, key: str) -> Path:
        path = (self.base_path / key).resolve()
        if self.base_path.resolve() not in path.parents:
            raise StorageError(f"Key escapes storage root: {key}", code=ErrorCode.VALIDATION_ERROR)
        return path

    def put(self, key: str, data: bytes, content_type: str) -> None:
        file_path = self._path(key)
        file_path.parent.mkdir(parents=True, exist_ok=True)
        with open(file_path, "wb") as f:
            f.write(data)

    def get(self, key: str) -> bytes:
        with open(self._path(key), "rb") as f:
            return f.read()

    def size(self, key: str) -> Optional[int]:
        file_path = self._path(key)
        if not file_path.is_file():
            return None
        return file_path.stat().st_size

    def delete(self, key: str) -> None:
        file_path = self._path(key)
        if file_path.exists() and file_path.is_file():
            file_path.unlink()

    def health_check(self) -> bool:
        return self.base_path.is_dir()


def build_backend(settings: Settings) -> StorageBackend:
    """Priority: GCS > Local > S3."""
    if settings.USE_GCS:
        return GCSBackend(settings.GCS_BUCKET_MODELS, settings.GCP_PROJECT_ID)
    if settings.USE_LOCAL_STORAGE:
        return LocalBackend(settings.LOCAL_STORAGE_PATH)
    return S3Backend(
        bucket=settings.S3_BUCKET,
        endpoint=settings.S3_ENDPOINT,
        access_key=settings.S3_ACCESS_KEY,
        secret_key=settings.S3_SECRET_KEY,
        region=settings.S3_REGION,
    )


class AssetStore:
    """
    Uploads finished models under collision-resistant keys.

    Keys look like ``models/2024-05-01/<uuid4>.glb``; only the extension of
    the caller's suggested name is kept, so concurrent jobs never overwrite
    each other.
    """

    KEY_PREFIX = "models"

    def __init__(self, backend: StorageBackend, public_base_url: str = "", api_base_url: str = ""):
        self.backend = backend
        self.public_base_url = public_base_url.rstrip("/")
        self.api_base_url = api_base_url.rstrip("/")

    @classmethod
    def from_settings(cls, settings: Settings) -> "AssetStore":
        return cls(
            backend=build_backend(settings),
            public_base_url=settings.ASSET_PUBLIC_BASE_URL,
            api_base_url=settings.API_BASE_URL,
        )

    def generate_key(self, suggested_name: str = "", now: Optional[datetime] = None) -> str:
        date_part = (now or datetime.now(timezone.utc)).strftime("%Y-%m-%d")
        extension = PurePosixPath(suggested_name or "").suffix.lower()
        return f"{self.KEY_PREFIX}/{date_part}/{uuid.uuid4()}{extension}"

    def get_public_url(self, key: str) -> str:
        """Public URL for a stored key; falls back to the API file proxy."""
        if self.public_base_url:
            return f"{self.public_base_url}/{key}"
        direct = self.backend.public_url(key)
        if direct:
            return direct
        return f"{self.api_base_url}/files/{key}"

    async def upload(
        self,
        data: bytes,
        suggested_name: str = "",
        mime_type: str = "application/octet-stream"
    ) -> UploadResult:
        """
        Upload bytes and return where they landed.

        Args:
            data: Asset bytes
            suggested_name: Caller's name; only its extension is used
            mime_type: Content type recorded with the object

        Returns:
            UploadResult with url, key, sha256 checksum and size

        Raises:
            StorageError: the backend rejected or failed the write
        """
        key = self.generate_key(suggested_name)
        checksum = hashlib.sha256(data).hexdigest()

        logger.debug(f"Uploading {len(data)} bytes to {self.backend.name}:{key}")
        try:
            await run_in_threadpool(self.backend.put, key, data, mime_type)
        except StorageError:
            raise
        except Exception as e:
            logger.error(f"Failed to upload model to {self.backend.name}:{key}: {e}")
            raise StorageError(
                f"Model upload failed: {e}",
                code=ErrorCode.UPLOAD_FAILED,
                details={"key": key, "backend": self.backend.name},
            ) from e

        url = self.get_public_url(key)
        logger.info(f"File uploaded to {self.backend.name}: {key} ({len(data)} bytes)")
        return UploadResult(url=url, key=key, checksum=checksum, size=len(data))

    async def verify_integrity(self, key: str, expected_size: Optional[int] = None) -> bool:
        """
        Best-effort check that an uploaded object exists with the expected size.

        Never raises; any failure is logged and reported as False.
        """
        try:
            actual = await run_in_threadpool(self.backend.size, key)
        except Exception as e:
            logger.error(f"Failed to validate file integrity for {key}: {e}")
            return False

        if actual is None:
            logger.warning(f"Integrity check: {key} not found")
            return False

        if expected_size is not None and actual != expected_size:
            logger.warning(f"File size mismatch: {key} expected={expected_size} actual={actual}")
            return False

        return True

    async def get_file(self, key: str) -> bytes:
        try:
            return await run_in_threadpool(self.backend.get, key)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"File not found: {key}", code=ErrorCode.DOWNLOAD_FAILED) from e

    async def delete_file(self, key: str) -> None:
        try:
            await run_in_threadpool(self.backend.delete, key)
            logger.info(f"[Storage] Deleted file: {key}")
        except Exception as e:
            logger.warning(f"[Storage] Could not delete {key}: {e}")

    async def health_check(self) -> bool:
        try:
            return bool(await run_in_threadpool(self.backend.health_check))
        except Exception as e:
            logger.warning(f"Storage health check failed: {e}")
            return False


__all__ = [
    "UploadResult",
    "StorageBackend",
    "GCSBackend",
    "S3Backend",
    "LocalBackend",
    "build_backend",
    "AssetStore",
]
