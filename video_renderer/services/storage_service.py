"""Object storage backends for rendered videos.

All backends expose the same minimal contract used by the upload
publisher: ``upload(key, file_obj, content_type) -> public URL``. Clients
are created once at startup by ``create_storage_service`` and injected.
"""

import logging
import shutil
from pathlib import Path
from typing import Any, BinaryIO, Protocol

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from video_renderer.config import Settings

logger = logging.getLogger(__name__)


class StorageError(RuntimeError):
    """The storage backend rejected or failed an operation."""


class ObjectStorage(Protocol):
    def upload(self, key: str, file_obj: BinaryIO, content_type: str) -> str:
        """Store ``file_obj`` under ``key`` and return its public URL."""
        ...


class S3StorageService:
    """Amazon S3 storage."""

    def __init__(
        self,
        client: Any,
        bucket: str,
        *,
        region: str = "us-west-2",
        acl: str | None = "public-read",
        public_base_url: str = "",
    ) -> None:
        if not bucket:
            raise ValueError("S3 bucket name is not configured")
        self.client = client
        self.bucket = bucket
        self.region = region
        self.acl = acl or None
        self.public_base_url = public_base_url.rstrip("/")

    def get_public_url(self, key: str) -> str:
        if self.public_base_url:
            return f"{self.public_base_url}/{key}"
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{key}"

    def upload(self, key: str, file_obj: BinaryIO, content_type: str) -> str:
        extra_args = {"ContentType": content_type}
        if self.acl:
            extra_args["ACL"] = self.acl
        try:
            self.client.upload_fileobj(file_obj, self.bucket, key, ExtraArgs=extra_args)
        except ClientError as e:
            error = e.response.get("Error", {})
            raise StorageError(f"S3 rejected upload: {error.get('Code', 'unknown')}") from e
        except BotoCoreError as e:
            raise StorageError(f"S3 upload failed: {type(e).__name__}") from e
        return self.get_public_url(key)


class GCSStorageService:
    """Google Cloud Storage."""

    def __init__(self, client: Any, bucket_name: str, *, public_base_url: str = "") -> None:
        if not bucket_name:
            raise ValueError("GCS bucket name is not configured")
        self.client = client
        self.bucket_name = bucket_name
        self.public_base_url = public_base_url.rstrip("/")
        self._bucket = None

    @property
    def bucket(self):
        if self._bucket is None:
            self._bucket = self.client.bucket(self.bucket_name)
        return self._bucket

    def get_public_url(self, key: str) -> str:
        if self.public_base_url:
            return f"{self.public_base_url}/{key}"
        return f"https://storage.googleapis.com/{self.bucket_name}/{key}"

    def upload(self, key: str, file_obj: BinaryIO, content_type: str) -> str:
        from google.api_core import exceptions as gcs_exceptions

        blob = self.bucket.blob(key)
        try:
            blob.upload_from_file(file_obj, content_type=content_type)
        except gcs_exceptions.GoogleAPIError as e:
            raise StorageError(f"GCS upload failed: {type(e).__name__}") from e
        return self.get_public_url(key)


class LocalStorageService:
    """Local file storage for development without a cloud bucket."""

    def __init__(self, base_path: str | Path, *, public_base_url: str = "") -> None:
        self.base_path = Path(base_path)
        self.base_path.mkdir(parents=True, exist_ok=True)
        self.public_base_url = (public_base_url or "http://localhost:8080/files").rstrip("/")

    def get_file_path(self, key: str) -> Path:
        """Resolve ``key`` inside the storage root, refusing escapes."""
        base = self.base_path.resolve()
        full_path = (base / key).resolve()
        if not full_path.is_relative_to(base):
            raise StorageError(f"Invalid storage key: {key}")
        return full_path

    def get_public_url(self, key: str) -> str:
        return f"{self.public_base_url}/{key}"

    def upload(self, key: str, file_obj: BinaryIO, content_type: str) -> str:
        full_path = self.get_file_path(key)
        try:
            full_path.parent.mkdir(parents=True, exist_ok=True)
            with full_path.open("wb") as f:
                shutil.copyfileobj(file_obj, f)
        except OSError as e:
            raise StorageError(f"Local storage write failed: {e.strerror or e}") from e
        return self.get_public_url(key)


def create_storage_service(settings: Settings) -> ObjectStorage:
    """Build the backend selected by ``settings.storage_backend``."""
    if settings.storage_backend == "s3":
        client = boto3.client("s3", region_name=settings.aws_region)
        logger.info(f"[STORAGE] Using S3 bucket {settings.s3_bucket_name} ({settings.aws_region})")
        return S3StorageService(
            client,
            settings.s3_bucket_name,
            region=settings.aws_region,
            acl=settings.s3_acl,
            public_base_url=settings.public_base_url,
        )

    if settings.storage_backend == "gcs":
        from google.cloud import storage

        if settings.gcs_project_id:
            client = storage.Client(project=settings.gcs_project_id)
        else:
            client = storage.Client()
        logger.info(f"[STORAGE] Using GCS bucket {settings.gcs_bucket_name}")
        return GCSStorageService(client, settings.gcs_bucket_name, public_base_url=settings.public_base_url)

    logger.info(f"[STORAGE] Using local storage at {settings.local_storage_path}")
    return LocalStorageService(settings.local_storage_path, public_base_url=settings.public_base_url)
