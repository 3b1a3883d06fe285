"""
Object storage for raw drawing payloads.

Payloads are stored under ``<artifact_id>.bin``. Two backends exist:
- S3BlobStore: an S3 bucket, used when S3_BUCKET_NAME is configured
- FileBlobStore: a local directory, used for development and tests

Backend failures are raised as errors.StoreError.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional
from uuid import uuid4

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from omegaconf import DictConfig

from .errors import StoreError
from .utils import ensure_directory

logger = logging.getLogger(__name__)

PAYLOAD_CONTENT_TYPE = "application/octet-stream"
_MISSING_KEY_CODES = {"NoSuchKey", "404", "NotFound"}


def payload_key(artifact_id: str) -> str:
    return f"{artifact_id}.bin"


class BlobStore(ABC):
    """Abstract base class for payload storage."""

    @abstractmethod
    def put(self, key: str, data: bytes) -> None:
        """Store ``data`` under ``key``, replacing any previous object."""

    @abstractmethod
    def get(self, key: str) -> Optional[bytes]:
        """Return the object stored under ``key``, or None if absent."""


class S3BlobStore(BlobStore):
    """
    Payload storage in an S3 bucket.

    The boto3 client is created lazily so that constructing the store never
    needs credentials; they are only required once a request touches S3.
    """

    def __init__(self, bucket: str, prefix: str = "", client=None):
        if not bucket:
            raise ValueError("S3BlobStore requires a bucket name")
        self.bucket = bucket
        self.prefix = prefix
        self._client = client

    def _get_client(self):
        if self._client is None:
            try:
                self._client = boto3.client("s3")
            except BotoCoreError as exc:
                raise StoreError(f"Failed to create S3 client: {exc}") from exc
        return self._client

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    def put(self, key: str, data: bytes) -> None:
        full_key = self._key(key)
        try:
            self._get_client().put_object(
                Bucket=self.bucket,
                Key=full_key,
                Body=data,
                ContentType=PAYLOAD_CONTENT_TYPE,
            )
        except (BotoCoreError, ClientError) as exc:
            logger.error(f"S3 upload failed for s3://{self.bucket}/{full_key}: {exc}")
            raise StoreError(f"S3 upload failed: {exc}") from exc
        logger.info(f"Stored {len(data)} bytes at s3://{self.bucket}/{full_key}")

    def get(self, key: str) -> Optional[bytes]:
        full_key = self._key(key)
        try:
            response = self._get_client().get_object(Bucket=self.bucket, Key=full_key)
            return response["Body"].read()
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") in _MISSING_KEY_CODES:
                return None
            logger.error(f"S3 download failed for s3://{self.bucket}/{full_key}: {exc}")
            raise StoreError(f"S3 download failed: {exc}") from exc
        except BotoCoreError as exc:
            logger.error(f"S3 download failed for s3://{self.bucket}/{full_key}: {exc}")
            raise StoreError(f"S3 download failed: {exc}") from exc


class FileBlobStore(BlobStore):
    """Payload storage in a local directory, one file per key."""

    def __init__(self, root: Path):
        self.root = ensure_directory(Path(root))

    def _path(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if path.parent != self.root.resolve():
            raise StoreError(f"Invalid blob key: {key!r}")
        return path

    def put(self, key: str, data: bytes) -> None:
        path = self._path(key)
        tmp_path = path.with_name(f"{path.name}.{uuid4().hex}.tmp")
        try:
            tmp_path.write_bytes(data)
            tmp_path.replace(path)
        except OSError as exc:
            raise StoreError(f"Failed to write {path}: {exc}") from exc
        logger.info(f"Stored {len(data)} bytes at {path}")

    def get(self, key: str) -> Optional[bytes]:
        path = self._path(key)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise StoreError(f"Failed to read {path}: {exc}") from exc


def build_blob_store(config: DictConfig) -> BlobStore:
    """Pick the S3 backend when a bucket is configured, else the local one."""
    settings = config.blob_store
    if settings.bucket:
        logger.info(f"Using S3 blob store s3://{settings.bucket}/{settings.prefix}")
        return S3BlobStore(settings.bucket, prefix=settings.prefix)
    logger.warning(f"S3_BUCKET_NAME not configured, storing payloads under {settings.local_dir}")
    return FileBlobStore(Path(settings.local_dir))
