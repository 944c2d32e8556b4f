# storage.py — S3-compatible object store gateway
"""
Thin async facade over a boto3 S3 client.

The gateway only knows buckets and keys: create-if-absent, put, get and
presigned GET links. Blocking boto3 calls run in Starlette's threadpool so
they never stall the event loop. Every client failure surfaces as
UploadFailed (retryable), except a missing object on download (NotFound).

Stored file references come in two shapes:
  - StoredKey: a bare object key, "task-executions/ab12cd34_report.pdf"
  - LegacyUrl: a full URL with the bucket as a path segment,
    "http://host:9000/<bucket>/task-executions/report.pdf"
"""
import os
import logging
from dataclasses import dataclass
from typing import List, Optional, Union
from urllib.parse import unquote, urlparse

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
from fastapi import Request
from starlette.concurrency import run_in_threadpool

from errors import ConfigurationError, NotFound, UploadFailed
from file_policy import KEY_PREFIX

logger = logging.getLogger("task-portal.storage")

DEFAULT_TIMEOUT_SECONDS = 30
DEFAULT_PRESIGN_EXPIRES_SECONDS = 3600

_MISSING_CODES = {"404", "NoSuchBucket", "NotFound", "NoSuchKey"}


# ============================================================
# CONFIGURATION
# ============================================================

@dataclass(frozen=True)
class StorageConfig:
    endpoint: str
    public_endpoint: str
    region: str
    access_key: str
    secret_key: str
    bucket: str
    use_path_style: bool = True
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    presign_expires_seconds: int = DEFAULT_PRESIGN_EXPIRES_SECONDS

    REQUIRED_ENV = ("S3_ENDPOINT", "S3_REGION", "S3_KEY", "S3_SECRET", "S3_BUCKET")

    @classmethod
    def missing_env(cls) -> List[str]:
        return [name for name in cls.REQUIRED_ENV if not os.getenv(name)]

    @classmethod
    def from_env(cls) -> "StorageConfig":
        missing = cls.missing_env()
        if missing:
            raise ConfigurationError(f"Object storage is not configured (missing: {', '.join(missing)})")

        endpoint = os.environ["S3_ENDPOINT"]
        return cls(
            endpoint=endpoint,
            public_endpoint=os.getenv("S3_PUBLIC_ENDPOINT") or endpoint,
            region=os.environ["S3_REGION"],
            access_key=os.environ["S3_KEY"],
            secret_key=os.environ["S3_SECRET"],
            bucket=os.environ["S3_BUCKET"],
            use_path_style=os.getenv("S3_USE_PATH_STYLE", "true").lower() in ("1", "true", "yes", "on"),
            timeout_seconds=float(os.getenv("S3_TIMEOUT_SECONDS", str(DEFAULT_TIMEOUT_SECONDS))),
            presign_expires_seconds=int(
                os.getenv("S3_PRESIGN_EXPIRES_SECONDS", str(DEFAULT_PRESIGN_EXPIRES_SECONDS))
            ),
        )


# ============================================================
# FILE REFERENCES
# ============================================================

@dataclass(frozen=True)
class StoredKey:
    key: str


@dataclass(frozen=True)
class LegacyUrl:
    url: str


FileReference = Union[StoredKey, LegacyUrl]


def parse_file_reference(file_path: Optional[str]) -> Optional[FileReference]:
    if not file_path:
        return None
    if file_path.startswith(("http://", "https://")):
        return LegacyUrl(file_path)
    return StoredKey(file_path)


def resolve_object_key(ref: FileReference, bucket: str, file_name: Optional[str] = None) -> str:
    """Map a stored reference to the object key inside ``bucket``."""
    if isinstance(ref, StoredKey):
        return ref.key

    path = unquote(urlparse(ref.url).path)
    marker = f"/{bucket}/"
    if marker in path:
        key = path.split(marker, 1)[1]
        if key:
            return key

    logger.warning("Could not extract object key from legacy URL; falling back to file name")
    return f"{KEY_PREFIX}{file_name or ''}"


@dataclass
class StoredObject:
    body: bytes
    content_type: str
    content_length: int


# ============================================================
# GATEWAY
# ============================================================

class ObjectStore:
    """Async gateway over one bucket of an S3-compatible store"""

    def __init__(self, config: StorageConfig, client=None, presign_client=None):
        self.config = config
        self.bucket = config.bucket
        self._client = client or self._make_client(config.endpoint)
        self._presign_client = presign_client or self._make_client(config.public_endpoint)

    def _make_client(self, endpoint: str):
        cfg = self.config
        return boto3.client(
            "s3",
            endpoint_url=endpoint,
            region_name=cfg.region,
            aws_access_key_id=cfg.access_key,
            aws_secret_access_key=cfg.secret_key,
            config=Config(
                signature_version="s3v4",
                s3={"addressing_style": "path" if cfg.use_path_style else "auto"},
                connect_timeout=cfg.timeout_seconds,
                read_timeout=cfg.timeout_seconds,
                retries={"total_max_attempts": 1, "mode": "standard"},
            ),
        )

    # --- sync primitives (run in the threadpool) ---

    def _ensure_bucket(self) -> bool:
        try:
            self._client.head_bucket(Bucket=self.bucket)
            return False
        except ClientError as e:
            code = str(e.response.get("Error", {}).get("Code", ""))
            if code not in _MISSING_CODES:
                raise

        params = {"Bucket": self.bucket}
        if self.config.region and self.config.region != "us-east-1":
            params["CreateBucketConfiguration"] = {"LocationConstraint": self.config.region}
        try:
            self._client.create_bucket(**params)
        except ClientError as e:
            # Another request created it first
            code = str(e.response.get("Error", {}).get("Code", ""))
            if code not in ("BucketAlreadyOwnedByYou", "BucketAlreadyExists"):
                raise
            return False
        logger.info(f"Created bucket {self.bucket}")
        return True

    def _put_object(self, key: str, body: bytes, content_type: str) -> None:
        self._client.put_object(Bucket=self.bucket, Key=key, Body=body, ContentType=content_type)

    def _get_object(self, key: str) -> StoredObject:
        result = self._client.get_object(Bucket=self.bucket, Key=key)
        body = result["Body"].read()
        return StoredObject(
            body=body,
            content_type=result.get("ContentType") or "application/octet-stream",
            content_length=len(body),
        )

    # --- async API ---

    async def ensure_bucket(self) -> bool:
        """Create the bucket if it does not exist. Returns True when created."""
        try:
            return await run_in_threadpool(self._ensure_bucket)
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Bucket check failed for {self.bucket}: {e}", exc_info=True)
            raise UploadFailed("File upload failed")

    async def put_object(self, key: str, body: bytes, content_type: str) -> None:
        try:
            await run_in_threadpool(self._put_object, key, body, content_type)
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Upload of {key} failed: {e}", exc_info=True)
            raise UploadFailed("File upload failed")
        logger.info(f"Uploaded {key} ({len(body)} bytes)")

    async def get_object(self, key: str) -> StoredObject:
        try:
            return await run_in_threadpool(self._get_object, key)
        except ClientError as e:
            code = str(e.response.get("Error", {}).get("Code", ""))
            if code in _MISSING_CODES:
                raise NotFound("File not found")
            logger.error(f"Download of {key} failed: {e}", exc_info=True)
            raise UploadFailed("Failed to download file")
        except BotoCoreError as e:
            logger.error(f"Download of {key} failed: {e}", exc_info=True)
            raise UploadFailed("Failed to download file")

    def presigned_url(self, key: str, expires_in: Optional[int] = None) -> str:
        """Time-limited GET link against the public endpoint. No network call."""
        try:
            return self._presign_client.generate_presigned_url(
                "get_object",
                Params={"Bucket": self.bucket, "Key": key},
                ExpiresIn=expires_in or self.config.presign_expires_seconds,
            )
        except (ClientError, BotoCoreError) as e:
            logger.warning(f"Presigning {key} failed: {e}")
            raise UploadFailed("Could not build download link")


# ============================================================
# FASTAPI DEPENDENCIES
# ============================================================

def get_object_store(request: Request) -> ObjectStore:
    """Process-wide gateway, built on first use from the environment"""
    store = getattr(request.app.state, "object_store", None)
    if store is None:
        store = ObjectStore(StorageConfig.from_env())
        request.app.state.object_store = store
    return store


def get_optional_object_store(request: Request) -> Optional[ObjectStore]:
    try:
        return get_object_store(request)
    except ConfigurationError:
        return None
