"""
Storage backends for file bytes.

One interface, three media: local disk, S3-compatible object storage and IPFS.
Each backend instance is bound to one domain (its ``namespace``); every key a
caller passes is relative to that namespace. ``StorageFactory`` picks the
implementation from settings and ``BackendRegistry`` memoizes one handle per
domain.
"""

import json
import logging
import os
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Dict, Iterable, List, Optional

import boto3
import requests
from botocore.exceptions import BotoCoreError, ClientError
from pydantic import BaseModel

from files_agent.schemas import DEFAULT_MIMETYPE, FileRecord
from files_agent.settings import Settings

if TYPE_CHECKING:
    from mypy_boto3_s3 import S3Client

logger = logging.getLogger(__name__)

PLACEHOLDER_NAME = ".folder"
METADATA_SUFFIX = "._i"
DEFAULT_EXTENSION = ".bin"
S3_DELETE_BATCH_SIZE = 1000


class StorageError(Exception):
    """Base class for storage backend failures."""

    def __init__(self, message: str, details: Optional[str] = None, size: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.details = details
        self.size = size


class ObjectNotFound(StorageError):
    """The key does not exist in the backend."""


class TransferFailed(StorageError):
    """A read or write did not complete (I/O error, network error, size rejection)."""


class StorageUnavailable(StorageError):
    """The backend is not configured, e.g. no bucket or endpoint."""


class StoredObject(BaseModel):
    """Locator fields produced by a backend for one stored file."""
    storage_key: Optional[str] = None
    data_key: Optional[str] = None
    meta_key: Optional[str] = None
    content_id: Optional[str] = None
    content_url: Optional[str] = None


class DownloadTarget(BaseModel):
    """Either raw bytes to stream back or a URL to redirect the caller to."""
    filename: str
    media_type: str = DEFAULT_MIMETYPE
    content: Optional[bytes] = None
    redirect_url: Optional[str] = None

    @property
    def size(self) -> int:
        return len(self.content or b"")


def file_extension(filename: str) -> str:
    """Lower-cased extension including the dot, or ``""``."""
    return os.path.splitext(filename or "")[1].lower()


def placeholder_key(folder_path: str) -> str:
    return f"{folder_path}/{PLACEHOLDER_NAME}"


def placeholder_folder(key: str) -> Optional[str]:
    """Folder path anchored by a placeholder key, or None when ``key`` is not a placeholder."""
    suffix = f"/{PLACEHOLDER_NAME}"
    if key.endswith(suffix):
        return key[: -len(suffix)]
    return None


class StorageBackend(ABC):
    """
    Uniform put/get/delete-by-key over an underlying medium.

    Subclasses implement the four primitives; key derivation for a whole file
    lives in ``store_file``/``derived_keys`` and may be overridden.
    """

    name = "base"
    supports_placeholders = True

    def __init__(self, namespace: str):
        self.namespace = namespace

    @abstractmethod
    def write(self, key: str, data: bytes, content_type: Optional[str] = None) -> str:
        """
        Store ``data`` under ``key``.

        :return: the locator actually stored, normally ``key`` itself.
        :raises TransferFailed: the write did not land.
        :raises StorageUnavailable: the backend is not configured.
        """

    @abstractmethod
    def read(self, key: str) -> bytes:
        """
        :raises ObjectNotFound: no object under ``key``.
        :raises TransferFailed: the read failed.
        """

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove ``key``. A missing key is not an error."""

    @abstractmethod
    def list_keys(self, prefix: str = "") -> List[str]:
        """Keys under ``prefix``, relative to the namespace."""

    def delete_many(self, keys: Iterable[str]) -> None:
        for key in keys:
            self.delete(key)

    def store_file(
        self,
        base_key: str,
        data: bytes,
        record: Dict[str, Any],
        content_type: Optional[str] = None,
    ) -> StoredObject:
        """Write the raw bytes of a file and return its locator."""
        data_key = f"{base_key}{file_extension(record.get('name', ''))}"
        self.write(data_key, data, content_type)
        return StoredObject(storage_key=base_key, data_key=data_key)

    def derived_keys(self, record: FileRecord) -> List[str]:
        """Every key a record owns in this backend."""
        keys = [key for key in (record.data_key, record.meta_key) if key]
        if not keys and record.storage_key:
            keys.append(record.storage_key)
        return keys

    def download_target(self, record: FileRecord) -> DownloadTarget:
        key = record.primary_key()
        if not key:
            raise ObjectNotFound(f"Record {record.id} has no storage key")
        return DownloadTarget(
            filename=record.name,
            media_type=record.mimetype or DEFAULT_MIMETYPE,
            content=self.read(key),
        )

    def describe(self) -> Dict[str, Optional[str]]:
        return {"type": self.name, "namespace": self.namespace}


class LocalStorageBackend(StorageBackend):
    """Keys map to paths under ``<root>/<namespace>``; directories are created as needed."""

    name = "local"

    def __init__(self, namespace: str, root: str):
        super().__init__(namespace)
        self.root = (Path(root) / namespace).resolve()

    def _path(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if path != self.root and not path.is_relative_to(self.root):
            raise TransferFailed(f"Key escapes storage root: {key}")
        return path

    def write(self, key: str, data: bytes, content_type: Optional[str] = None) -> str:
        path = self._path(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        except OSError as e:
            logger.error(f"Error writing {key} to local storage: {str(e)}")
            raise TransferFailed(f"Failed to write {key}", details=str(e), size=len(data)) from e
        logger.info(f"Stored {len(data)} bytes at {path}")
        return key

    def read(self, key: str) -> bytes:
        path = self._path(key)
        try:
            return path.read_bytes()
        except FileNotFoundError as e:
            raise ObjectNotFound(f"File not found: {key}") from e
        except OSError as e:
            logger.error(f"Error reading {key} from local storage: {str(e)}")
            raise TransferFailed(f"Failed to read {key}", details=str(e)) from e

    def delete(self, key: str) -> None:
        path = self._path(key)
        try:
            path.unlink(missing_ok=True)
        except IsADirectoryError as e:
            raise TransferFailed(f"Refusing to delete directory {key}") from e
        except OSError as e:
            raise TransferFailed(f"Failed to delete {key}", details=str(e)) from e
        logger.info(f"Deleted {path}")

    def list_keys(self, prefix: str = "") -> List[str]:
        if not self.root.exists():
            return []
        keys = []
        for path in self.root.rglob("*"):
            if not path.is_file():
                continue
            key = path.relative_to(self.root).as_posix()
            if key.startswith(prefix):
                keys.append(key)
        return sorted(keys)

    def describe(self) -> Dict[str, Optional[str]]:
        return {"type": self.name, "namespace": self.namespace, "root": str(self.root)}


class S3StorageBackend(StorageBackend):
    """
    S3-compatible object storage.

    One file is two objects: raw bytes at ``<base>.<ext>`` and the record payload
    at ``<base>._i``, written in that order.
    """

    name = "s3"

    def __init__(self, namespace: str, bucket_name: Optional[str], s3_client: "S3Client"):
        super().__init__(namespace)
        self.bucket_name = bucket_name
        self.s3_client = s3_client

    def _key(self, key: str) -> str:
        return f"{self.namespace}/{key}"

    def _require_bucket(self) -> str:
        if not self.bucket_name:
            raise StorageUnavailable("S3 bucket name is not set")
        return self.bucket_name

    def write(self, key: str, data: bytes, content_type: Optional[str] = None) -> str:
        bucket = self._require_bucket()
        try:
            self.s3_client.put_object(
                Bucket=bucket,
                Key=self._key(key),
                Body=data,
                ContentType=content_type or DEFAULT_MIMETYPE,
            )
        except (BotoCoreError, ClientError) as e:
            logger.error(f"Error uploading to S3: {str(e)}")
            raise TransferFailed(f"Failed to upload {key}", details=str(e), size=len(data)) from e
        logger.info(f"Uploaded {len(data)} bytes to s3://{bucket}/{self._key(key)}")
        return key

    def read(self, key: str) -> bytes:
        bucket = self._require_bucket()
        try:
            response = self.s3_client.get_object(Bucket=bucket, Key=self._key(key))
            return response["Body"].read()
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("NoSuchKey", "404"):
                raise ObjectNotFound(f"Object not found: {key}") from e
            logger.error(f"Error downloading from S3: {str(e)}")
            raise TransferFailed(f"Failed to read {key}", details=str(e)) from e
        except BotoCoreError as e:
            logger.error(f"Error downloading from S3: {str(e)}")
            raise TransferFailed(f"Failed to read {key}", details=str(e)) from e

    def delete(self, key: str) -> None:
        self.delete_many([key])

    def delete_many(self, keys: Iterable[str]) -> None:
        bucket = self._require_bucket()
        objects = [{"Key": self._key(key)} for key in keys]
        for start in range(0, len(objects), S3_DELETE_BATCH_SIZE):
            batch = objects[start:start + S3_DELETE_BATCH_SIZE]
            try:
                response = self.s3_client.delete_objects(
                    Bucket=bucket,
                    Delete={"Objects": batch, "Quiet": True},
                )
            except (BotoCoreError, ClientError) as e:
                logger.error(f"Error deleting from S3: {str(e)}")
                raise TransferFailed("Failed to delete objects", details=str(e)) from e
            errors = response.get("Errors", [])
            if errors:
                raise TransferFailed(
                    f"Failed to delete {len(errors)} object(s)",
                    details="; ".join(f"{err.get('Key')}: {err.get('Message')}" for err in errors),
                )
        logger.info(f"Deleted {len(objects)} object(s) from s3://{bucket}/{self.namespace}")

    def list_keys(self, prefix: str = "") -> List[str]:
        bucket = self._require_bucket()
        namespace_prefix = f"{self.namespace}/"
        keys = []
        try:
            paginator = self.s3_client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=bucket, Prefix=namespace_prefix + prefix):
                for item in page.get("Contents", []):
                    keys.append(item["Key"][len(namespace_prefix):])
        except (BotoCoreError, ClientError) as e:
            logger.error(f"Error listing S3 objects: {str(e)}")
            raise TransferFailed("Failed to list objects", details=str(e)) from e
        return keys

    def store_file(
        self,
        base_key: str,
        data: bytes,
        record: Dict[str, Any],
        content_type: Optional[str] = None,
    ) -> StoredObject:
        data_key = f"{base_key}{file_extension(record.get('name', '')) or DEFAULT_EXTENSION}"
        meta_key = f"{base_key}{METADATA_SUFFIX}"
        stored = StoredObject(storage_key=base_key, data_key=data_key, meta_key=meta_key)

        self.write(data_key, data, content_type)
        payload = dict(record, **stored.model_dump(exclude_none=True), storage=self.name)
        # a failure here leaves the raw object behind; it is not rolled back
        self.write(meta_key, json.dumps(payload, default=str).encode("utf-8"), "application/json")
        return stored

    def describe(self) -> Dict[str, Optional[str]]:
        return {"type": self.name, "namespace": self.namespace, "bucket": self.bucket_name}


class IpfsStorageBackend(StorageBackend):
    """
    Content-addressed storage through an IPFS HTTP API.

    ``write`` returns the content identifier (CID) the node assigned. Content is
    immutable: deletes are no-ops and downloads redirect to the public gateway.
    """

    name = "ipfs"
    supports_placeholders = False

    def __init__(
        self,
        namespace: str,
        api_url: Optional[str],
        gateway: str,
        timeout: float = 60.0,
        session: Optional[requests.Session] = None,
    ):
        super().__init__(namespace)
        self.api_url = api_url.rstrip("/") if api_url else None
        self.gateway = gateway.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def content_url(self, content_id: str) -> str:
        return f"{self.gateway}/ipfs/{content_id}"

    def write(self, key: str, data: bytes, content_type: Optional[str] = None) -> str:
        if not self.api_url:
            raise StorageUnavailable("IPFS URL not configured")

        filename = key.rsplit("/", 1)[-1]
        try:
            response = self.session.post(
                f"{self.api_url}/add",
                files={"file": (filename, data, DEFAULT_MIMETYPE)},
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            logger.error(f"IPFS upload error: {str(e)}")
            raise TransferFailed("IPFS upload failed", details=str(e), size=len(data)) from e

        if not response.ok:
            logger.error(f"IPFS upload failed with status: {response.status_code}")
            logger.error(f"Error details: {response.text}")
            logger.error(f"File size: {len(data)} bytes")
            raise TransferFailed(
                "IPFS upload failed",
                details=f"Gateway returned {response.status_code}; the file may be too large for the IPFS gateway",
                size=len(data),
            )

        try:
            content_id = response.json()["Hash"]
        except (ValueError, KeyError) as e:
            raise TransferFailed("IPFS upload returned no content hash", details=response.text, size=len(data)) from e

        logger.info(f"Uploaded to IPFS: {content_id}")
        return content_id

    def read(self, key: str) -> bytes:
        try:
            response = self.session.get(self.content_url(key), timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise TransferFailed(f"Failed to fetch {key} from IPFS gateway", details=str(e)) from e
        if response.status_code == 404:
            raise ObjectNotFound(f"Content not found: {key}")
        if not response.ok:
            raise TransferFailed(f"IPFS gateway returned {response.status_code} for {key}")
        return response.content

    def delete(self, key: str) -> None:
        logger.debug(f"IPFS content is immutable; nothing to delete for {key}")

    def list_keys(self, prefix: str = "") -> List[str]:
        return []

    def store_file(
        self,
        base_key: str,
        data: bytes,
        record: Dict[str, Any],
        content_type: Optional[str] = None,
    ) -> StoredObject:
        content_id = self.write(record.get("name") or base_key, data, content_type)
        return StoredObject(
            storage_key=content_id,
            content_id=content_id,
            content_url=self.content_url(content_id),
        )

    def derived_keys(self, record: FileRecord) -> List[str]:
        return [key for key in (record.content_id or record.storage_key,) if key]

    def download_target(self, record: FileRecord) -> DownloadTarget:
        content_id = record.content_id or record.storage_key
        url = record.content_url or (self.content_url(content_id) if content_id else None)
        if not url:
            raise ObjectNotFound(f"Record {record.id} has no content identifier")
        return DownloadTarget(
            filename=record.name,
            media_type=record.mimetype or DEFAULT_MIMETYPE,
            redirect_url=url,
        )

    def describe(self) -> Dict[str, Optional[str]]:
        return {"type": self.name, "namespace": self.namespace, "api": self.api_url, "gateway": self.gateway}


class StorageFactory:
    """Build storage backends for a domain based on ``settings.storage_backend``."""

    def __init__(self, settings: Settings, s3_client: Optional["S3Client"] = None,
                 session: Optional[requests.Session] = None):
        self.settings = settings
        self._s3_client = s3_client
        self._session = session

    def _get_s3_client(self) -> "S3Client":
        if self._s3_client is None:
            client_kwargs = {"region_name": self.settings.aws_region}
            if self.settings.aws_access_key_id:
                client_kwargs["aws_access_key_id"] = self.settings.aws_access_key_id
            if self.settings.aws_secret_access_key:
                client_kwargs["aws_secret_access_key"] = self.settings.aws_secret_access_key
            if self.settings.aws_endpoint_url:
                client_kwargs["endpoint_url"] = self.settings.aws_endpoint_url
            self._s3_client = boto3.client("s3", **client_kwargs)
            logger.info(f"Created S3 client for bucket: {self.settings.s3_bucket_name}")
        return self._s3_client

    def _local(self, domain: str) -> StorageBackend:
        return LocalStorageBackend(domain, self.settings.storage_dir)

    def _s3(self, domain: str) -> StorageBackend:
        return S3StorageBackend(domain, self.settings.s3_bucket_name, self._get_s3_client())

    def _ipfs(self, domain: str) -> StorageBackend:
        if self._session is None:
            self._session = requests.Session()
        return IpfsStorageBackend(
            domain,
            api_url=self.settings.ipfs_url,
            gateway=self.settings.ipfs_gateway,
            timeout=self.settings.ipfs_timeout,
            session=self._session,
        )

    def create(self, domain: str) -> StorageBackend:
        backend_builders: Dict[str, Callable[[str], StorageBackend]] = {
            "local": self._local,
            "s3": self._s3,
            "ipfs": self._ipfs,
        }

        storage_backend = self.settings.storage_backend
        if storage_backend not in backend_builders:
            raise ValueError(
                f"Invalid storage_backend: {storage_backend}. "
                f"Choose from {list(backend_builders.keys())}"
            )

        logger.info(f"Creating {storage_backend} storage backend for domain: {domain}")
        return backend_builders[storage_backend](domain)


class BackendRegistry:
    """One memoized storage backend per domain, safe to call from concurrent requests."""

    def __init__(self, factory: Callable[[str], StorageBackend]):
        self._factory = factory
        self._backends: Dict[str, StorageBackend] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings: Settings) -> "BackendRegistry":
        return cls(StorageFactory(settings).create)

    def get(self, domain: str) -> StorageBackend:
        backend = self._backends.get(domain)
        if backend is None:
            with self._lock:
                backend = self._backends.get(domain)
                if backend is None:
                    backend = self._factory(domain)
                    self._backends[domain] = backend
        return backend
