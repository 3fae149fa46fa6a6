"""
Files service: folder create/delete, list, upload, download and delete.

Every operation is scoped to a domain. Permission and input checks run before
any side effect. Metadata writes are ordered so the Index never references a
FileRecord that does not exist:

- upload: backend write, then FileRecord, then Index entry
- delete: backend delete (best effort), then Index entry, then FileRecord
"""

import hashlib
import json
import logging
import re
import secrets
from typing import Iterable, List, Optional, Set

from files_agent.adapters.storage import (
    BackendRegistry,
    DownloadTarget,
    ObjectNotFound,
    StorageBackend,
    StorageError,
    StorageUnavailable,
    placeholder_folder,
    placeholder_key,
)
from files_agent.errors import (
    BackendUnavailable,
    Forbidden,
    FolderNotEmpty,
    InvalidInput,
    NotFound,
    Unauthenticated,
    UploadFailed,
    BackendFailure,
)
from files_agent.metadata import MetadataStore
from files_agent.permissions import PermissionGate
from files_agent.schemas import (
    DEFAULT_MIMETYPE,
    ROOT_FOLDER,
    FileRecord,
    FolderEntry,
    FolderRef,
    IndexEntry,
    ListFilesResponse,
    Permissions,
    StatusResponse,
    utcnow,
)
from files_agent.utils.decorators import log_execution_time, service_operation

logger = logging.getLogger(__name__)

DEFAULT_DOMAIN = "localhost"
FOLDER_NAME_RE = re.compile(r"^[A-Za-z0-9_-]+$")
DOMAIN_RE = re.compile(r"^[A-Za-z0-9._:\[\]-]+$")


def resolve_domain(hostname: Optional[str]) -> str:
    """Tenant namespace for a request hostname."""
    domain = (hostname or "").strip().lower() or DEFAULT_DOMAIN
    if not DOMAIN_RE.match(domain) or domain in (".", "..") or ".." in domain:
        raise InvalidInput(f"Invalid domain: {hostname}")
    return domain


def validate_folder_name(name: Optional[str]) -> str:
    if not name:
        raise InvalidInput("Folder name is required")
    if not FOLDER_NAME_RE.match(name):
        raise InvalidInput("Folder name may only contain letters, digits, '-' and '_'")
    return name


def normalize_folder(folder: Optional[str]) -> str:
    """Strip surrounding slashes and validate each segment of a folder path."""
    folder = (folder or "").strip().strip("/")
    if not folder:
        return ROOT_FOLDER
    for segment in folder.split("/"):
        if not FOLDER_NAME_RE.match(segment):
            raise InvalidInput(f"Invalid folder path: {folder}")
    return folder


def is_within(folder: str, parent: str) -> bool:
    """True when ``folder`` is ``parent`` or one of its descendants."""
    if not parent:
        return True
    return folder == parent or folder.startswith(parent + "/")


def derive_child_folders(folder: str, folder_paths: Iterable[str]) -> List[FolderRef]:
    """
    Immediate children of ``folder`` implied by a set of folder paths.

    Each path that is a strict descendant contributes the segment right after
    ``folder``; results are deduplicated and sorted by name.
    """
    prefix = f"{folder}/" if folder else ""
    names: Set[str] = set()
    for path in folder_paths:
        if not path or path == folder or not path.startswith(prefix):
            continue
        names.add(path[len(prefix):].split("/", 1)[0])
    return [FolderRef(name=name, path=f"{prefix}{name}") for name in sorted(names)]


def all_folder_paths(folder_paths: Iterable[str]) -> Set[str]:
    """Every folder path plus all of its ancestors."""
    paths: Set[str] = set()
    for path in folder_paths:
        segments = path.split("/") if path else []
        for depth in range(1, len(segments) + 1):
            paths.add("/".join(segments[:depth]))
    return paths


class FilesService:
    """Orchestrates the metadata store, storage backends and permission gate."""

    def __init__(
        self,
        metadata: MetadataStore,
        backends: BackendRegistry,
        permissions: PermissionGate,
        agent_name: str = "files",
        version: str = "1.0.0",
    ):
        self.metadata = metadata
        self.backends = backends
        self.permissions = permissions
        self.agent_name = agent_name
        self.version = version

    # ------------------------------------------------------------------ #
    # helpers
    # ------------------------------------------------------------------ #

    def _require(self, domain: str, identity: Optional[str], right: str) -> Permissions:
        if not identity:
            raise Unauthenticated()
        permissions = self.permissions.check(identity, domain)
        if not getattr(permissions, right):
            raise Forbidden(f"Not authorized: {right} permission required")
        return permissions

    def _placeholder_folders(self, backend: StorageBackend, prefix: str = "") -> List[str]:
        if not backend.supports_placeholders:
            return []
        try:
            keys = backend.list_keys(prefix)
        except StorageError as e:
            logger.warning(f"Could not list folder placeholders: {e.message}")
            return []
        return [folder for folder in map(placeholder_folder, keys) if folder is not None]

    # ------------------------------------------------------------------ #
    # folders
    # ------------------------------------------------------------------ #

    @service_operation
    def create_folder(
        self,
        domain: str,
        name: Optional[str],
        parent_folder: Optional[str],
        identity: Optional[str],
    ) -> FolderEntry:
        """Anchor a new folder with a placeholder object at ``<path>/.folder``."""
        self._require(domain, identity, "edit")
        name = validate_folder_name(name)
        parent = normalize_folder(parent_folder)
        path = f"{parent}/{name}" if parent else name

        backend = self.backends.get(domain)
        if backend.supports_placeholders:
            placeholder = {
                "name": name,
                "path": path,
                "createdBy": identity,
                "createdAt": utcnow().isoformat(),
            }
            try:
                backend.write(placeholder_key(path), json.dumps(placeholder).encode("utf-8"), "application/json")
            except StorageUnavailable as e:
                raise BackendUnavailable(e.message) from e
            except StorageError as e:
                raise BackendFailure("Failed to create folder", details=e.details or e.message) from e

        logger.info(f"Folder created: {domain}/{path} by {identity}")
        return FolderEntry(name=name, path=path, created_by=identity)

    @service_operation
    def delete_folder(self, domain: str, path: Optional[str], identity: Optional[str]) -> str:
        """
        Remove an empty folder's placeholder. Deleting an absent placeholder succeeds.

        Only files count towards emptiness. Placeholders of child folders are
        left alone, and since a child placeholder implies its ancestors the
        folder keeps showing in listings until those children are deleted too.
        """
        self._require(domain, identity, "admin")
        path = normalize_folder(path)
        if not path:
            raise InvalidInput("Folder path is required")

        index = self.metadata.read_index(domain)
        file_count = sum(1 for entry in index.files.values() if is_within(entry.folder, path))
        if file_count:
            raise FolderNotEmpty(path, file_count)

        backend = self.backends.get(domain)
        if backend.supports_placeholders:
            try:
                backend.delete(placeholder_key(path))
            except StorageUnavailable as e:
                raise BackendUnavailable(e.message) from e
            except StorageError as e:
                raise BackendFailure("Failed to delete folder", details=e.details or e.message) from e

        logger.info(f"Folder deleted: {domain}/{path} by {identity}")
        return path

    # ------------------------------------------------------------------ #
    # listing
    # ------------------------------------------------------------------ #

    @service_operation
    def list(self, domain: str, folder: Optional[str], identity: Optional[str] = None) -> ListFilesResponse:
        """Files directly in ``folder`` plus its immediate child folders."""
        folder = normalize_folder(folder)
        index = self.metadata.read_index(domain)

        files = []
        for entry in index.files.values():
            if entry.folder != folder:
                continue
            record = self.metadata.get_file(domain, entry.id)
            if record is None:
                logger.warning(f"Index entry {entry.id} in {domain} has no data wallet; skipping")
                continue
            files.append(record)
        files.sort(key=lambda record: (record.name.lower(), record.created_at))

        backend = self.backends.get(domain)
        prefix = f"{folder}/" if folder else ""
        folder_paths = [entry.folder for entry in index.files.values() if is_within(entry.folder, folder)]
        folder_paths.extend(self._placeholder_folders(backend, prefix))

        return ListFilesResponse(files=files, folders=derive_child_folders(folder, folder_paths))

    # ------------------------------------------------------------------ #
    # files
    # ------------------------------------------------------------------ #

    @service_operation
    @log_execution_time
    def upload(
        self,
        domain: str,
        data: bytes,
        filename: Optional[str],
        mimetype: Optional[str],
        folder: Optional[str],
        identity: Optional[str],
    ) -> FileRecord:
        """Store the bytes, then persist the data wallet, then index it."""
        self._require(domain, identity, "edit")
        if not filename:
            raise InvalidInput("No file uploaded")
        folder = normalize_folder(folder)

        file_id = secrets.token_hex(16)
        now = utcnow()
        draft = {
            "id": file_id,
            "name": filename,
            "mimetype": mimetype or DEFAULT_MIMETYPE,
            "size": len(data),
            "hash": hashlib.md5(data).hexdigest(),
            "folder": folder,
            "created_at": now,
            "created_by": identity,
            "modified_at": now,
            "modified_by": identity,
        }

        backend = self.backends.get(domain)
        base_key = f"{folder}/{file_id}" if folder else file_id
        try:
            stored = backend.store_file(base_key, data, draft, draft["mimetype"])
        except StorageUnavailable as e:
            logger.error(f"Upload of {filename} aborted, storage unavailable: {e.message}")
            raise UploadFailed(f"{backend.name} upload failed", details=e.message, size=len(data)) from e
        except StorageError as e:
            size_kb = len(data) / 1024
            logger.error(f"Failed to upload {filename} ({size_kb:.2f} KB): {e.message}")
            raise UploadFailed(
                f"{backend.name} upload failed",
                details=e.details or e.message,
                size=len(data),
            ) from e

        record = FileRecord(**draft, storage=backend.name, **stored.model_dump(exclude_none=True))
        self.metadata.save_file(domain, record)

        index = self.metadata.read_index(domain)
        index.files[file_id] = IndexEntry(id=file_id, folder=folder)
        self.metadata.save_index(domain, index)

        logger.info(f"Uploaded {filename} as {file_id} to {domain}/{folder or '/'} by {identity}")
        return record

    @service_operation
    def download(self, domain: str, file_id: str, identity: Optional[str] = None) -> DownloadTarget:
        """Bytes to stream back, or a URL to redirect to."""
        record = self._get_indexed_file(domain, file_id)
        backend = self.backends.get(domain)
        try:
            return backend.download_target(record)
        except ObjectNotFound as e:
            logger.warning(f"Bytes for {file_id} missing from {backend.name} storage: {e.message}")
            raise NotFound("File not found") from e
        except StorageUnavailable as e:
            raise BackendUnavailable(e.message) from e
        except StorageError as e:
            raise BackendFailure("Failed to read file", details=e.details or e.message) from e

    @service_operation
    def delete(self, domain: str, file_id: str, identity: Optional[str]) -> None:
        """Remove a file. Only its owner or an admin may do so."""
        if not identity:
            raise Unauthenticated()
        record = self._get_indexed_file(domain, file_id)

        is_owner = (record.created_by or "").lower() == identity.lower()
        if not is_owner and not self.permissions.check(identity, domain).admin:
            raise Forbidden("Not authorized to manage files")

        backend = self.backends.get(domain)
        keys = backend.derived_keys(record)
        try:
            backend.delete_many(keys)
        except StorageError as e:
            logger.error(f"Backend delete of {keys} failed for {file_id}, removing metadata anyway: {e.message}")

        index = self.metadata.read_index(domain)
        if index.files.pop(file_id, None) is not None:
            self.metadata.save_index(domain, index)
        self.metadata.delete_file(domain, file_id)
        logger.info(f"Deleted {file_id} from {domain} by {identity}")

    def _get_indexed_file(self, domain: str, file_id: str) -> FileRecord:
        index = self.metadata.read_index(domain)
        if file_id not in index.files:
            raise NotFound("File not found")
        try:
            record = self.metadata.get_file(domain, file_id)
        except ValueError as e:
            raise NotFound("File not found") from e
        if record is None:
            raise NotFound("File not found")
        return record

    # ------------------------------------------------------------------ #
    # diagnostics
    # ------------------------------------------------------------------ #

    @service_operation
    def status(self, domain: str) -> StatusResponse:
        index = self.metadata.read_index(domain)
        backend = self.backends.get(domain)
        folder_paths = all_folder_paths(entry.folder for entry in index.files.values())
        folder_paths.update(all_folder_paths(self._placeholder_folders(backend)))
        return StatusResponse(
            agent=self.agent_name,
            version=self.version,
            file_count=len(index.files),
            folder_count=len(folder_paths),
            storage=backend.describe(),
        )
