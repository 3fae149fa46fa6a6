"""
Metadata store for data wallets and per-domain indexes.

Two document stores behind one interface:
- ``JsonMetadataStore`` keeps ``<data_dir>/<domain>/index.json`` and
  ``<data_dir>/<domain>/files/<id>.json`` on disk.
- ``SQLiteMetadataStore`` keeps the same JSON documents in SQLite tables.

Calls are not transactional with each other; the files service orders them.
"""

import logging
import os
import re
import sqlite3
import tempfile
from abc import ABC, abstractmethod
from contextlib import closing
from pathlib import Path
from typing import Optional

from files_agent.schemas import FileRecord, Index
from files_agent.settings import Settings

logger = logging.getLogger(__name__)

INDEX_FILENAME = "index.json"
FILES_DIRNAME = "files"

_FILE_ID_RE = re.compile(r"^[A-Za-z0-9_-]+$")


def _check_file_id(file_id: str) -> str:
    if not _FILE_ID_RE.match(file_id or ""):
        raise ValueError(f"Invalid file id: {file_id!r}")
    return file_id


class MetadataStore(ABC):
    """Per-domain read/write/delete of the Index and FileRecords."""

    @abstractmethod
    def read_index(self, domain: str) -> Index:
        """Return the domain's Index, or an empty one if none was saved yet."""

    @abstractmethod
    def save_index(self, domain: str, index: Index) -> None:
        """Overwrite the domain's Index."""

    @abstractmethod
    def get_file(self, domain: str, file_id: str) -> Optional[FileRecord]:
        """Return the FileRecord or None when absent."""

    @abstractmethod
    def save_file(self, domain: str, record: FileRecord) -> None:
        """Overwrite the FileRecord keyed by ``record.id``."""

    @abstractmethod
    def delete_file(self, domain: str, file_id: str) -> bool:
        """Remove a FileRecord. True if one existed, False if absent."""


class JsonMetadataStore(MetadataStore):
    """JSON documents on the local filesystem."""

    def __init__(self, data_dir: str):
        self.data_dir = Path(data_dir)

    def _domain_dir(self, domain: str) -> Path:
        return self.data_dir / domain

    def _index_path(self, domain: str) -> Path:
        return self._domain_dir(domain) / INDEX_FILENAME

    def _file_path(self, domain: str, file_id: str) -> Path:
        return self._domain_dir(domain) / FILES_DIRNAME / f"{_check_file_id(file_id)}.json"

    @staticmethod
    def _write_atomic(path: Path, payload: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
            os.replace(tmp_path, path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def read_index(self, domain: str) -> Index:
        path = self._index_path(domain)
        try:
            return Index.model_validate_json(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return Index()

    def save_index(self, domain: str, index: Index) -> None:
        self._write_atomic(self._index_path(domain), index.model_dump_json(indent=2))

    def get_file(self, domain: str, file_id: str) -> Optional[FileRecord]:
        path = self._file_path(domain, file_id)
        try:
            return FileRecord.model_validate_json(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None

    def save_file(self, domain: str, record: FileRecord) -> None:
        self._write_atomic(self._file_path(domain, record.id), record.model_dump_json(indent=2))

    def delete_file(self, domain: str, file_id: str) -> bool:
        try:
            self._file_path(domain, file_id).unlink()
            return True
        except FileNotFoundError:
            return False


class SQLiteMetadataStore(MetadataStore):
    """JSON documents stored in SQLite, one row per index and per data wallet."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        self.init_collections()

    def _get_connection(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def init_collections(self) -> None:
        """Create the document tables if they do not exist."""
        with closing(self._get_connection()) as conn, conn:
            conn.execute('''
                CREATE TABLE IF NOT EXISTS indexes (
                    domain TEXT PRIMARY KEY,
                    document TEXT NOT NULL,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            ''')
            conn.execute('''
                CREATE TABLE IF NOT EXISTS wallets (
                    domain TEXT NOT NULL,
                    file_id TEXT NOT NULL,
                    document TEXT NOT NULL,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    PRIMARY KEY (domain, file_id)
                )
            ''')

    def read_index(self, domain: str) -> Index:
        with closing(self._get_connection()) as conn:
            row = conn.execute(
                'SELECT document FROM indexes WHERE domain = ?', (domain,)
            ).fetchone()
        if row is None:
            return Index()
        return Index.model_validate_json(row["document"])

    def save_index(self, domain: str, index: Index) -> None:
        with closing(self._get_connection()) as conn, conn:
            conn.execute(
                '''
                INSERT INTO indexes (domain, document) VALUES (?, ?)
                ON CONFLICT(domain) DO UPDATE SET
                    document = excluded.document,
                    updated_at = CURRENT_TIMESTAMP
                ''',
                (domain, index.model_dump_json()),
            )

    def get_file(self, domain: str, file_id: str) -> Optional[FileRecord]:
        with closing(self._get_connection()) as conn:
            row = conn.execute(
                'SELECT document FROM wallets WHERE domain = ? AND file_id = ?',
                (domain, file_id),
            ).fetchone()
        if row is None:
            return None
        return FileRecord.model_validate_json(row["document"])

    def save_file(self, domain: str, record: FileRecord) -> None:
        with closing(self._get_connection()) as conn, conn:
            conn.execute(
                '''
                INSERT INTO wallets (domain, file_id, document) VALUES (?, ?, ?)
                ON CONFLICT(domain, file_id) DO UPDATE SET
                    document = excluded.document,
                    updated_at = CURRENT_TIMESTAMP
                ''',
                (domain, record.id, record.model_dump_json()),
            )

    def delete_file(self, domain: str, file_id: str) -> bool:
        with closing(self._get_connection()) as conn, conn:
            cursor = conn.execute(
                'DELETE FROM wallets WHERE domain = ? AND file_id = ?',
                (domain, file_id),
            )
            return cursor.rowcount > 0


def create_metadata_store(settings: Settings) -> MetadataStore:
    """Build the metadata store selected by ``settings.metadata_backend``."""
    if settings.metadata_backend == "sqlite":
        logger.info(f"Using SQLite metadata store at {settings.sqlite_path}")
        return SQLiteMetadataStore(settings.sqlite_path)
    logger.info(f"Using JSON metadata store at {settings.data_dir}")
    return JsonMetadataStore(settings.data_dir)
