####################################
# --- Request/response schemas --- #
####################################

from datetime import datetime, timezone
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

DEFAULT_MIMETYPE = "application/octet-stream"
ROOT_FOLDER = ""


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FileRecord(BaseModel):
    """Data wallet: provenance metadata for one stored file."""
    id: str = Field(
        description="32 hex character identifier, immutable once assigned.",
        json_schema_extra={"example": "9f86d081884c7d659a2feaa0c55ad015"},
    )
    name: str = Field(description="Display name of the file.")
    mimetype: str = Field(DEFAULT_MIMETYPE, description="Declared MIME type.")
    size: int = Field(ge=0, description="The size of the file in bytes.")
    hash: str = Field(description="MD5 hex digest of the raw bytes.")
    folder: str = Field(ROOT_FOLDER, description="Folder path, empty string for the root.")
    created_at: datetime = Field(default_factory=utcnow)
    created_by: str = Field(description="Identity address of the uploader (the owner).")
    modified_at: datetime = Field(default_factory=utcnow)
    modified_by: str = Field(description="Identity address of the last modifier.")

    # Backend locator
    storage: str = Field("local", description="Backend holding the bytes: local, s3 or ipfs.")
    storage_key: Optional[str] = Field(None, description="Base key of the stored object.")
    data_key: Optional[str] = Field(None, description="Key of the raw bytes.")
    meta_key: Optional[str] = Field(None, description="Key of the metadata blob, where the backend keeps one.")
    content_id: Optional[str] = Field(None, description="Content identifier on a content-addressed backend.")
    content_url: Optional[str] = Field(None, description="Gateway URL for a content-addressed object.")

    # older records may carry fields this model does not know about.
    # Wire output is camelCase; stored documents use the field names.
    model_config = ConfigDict(
        extra="allow",
        alias_generator=to_camel,
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "id": "9f86d081884c7d659a2feaa0c55ad015",
                "name": "a.txt",
                "mimetype": "text/plain",
                "size": 10,
                "hash": "e807f1fcf82d132f9bb018ca6738a19f",
                "folder": "",
                "createdAt": "2024-01-01T00:00:00Z",
                "createdBy": "0xABC",
                "modifiedAt": "2024-01-01T00:00:00Z",
                "modifiedBy": "0xABC",
                "storage": "local",
                "storageKey": "9f86d081884c7d659a2feaa0c55ad015",
                "dataKey": "9f86d081884c7d659a2feaa0c55ad015.txt",
            }
        },
    )

    def primary_key(self) -> Optional[str]:
        """Key holding the raw bytes. ``storage_key`` is what older records stored it under."""
        return self.data_key or self.storage_key


class IndexEntry(BaseModel):
    id: str
    folder: str = ROOT_FOLDER


class Index(BaseModel):
    """Per-domain map of which files exist."""
    files: Dict[str, IndexEntry] = Field(default_factory=dict)
    folders: List[str] = Field(default_factory=list)


class FolderEntry(BaseModel):
    name: str
    path: str
    created_by: Optional[str] = Field(None, alias="createdBy")

    model_config = ConfigDict(populate_by_name=True)


class FolderRef(BaseModel):
    """Child folder as returned by `GET /api/list`."""
    name: str
    path: str


class Permissions(BaseModel):
    read: bool = True
    edit: bool = False
    admin: bool = False


class CreateFolderRequest(BaseModel):
    """Request body for `POST /api/folder`."""
    name: str = Field(description="Folder name; letters, digits, '-' and '_' only.")
    parent_folder: str = Field(ROOT_FOLDER, alias="parentFolder")

    model_config = ConfigDict(populate_by_name=True)


class CreateFolderResponse(BaseModel):
    """Response model for `POST /api/folder`."""
    success: bool = True
    folder: FolderEntry


class DeleteFolderResponse(BaseModel):
    """Response model for `DELETE /api/folder`."""
    success: bool = True
    deleted: str


class ListFilesResponse(BaseModel):
    """Response model for `GET /api/list`."""
    files: List[FileRecord]
    folders: List[FolderRef]

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "files": [FileRecord.model_config["json_schema_extra"]["example"]],
                "folders": [{"name": "reports", "path": "reports"}],
            }
        }
    )


class DeleteFileResponse(BaseModel):
    """Response model for `DELETE /api/file/:id`."""
    success: bool = True


class StatusResponse(BaseModel):
    """Response model for `GET /status`."""
    agent: str
    version: str
    file_count: int = Field(alias="fileCount")
    folder_count: int = Field(alias="folderCount")
    storage: Dict[str, Optional[str]]

    model_config = ConfigDict(populate_by_name=True)
