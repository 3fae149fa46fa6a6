# src/files_agent/settings.py
from functools import lru_cache
from typing import List, Optional

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

STORAGE_BACKENDS = ["local", "s3", "ipfs"]
METADATA_BACKENDS = ["json", "sqlite"]
PERMISSION_MODES = ["acl", "whitelist"]


class Settings(BaseSettings):
    """
    Single source of truth for all application settings.

    Configuration precedence:
    1. Environment variables (highest priority)
    2. .env file (if exists)
    3. Default values in this class (lowest priority)

    Usage:
        from files_agent.settings import get_settings
        settings = get_settings()
        backend = settings.storage_backend
    """

    # Application Settings
    app_name: str = Field(
        default="files-agent",
        description="Application name"
    )

    agent_id: str = Field(
        default="files",
        description="Agent identifier sent to the identity provider on access checks"
    )

    version: str = Field(
        default="1.0.0",
        description="Version reported by /status"
    )

    mount_prefix: str = Field(
        default="",
        description="Path prefix every route is mounted under, e.g. /agent/files"
    )

    cors_origins: List[str] = Field(
        default_factory=lambda: ["http://localhost:3000"],
        description="Origins allowed by the CORS middleware"
    )

    # Storage Backend
    storage_backend: str = Field(
        default="local",
        description="Where file bytes live: local, s3, or ipfs"
    )

    storage_dir: str = Field(
        default="storage",
        description="Root directory for the local storage backend"
    )

    # Metadata Store
    metadata_backend: str = Field(
        default="json",
        description="How data wallets and indexes are persisted: json or sqlite"
    )

    data_dir: str = Field(
        default="data",
        description="Root directory for JSON metadata documents"
    )

    sqlite_path: str = Field(
        default="files_agent.db",
        description="SQLite database file for the sqlite metadata backend"
    )

    # AWS / S3 Settings
    aws_region: str = Field(
        default="us-east-1",
        validation_alias=AliasChoices("AWS_DEFAULT_REGION", "aws_region"),
    )

    aws_access_key_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("AWS_ACCESS_KEY_ID", "aws_access_key_id"),
    )

    aws_secret_access_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("AWS_SECRET_ACCESS_KEY", "aws_secret_access_key"),
    )

    aws_endpoint_url: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("AWS_ENDPOINT_URL", "aws_endpoint_url"),
    )

    s3_bucket_name: Optional[str] = Field(
        default=None,
        description="S3 bucket holding file bytes and metadata blobs"
    )

    # IPFS Settings
    ipfs_url: Optional[str] = Field(
        default="https://rootz.digital/api/v0",
        validation_alias=AliasChoices("IPFS_URL", "ipfs_url"),
        description="IPFS HTTP API base URL (the /add endpoint is appended)"
    )

    ipfs_gateway: str = Field(
        default="https://rootz.digital",
        validation_alias=AliasChoices("IPFS_GATEWAY", "ipfs_gateway"),
        description="Public gateway used to build content URLs"
    )

    ipfs_timeout: float = Field(
        default=60.0,
        description="Timeout in seconds for IPFS API calls"
    )

    # Identity / Access Control
    permission_mode: str = Field(
        default="acl",
        description="acl (graded access level) or whitelist (named lists)"
    )

    identity_url: Optional[str] = Field(
        default=None,
        description="Base URL of the identity/ACL provider"
    )

    identity_timeout: float = Field(
        default=5.0,
        description="Timeout in seconds for identity provider calls"
    )

    identity_header: str = Field(
        default="X-Identity-Address",
        description="Request header read as the caller identity when trust_identity_header is on"
    )

    trust_identity_header: bool = Field(
        default=False,
        description="Trust identity_header as authenticated; only behind a proxy that sets it"
    )

    upload_list: str = Field(
        default="files::upload",
        description="Whitelist granting edit rights in whitelist mode"
    )

    manage_list: str = Field(
        default="files::manage",
        description="Whitelist granting admin rights in whitelist mode"
    )

    # Limits
    max_upload_bytes: int = Field(
        default=100 * 1024 * 1024,
        description="Largest accepted upload body"
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level"
    )

    @field_validator("storage_backend")
    @classmethod
    def validate_storage_backend(cls, v):
        """Validate storage backend is one of the allowed values."""
        v = v.lower()
        if v not in STORAGE_BACKENDS:
            raise ValueError(f"Invalid storage_backend: {v}. Must be one of {STORAGE_BACKENDS}")
        return v

    @field_validator("metadata_backend")
    @classmethod
    def validate_metadata_backend(cls, v):
        v = v.lower()
        if v not in METADATA_BACKENDS:
            raise ValueError(f"Invalid metadata_backend: {v}. Must be one of {METADATA_BACKENDS}")
        return v

    @field_validator("permission_mode")
    @classmethod
    def validate_permission_mode(cls, v):
        v = v.lower()
        if v not in PERMISSION_MODES:
            raise ValueError(f"Invalid permission_mode: {v}. Must be one of {PERMISSION_MODES}")
        return v

    @field_validator("mount_prefix")
    @classmethod
    def normalize_mount_prefix(cls, v):
        """Mount prefix is either empty or starts with a single slash and has no trailing one."""
        v = (v or "").strip().rstrip("/")
        if v and not v.startswith("/"):
            v = f"/{v}"
        return v

    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        populate_by_name=True,
        extra="ignore",
    )


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    This ensures we only create one Settings instance per process.
    """
    return Settings()
