"""
Error taxonomy and FastAPI exception handlers for the Files Agent.

Every error returned to a caller carries a short, machine-stable ``kind`` and a
human-readable message. Handlers are registered in ``files_agent.main.create_app``.
"""

import logging
from typing import Any, Dict, Optional

import pydantic
from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class FilesError(Exception):
    """Base class for errors surfaced by the files service."""

    kind = "internal_error"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, **extra: Any):
        super().__init__(message)
        self.message = message
        self.extra = extra

    def to_dict(self) -> Dict[str, Any]:
        body = {"error": self.message, "kind": self.kind}
        body.update(self.extra)
        return body


class Unauthenticated(FilesError):
    kind = "unauthenticated"
    status_code = status.HTTP_401_UNAUTHORIZED

    def __init__(self, message: str = "Not authenticated", **extra: Any):
        super().__init__(message, **extra)


class Forbidden(FilesError):
    kind = "forbidden"
    status_code = status.HTTP_403_FORBIDDEN


class NotFound(FilesError):
    kind = "not_found"
    status_code = status.HTTP_404_NOT_FOUND


class InvalidInput(FilesError):
    kind = "invalid_input"
    status_code = status.HTTP_400_BAD_REQUEST


class Conflict(FilesError):
    kind = "conflict"
    status_code = status.HTTP_400_BAD_REQUEST


class FolderNotEmpty(Conflict):
    """Raised when deleting a folder that still holds files."""

    def __init__(self, path: str, file_count: int):
        super().__init__(
            f"Folder '{path}' is not empty",
            fileCount=file_count,
        )
        self.path = path
        self.file_count = file_count


class PayloadTooLarge(FilesError):
    kind = "payload_too_large"
    status_code = status.HTTP_413_REQUEST_ENTITY_TOO_LARGE


class BackendFailure(FilesError):
    kind = "backend_failure"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


class UploadFailed(BackendFailure):
    """The storage backend rejected or failed an upload. No metadata was written."""

    def __init__(self, message: str = "Upload failed", details: Optional[str] = None, **extra: Any):
        super().__init__(message, details=details or message, **extra)


class BackendUnavailable(FilesError):
    """No storage backend is configured for the requested operation."""

    kind = "backend_unavailable"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


async def handle_files_errors(request: Request, exc: FilesError) -> JSONResponse:
    """Render a ``FilesError`` as its JSON error body."""
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def handle_pydantic_validation_errors(
    request: Request, exc: pydantic.ValidationError | RequestValidationError
) -> JSONResponse:
    """Map request validation failures to a 400 ``invalid_input`` body."""
    errors = exc.errors()
    message = "Invalid request"
    if errors:
        first = errors[0]
        location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"{location}: {first.get('msg')}" if location else str(first.get("msg"))
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": message, "kind": InvalidInput.kind},
    )


async def handle_broad_exceptions(request: Request, call_next):
    """Handle any exception that goes unhandled by a more specific exception handler."""
    try:
        return await call_next(request)
    except Exception:  # pylint: disable=broad-except
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Internal server error", "kind": FilesError.kind},
        )
