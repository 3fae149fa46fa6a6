from typing import Optional
from urllib.parse import quote

from fastapi import (
    APIRouter,
    Depends,
    File,
    Form,
    Path,
    Query,
    Request,
    UploadFile,
    status
)
from fastapi.responses import RedirectResponse, Response
from starlette.concurrency import run_in_threadpool

from files_agent.dependencies import get_domain, get_files_service, get_identity
from files_agent.errors import InvalidInput, PayloadTooLarge
from files_agent.schemas import (
    CreateFolderRequest,
    CreateFolderResponse,
    DeleteFileResponse,
    DeleteFolderResponse,
    FileRecord,
    ListFilesResponse,
)
from files_agent.service import FilesService
from files_agent.settings import Settings

ERROR_RESPONSES = {
    status.HTTP_400_BAD_REQUEST: {"description": "Invalid input or non-empty folder."},
    status.HTTP_401_UNAUTHORIZED: {"description": "No authenticated identity."},
    status.HTTP_403_FORBIDDEN: {"description": "Insufficient permission."},
}

router = APIRouter()


def content_disposition(filename: str) -> str:
    """Attachment header for ``filename``; names that need escaping use the RFC 6266 ``filename*`` form."""
    quoted = quote(filename)
    if quoted != filename:
        return f"attachment; filename*=utf-8''{quoted}"
    return f'attachment; filename="{filename}"'


@router.post("/api/folder", response_model=CreateFolderResponse, responses=ERROR_RESPONSES)
async def create_folder(
    body: CreateFolderRequest,
    domain: str = Depends(get_domain),
    identity: Optional[str] = Depends(get_identity),
    service: FilesService = Depends(get_files_service),
) -> CreateFolderResponse:
    """Create a folder under `parentFolder` (root when empty)."""
    folder = await run_in_threadpool(
        service.create_folder, domain, body.name, body.parent_folder, identity
    )
    return CreateFolderResponse(folder=folder)


@router.delete("/api/folder", response_model=DeleteFolderResponse, responses=ERROR_RESPONSES)
async def delete_folder(
    path: str = Query(..., description="Path of the folder to delete"),
    domain: str = Depends(get_domain),
    identity: Optional[str] = Depends(get_identity),
    service: FilesService = Depends(get_files_service),
) -> DeleteFolderResponse:
    """Delete an empty folder. Requires admin rights."""
    deleted = await run_in_threadpool(service.delete_folder, domain, path, identity)
    return DeleteFolderResponse(deleted=deleted)


@router.get("/api/list", response_model=ListFilesResponse)
async def list_files(
    folder: str = Query("", description="Folder to list; empty for the root"),
    domain: str = Depends(get_domain),
    identity: Optional[str] = Depends(get_identity),
    service: FilesService = Depends(get_files_service),
) -> ListFilesResponse:
    """List the files in a folder and its immediate subfolders."""
    return await run_in_threadpool(service.list, domain, folder, identity)


@router.post(
    "/api/upload",
    response_model=FileRecord,
    responses={
        **ERROR_RESPONSES,
        status.HTTP_413_REQUEST_ENTITY_TOO_LARGE: {"description": "File exceeds the upload limit."},
        status.HTTP_500_INTERNAL_SERVER_ERROR: {"description": "Storage backend rejected the upload."},
    },
)
async def upload_file(
    request: Request,
    file: Optional[UploadFile] = File(None),
    folder: str = Form(""),
    domain: str = Depends(get_domain),
    identity: Optional[str] = Depends(get_identity),
    service: FilesService = Depends(get_files_service),
) -> FileRecord:
    """Upload a file and create its data wallet."""
    if file is None:
        raise InvalidInput("No file uploaded")

    settings: Settings = request.app.state.settings
    if file.size is not None and file.size > settings.max_upload_bytes:
        raise PayloadTooLarge(f"File exceeds the {settings.max_upload_bytes} byte limit")

    file_bytes = await file.read(settings.max_upload_bytes + 1)
    if len(file_bytes) > settings.max_upload_bytes:
        raise PayloadTooLarge(f"File exceeds the {settings.max_upload_bytes} byte limit")

    return await run_in_threadpool(
        service.upload, domain, file_bytes, file.filename, file.content_type, folder, identity
    )


@router.get(
    "/api/file/{file_id}/download",
    responses={
        status.HTTP_404_NOT_FOUND: {"description": "File not found for the given `file_id`."},
        status.HTTP_200_OK: {
            "description": "The file content.",
            "content": {
                "application/octet-stream": {
                    "schema": {"type": "string", "format": "binary"},
                },
            },
        },
        status.HTTP_307_TEMPORARY_REDIRECT: {"description": "Redirect to a content gateway URL."},
    },
)
async def download_file(
    file_id: str = Path(..., description="The ID of the file to download"),
    domain: str = Depends(get_domain),
    identity: Optional[str] = Depends(get_identity),
    service: FilesService = Depends(get_files_service),
) -> Response:
    """Stream a file back, or redirect to where it lives."""
    target = await run_in_threadpool(service.download, domain, file_id, identity)
    if target.redirect_url:
        return RedirectResponse(target.redirect_url)

    return Response(
        content=target.content,
        media_type=target.media_type,
        headers={
            "Content-Disposition": content_disposition(target.filename),
            "Content-Length": str(target.size),
        },
    )


@router.delete(
    "/api/file/{file_id}",
    response_model=DeleteFileResponse,
    responses={
        **ERROR_RESPONSES,
        status.HTTP_404_NOT_FOUND: {"description": "File not found for the given `file_id`."},
    },
)
async def delete_file(
    file_id: str = Path(..., description="The ID of the file to delete"),
    domain: str = Depends(get_domain),
    identity: Optional[str] = Depends(get_identity),
    service: FilesService = Depends(get_files_service),
) -> DeleteFileResponse:
    """Delete a file. Allowed for its owner or an admin."""
    await run_in_threadpool(service.delete, domain, file_id, identity)
    return DeleteFileResponse()
