from fastapi import APIRouter, Depends
from starlette.concurrency import run_in_threadpool

from files_agent.dependencies import get_domain, get_files_service
from files_agent.schemas import StatusResponse
from files_agent.service import FilesService

router = APIRouter()

@router.get("/status", response_model=StatusResponse)
async def agent_status(
    domain: str = Depends(get_domain),
    service: FilesService = Depends(get_files_service),
) -> StatusResponse:
    """
    Diagnostic status for the requesting domain.

    Reports the agent name and version, how many files and folders the domain
    holds, and which storage backend serves it.
    """
    return await run_in_threadpool(service.status, domain)
