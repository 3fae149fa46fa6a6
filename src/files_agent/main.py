from textwrap import dedent
import logging
from typing import Optional

import pydantic
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.routing import APIRoute
from fastapi.middleware.cors import CORSMiddleware

from files_agent.adapters.storage import BackendRegistry
from files_agent.errors import (
    FilesError,
    handle_broad_exceptions,
    handle_files_errors,
    handle_pydantic_validation_errors,
)
from files_agent.metadata import MetadataStore, create_metadata_store
from files_agent.permissions import IdentityProvider, PermissionGate, create_permission_gate
from files_agent.routers.files import router as files_router
from files_agent.routers.health import router as health_router
from files_agent.service import FilesService
from files_agent.settings import Settings, get_settings

# Set up logging
logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging once for the process."""
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)


def create_app(
    settings: Optional[Settings] = None,
    *,
    metadata: Optional[MetadataStore] = None,
    backends: Optional[BackendRegistry] = None,
    permission_gate: Optional[PermissionGate] = None,
    identity_provider: Optional[IdentityProvider] = None,
) -> FastAPI:
    """
    Create a FastAPI application.

    Collaborators default to the ones selected by ``settings``; tests and
    embedding hosts may pass their own.
    """
    settings = settings or get_settings()

    app = FastAPI(
        title="Files Agent",
        summary="Per-domain file storage with data wallet provenance",
        version=settings.version,
        description=dedent(
            """\
        Files are stored on local disk, S3 or IPFS. Every file gets a data wallet
        recording who uploaded it, when, and where its bytes live.

        | Helpful Links | Notes |
        | --- | --- |
        | [FastAPI Documentation](https://fastapi.tiangolo.com/) | |
        | [IPFS HTTP API](https://docs.ipfs.tech/reference/kubo/rpc/) | `storage_backend=ipfs` |
        """
        ),
        docs_url=f"{settings.mount_prefix}/docs",
        openapi_url=f"{settings.mount_prefix}/openapi.json",
        generate_unique_id_function=custom_generate_unique_id,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.settings = settings
    app.state.files_service = FilesService(
        metadata=metadata or create_metadata_store(settings),
        backends=backends or BackendRegistry.from_settings(settings),
        permissions=permission_gate or create_permission_gate(settings, identity_provider),
        agent_name=settings.agent_id,
        version=settings.version,
    )
    logger.info(f"Files agent ready with {settings.storage_backend} storage")

    app.include_router(files_router, prefix=settings.mount_prefix, tags=["files"])
    app.include_router(health_router, prefix=settings.mount_prefix, tags=["status"])

    app.add_exception_handler(FilesError, handle_files_errors)
    app.add_exception_handler(
        exc_class_or_status_code=pydantic.ValidationError,
        handler=handle_pydantic_validation_errors,
    )
    app.add_exception_handler(RequestValidationError, handle_pydantic_validation_errors)
    app.middleware("http")(handle_broad_exceptions)

    return app


def custom_generate_unique_id(route: APIRoute):
    """
    Generate prettier `operationId`s in the OpenAPI schema.

    These become the function names in generated client SDKs.
    """
    return f"{route.tags[0]}-{route.name}"


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    configure_logging(settings.log_level)
    uvicorn.run(create_app(settings), host="0.0.0.0", port=8000)
