from typing import Optional

from fastapi import Request

from files_agent.service import FilesService, resolve_domain
from files_agent.settings import Settings


def get_files_service(request: Request) -> FilesService:
    """Files service dependency."""
    return request.app.state.files_service


def get_domain(request: Request) -> str:
    """Tenant domain for the request, derived from its hostname."""
    return resolve_domain(request.url.hostname)


def get_identity(request: Request) -> Optional[str]:
    """
    Authenticated address of the caller, if any.

    An upstream auth middleware sets ``request.state.identity``. The configured
    identity header is only read when ``trust_identity_header`` is enabled, i.e.
    when a trusted proxy in front of the service sets it.
    """
    identity = getattr(request.state, "identity", None)
    if identity:
        return identity
    settings: Settings = request.app.state.settings
    if not settings.trust_identity_header:
        return None
    return request.headers.get(settings.identity_header) or None
