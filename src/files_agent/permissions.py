"""
Permission gate: maps an identity and hostname to read/edit/admin rights.

Two strategies, picked by ``settings.permission_mode``:
- ``acl``: the identity provider returns a numeric access level.
  Level 2 grants edit, level 3 grants admin.
- ``whitelist``: membership in the upload list grants edit, membership in
  the manage list grants admin.

Read access is always granted. If the caller is anonymous or the identity
provider cannot be reached the gate falls back to read-only.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional
from urllib.parse import quote

import requests

from files_agent.schemas import Permissions
from files_agent.settings import Settings

logger = logging.getLogger(__name__)

EDIT_LEVEL = 2
ADMIN_LEVEL = 3


class ProviderUnavailable(Exception):
    """The identity provider is not configured or did not answer."""


class IdentityProvider(ABC):
    """Client for the external identity/ACL collaborator."""

    @abstractmethod
    def check_access(self, agent_id: str, identity: str, hostname: str) -> Dict[str, Any]:
        """Return at least ``{"level": int}`` for the identity on this host."""

    @abstractmethod
    def is_listed(self, identity: str, list_name: str) -> bool:
        """Whether the identity is on the named whitelist."""


class HttpIdentityProvider(IdentityProvider):
    """Calls the identity provider's HTTP API with ``requests``."""

    def __init__(self, base_url: Optional[str], timeout: float = 5.0,
                 session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/") if base_url else None
        self.timeout = timeout
        self.session = session or requests.Session()

    def _url(self, path: str) -> str:
        if not self.base_url:
            raise ProviderUnavailable("Identity provider URL not configured")
        return f"{self.base_url}{path}"

    def check_access(self, agent_id: str, identity: str, hostname: str) -> Dict[str, Any]:
        url = self._url("/access")
        try:
            response = self.session.post(
                url,
                json={"agentId": agent_id, "address": identity, "hostname": hostname},
                timeout=self.timeout,
            )
            response.raise_for_status()
            return response.json()
        except (requests.exceptions.RequestException, ValueError) as e:
            raise ProviderUnavailable(f"Access check failed: {str(e)}") from e

    def is_listed(self, identity: str, list_name: str) -> bool:
        url = self._url(f"/lists/{quote(list_name, safe='')}/{quote(identity, safe='')}")
        try:
            response = self.session.get(url, timeout=self.timeout)
            if response.status_code == 404:
                return False
            response.raise_for_status()
            return bool(response.json().get("listed", False))
        except (requests.exceptions.RequestException, ValueError, AttributeError) as e:
            raise ProviderUnavailable(f"List lookup failed: {str(e)}") from e


class PermissionGate(ABC):
    """Resolve the rights of ``identity`` on ``hostname``."""

    def check(self, identity: Optional[str], hostname: str) -> Permissions:
        if not identity:
            return Permissions()
        try:
            return self._resolve(identity, hostname)
        except Exception as e:  # pylint: disable=broad-except
            logger.warning(f"Permission check failed for {identity} on {hostname}, using read-only: {str(e)}")
            return Permissions()

    @abstractmethod
    def _resolve(self, identity: str, hostname: str) -> Permissions:
        ...


class AclPermissionGate(PermissionGate):
    """Graded roles from a numeric access level."""

    def __init__(self, provider: IdentityProvider, agent_id: str):
        self.provider = provider
        self.agent_id = agent_id

    def _resolve(self, identity: str, hostname: str) -> Permissions:
        result = self.provider.check_access(self.agent_id, identity, hostname) or {}
        level = int(result.get("level") or 0)
        return Permissions(
            read=True,
            edit=level >= EDIT_LEVEL,
            admin=level >= ADMIN_LEVEL,
        )


class WhitelistPermissionGate(PermissionGate):
    """Binary rights from membership in two named lists."""

    def __init__(self, provider: IdentityProvider, upload_list: str, manage_list: str):
        self.provider = provider
        self.upload_list = upload_list
        self.manage_list = manage_list

    def _resolve(self, identity: str, hostname: str) -> Permissions:
        return Permissions(
            read=True,
            edit=self.provider.is_listed(identity, self.upload_list),
            admin=self.provider.is_listed(identity, self.manage_list),
        )


def create_permission_gate(settings: Settings, provider: Optional[IdentityProvider] = None) -> PermissionGate:
    """Build the gate selected by ``settings.permission_mode``."""
    provider = provider or HttpIdentityProvider(settings.identity_url, timeout=settings.identity_timeout)
    if settings.permission_mode == "whitelist":
        logger.info(f"Using whitelist permissions: upload={settings.upload_list} manage={settings.manage_list}")
        return WhitelistPermissionGate(provider, settings.upload_list, settings.manage_list)
    logger.info(f"Using graded ACL permissions for agent: {settings.agent_id}")
    return AclPermissionGate(provider, settings.agent_id)
