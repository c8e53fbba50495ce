"""Authentication and tenant authorization for API Gateway handlers."""

import logging
from dataclasses import dataclass, field
from typing import Any

from pagestore_common.exceptions import UnauthenticatedError, UnauthorizedError

logger = logging.getLogger(__name__)

ADMIN_GROUP = "admin"
TENANTS_CLAIM = "custom:tenant_ids"
GROUPS_CLAIM = "cognito:groups"


@dataclass
class RequestIdentity:
    """Authenticated caller resolved for one tenant."""

    tenant_id: str
    actor_id: str
    groups: list[str] = field(default_factory=list)

    @property
    def is_admin(self) -> bool:
        return ADMIN_GROUP in self.groups


def _split_claim(value: Any) -> list[str]:
    # Cognito flattens list claims to "a,b" or "[a b]" depending on the authorizer
    if isinstance(value, list):
        return [str(v).strip() for v in value if str(v).strip()]
    if not value:
        return []
    text = str(value).strip().strip("[]")
    return [part.strip() for part in text.replace(" ", ",").split(",") if part.strip()]


def get_claims(event: dict[str, Any]) -> dict[str, Any]:
    """Extract Cognito claims from an API Gateway proxy event."""
    authorizer = (event.get("requestContext") or {}).get("authorizer") or {}
    claims = authorizer.get("claims")
    if claims is None:
        # HTTP API (v2) JWT authorizers nest claims under "jwt"
        claims = (authorizer.get("jwt") or {}).get("claims")
    return claims or {}


def get_request_identity(event: dict[str, Any], tenant_id: str | None) -> RequestIdentity:
    """
    Resolve the caller and check access to a tenant.

    Args:
        event: API Gateway proxy event with authorizer claims
        tenant_id: Tenant the request acts on

    Returns:
        RequestIdentity for the tenant

    Raises:
        UnauthenticatedError: No authenticated subject on the request
        UnauthorizedError: Caller may not act on the tenant
        ValueError: tenant_id missing
    """
    claims = get_claims(event)
    actor_id = claims.get("sub") or claims.get("username")
    if not actor_id:
        raise UnauthenticatedError("Authentication required")

    if not tenant_id:
        raise ValueError("tenant_id is required")

    groups = _split_claim(claims.get(GROUPS_CLAIM))
    identity = RequestIdentity(tenant_id=str(tenant_id), actor_id=str(actor_id), groups=groups)

    if identity.is_admin:
        return identity

    allowed = _split_claim(claims.get(TENANTS_CLAIM))
    if identity.tenant_id not in allowed:
        logger.info(f"Actor {actor_id} denied access to tenant {tenant_id}")
        raise UnauthorizedError(f"No access to tenant {tenant_id}")

    return identity


def get_actor_id(event: dict[str, Any]) -> str:
    """Return the authenticated subject, for routes that are not tenant scoped."""
    claims = get_claims(event)
    actor_id = claims.get("sub") or claims.get("username")
    if not actor_id:
        raise UnauthenticatedError("Authentication required")
    return str(actor_id)
