import logging
from typing import Iterable, Optional, Protocol

from src.core.workflow.errors import ForbiddenError, ProfileNotFoundError, UnauthenticatedError
from src.core.workflow.models import AuthUser, RequestContext, Role
from src.core.workflow.repository import QuoteWorkflowRepository

logger = logging.getLogger(__name__)

_ROLE_ALIASES: dict[str, Role] = {
    "LEVEL1": "SALES",
    "LEVEL_1": "SALES",
    "LEVEL2": "SALES",
    "LEVEL_2": "SALES",
    "SALES": "SALES",
    "LEVEL3": "ADMIN",
    "LEVEL_3": "ADMIN",
    "ADMIN": "ADMIN",
    "FINANCE": "FINANCE",
    "MASTER": "MASTER",
}

_LEAST_PRIVILEGED_ROLE: Role = "SALES"


class AuthProvider(Protocol):
    def get_user(self, token: str) -> Optional[AuthUser]: ...


def normalize_role(raw_role: Optional[str]) -> Role:
    """Map stored role spellings onto the four workflow roles.

    Unknown or empty values resolve to SALES and are never elevated.
    """
    key = str(raw_role or "").strip().upper()
    role = _ROLE_ALIASES.get(key)
    if role is None:
        if key:
            logger.warning(
                "identity.unrecognized_role",
                extra={"extra_fields": {"raw_role": key, "resolved_role": _LEAST_PRIVILEGED_ROLE}},
            )
        return _LEAST_PRIVILEGED_ROLE
    return role


def assert_role(context: RequestContext, allowed: Iterable[Role]) -> None:
    if context.role not in set(allowed):
        raise ForbiddenError("Insufficient role for this action")


def bearer_token(authorization: Optional[str]) -> str:
    if not authorization:
        raise UnauthenticatedError("Missing Authorization header")
    scheme, _, credentials = authorization.strip().partition(" ")
    token = credentials.strip() if scheme.lower() == "bearer" else authorization.strip()
    if not token:
        raise UnauthenticatedError("Missing Authorization header")
    return token


class IdentityResolver:
    def __init__(self, *, auth_provider: AuthProvider, repository: QuoteWorkflowRepository) -> None:
        self._auth_provider = auth_provider
        self._repository = repository

    def resolve(self, authorization: Optional[str]) -> RequestContext:
        token = bearer_token(authorization)
        user = self._auth_provider.get_user(token)
        if user is None:
            raise UnauthenticatedError("Invalid or expired token")

        profile = self._repository.get_profile(user_id=user.id)
        if profile is None:
            raise ProfileNotFoundError("Profile not found")

        full_name = f"{profile.first_name or ''} {profile.last_name or ''}".strip()
        return RequestContext(
            user_id=profile.id,
            role=normalize_role(profile.role),
            email=user.email or profile.email,
            full_name=full_name or profile.email,
        )
