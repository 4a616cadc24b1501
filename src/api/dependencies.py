from typing import Annotated, Optional

from fastapi import Depends, Header, HTTPException, status

from src.api.observability import bind_workflow_log_context
from src.api.routers import workflow_config
from src.api.routers.workflow_http_errors import raise_workflow_http_exception
from src.core.workflow import IdentityResolver, QuoteWorkflowError, RequestContext
from src.core.workflow.identity import AuthProvider
from src.core.workflow.repository import QuoteWorkflowRepository

_REPOSITORY: Optional[QuoteWorkflowRepository] = None
_AUTH_PROVIDER: Optional[AuthProvider] = None


def _backend_unavailable(exc: RuntimeError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=workflow_config.normalize_backend_init_error(str(exc)),
    )


def get_quote_workflow_repository() -> QuoteWorkflowRepository:
    global _REPOSITORY
    if _REPOSITORY is None:
        try:
            _REPOSITORY = workflow_config.build_repository()
        except RuntimeError as exc:
            raise _backend_unavailable(exc) from exc
    return _REPOSITORY


def get_auth_provider() -> AuthProvider:
    global _AUTH_PROVIDER
    if _AUTH_PROVIDER is None:
        try:
            _AUTH_PROVIDER = workflow_config.build_auth_provider()
        except RuntimeError as exc:
            raise _backend_unavailable(exc) from exc
    return _AUTH_PROVIDER


def get_request_context(
    authorization: Annotated[
        Optional[str],
        Header(
            alias="Authorization",
            description="Bearer token issued by the auth provider.",
            examples=["Bearer eyJhbGciOi..."],
        ),
    ] = None,
    auth_provider: Annotated[AuthProvider, Depends(get_auth_provider)] = None,
    repository: Annotated[
        QuoteWorkflowRepository, Depends(get_quote_workflow_repository)
    ] = None,
) -> RequestContext:
    resolver = IdentityResolver(auth_provider=auth_provider, repository=repository)
    try:
        context = resolver.resolve(authorization)
    except QuoteWorkflowError as exc:
        raise_workflow_http_exception(exc)
    bind_workflow_log_context(actor_id=context.user_id, actor_role=context.role)
    return context


def reset_quote_workflow_dependencies_for_tests() -> None:
    global _REPOSITORY
    global _AUTH_PROVIDER
    _REPOSITORY = None
    _AUTH_PROVIDER = None
