from typing import Annotated, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from src.api.dependencies import get_quote_workflow_repository, get_request_context
from src.api.observability import bind_workflow_log_context
from src.api.routers import workflow_config
from src.api.routers.workflow_http_errors import raise_workflow_http_exception
from src.core.workflow import NotificationDispatcher, QuoteWorkflowError, QuoteWorkflowService
from src.core.workflow.models import (
    AdminDecisionRequest,
    ClaimQuoteRequest,
    EmailTemplateResponse,
    EmailTemplateUpdateRequest,
    FinanceDecisionRequest,
    FinanceMarginLimitResponse,
    FinanceMarginLimitUpdateRequest,
    QuoteEventsResponse,
    QuoteWorkflowResponse,
    QuoteWorkflowSupportabilityConfigResponse,
    ReassignQuoteRequest,
    RequestContext,
    SubmitQuoteRequest,
)
from src.core.workflow.repository import QuoteWorkflowRepository

router = APIRouter(prefix="/quote-workflow", tags=["Quote Workflow"])

_SERVICE: Optional[QuoteWorkflowService] = None


def get_quote_workflow_service(
    repository: Annotated[
        QuoteWorkflowRepository, Depends(get_quote_workflow_repository)
    ] = None,
) -> QuoteWorkflowService:
    global _SERVICE
    if _SERVICE is None:
        _SERVICE = QuoteWorkflowService(
            repository=repository,
            notifications=NotificationDispatcher(
                repository=repository,
                transports=workflow_config.build_email_transports(),
                app_url=workflow_config.app_url(),
            ),
            status_emails_enabled=workflow_config.status_emails_enabled(),
        )
    return _SERVICE


def reset_quote_workflow_service_for_tests() -> None:
    global _SERVICE
    _SERVICE = None


def _assert_support_apis_enabled() -> None:
    if not workflow_config.support_apis_enabled():
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="QUOTE_WORKFLOW_SUPPORT_APIS_DISABLED",
        )


ContextDep = Annotated[RequestContext, Depends(get_request_context)]
ServiceDep = Annotated[QuoteWorkflowService, Depends(get_quote_workflow_service)]


@router.post(
    "/submit",
    response_model=QuoteWorkflowResponse,
    status_code=status.HTTP_200_OK,
    summary="Submit Quote",
    description="Moves a draft quote owned by the caller (or any quote, for MASTER) to `submitted`.",
)
def submit_quote(
    payload: SubmitQuoteRequest,
    context: ContextDep,
    service: ServiceDep,
) -> QuoteWorkflowResponse:
    bind_workflow_log_context(quote_id=payload.quote_id)
    try:
        quote = service.submit(context=context, quote_id=payload.quote_id)
    except QuoteWorkflowError as exc:
        raise_workflow_http_exception(exc)
    return QuoteWorkflowResponse(quote=quote)


@router.post(
    "/claim",
    response_model=QuoteWorkflowResponse,
    status_code=status.HTTP_200_OK,
    summary="Claim Quote Review Lane",
    description=(
        "Assigns the caller as reviewer for the admin or finance lane. Uses a conditional "
        "update when the datastore supports it; otherwise falls back to a non-atomic write."
    ),
)
def claim_quote(
    payload: ClaimQuoteRequest,
    context: ContextDep,
    service: ServiceDep,
) -> QuoteWorkflowResponse:
    bind_workflow_log_context(quote_id=payload.quote_id, review_lane=payload.lane)
    try:
        quote = service.claim(context=context, quote_id=payload.quote_id, lane=payload.lane)
    except QuoteWorkflowError as exc:
        raise_workflow_http_exception(exc)
    return QuoteWorkflowResponse(quote=quote)


@router.post(
    "/admin-decision",
    response_model=QuoteWorkflowResponse,
    status_code=status.HTTP_200_OK,
    summary="Record Admin Decision",
    description=(
        "Approves, rejects, returns for revision, or routes a quote in admin review to finance. "
        "Routing to finance captures the margin guardrail snapshot and notifies finance users."
    ),
)
def record_admin_decision(
    payload: AdminDecisionRequest,
    context: ContextDep,
    service: ServiceDep,
) -> QuoteWorkflowResponse:
    bind_workflow_log_context(quote_id=payload.quote_id)
    try:
        quote = service.admin_decision(context=context, payload=payload)
    except QuoteWorkflowError as exc:
        raise_workflow_http_exception(exc)
    return QuoteWorkflowResponse(quote=quote)


@router.post(
    "/finance-decision",
    response_model=QuoteWorkflowResponse,
    status_code=status.HTTP_200_OK,
    summary="Record Finance Decision",
    description=(
        "Approves or rejects a quote in finance review. Approval below the finance margin "
        "limit is refused with 422."
    ),
)
def record_finance_decision(
    payload: FinanceDecisionRequest,
    context: ContextDep,
    service: ServiceDep,
) -> QuoteWorkflowResponse:
    bind_workflow_log_context(quote_id=payload.quote_id)
    try:
        quote = service.finance_decision(context=context, payload=payload)
    except QuoteWorkflowError as exc:
        raise_workflow_http_exception(exc)
    return QuoteWorkflowResponse(quote=quote)


@router.post(
    "/reassign",
    response_model=QuoteWorkflowResponse,
    status_code=status.HTTP_200_OK,
    summary="Reassign Quote",
    description="MASTER-only reassignment of the owner, admin reviewer, or finance reviewer.",
)
def reassign_quote(
    payload: ReassignQuoteRequest,
    context: ContextDep,
    service: ServiceDep,
) -> QuoteWorkflowResponse:
    bind_workflow_log_context(quote_id=payload.quote_id)
    try:
        quote = service.reassign(context=context, payload=payload)
    except QuoteWorkflowError as exc:
        raise_workflow_http_exception(exc)
    return QuoteWorkflowResponse(quote=quote)


@router.get(
    "/finance-margin-limit",
    response_model=FinanceMarginLimitResponse,
    status_code=status.HTTP_200_OK,
    summary="Get Finance Margin Limit",
    description="Returns the configured finance margin floor, or the 22% USD default.",
)
def get_finance_margin_limit(
    context: ContextDep,
    service: ServiceDep,
) -> FinanceMarginLimitResponse:
    return FinanceMarginLimitResponse(value=service.get_finance_margin_limit(context=context))


@router.put(
    "/finance-margin-limit",
    response_model=FinanceMarginLimitResponse,
    status_code=status.HTTP_200_OK,
    summary="Update Finance Margin Limit",
)
def update_finance_margin_limit(
    payload: FinanceMarginLimitUpdateRequest,
    context: ContextDep,
    service: ServiceDep,
) -> FinanceMarginLimitResponse:
    try:
        value = service.update_finance_margin_limit(context=context, payload=payload)
    except QuoteWorkflowError as exc:
        raise_workflow_http_exception(exc)
    return FinanceMarginLimitResponse(value=value)


@router.get(
    "/email-template",
    response_model=EmailTemplateResponse,
    status_code=status.HTTP_200_OK,
    summary="Get Email Template",
    description="Returns the stored template, creating a generic fallback when none exists.",
)
def get_email_template(
    context: ContextDep,
    service: ServiceDep,
    template_type: Annotated[
        Optional[str],
        Query(alias="type", description="Template type.", examples=["quote_approved"]),
    ] = None,
) -> EmailTemplateResponse:
    try:
        template = service.get_email_template(context=context, template_type=template_type)
    except QuoteWorkflowError as exc:
        raise_workflow_http_exception(exc)
    return EmailTemplateResponse(template=template)


@router.put(
    "/email-template",
    response_model=EmailTemplateResponse,
    status_code=status.HTTP_200_OK,
    summary="Update Email Template",
)
def update_email_template(
    payload: EmailTemplateUpdateRequest,
    context: ContextDep,
    service: ServiceDep,
) -> EmailTemplateResponse:
    try:
        template = service.update_email_template(context=context, payload=payload)
    except QuoteWorkflowError as exc:
        raise_workflow_http_exception(exc)
    return EmailTemplateResponse(template=template)


@router.get(
    "/events",
    response_model=QuoteEventsResponse,
    status_code=status.HTTP_200_OK,
    summary="Get Quote Workflow Events",
    description="Returns the append-only audit timeline for one quote, oldest first.",
)
def get_quote_events(
    context: ContextDep,
    service: ServiceDep,
    quote_id: Annotated[
        str,
        Query(alias="quoteId", min_length=1, examples=["Q-2026-0001"]),
    ],
) -> QuoteEventsResponse:
    _assert_support_apis_enabled()
    bind_workflow_log_context(quote_id=quote_id)
    try:
        events = service.list_events(context=context, quote_id=quote_id)
    except QuoteWorkflowError as exc:
        raise_workflow_http_exception(exc)
    return QuoteEventsResponse(events=events)


@router.get(
    "/supportability/config",
    response_model=QuoteWorkflowSupportabilityConfigResponse,
    status_code=status.HTTP_200_OK,
    summary="Get Quote Workflow Supportability Configuration",
    description=(
        "Returns backend selection and initialization status for operational diagnostics "
        "without direct database access."
    ),
)
def get_quote_workflow_supportability_config() -> QuoteWorkflowSupportabilityConfigResponse:
    _assert_support_apis_enabled()
    backend_error: Optional[str] = None
    backend_ready = True
    try:
        workflow_config.build_repository()
    except RuntimeError as exc:
        backend_ready = False
        backend_error = workflow_config.normalize_backend_init_error(str(exc))
    except Exception:
        backend_ready = False
        backend_error = workflow_config.POSTGRES_CONNECTION_FAILED

    return QuoteWorkflowSupportabilityConfigResponse(
        store_backend=workflow_config.quote_workflow_store_backend_name(),
        backend_ready=backend_ready,
        backend_init_error=backend_error,
        auth_backend=workflow_config.auth_backend_name(),
        status_emails_enabled=workflow_config.status_emails_enabled(),
        support_apis_enabled=workflow_config.support_apis_enabled(),
    )
