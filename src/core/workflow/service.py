import logging
from datetime import datetime, timezone
from typing import Any, Optional

from src.core.workflow.audit import AuditLogWriter
from src.core.workflow.errors import (
    BadInputError,
    ForbiddenError,
    GuardrailViolationError,
    InvalidStateError,
    QuoteNotFoundError,
)
from src.core.workflow.guardrails import FinanceMarginLimitStore
from src.core.workflow.identity import assert_role
from src.core.workflow.metrics import NON_ATOMIC_CLAIMS, SIDE_EFFECT_FAILURES, WORKFLOW_TRANSITIONS
from src.core.workflow.models import (
    AdminDecisionRequest,
    EmailTemplateRecord,
    EmailTemplateUpdateRequest,
    FinanceDecisionRequest,
    FinanceMarginLimit,
    FinanceMarginLimitUpdateRequest,
    FinanceThresholdSnapshot,
    QuoteEventRecord,
    QuoteRecord,
    QuoteWorkflowState,
    ReassignQuoteRequest,
    RequestContext,
    ReviewLane,
)
from src.core.workflow.notifications import EmailTemplateCatalog, NotificationDispatcher
from src.core.workflow.repository import ClaimPrimitiveUnavailableError, QuoteWorkflowRepository
from src.core.workflow.states import (
    ASSIGNMENT_FIELDS,
    CLAIM_REVIEWER_FIELDS,
    CLAIM_TRANSITIONS,
    SUBMITTABLE_STATES,
)

logger = logging.getLogger(__name__)

_CLAIM_ROLES = {
    "admin": ("ADMIN", "MASTER"),
    "finance": ("FINANCE", "MASTER"),
}

_CLAIM_STATE_MESSAGES = {
    "admin": "Quote is not awaiting admin review",
    "finance": "Quote is not waiting for finance",
}

_TEMPLATE_EDITOR_ROLES = ("ADMIN", "FINANCE", "MASTER")


class QuoteWorkflowService:
    """Quote approval state machine.

    Every operation re-reads the quote, then writes only the columns it changes.
    State transitions are conditional on the state that was read, so a stale
    decision fails instead of overwriting a newer one. The state mutation is
    committed first; audit and notification effects run afterwards and only
    ever log on failure.
    """

    def __init__(
        self,
        *,
        repository: QuoteWorkflowRepository,
        notifications: Optional[NotificationDispatcher] = None,
        status_emails_enabled: bool = True,
    ) -> None:
        self._repository = repository
        self._audit = AuditLogWriter(repository=repository)
        self._guardrails = FinanceMarginLimitStore(repository=repository)
        self._templates = EmailTemplateCatalog(repository=repository)
        self._notifications = notifications
        self._status_emails_enabled = status_emails_enabled

    def submit(self, *, context: RequestContext, quote_id: str) -> QuoteRecord:
        assert_role(context, ("SALES", "ADMIN", "MASTER"))
        quote = self._load_quote(quote_id)

        if quote.owner_id and quote.owner_id != context.user_id and context.role != "MASTER":
            raise ForbiddenError("Only the owner or a master operator can submit this quote")
        if quote.workflow_state not in SUBMITTABLE_STATES:
            raise InvalidStateError(
                "Quote must be in draft to submit",
                required_state="draft",
            )

        now = _utc_now()
        changes: dict[str, Any] = {
            "submitted_at": now,
            "submitted_by_email": context.email,
            "submitted_by_name": context.full_name,
            "updated_at": now,
        }
        if quote.owner_id is None:
            changes["owner_id"] = context.user_id
        updated = self._apply(quote, "submitted", changes)
        self._record(
            context=context,
            quote_id=quote_id,
            event_type="quote_submitted",
            previous_state=quote.workflow_state,
            new_state=updated.workflow_state,
            payload={"owner_id": updated.owner_id},
        )
        return updated

    def claim(self, *, context: RequestContext, quote_id: str, lane: ReviewLane) -> QuoteRecord:
        if lane not in CLAIM_TRANSITIONS:
            raise BadInputError("Lane must be admin or finance")
        assert_role(context, _CLAIM_ROLES[lane])
        quote = self._load_quote(quote_id)
        source_state, target_state = CLAIM_TRANSITIONS[lane]
        self._check_claimable(quote, lane=lane, actor_id=context.user_id)

        now = _utc_now()
        atomic = True
        try:
            claimed = self._repository.claim_quote(
                quote_id=quote_id,
                lane=lane,
                actor_id=context.user_id,
                expected_state=source_state,
                target_state=target_state,
                claimed_at=now,
            )
        except ClaimPrimitiveUnavailableError:
            # Known limitation: two reviewers racing through this path can both succeed.
            atomic = False
            NON_ATOMIC_CLAIMS.labels(lane=lane).inc()
            logger.warning(
                "workflow.claim_non_atomic_fallback",
                extra={"extra_fields": {"quote_id": quote_id, "lane": lane}},
            )
            claimed = self._repository.update_quote_fields(
                quote_id=quote_id,
                changes={
                    "workflow_state": target_state,
                    CLAIM_REVIEWER_FIELDS[lane]: context.user_id,
                    "reviewed_by": context.user_id,
                    "reviewed_at": now,
                    "updated_at": now,
                },
            )

        if claimed is None:
            current = self._load_quote(quote_id)
            self._check_claimable(current, lane=lane, actor_id=context.user_id)
            raise InvalidStateError("Unable to claim quote", required_state=source_state)

        self._record(
            context=context,
            quote_id=quote_id,
            event_type=f"quote_claimed_{lane}",
            previous_state=quote.workflow_state,
            new_state=claimed.workflow_state,
            payload={"lane": lane, "atomic": atomic},
        )
        return claimed

    def admin_decision(
        self, *, context: RequestContext, payload: AdminDecisionRequest
    ) -> QuoteRecord:
        assert_role(context, ("ADMIN", "MASTER"))
        quote = self._load_quote(payload.quote_id)
        if quote.workflow_state != "admin_review":
            raise InvalidStateError("Quote is not in admin review", required_state="admin_review")

        now = _utc_now()
        changes: dict[str, Any] = {
            "admin_decision_status": payload.decision,
            "admin_decision_notes": payload.notes,
            "admin_decision_by": context.user_id,
            "admin_decision_at": now,
            "updated_at": now,
        }
        if payload.decision == "requires_finance":
            limit = payload.finance_limit_percent
            if limit is None:
                limit = self._guardrails.get().percent
            margin = payload.margin_percent
            # Unknown margin routes to finance as breached.
            breached = margin is None or margin < limit
            snapshot = FinanceThresholdSnapshot(
                margin_percent=margin,
                limit_percent=limit,
                breached=breached,
                captured_at=now,
            )
            changes.update(
                finance_threshold_snapshot=snapshot,
                finance_margin_breached=breached,
                requires_finance_approval=True,
            )
            next_state: QuoteWorkflowState = "finance_review"
        elif payload.decision == "approved":
            changes.update(requires_finance_approval=False, finance_margin_breached=False)
            next_state = "approved"
        else:
            changes.update(requires_finance_approval=False)
            next_state = payload.decision

        updated = self._apply(quote, next_state, changes)

        recorded_limit = payload.finance_limit_percent
        if recorded_limit is None and updated.finance_threshold_snapshot is not None:
            recorded_limit = updated.finance_threshold_snapshot.limit_percent
        self._record(
            context=context,
            quote_id=quote.id,
            event_type="quote_admin_decision",
            previous_state=quote.workflow_state,
            new_state=updated.workflow_state,
            payload={
                "decision": payload.decision,
                "notes": payload.notes,
                "marginPercent": payload.margin_percent,
                "financeLimitPercent": recorded_limit,
            },
        )

        if next_state == "finance_review":
            self._notify_finance(context=context, quote=updated)
        else:
            self._notify_decision(
                context=context, quote=updated, decision=next_state, notes=payload.notes
            )
        return updated

    def finance_decision(
        self, *, context: RequestContext, payload: FinanceDecisionRequest
    ) -> QuoteRecord:
        assert_role(context, ("FINANCE", "MASTER"))
        quote = self._load_quote(payload.quote_id)
        if quote.workflow_state != "finance_review":
            raise InvalidStateError(
                "Quote is not waiting for finance", required_state="finance_review"
            )

        snapshot = quote.finance_threshold_snapshot
        limit = payload.finance_limit_percent
        if limit is None:
            limit = snapshot.limit_percent if snapshot is not None else self._guardrails.get().percent
        margin = payload.margin_percent
        if margin is None and snapshot is not None:
            margin = snapshot.margin_percent

        approved = payload.decision == "approved"
        if approved and margin is not None and margin < limit:
            raise GuardrailViolationError("Margin is still below the finance guardrail")

        now = _utc_now()
        next_state: QuoteWorkflowState = "approved" if approved else "rejected"
        updated = self._apply(
            quote,
            next_state,
            {
                "finance_decision_status": payload.decision,
                "finance_decision_notes": payload.notes,
                "finance_decision_by": context.user_id,
                "finance_decision_at": now,
                "finance_margin_breached": margin is None or margin < limit,
                "requires_finance_approval": False,
                "updated_at": now,
            },
        )
        self._record(
            context=context,
            quote_id=quote.id,
            event_type="quote_finance_decision",
            previous_state=quote.workflow_state,
            new_state=updated.workflow_state,
            payload={
                "decision": payload.decision,
                "notes": payload.notes,
                "marginPercent": margin,
                "financeLimitPercent": limit,
            },
        )
        self._notify_decision(context=context, quote=updated, decision=next_state, notes=payload.notes)
        return updated

    def reassign(self, *, context: RequestContext, payload: ReassignQuoteRequest) -> QuoteRecord:
        assert_role(context, ("MASTER",))
        field = ASSIGNMENT_FIELDS.get(payload.lane)
        if field is None:
            raise BadInputError("lane must be owner, admin, or finance")
        quote = self._load_quote(payload.quote_id)

        updated = self._repository.update_quote_fields(
            quote_id=quote.id,
            changes={field: payload.target_user_id, "updated_at": _utc_now()},
        )
        if updated is None:
            raise QuoteNotFoundError()
        self._record(
            context=context,
            quote_id=quote.id,
            event_type=f"quote_reassigned_{payload.lane}",
            previous_state=quote.workflow_state,
            new_state=updated.workflow_state,
            payload={"targetUserId": payload.target_user_id, "lane": payload.lane},
        )
        return updated

    def get_finance_margin_limit(self, *, context: RequestContext) -> FinanceMarginLimit:
        return self._guardrails.get()

    def update_finance_margin_limit(
        self, *, context: RequestContext, payload: FinanceMarginLimitUpdateRequest
    ) -> FinanceMarginLimit:
        assert_role(context, ("ADMIN", "FINANCE", "MASTER"))
        value = self._guardrails.set(
            percent=payload.percent,
            currency=payload.currency,
            updated_by=context.user_id,
        )
        logger.info(
            "workflow.finance_margin_limit_updated",
            extra={
                "extra_fields": {
                    "percent": value.percent,
                    "currency": value.currency,
                    "updated_by": context.user_id,
                }
            },
        )
        return value

    def get_email_template(
        self, *, context: RequestContext, template_type: Optional[str]
    ) -> EmailTemplateRecord:
        assert_role(context, _TEMPLATE_EDITOR_ROLES)
        if not template_type:
            raise BadInputError("type query parameter is required")
        return self._templates.get_or_create(template_type=template_type, actor_id=context.user_id)

    def update_email_template(
        self, *, context: RequestContext, payload: EmailTemplateUpdateRequest
    ) -> EmailTemplateRecord:
        assert_role(context, _TEMPLATE_EDITOR_ROLES)
        return self._templates.save(
            template_type=payload.template_type,
            subject_template=payload.subject_template,
            body_template=payload.body_template,
            enabled=payload.enabled,
            actor_id=context.user_id,
        )

    def list_events(self, *, context: RequestContext, quote_id: str) -> list[QuoteEventRecord]:
        assert_role(context, _TEMPLATE_EDITOR_ROLES)
        self._load_quote(quote_id)
        return self._repository.list_events(quote_id=quote_id)

    def _apply(
        self, quote: QuoteRecord, state: QuoteWorkflowState, changes: dict[str, Any]
    ) -> QuoteRecord:
        """Move ``quote`` to ``state`` if nobody else moved it since it was read."""
        updated = self._repository.update_quote_fields(
            quote_id=quote.id,
            changes={**changes, "workflow_state": state},
            expected_state=quote.workflow_state,
        )
        if updated is None:
            current = self._load_quote(quote.id)
            raise InvalidStateError(
                f"Quote moved to {current.workflow_state} while this request was in flight",
                required_state=quote.workflow_state,
            )
        return updated

    def _load_quote(self, quote_id: str) -> QuoteRecord:
        quote = self._repository.get_quote(quote_id=quote_id)
        if quote is None:
            raise QuoteNotFoundError()
        return quote

    def _check_claimable(self, quote: QuoteRecord, *, lane: ReviewLane, actor_id: str) -> None:
        source_state, _ = CLAIM_TRANSITIONS[lane]
        if quote.workflow_state != source_state:
            raise InvalidStateError(_CLAIM_STATE_MESSAGES[lane], required_state=source_state)
        reviewer = getattr(quote, CLAIM_REVIEWER_FIELDS[lane])
        if reviewer is not None and reviewer != actor_id:
            raise InvalidStateError(
                "Quote is already claimed by another reviewer", required_state=source_state
            )

    def _record(
        self,
        *,
        context: RequestContext,
        quote_id: str,
        event_type: str,
        previous_state: Optional[str],
        new_state: Optional[str],
        payload: dict[str, Any],
    ) -> None:
        WORKFLOW_TRANSITIONS.labels(event_type=event_type).inc()
        logger.info(
            "workflow.transition",
            extra={
                "extra_fields": {
                    "quote_id": quote_id,
                    "event_type": event_type,
                    "actor_id": context.user_id,
                    "previous_state": previous_state,
                    "new_state": new_state,
                }
            },
        )
        self._audit.append(
            quote_id=quote_id,
            event_type=event_type,
            actor=context,
            previous_state=previous_state,
            new_state=new_state,
            payload=payload,
        )

    def _notify_finance(self, *, context: RequestContext, quote: QuoteRecord) -> None:
        if self._notifications is None:
            return
        try:
            self._notifications.notify_finance_review_required(
                quote=quote, requester_name=context.full_name
            )
        except Exception as exc:
            _notification_failed(quote_id=quote.id, kind="finance_review", exc=exc)

    def _notify_decision(
        self,
        *,
        context: RequestContext,
        quote: QuoteRecord,
        decision: str,
        notes: Optional[str],
    ) -> None:
        if self._notifications is None or not self._status_emails_enabled:
            return
        if decision not in ("approved", "rejected"):
            return
        try:
            self._notifications.notify_quote_decision(
                quote=quote,
                decision=decision,
                reviewer_name=context.full_name,
                notes=notes,
            )
        except Exception as exc:
            _notification_failed(quote_id=quote.id, kind=f"quote_{decision}", exc=exc)


def _notification_failed(*, quote_id: str, kind: str, exc: Exception) -> None:
    SIDE_EFFECT_FAILURES.labels(effect="notification").inc()
    logger.warning(
        "workflow.notification_failed",
        extra={"extra_fields": {"quote_id": quote_id, "notification": kind, "error": str(exc)}},
    )


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)
