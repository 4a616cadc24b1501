"""Canonical workflow states, lane rules, and the legacy ``status`` vocabulary.

The legacy ``quotes.status`` check constraint only admits
draft/submitted/pending_approval/approved/rejected/in_process/under-review.
Workflow decisions are made on ``workflow_state`` only; the legacy value is
derived here when a row is written and read back here when a row carries no
canonical state.
"""

from typing import Optional

from src.core.workflow.models import LegacyQuoteStatus, QuoteWorkflowState, ReviewLane

TERMINAL_STATES: frozenset[str] = frozenset({"approved", "rejected"})

SUBMITTABLE_STATES: tuple[QuoteWorkflowState, ...] = ("draft", "submitted")

LEGACY_STATUS_BY_STATE: dict[QuoteWorkflowState, LegacyQuoteStatus] = {
    "draft": "draft",
    "submitted": "submitted",
    "admin_review": "under-review",
    "finance_review": "under-review",
    "approved": "approved",
    "rejected": "rejected",
    "needs_revision": "draft",
}

_STATE_BY_LEGACY_STATUS: dict[str, QuoteWorkflowState] = {
    "draft": "draft",
    "submitted": "submitted",
    "pending_approval": "submitted",
    "under-review": "admin_review",
    "in_process": "admin_review",
    "approved": "approved",
    "rejected": "rejected",
    # canonical spellings written into status by older releases
    "admin_review": "admin_review",
    "finance_review": "finance_review",
    "needs_revision": "needs_revision",
}

_LEGACY_STATUSES: frozenset[str] = frozenset(
    {"draft", "submitted", "pending_approval", "approved", "rejected", "in_process", "under-review"}
)

# (source state, target state) per review lane
CLAIM_TRANSITIONS: dict[ReviewLane, tuple[QuoteWorkflowState, QuoteWorkflowState]] = {
    "admin": ("submitted", "admin_review"),
    "finance": ("finance_review", "finance_review"),
}

CLAIM_REVIEWER_FIELDS: dict[ReviewLane, str] = {
    "admin": "admin_reviewer_id",
    "finance": "finance_reviewer_id",
}

ASSIGNMENT_FIELDS: dict[str, str] = {
    "owner": "owner_id",
    "admin": "admin_reviewer_id",
    "finance": "finance_reviewer_id",
}


def legacy_status_for(state: QuoteWorkflowState) -> LegacyQuoteStatus:
    return LEGACY_STATUS_BY_STATE[state]


def workflow_state_from_row(
    *,
    workflow_state: Optional[str],
    status: Optional[str],
    requires_finance_approval: bool = False,
) -> QuoteWorkflowState:
    if workflow_state in LEGACY_STATUS_BY_STATE:
        return workflow_state  # type: ignore[return-value]
    if status == "under-review" and requires_finance_approval:
        return "finance_review"
    if status is None:
        return "draft"
    return _STATE_BY_LEGACY_STATUS.get(status, "draft")


def legacy_status_from_row(status: Optional[str], state: QuoteWorkflowState) -> LegacyQuoteStatus:
    if status in _LEGACY_STATUSES:
        return status  # type: ignore[return-value]
    return legacy_status_for(state)
