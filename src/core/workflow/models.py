from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

Role = Literal["SALES", "ADMIN", "FINANCE", "MASTER"]

QuoteWorkflowState = Literal[
    "draft",
    "submitted",
    "admin_review",
    "finance_review",
    "approved",
    "rejected",
    "needs_revision",
]

LegacyQuoteStatus = Literal[
    "draft",
    "submitted",
    "pending_approval",
    "approved",
    "rejected",
    "in_process",
    "under-review",
]

ReviewLane = Literal["admin", "finance"]
AssignmentLane = Literal["owner", "admin", "finance"]
AdminDecision = Literal["approved", "rejected", "needs_revision", "requires_finance"]
NotificationStatus = Literal["sent", "skipped"]
EmailDeliveryStatus = Literal["sent", "failed"]


class RequestContext(BaseModel):
    user_id: str = Field(description="Authenticated user id.", examples=["u_sales_1"])
    role: Role = Field(description="Normalized caller role.", examples=["SALES"])
    email: str = Field(description="Caller email address.", examples=["sales@example.com"])
    full_name: str = Field(description="Caller display name.", examples=["Sam Sales"])


class AuthUser(BaseModel):
    id: str = Field(description="Auth provider user id.", examples=["u_sales_1"])
    email: Optional[str] = Field(
        default=None, description="Email known to the auth provider.", examples=["a@b.com"]
    )


class ProfileRecord(BaseModel):
    id: str = Field(description="Internal profile id (equals auth user id).", examples=["u_1"])
    role: str = Field(description="Stored role, possibly a legacy spelling.", examples=["LEVEL_1"])
    email: str = Field(description="Profile email.", examples=["sales@example.com"])
    first_name: Optional[str] = Field(default=None, description="First name.", examples=["Sam"])
    last_name: Optional[str] = Field(default=None, description="Last name.", examples=["Sales"])


class FinanceThresholdSnapshot(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    margin_percent: Optional[float] = Field(
        default=None,
        alias="marginPercent",
        description="Quote margin at routing time; null when unknown.",
        examples=[18.5],
    )
    limit_percent: float = Field(
        alias="limitPercent",
        description="Finance margin floor captured at routing time.",
        examples=[22],
    )
    breached: bool = Field(
        description="Whether the margin was below the floor (true when margin unknown).",
        examples=[True],
    )
    captured_at: datetime = Field(
        alias="capturedAt",
        description="UTC timestamp when the snapshot was captured.",
        examples=["2026-03-01T10:00:00+00:00"],
    )


class QuoteRecord(BaseModel):
    id: str = Field(description="Quote identifier.", examples=["Q-2026-0001"])
    customer_name: Optional[str] = Field(
        default=None, description="Customer the quote is for.", examples=["Acme Utilities"]
    )
    user_id: Optional[str] = Field(
        default=None, description="User who created the quote.", examples=["u_sales_1"]
    )
    owner_id: Optional[str] = Field(
        default=None, description="User allowed to submit the quote.", examples=["u_sales_1"]
    )
    admin_reviewer_id: Optional[str] = Field(
        default=None, description="Admin lane reviewer.", examples=["u_admin_1"]
    )
    finance_reviewer_id: Optional[str] = Field(
        default=None, description="Finance lane reviewer.", examples=["u_fin_1"]
    )
    workflow_state: QuoteWorkflowState = Field(
        default="draft", description="Canonical workflow state.", examples=["admin_review"]
    )
    status: LegacyQuoteStatus = Field(
        default="draft",
        description="Legacy status mirrored from workflow_state.",
        examples=["under-review"],
    )
    admin_decision_status: Optional[str] = Field(default=None, examples=["requires_finance"])
    admin_decision_notes: Optional[str] = Field(default=None, examples=["Margin too thin"])
    admin_decision_by: Optional[str] = Field(default=None, examples=["u_admin_1"])
    admin_decision_at: Optional[datetime] = Field(default=None)
    finance_decision_status: Optional[str] = Field(default=None, examples=["approved"])
    finance_decision_notes: Optional[str] = Field(default=None, examples=["Approved at 25%"])
    finance_decision_by: Optional[str] = Field(default=None, examples=["u_fin_1"])
    finance_decision_at: Optional[datetime] = Field(default=None)
    finance_threshold_snapshot: Optional[FinanceThresholdSnapshot] = Field(
        default=None,
        description="Margin guardrail snapshot captured when routed to finance.",
    )
    finance_margin_breached: bool = Field(
        default=False, description="Derived from the guardrail snapshot.", examples=[False]
    )
    requires_finance_approval: bool = Field(
        default=False, description="Whether finance must decide.", examples=[False]
    )
    submitted_at: Optional[datetime] = Field(default=None)
    submitted_by_email: Optional[str] = Field(default=None, examples=["sales@example.com"])
    submitted_by_name: Optional[str] = Field(default=None, examples=["Sam Sales"])
    reviewed_by: Optional[str] = Field(
        default=None, description="Last claiming reviewer (legacy column).", examples=["u_1"]
    )
    reviewed_at: Optional[datetime] = Field(default=None)
    created_at: Optional[datetime] = Field(default=None)
    updated_at: Optional[datetime] = Field(default=None)


class QuoteEventRecord(BaseModel):
    event_id: str = Field(description="Internal event identifier.", examples=["qev_001"])
    quote_id: str = Field(description="Quote identifier.", examples=["Q-2026-0001"])
    event_type: str = Field(description="Event type.", examples=["quote_admin_decision"])
    actor_id: str = Field(description="Actor user id.", examples=["u_admin_1"])
    actor_role: Role = Field(description="Normalized actor role.", examples=["ADMIN"])
    previous_state: Optional[str] = Field(default=None, examples=["admin_review"])
    new_state: Optional[str] = Field(default=None, examples=["finance_review"])
    payload: Optional[Dict[str, Any]] = Field(
        default=None, description="Free-form event payload.", examples=[{"decision": "approved"}]
    )
    created_at: datetime = Field(description="UTC event timestamp.")


class AppSettingRecord(BaseModel):
    key: str = Field(description="Setting key.", examples=["workflow.finance_margin_limit"])
    value: Dict[str, Any] = Field(description="Setting JSON value.", examples=[{"percent": 22}])
    updated_by: Optional[str] = Field(default=None, examples=["u_admin_1"])
    updated_at: Optional[datetime] = Field(default=None)


class FinanceMarginLimit(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    percent: float = Field(description="Minimum acceptable margin percent.", examples=[22])
    currency: str = Field(default="USD", description="Currency of the guardrail.", examples=["USD"])
    updated_by: Optional[str] = Field(default=None, alias="updatedBy", examples=["u_admin_1"])
    updated_at: Optional[datetime] = Field(default=None, alias="updatedAt")


class EmailTemplateRecord(BaseModel):
    id: Optional[str] = Field(default=None, description="Template row id.", examples=["et_001"])
    template_type: str = Field(description="Unique template type.", examples=["quote_approved"])
    subject_template: str = Field(examples=["Quote {{quote_id}} approved"])
    body_template: str = Field(examples=["{{#if approval_notes}}Notes: {{approval_notes}}{{/if}}"])
    enabled: bool = Field(default=True, examples=[True])
    variables: List[str] = Field(default_factory=list, examples=[["quote_id", "customer_name"]])
    updated_by: Optional[str] = Field(default=None, examples=["u_admin_1"])
    updated_at: Optional[datetime] = Field(default=None)
    created_at: Optional[datetime] = Field(default=None)


class EmailSettings(BaseModel):
    enable_notifications: bool = Field(default=True)
    smtp_from_email: Optional[str] = Field(default=None, examples=["quotes@example.com"])
    smtp_from_name: str = Field(default="PowerQuote")
    email_service_provider: str = Field(default="resend", examples=["resend", "smtp"])
    smtp_host: Optional[str] = Field(default=None, examples=["smtp.example.com"])
    smtp_port: int = Field(default=587)
    smtp_secure: bool = Field(default=True)
    notification_recipients: List[str] = Field(default_factory=list)


class EmailAuditRecord(BaseModel):
    id: str = Field(description="Audit row id.", examples=["eal_3f2a9c1d0b7e"])
    quote_id: str = Field(examples=["Q-2026-0001"])
    template_type: str = Field(examples=["quote_approved"])
    recipient_email: str = Field(examples=["ops@example.com"])
    recipient_name: Optional[str] = Field(default=None, examples=["Team Member"])
    subject: str
    body: str
    status: EmailDeliveryStatus = Field(examples=["sent"])
    error_message: Optional[str] = Field(default=None)
    sent_at: Optional[datetime] = Field(default=None)
    created_at: datetime


class NotificationRequest(BaseModel):
    to: List[str] = Field(description="Recipient addresses.", examples=[["fin@example.com"]])
    subject: Optional[str] = Field(default=None, examples=["Finance review required"])
    html: Optional[str] = Field(default=None, examples=["<p>Hello</p>"])
    template_type: Optional[str] = Field(default=None, examples=["quote_approved"])
    template_data: Dict[str, Any] = Field(default_factory=dict)


class NotificationResult(BaseModel):
    status: NotificationStatus = Field(examples=["sent"])
    recipients: List[str] = Field(default_factory=list)
    reason: Optional[str] = Field(default=None, examples=["RESEND_API_KEY not configured"])


class _CamelRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class SubmitQuoteRequest(_CamelRequest):
    quote_id: str = Field(alias="quoteId", min_length=1, examples=["Q-2026-0001"])


class ClaimQuoteRequest(_CamelRequest):
    quote_id: str = Field(alias="quoteId", min_length=1, examples=["Q-2026-0001"])
    lane: ReviewLane = Field(description="Review lane to claim.", examples=["admin"])


class AdminDecisionRequest(_CamelRequest):
    quote_id: str = Field(alias="quoteId", min_length=1, examples=["Q-2026-0001"])
    decision: AdminDecision = Field(examples=["requires_finance"])
    notes: Optional[str] = Field(default=None, examples=["Below target margin"])
    margin_percent: Optional[float] = Field(default=None, alias="marginPercent", examples=[18])
    finance_limit_percent: Optional[float] = Field(
        default=None, alias="financeLimitPercent", examples=[22]
    )


class FinanceDecisionRequest(_CamelRequest):
    quote_id: str = Field(alias="quoteId", min_length=1, examples=["Q-2026-0001"])
    decision: str = Field(
        min_length=1,
        description="`approved` approves the quote; any other value rejects it.",
        examples=["approved"],
    )
    notes: Optional[str] = Field(default=None, examples=["Pricing accepted"])
    margin_percent: Optional[float] = Field(default=None, alias="marginPercent", examples=[25])
    finance_limit_percent: Optional[float] = Field(
        default=None, alias="financeLimitPercent", examples=[22]
    )


class ReassignQuoteRequest(_CamelRequest):
    quote_id: str = Field(alias="quoteId", min_length=1, examples=["Q-2026-0001"])
    lane: AssignmentLane = Field(examples=["finance"])
    target_user_id: Optional[str] = Field(
        default=None,
        alias="targetUserId",
        description="New assignee; null clears the assignment.",
        examples=["u_fin_9"],
    )


class FinanceMarginLimitUpdateRequest(_CamelRequest):
    percent: float = Field(description="New margin floor percent.", examples=[30])
    currency: Optional[str] = Field(default=None, examples=["EUR"])


class EmailTemplateUpdateRequest(_CamelRequest):
    template_type: str = Field(alias="templateType", min_length=1, examples=["quote_rejected"])
    subject_template: str = Field(alias="subjectTemplate", min_length=1)
    body_template: str = Field(alias="bodyTemplate", min_length=1)
    enabled: Optional[bool] = Field(default=None, examples=[True])


class QuoteWorkflowResponse(BaseModel):
    success: bool = Field(default=True, examples=[True])
    quote: QuoteRecord = Field(description="Quote row after the transition.")


class FinanceMarginLimitResponse(BaseModel):
    success: bool = Field(default=True, examples=[True])
    value: FinanceMarginLimit = Field(examples=[{"percent": 22, "currency": "USD"}])


class EmailTemplateResponse(BaseModel):
    success: bool = Field(default=True, examples=[True])
    template: EmailTemplateRecord


class QuoteEventsResponse(BaseModel):
    success: bool = Field(default=True, examples=[True])
    events: List[QuoteEventRecord] = Field(default_factory=list)


class QuoteWorkflowSupportabilityConfigResponse(BaseModel):
    store_backend: str = Field(examples=["POSTGRES"])
    backend_ready: bool = Field(examples=[True])
    backend_init_error: Optional[str] = Field(
        default=None, examples=["QUOTE_WORKFLOW_POSTGRES_DSN_REQUIRED"]
    )
    auth_backend: str = Field(examples=["HTTP"])
    status_emails_enabled: bool = Field(examples=[True])
    support_apis_enabled: bool = Field(examples=[True])
