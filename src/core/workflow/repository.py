from datetime import datetime
from typing import Any, Mapping, Optional, Protocol

from src.core.workflow.models import (
    AppSettingRecord,
    EmailAuditRecord,
    EmailTemplateRecord,
    ProfileRecord,
    QuoteEventRecord,
    QuoteRecord,
    QuoteWorkflowState,
    ReviewLane,
)


class ClaimPrimitiveUnavailableError(RuntimeError):
    """Raised by stores that cannot perform a conditional single-row claim update."""


class QuoteWorkflowRepository(Protocol):
    def get_quote(self, *, quote_id: str) -> Optional[QuoteRecord]: ...

    def create_quote(self, quote: QuoteRecord) -> None: ...

    def update_quote_fields(
        self,
        *,
        quote_id: str,
        changes: Mapping[str, Any],
        expected_state: Optional[QuoteWorkflowState] = None,
    ) -> Optional[QuoteRecord]:
        """Write only ``changes``; return None when the quote is gone or has left ``expected_state``.

        A ``workflow_state`` change also rewrites the legacy ``status`` column.
        """
        ...

    def claim_quote(
        self,
        *,
        quote_id: str,
        lane: ReviewLane,
        actor_id: str,
        expected_state: QuoteWorkflowState,
        target_state: QuoteWorkflowState,
        claimed_at: datetime,
    ) -> Optional[QuoteRecord]: ...

    def append_event(self, event: QuoteEventRecord) -> None: ...

    def list_events(self, *, quote_id: str) -> list[QuoteEventRecord]: ...

    def append_email_audit(self, record: EmailAuditRecord) -> None: ...

    def list_email_audit(self, *, quote_id: str) -> list[EmailAuditRecord]: ...

    def get_setting(self, *, key: str) -> Optional[AppSettingRecord]: ...

    def upsert_setting(self, setting: AppSettingRecord) -> None: ...

    def get_email_template(self, *, template_type: str) -> Optional[EmailTemplateRecord]: ...

    def upsert_email_template(self, template: EmailTemplateRecord) -> EmailTemplateRecord: ...

    def get_profile(self, *, user_id: str) -> Optional[ProfileRecord]: ...

    def list_profiles(self) -> list[ProfileRecord]: ...

    def save_profile(self, profile: ProfileRecord) -> None: ...

    def get_email_settings(self) -> dict[str, Any]: ...

    def save_email_setting(self, *, key: str, value: Any) -> None: ...
