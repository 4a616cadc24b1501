from copy import deepcopy
from datetime import datetime
from threading import Lock
from typing import Any, Mapping, Optional

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
from src.core.workflow.repository import ClaimPrimitiveUnavailableError, QuoteWorkflowRepository
from src.core.workflow.states import CLAIM_REVIEWER_FIELDS, legacy_status_for

_DERIVED_QUOTE_FIELDS = frozenset({"id", "status"})


class InMemoryQuoteWorkflowRepository(QuoteWorkflowRepository):
    def __init__(self, *, atomic_claims: bool = True, audit_table_provisioned: bool = True) -> None:
        self._lock = Lock()
        self._atomic_claims = atomic_claims
        self._audit_table_provisioned = audit_table_provisioned
        self._quotes: dict[str, QuoteRecord] = {}
        self._events: dict[str, list[QuoteEventRecord]] = {}
        self._email_audit: list[EmailAuditRecord] = []
        self._settings: dict[str, AppSettingRecord] = {}
        self._templates: dict[str, EmailTemplateRecord] = {}
        self._profiles: dict[str, ProfileRecord] = {}
        self._email_settings: dict[str, Any] = {}
        self._template_sequence = 0

    def get_quote(self, *, quote_id: str) -> Optional[QuoteRecord]:
        with self._lock:
            quote = self._quotes.get(quote_id)
            return deepcopy(quote) if quote is not None else None

    def create_quote(self, quote: QuoteRecord) -> None:
        with self._lock:
            self._quotes[quote.id] = deepcopy(quote)

    def update_quote_fields(
        self,
        *,
        quote_id: str,
        changes: Mapping[str, Any],
        expected_state: Optional[QuoteWorkflowState] = None,
    ) -> Optional[QuoteRecord]:
        update = dict(changes)
        unknown = sorted(
            field
            for field in update
            if field not in QuoteRecord.model_fields or field in _DERIVED_QUOTE_FIELDS
        )
        if unknown:
            raise ValueError(f"Unsupported quote fields: {', '.join(unknown)}")
        if "workflow_state" in update:
            update["status"] = legacy_status_for(update["workflow_state"])
        with self._lock:
            quote = self._quotes.get(quote_id)
            if quote is None:
                return None
            if expected_state is not None and quote.workflow_state != expected_state:
                return None
            updated = quote.model_copy(update=deepcopy(update))
            self._quotes[quote_id] = updated
            return deepcopy(updated)

    def claim_quote(
        self,
        *,
        quote_id: str,
        lane: ReviewLane,
        actor_id: str,
        expected_state: QuoteWorkflowState,
        target_state: QuoteWorkflowState,
        claimed_at: datetime,
    ) -> Optional[QuoteRecord]:
        if not self._atomic_claims:
            raise ClaimPrimitiveUnavailableError("conditional claim update is not available")
        reviewer_field = CLAIM_REVIEWER_FIELDS[lane]
        with self._lock:
            quote = self._quotes.get(quote_id)
            if quote is None or quote.workflow_state != expected_state:
                return None
            reviewer = getattr(quote, reviewer_field)
            if reviewer is not None and reviewer != actor_id:
                return None
            claimed = quote.model_copy(
                update={
                    "workflow_state": target_state,
                    "status": legacy_status_for(target_state),
                    reviewer_field: actor_id,
                    "reviewed_by": actor_id,
                    "reviewed_at": claimed_at,
                    "updated_at": claimed_at,
                }
            )
            self._quotes[quote_id] = deepcopy(claimed)
            return claimed

    def append_event(self, event: QuoteEventRecord) -> None:
        if not self._audit_table_provisioned:
            raise RuntimeError('relation "quote_events" does not exist')
        with self._lock:
            events = self._events.setdefault(event.quote_id, [])
            events.append(deepcopy(event))

    def list_events(self, *, quote_id: str) -> list[QuoteEventRecord]:
        with self._lock:
            events = self._events.get(quote_id, [])
            return [deepcopy(event) for event in events]

    def append_email_audit(self, record: EmailAuditRecord) -> None:
        with self._lock:
            self._email_audit.append(deepcopy(record))

    def list_email_audit(self, *, quote_id: str) -> list[EmailAuditRecord]:
        with self._lock:
            return [deepcopy(record) for record in self._email_audit if record.quote_id == quote_id]

    def get_setting(self, *, key: str) -> Optional[AppSettingRecord]:
        with self._lock:
            setting = self._settings.get(key)
            return deepcopy(setting) if setting is not None else None

    def upsert_setting(self, setting: AppSettingRecord) -> None:
        with self._lock:
            self._settings[setting.key] = deepcopy(setting)

    def get_email_template(self, *, template_type: str) -> Optional[EmailTemplateRecord]:
        with self._lock:
            template = self._templates.get(template_type)
            return deepcopy(template) if template is not None else None

    def upsert_email_template(self, template: EmailTemplateRecord) -> EmailTemplateRecord:
        with self._lock:
            stored = deepcopy(template)
            if stored.id is None:
                existing = self._templates.get(stored.template_type)
                if existing is not None:
                    stored.id = existing.id
                else:
                    self._template_sequence += 1
                    stored.id = f"et_{self._template_sequence:03d}"
            self._templates[stored.template_type] = stored
            return deepcopy(stored)

    def get_profile(self, *, user_id: str) -> Optional[ProfileRecord]:
        with self._lock:
            profile = self._profiles.get(user_id)
            return deepcopy(profile) if profile is not None else None

    def list_profiles(self) -> list[ProfileRecord]:
        with self._lock:
            return [deepcopy(profile) for profile in self._profiles.values()]

    def save_profile(self, profile: ProfileRecord) -> None:
        with self._lock:
            self._profiles[profile.id] = deepcopy(profile)

    def get_email_settings(self) -> dict[str, Any]:
        with self._lock:
            return deepcopy(self._email_settings)

    def save_email_setting(self, *, key: str, value: Any) -> None:
        with self._lock:
            self._email_settings[key] = deepcopy(value)
