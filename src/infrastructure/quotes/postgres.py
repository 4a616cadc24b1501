import json
import uuid
from contextlib import closing
from datetime import datetime
from importlib.util import find_spec
from typing import Any, Mapping, Optional

from src.core.workflow.models import (
    AppSettingRecord,
    EmailAuditRecord,
    EmailTemplateRecord,
    FinanceThresholdSnapshot,
    ProfileRecord,
    QuoteEventRecord,
    QuoteRecord,
    QuoteWorkflowState,
    ReviewLane,
)
from src.core.workflow.states import (
    CLAIM_REVIEWER_FIELDS,
    legacy_status_for,
    legacy_status_from_row,
    workflow_state_from_row,
)
from src.infrastructure.postgres_migrations import apply_postgres_migrations

_QUOTE_COLUMNS = (
    "id",
    "customer_name",
    "user_id",
    "owner_id",
    "admin_reviewer_id",
    "finance_reviewer_id",
    "workflow_state",
    "status",
    "admin_decision_status",
    "admin_decision_notes",
    "admin_decision_by",
    "admin_decision_at",
    "finance_decision_status",
    "finance_decision_notes",
    "finance_decision_by",
    "finance_decision_at",
    "finance_threshold_snapshot_json",
    "finance_margin_breached",
    "requires_finance_approval",
    "submitted_at",
    "submitted_by_email",
    "submitted_by_name",
    "reviewed_by",
    "reviewed_at",
    "created_at",
    "updated_at",
)

_QUOTE_SELECT = ",\n                ".join(_QUOTE_COLUMNS)

# Not assignable by name; status follows workflow_state and the snapshot is serialized.
_DERIVED_QUOTE_COLUMNS = frozenset({"id", "status", "finance_threshold_snapshot_json"})

_TEMPLATE_COLUMNS = """
                id,
                template_type,
                subject_template,
                body_template,
                enabled,
                variables_json,
                updated_by,
                updated_at,
                created_at
"""


class PostgresQuoteWorkflowRepository:
    def __init__(self, *, dsn: str) -> None:
        if not dsn:
            raise RuntimeError("QUOTE_WORKFLOW_POSTGRES_DSN_REQUIRED")
        if find_spec("psycopg") is None:
            raise RuntimeError("QUOTE_WORKFLOW_POSTGRES_DRIVER_MISSING")
        self._dsn = dsn
        self._init_db()

    def get_quote(self, *, quote_id: str) -> Optional[QuoteRecord]:
        query = f"""
            SELECT
                {_QUOTE_SELECT}
            FROM quotes
            WHERE id = %s
        """
        with closing(self._connect()) as connection:
            row = connection.execute(query, (quote_id,)).fetchone()
        return _to_quote(row)

    def create_quote(self, quote: QuoteRecord) -> None:
        placeholders = ", ".join(["%s"] * len(_QUOTE_COLUMNS))
        query = f"""
            INSERT INTO quotes (
                {_QUOTE_SELECT}
            ) VALUES ({placeholders})
        """
        with closing(self._connect()) as connection:
            connection.execute(query, _quote_values(quote))
            connection.commit()

    def update_quote_fields(
        self,
        *,
        quote_id: str,
        changes: Mapping[str, Any],
        expected_state: Optional[QuoteWorkflowState] = None,
    ) -> Optional[QuoteRecord]:
        columns = _quote_column_changes(changes)
        assignments = ",\n                ".join(f"{column}=%s" for column in columns)
        state_guard = ""
        params: list[Any] = [*columns.values(), quote_id]
        if expected_state is not None:
            # Rows predating workflow_state were already validated from their legacy status.
            state_guard = "AND (workflow_state = %s OR workflow_state IS NULL)"
            params.append(expected_state)
        query = f"""
            UPDATE quotes SET
                {assignments}
            WHERE id = %s
                {state_guard}
            RETURNING
                {_QUOTE_SELECT}
        """
        with closing(self._connect()) as connection:
            row = connection.execute(query, tuple(params)).fetchone()
            connection.commit()
        return _to_quote(row)

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
        reviewer_column = CLAIM_REVIEWER_FIELDS[lane]
        # Rows predating workflow_state were already validated from their legacy status.
        query = f"""
            UPDATE quotes SET
                workflow_state=%s,
                status=%s,
                {reviewer_column}=%s,
                reviewed_by=%s,
                reviewed_at=%s,
                updated_at=%s
            WHERE id = %s
                AND (workflow_state = %s OR workflow_state IS NULL)
                AND ({reviewer_column} IS NULL OR {reviewer_column} = %s)
            RETURNING
                {_QUOTE_SELECT}
        """
        claimed_at_iso = claimed_at.isoformat()
        with closing(self._connect()) as connection:
            row = connection.execute(
                query,
                (
                    target_state,
                    legacy_status_for(target_state),
                    actor_id,
                    actor_id,
                    claimed_at_iso,
                    claimed_at_iso,
                    quote_id,
                    expected_state,
                    actor_id,
                ),
            ).fetchone()
            connection.commit()
        return _to_quote(row)

    def append_event(self, event: QuoteEventRecord) -> None:
        query = """
            INSERT INTO quote_events (
                event_id,
                quote_id,
                event_type,
                actor_id,
                actor_role,
                previous_state,
                new_state,
                payload_json,
                created_at
            ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
        """
        with closing(self._connect()) as connection:
            connection.execute(
                query,
                (
                    event.event_id,
                    event.quote_id,
                    event.event_type,
                    event.actor_id,
                    event.actor_role,
                    event.previous_state,
                    event.new_state,
                    _optional_json(event.payload),
                    event.created_at.isoformat(),
                ),
            )
            connection.commit()

    def list_events(self, *, quote_id: str) -> list[QuoteEventRecord]:
        query = """
            SELECT
                event_id,
                quote_id,
                event_type,
                actor_id,
                actor_role,
                previous_state,
                new_state,
                payload_json,
                created_at
            FROM quote_events
            WHERE quote_id = %s
            ORDER BY created_at ASC, event_id ASC
        """
        with closing(self._connect()) as connection:
            rows = connection.execute(query, (quote_id,)).fetchall()
        return [_to_event(row) for row in rows]

    def append_email_audit(self, record: EmailAuditRecord) -> None:
        query = """
            INSERT INTO email_audit_log (
                id,
                quote_id,
                template_type,
                recipient_email,
                recipient_name,
                subject,
                body,
                status,
                error_message,
                sent_at,
                created_at
            ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
        """
        with closing(self._connect()) as connection:
            connection.execute(
                query,
                (
                    record.id,
                    record.quote_id,
                    record.template_type,
                    record.recipient_email,
                    record.recipient_name,
                    record.subject,
                    record.body,
                    record.status,
                    record.error_message,
                    _optional_iso(record.sent_at),
                    record.created_at.isoformat(),
                ),
            )
            connection.commit()

    def list_email_audit(self, *, quote_id: str) -> list[EmailAuditRecord]:
        query = """
            SELECT
                id,
                quote_id,
                template_type,
                recipient_email,
                recipient_name,
                subject,
                body,
                status,
                error_message,
                sent_at,
                created_at
            FROM email_audit_log
            WHERE quote_id = %s
            ORDER BY created_at ASC, id ASC
        """
        with closing(self._connect()) as connection:
            rows = connection.execute(query, (quote_id,)).fetchall()
        return [_to_email_audit(row) for row in rows]

    def get_setting(self, *, key: str) -> Optional[AppSettingRecord]:
        query = """
            SELECT key, value_json, updated_by, updated_at
            FROM app_settings
            WHERE key = %s
        """
        with closing(self._connect()) as connection:
            row = connection.execute(query, (key,)).fetchone()
        if row is None:
            return None
        return AppSettingRecord(
            key=row["key"],
            value=json.loads(row["value_json"]),
            updated_by=row["updated_by"],
            updated_at=_optional_datetime(row["updated_at"]),
        )

    def upsert_setting(self, setting: AppSettingRecord) -> None:
        query = """
            INSERT INTO app_settings (
                key,
                value_json,
                updated_by,
                updated_at
            ) VALUES (%s, %s, %s, %s)
            ON CONFLICT (key) DO UPDATE SET
                value_json=excluded.value_json,
                updated_by=excluded.updated_by,
                updated_at=excluded.updated_at
        """
        with closing(self._connect()) as connection:
            connection.execute(
                query,
                (
                    setting.key,
                    _json_dump(setting.value),
                    setting.updated_by,
                    _optional_iso(setting.updated_at),
                ),
            )
            connection.commit()

    def get_email_template(self, *, template_type: str) -> Optional[EmailTemplateRecord]:
        query = f"""
            SELECT
                {_TEMPLATE_COLUMNS}
            FROM email_templates
            WHERE template_type = %s
        """
        with closing(self._connect()) as connection:
            row = connection.execute(query, (template_type,)).fetchone()
        return _to_template(row)

    def upsert_email_template(self, template: EmailTemplateRecord) -> EmailTemplateRecord:
        query = f"""
            INSERT INTO email_templates (
                id,
                template_type,
                subject_template,
                body_template,
                enabled,
                variables_json,
                updated_by,
                updated_at,
                created_at
            ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (template_type) DO UPDATE SET
                subject_template=excluded.subject_template,
                body_template=excluded.body_template,
                enabled=excluded.enabled,
                variables_json=excluded.variables_json,
                updated_by=excluded.updated_by,
                updated_at=excluded.updated_at
            RETURNING
                {_TEMPLATE_COLUMNS}
        """
        with closing(self._connect()) as connection:
            row = connection.execute(
                query,
                (
                    template.id or f"et_{uuid.uuid4().hex[:12]}",
                    template.template_type,
                    template.subject_template,
                    template.body_template,
                    template.enabled,
                    json.dumps(template.variables),
                    template.updated_by,
                    _optional_iso(template.updated_at),
                    _optional_iso(template.created_at),
                ),
            ).fetchone()
            connection.commit()
        return _to_template(row)

    def get_profile(self, *, user_id: str) -> Optional[ProfileRecord]:
        query = """
            SELECT id, role, email, first_name, last_name
            FROM profiles
            WHERE id = %s
        """
        with closing(self._connect()) as connection:
            row = connection.execute(query, (user_id,)).fetchone()
        if row is None:
            return None
        return ProfileRecord(**row)

    def list_profiles(self) -> list[ProfileRecord]:
        query = """
            SELECT id, role, email, first_name, last_name
            FROM profiles
            ORDER BY id ASC
        """
        with closing(self._connect()) as connection:
            rows = connection.execute(query).fetchall()
        return [ProfileRecord(**row) for row in rows]

    def save_profile(self, profile: ProfileRecord) -> None:
        query = """
            INSERT INTO profiles (
                id,
                role,
                email,
                first_name,
                last_name
            ) VALUES (%s, %s, %s, %s, %s)
            ON CONFLICT (id) DO UPDATE SET
                role=excluded.role,
                email=excluded.email,
                first_name=excluded.first_name,
                last_name=excluded.last_name
        """
        with closing(self._connect()) as connection:
            connection.execute(
                query,
                (
                    profile.id,
                    profile.role,
                    profile.email,
                    profile.first_name,
                    profile.last_name,
                ),
            )
            connection.commit()

    def get_email_settings(self) -> dict[str, Any]:
        query = """
            SELECT setting_key, setting_value_json
            FROM email_settings
        """
        with closing(self._connect()) as connection:
            rows = connection.execute(query).fetchall()
        return {
            row["setting_key"]: _optional_load_json(row["setting_value_json"]) for row in rows
        }

    def save_email_setting(self, *, key: str, value: Any) -> None:
        query = """
            INSERT INTO email_settings (
                setting_key,
                setting_value_json
            ) VALUES (%s, %s)
            ON CONFLICT (setting_key) DO UPDATE SET
                setting_value_json=excluded.setting_value_json
        """
        with closing(self._connect()) as connection:
            connection.execute(query, (key, json.dumps(value)))
            connection.commit()

    def _connect(self):
        psycopg, dict_row = _import_psycopg()
        return psycopg.connect(self._dsn, row_factory=dict_row)

    def _init_db(self) -> None:
        with closing(self._connect()) as connection:
            apply_postgres_migrations(connection=connection, namespace="quote_workflow")


def _import_psycopg():
    import psycopg
    from psycopg.rows import dict_row

    return psycopg, dict_row


def _quote_values(quote: QuoteRecord) -> tuple[Any, ...]:
    snapshot = quote.finance_threshold_snapshot
    return (
        quote.id,
        quote.customer_name,
        quote.user_id,
        quote.owner_id,
        quote.admin_reviewer_id,
        quote.finance_reviewer_id,
        quote.workflow_state,
        legacy_status_for(quote.workflow_state),
        quote.admin_decision_status,
        quote.admin_decision_notes,
        quote.admin_decision_by,
        _optional_iso(quote.admin_decision_at),
        quote.finance_decision_status,
        quote.finance_decision_notes,
        quote.finance_decision_by,
        _optional_iso(quote.finance_decision_at),
        _json_dump(snapshot.model_dump(mode="json", by_alias=True)) if snapshot else None,
        quote.finance_margin_breached,
        quote.requires_finance_approval,
        _optional_iso(quote.submitted_at),
        quote.submitted_by_email,
        quote.submitted_by_name,
        quote.reviewed_by,
        _optional_iso(quote.reviewed_at),
        _optional_iso(quote.created_at),
        _optional_iso(quote.updated_at),
    )


def _quote_column_changes(changes: Mapping[str, Any]) -> dict[str, Any]:
    columns: dict[str, Any] = {}
    for field, value in changes.items():
        if field == "finance_threshold_snapshot":
            columns["finance_threshold_snapshot_json"] = (
                _json_dump(value.model_dump(mode="json", by_alias=True)) if value else None
            )
        elif field in _DERIVED_QUOTE_COLUMNS or field not in _QUOTE_COLUMNS:
            raise ValueError(f"Unsupported quote field: {field}")
        elif isinstance(value, datetime):
            columns[field] = value.isoformat()
        else:
            columns[field] = value
    if not columns:
        raise ValueError("At least one quote field must change")
    if "workflow_state" in columns:
        columns["status"] = legacy_status_for(columns["workflow_state"])
    return columns


def _optional_iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.isoformat()


def _optional_json(value: Optional[dict]) -> Optional[str]:
    if value is None:
        return None
    return _json_dump(value)


def _json_dump(value: dict) -> str:
    return json.dumps(value, separators=(",", ":"), sort_keys=True)


def _optional_datetime(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromisoformat(value)


def _optional_load_json(value: Optional[str]) -> Any:
    if value is None:
        return None
    return json.loads(value)


def _to_quote(row) -> Optional[QuoteRecord]:
    if row is None:
        return None
    requires_finance = bool(row["requires_finance_approval"])
    state = workflow_state_from_row(
        workflow_state=row["workflow_state"],
        status=row["status"],
        requires_finance_approval=requires_finance,
    )
    snapshot_json = _optional_load_json(row["finance_threshold_snapshot_json"])
    return QuoteRecord(
        id=row["id"],
        customer_name=row["customer_name"],
        user_id=row["user_id"],
        owner_id=row["owner_id"],
        admin_reviewer_id=row["admin_reviewer_id"],
        finance_reviewer_id=row["finance_reviewer_id"],
        workflow_state=state,
        status=legacy_status_from_row(row["status"], state),
        admin_decision_status=row["admin_decision_status"],
        admin_decision_notes=row["admin_decision_notes"],
        admin_decision_by=row["admin_decision_by"],
        admin_decision_at=_optional_datetime(row["admin_decision_at"]),
        finance_decision_status=row["finance_decision_status"],
        finance_decision_notes=row["finance_decision_notes"],
        finance_decision_by=row["finance_decision_by"],
        finance_decision_at=_optional_datetime(row["finance_decision_at"]),
        finance_threshold_snapshot=(
            FinanceThresholdSnapshot.model_validate(snapshot_json) if snapshot_json else None
        ),
        finance_margin_breached=bool(row["finance_margin_breached"]),
        requires_finance_approval=requires_finance,
        submitted_at=_optional_datetime(row["submitted_at"]),
        submitted_by_email=row["submitted_by_email"],
        submitted_by_name=row["submitted_by_name"],
        reviewed_by=row["reviewed_by"],
        reviewed_at=_optional_datetime(row["reviewed_at"]),
        created_at=_optional_datetime(row["created_at"]),
        updated_at=_optional_datetime(row["updated_at"]),
    )


def _to_event(row) -> QuoteEventRecord:
    return QuoteEventRecord(
        event_id=row["event_id"],
        quote_id=row["quote_id"],
        event_type=row["event_type"],
        actor_id=row["actor_id"],
        actor_role=row["actor_role"],
        previous_state=row["previous_state"],
        new_state=row["new_state"],
        payload=_optional_load_json(row["payload_json"]),
        created_at=datetime.fromisoformat(row["created_at"]),
    )


def _to_email_audit(row) -> EmailAuditRecord:
    return EmailAuditRecord(
        id=row["id"],
        quote_id=row["quote_id"],
        template_type=row["template_type"],
        recipient_email=row["recipient_email"],
        recipient_name=row["recipient_name"],
        subject=row["subject"],
        body=row["body"],
        status=row["status"],
        error_message=row["error_message"],
        sent_at=_optional_datetime(row["sent_at"]),
        created_at=datetime.fromisoformat(row["created_at"]),
    )


def _to_template(row) -> Optional[EmailTemplateRecord]:
    if row is None:
        return None
    return EmailTemplateRecord(
        id=row["id"],
        template_type=row["template_type"],
        subject_template=row["subject_template"],
        body_template=row["body_template"],
        enabled=bool(row["enabled"]),
        variables=json.loads(row["variables_json"] or "[]"),
        updated_by=row["updated_by"],
        updated_at=_optional_datetime(row["updated_at"]),
        created_at=_optional_datetime(row["created_at"]),
    )
