"""Outbound quote notifications.

Templates are stored rows with ``{{var}}`` placeholders and
``{{#if var}}...{{/if}}`` blocks. Delivery goes through one of the configured
transports chosen by the ``email_service_provider`` setting. A request that
names a template which cannot be found raises; a request that cannot be
delivered because sender or provider credentials are missing is logged and
skipped.
"""

import html
import logging
import re
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Mapping, Optional, Protocol, Union

from pydantic import ValidationError

from src.core.workflow.errors import (
    BadInputError,
    EmailTemplateNotFoundError,
    EmailTransportNotConfiguredError,
    NotificationDeliveryError,
)
from src.core.workflow.identity import normalize_role
from src.core.workflow.metrics import SIDE_EFFECT_FAILURES
from src.core.workflow.models import (
    EmailAuditRecord,
    EmailSettings,
    EmailTemplateRecord,
    NotificationRequest,
    NotificationResult,
    QuoteRecord,
)
from src.core.workflow.repository import QuoteWorkflowRepository

logger = logging.getLogger(__name__)

# The stored template_type column only admits a fixed set of values.
TEMPLATE_TYPE_ALIASES: dict[str, str] = {
    "quote_admin_decision": "quote_approved",
}

DEFAULT_PROVIDER = "resend"
FALLBACK_TEMPLATE_VARIABLES = ["quote_id", "customer_name", "approved_by", "approved_date"]

_CONDITIONAL_BLOCK = re.compile(r"{{#if (\w+)}}([\s\S]*?){{/if}}")


class EmailTransport(Protocol):
    def send(
        self,
        *,
        settings: EmailSettings,
        sender: str,
        recipients: list[str],
        subject: str,
        html: str,
    ) -> None: ...


def resolve_template_type(template_type: str) -> str:
    return TEMPLATE_TYPE_ALIASES.get(template_type, template_type)


def render_template(template: str, data: Mapping[str, Any]) -> str:
    result = template
    for key, value in data.items():
        result = result.replace("{{" + key + "}}", "" if value is None else str(value))
    return _CONDITIONAL_BLOCK.sub(
        lambda match: match.group(2) if data.get(match.group(1)) else "",
        result,
    )


def load_email_settings(repository: QuoteWorkflowRepository) -> EmailSettings:
    raw = {key: value for key, value in repository.get_email_settings().items() if value is not None}
    try:
        return EmailSettings.model_validate(raw)
    except ValidationError:
        logger.warning(
            "notifications.email_settings_invalid",
            extra={"extra_fields": {"setting_keys": sorted(raw)}},
        )
        return EmailSettings(enable_notifications=False)


class EmailTemplateCatalog:
    def __init__(self, *, repository: QuoteWorkflowRepository) -> None:
        self._repository = repository

    def get_or_create(self, *, template_type: str, actor_id: str) -> EmailTemplateRecord:
        stored_type = resolve_template_type(template_type)
        existing = self._repository.get_email_template(template_type=stored_type)
        if existing is not None:
            return existing

        now = datetime.now(timezone.utc)
        return self._repository.upsert_email_template(
            EmailTemplateRecord(
                template_type=stored_type,
                subject_template="Quote {{quote_id}} decision",
                body_template="Quote {{quote_id}} status updated.",
                enabled=True,
                variables=list(FALLBACK_TEMPLATE_VARIABLES),
                updated_by=actor_id,
                updated_at=now,
                created_at=now,
            )
        )

    def save(
        self,
        *,
        template_type: str,
        subject_template: str,
        body_template: str,
        enabled: Optional[bool],
        actor_id: str,
    ) -> EmailTemplateRecord:
        stored_type = resolve_template_type(template_type)
        now = datetime.now(timezone.utc)
        existing = self._repository.get_email_template(template_type=stored_type)
        return self._repository.upsert_email_template(
            EmailTemplateRecord(
                id=existing.id if existing is not None else None,
                template_type=stored_type,
                subject_template=subject_template,
                body_template=body_template,
                enabled=enabled if enabled is not None else True,
                variables=existing.variables if existing is not None else [],
                updated_by=actor_id,
                updated_at=now,
                created_at=existing.created_at if existing is not None else now,
            )
        )

    def get_enabled(self, *, template_type: str) -> EmailTemplateRecord:
        stored_type = resolve_template_type(template_type)
        template = self._repository.get_email_template(template_type=stored_type)
        if template is None:
            raise EmailTemplateNotFoundError(f"Email template {stored_type} not found")
        if not template.enabled:
            raise EmailTemplateNotFoundError(f"Email template {stored_type} is disabled")
        return template


@dataclass(frozen=True)
class _Channel:
    settings: EmailSettings
    provider: str
    transport: EmailTransport
    sender: str


class NotificationDispatcher:
    def __init__(
        self,
        *,
        repository: QuoteWorkflowRepository,
        transports: Mapping[str, EmailTransport],
        catalog: Optional[EmailTemplateCatalog] = None,
        app_url: Optional[str] = None,
    ) -> None:
        self._repository = repository
        self._transports = dict(transports)
        self._catalog = catalog or EmailTemplateCatalog(repository=repository)
        self._app_url = app_url.rstrip("/") if app_url else None

    def send(self, request: NotificationRequest) -> NotificationResult:
        subject, body = self._resolve_content(request)
        recipients = _unique_recipients(request.to)
        channel = self._open_channel(load_email_settings(self._repository), recipients)
        if isinstance(channel, NotificationResult):
            return channel

        try:
            self._transmit(channel, recipients=recipients, subject=subject, body=body)
        except EmailTransportNotConfiguredError as exc:
            return self._skip(str(exc), recipients)

        logger.info(
            "notifications.sent",
            extra={"extra_fields": {"provider": channel.provider, "recipient_count": len(recipients)}},
        )
        return NotificationResult(status="sent", recipients=recipients)

    def notify_finance_review_required(
        self, *, quote: QuoteRecord, requester_name: Optional[str]
    ) -> NotificationResult:
        recipients = [
            profile.email
            for profile in self._repository.list_profiles()
            if normalize_role(profile.role) == "FINANCE"
        ]
        customer_name = quote.customer_name or "Unknown Customer"
        review_link = f"{self._app_url}/#admin" if self._app_url else ""
        link_html = (
            f'<p><a href="{html.escape(review_link)}">Open PowerQuote Admin Review Queue</a></p>'
            if review_link
            else ""
        )
        body = (
            '<div style="font-family:Arial,sans-serif;line-height:1.5">'
            "<p>Hello Finance team,</p>"
            f"<p>Quote <strong>{html.escape(quote.id)}</strong> requires finance approval.</p>"
            f"<p><strong>Customer:</strong> {html.escape(customer_name)}</p>"
            f"<p><strong>Routed by:</strong> {html.escape(requester_name or 'System')}</p>"
            f"{link_html}"
            "<p>Regards,<br/>PowerQuote Workflow</p>"
            "</div>"
        )
        return self.send(
            NotificationRequest(
                to=recipients,
                subject=f"Finance review required: Quote {quote.id}",
                html=body,
            )
        )

    def notify_quote_decision(
        self,
        *,
        quote: QuoteRecord,
        decision: str,
        reviewer_name: str,
        notes: Optional[str],
    ) -> NotificationResult:
        """Email the submitter and the configured notification recipients, one message each.

        Every attempted message leaves an ``email_audit_log`` row. Delivery failures
        do not stop the remaining recipients; they are raised together at the end.
        """
        approved = decision == "approved"
        template = self._catalog.get_enabled(
            template_type="quote_approved" if approved else "quote_rejected"
        )
        settings = load_email_settings(self._repository)
        submitter = (quote.submitted_by_email or "").strip()
        recipients = _unique_recipients([submitter, *settings.notification_recipients])
        channel = self._open_channel(settings, recipients)
        if isinstance(channel, NotificationResult):
            return channel

        decided_at = datetime.now(timezone.utc).isoformat()
        pdf_url = f"{self._app_url}/quote-pdf/{quote.id}" if self._app_url else ""
        template_data: dict[str, Any] = {
            "quote_id": quote.id,
            "customer_name": quote.customer_name or "Unknown Customer",
            "approved_by": reviewer_name,
            "rejected_by": reviewer_name,
            "approved_date": decided_at,
            "rejected_date": decided_at,
            "approval_notes": notes or "" if approved else "",
            "rejection_reason": "" if approved else notes or "",
            "pdf_url": pdf_url,
            "pdf_link": (
                f'<a href="{html.escape(pdf_url)}">View &amp; Download Full Quote PDF</a>'
                if pdf_url
                else ""
            ),
        }

        failed: list[str] = []
        for recipient in recipients:
            recipient_name = "Team Member"
            if recipient == submitter and quote.submitted_by_name:
                recipient_name = quote.submitted_by_name
            data = {**template_data, "recipient_name": recipient_name}
            subject = render_template(template.subject_template, data)
            body = render_template(template.body_template, data)
            error: Optional[str] = None
            try:
                self._transmit(channel, recipients=[recipient], subject=subject, body=body)
            except EmailTransportNotConfiguredError as exc:
                return self._skip(str(exc), recipients)
            except NotificationDeliveryError as exc:
                error = str(exc.__cause__ or exc)
                failed.append(recipient)
            self._record_delivery(
                EmailAuditRecord(
                    id=f"eal_{uuid.uuid4().hex[:12]}",
                    quote_id=quote.id,
                    template_type=template.template_type,
                    recipient_email=recipient,
                    recipient_name=recipient_name,
                    subject=subject,
                    body=body,
                    status="failed" if error else "sent",
                    error_message=error,
                    sent_at=None if error else datetime.now(timezone.utc),
                    created_at=datetime.now(timezone.utc),
                )
            )

        if failed:
            raise NotificationDeliveryError(
                f"Email delivery via {channel.provider} failed for {len(failed)} of "
                f"{len(recipients)} recipients"
            )
        logger.info(
            "notifications.sent",
            extra={
                "extra_fields": {
                    "provider": channel.provider,
                    "recipient_count": len(recipients),
                    "quote_id": quote.id,
                }
            },
        )
        return NotificationResult(status="sent", recipients=recipients)

    def _open_channel(
        self, settings: EmailSettings, recipients: list[str]
    ) -> Union[_Channel, NotificationResult]:
        if not recipients:
            return self._skip("no recipients", recipients)
        if not settings.enable_notifications:
            logger.info("notifications.disabled")
            return NotificationResult(status="skipped", recipients=recipients, reason="disabled")
        if not settings.smtp_from_email:
            return self._skip("smtp_from_email is not configured", recipients)

        provider = (settings.email_service_provider or DEFAULT_PROVIDER).strip().lower()
        transport = self._transports.get(provider)
        if transport is None:
            return self._skip(f"unsupported email provider {provider}", recipients)
        return _Channel(
            settings=settings,
            provider=provider,
            transport=transport,
            sender=f"{settings.smtp_from_name} <{settings.smtp_from_email}>",
        )

    def _transmit(
        self, channel: _Channel, *, recipients: list[str], subject: str, body: str
    ) -> None:
        try:
            channel.transport.send(
                settings=channel.settings,
                sender=channel.sender,
                recipients=recipients,
                subject=subject,
                html=body,
            )
        except (EmailTransportNotConfiguredError, NotificationDeliveryError):
            raise
        except Exception as exc:
            raise NotificationDeliveryError(
                f"Email delivery via {channel.provider} failed"
            ) from exc

    def _record_delivery(self, record: EmailAuditRecord) -> None:
        try:
            self._repository.append_email_audit(record)
        except Exception as exc:
            SIDE_EFFECT_FAILURES.labels(effect="email_audit").inc()
            logger.warning(
                "notifications.email_audit_failed",
                extra={
                    "extra_fields": {
                        "quote_id": record.quote_id,
                        "status": record.status,
                        "error": str(exc),
                    }
                },
            )

    def _resolve_content(self, request: NotificationRequest) -> tuple[str, str]:
        if request.template_type:
            template = self._catalog.get_enabled(template_type=request.template_type)
            return (
                render_template(template.subject_template, request.template_data),
                render_template(template.body_template, request.template_data),
            )
        if not request.subject or not request.html:
            raise BadInputError("subject and html are required without templateType")
        return request.subject, request.html

    def _skip(self, reason: str, recipients: list[str]) -> NotificationResult:
        logger.warning(
            "notifications.skipped",
            extra={"extra_fields": {"reason": reason, "recipient_count": len(recipients)}},
        )
        return NotificationResult(status="skipped", recipients=recipients, reason=reason)


def _unique_recipients(addresses: list[str]) -> list[str]:
    seen: list[str] = []
    for address in addresses:
        normalized = str(address or "").strip()
        if normalized and normalized not in seen:
            seen.append(normalized)
    return seen
