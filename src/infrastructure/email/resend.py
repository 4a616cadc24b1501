from typing import Optional

import httpx

from src.core.workflow.errors import EmailTransportNotConfiguredError, NotificationDeliveryError
from src.core.workflow.models import EmailSettings

RESEND_API_URL = "https://api.resend.com"


class ResendEmailTransport:
    def __init__(
        self,
        *,
        api_key: Optional[str],
        base_url: str = RESEND_API_URL,
        timeout_seconds: float = 15.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self._api_key = api_key
        self._base_url = base_url
        self._timeout = httpx.Timeout(timeout_seconds)
        self._transport = transport

    def send(
        self,
        *,
        settings: EmailSettings,
        sender: str,
        recipients: list[str],
        subject: str,
        html: str,
    ) -> None:
        if not self._api_key:
            raise EmailTransportNotConfiguredError("RESEND_API_KEY not configured")
        with httpx.Client(
            base_url=self._base_url, timeout=self._timeout, transport=self._transport
        ) as client:
            response = client.post(
                "/emails",
                headers={"Authorization": f"Bearer {self._api_key}"},
                json={"from": sender, "to": recipients, "subject": subject, "html": html},
            )
        if response.status_code >= 400:
            raise NotificationDeliveryError(
                f"Resend API returned HTTP {response.status_code}: {response.text[:200]}"
            )
