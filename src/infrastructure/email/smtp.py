import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional

from src.core.workflow.errors import EmailTransportNotConfiguredError
from src.core.workflow.models import EmailSettings

IMPLICIT_TLS_PORT = 465


class SmtpEmailTransport:
    """Sends through the SMTP host named in ``email_settings``.

    Port 465 uses implicit TLS; other ports upgrade with STARTTLS when
    ``smtp_secure`` is set.
    """

    def __init__(
        self,
        *,
        username: Optional[str],
        password: Optional[str],
        timeout_seconds: float = 30.0,
    ) -> None:
        self._username = username
        self._password = password
        self._timeout = timeout_seconds

    def send(
        self,
        *,
        settings: EmailSettings,
        sender: str,
        recipients: list[str],
        subject: str,
        html: str,
    ) -> None:
        if not settings.smtp_host:
            raise EmailTransportNotConfiguredError("smtp_host not configured")

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = sender
        msg["To"] = ", ".join(recipients)
        msg.attach(MIMEText(html, "html"))

        if settings.smtp_port == IMPLICIT_TLS_PORT:
            client = smtplib.SMTP_SSL(settings.smtp_host, settings.smtp_port, timeout=self._timeout)
        else:
            client = smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=self._timeout)
        with client as smtp:
            if settings.smtp_secure and settings.smtp_port != IMPLICIT_TLS_PORT:
                smtp.starttls()
            if self._username and self._password:
                smtp.login(self._username, self._password)
            smtp.send_message(msg)
