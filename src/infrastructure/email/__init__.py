from src.infrastructure.email.resend import ResendEmailTransport
from src.infrastructure.email.smtp import SmtpEmailTransport

__all__ = ["ResendEmailTransport", "SmtpEmailTransport"]
