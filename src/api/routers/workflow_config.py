import os
import warnings
from typing import Optional, cast

from src.core.workflow.identity import AuthProvider
from src.core.workflow.notifications import EmailTransport
from src.core.workflow.repository import QuoteWorkflowRepository
from src.infrastructure.auth import HttpAuthProvider, StaticTokenAuthProvider
from src.infrastructure.email import ResendEmailTransport, SmtpEmailTransport
from src.infrastructure.quotes import (
    InMemoryQuoteWorkflowRepository,
    PostgresQuoteWorkflowRepository,
)

POSTGRES_DSN_REQUIRED = "QUOTE_WORKFLOW_POSTGRES_DSN_REQUIRED"
POSTGRES_CONNECTION_FAILED = "QUOTE_WORKFLOW_POSTGRES_CONNECTION_FAILED"
AUTH_URL_REQUIRED = "QUOTE_WORKFLOW_AUTH_URL_REQUIRED"

_KNOWN_BACKEND_INIT_ERRORS = {
    POSTGRES_DSN_REQUIRED,
    POSTGRES_CONNECTION_FAILED,
    AUTH_URL_REQUIRED,
    "QUOTE_WORKFLOW_STATIC_TOKENS_JSON_INVALID",
}


def env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def quote_workflow_store_backend_name() -> str:
    backend = os.getenv("QUOTE_WORKFLOW_STORE_BACKEND", "IN_MEMORY").strip().upper()
    if backend == "POSTGRES":
        return "POSTGRES"
    warnings.warn(
        (
            "QUOTE_WORKFLOW_STORE_BACKEND legacy runtime backend (IN_MEMORY) is deprecated; "
            "use POSTGRES."
        ),
        DeprecationWarning,
        stacklevel=2,
    )
    return "IN_MEMORY"


def quote_workflow_postgres_dsn() -> str:
    return os.getenv("QUOTE_WORKFLOW_POSTGRES_DSN", "").strip()


def auth_backend_name() -> str:
    backend = os.getenv("QUOTE_WORKFLOW_AUTH_BACKEND", "HTTP").strip().upper()
    return "STATIC" if backend == "STATIC" else "HTTP"


def auth_base_url() -> str:
    return (
        os.getenv("QUOTE_WORKFLOW_AUTH_URL") or os.getenv("SUPABASE_URL") or ""
    ).strip()


def auth_service_key() -> Optional[str]:
    key = os.getenv("QUOTE_WORKFLOW_AUTH_SERVICE_KEY") or os.getenv("SUPABASE_SERVICE_ROLE_KEY")
    return key.strip() if key else None


def app_url() -> Optional[str]:
    domain = os.getenv("APP_DOMAIN", "").strip().rstrip("/")
    if not domain:
        return None
    if domain.startswith(("http://", "https://")):
        return domain
    return f"https://{domain}"


def status_emails_enabled() -> bool:
    return env_flag("QUOTE_WORKFLOW_STATUS_EMAILS_ENABLED", True)


def support_apis_enabled() -> bool:
    return env_flag("QUOTE_WORKFLOW_SUPPORT_APIS_ENABLED", True)


def normalize_backend_init_error(detail: str) -> str:
    if detail in _KNOWN_BACKEND_INIT_ERRORS:
        return detail
    return POSTGRES_CONNECTION_FAILED


def _postgres_connection_exception_types() -> tuple[type[BaseException], ...]:
    types: list[type[BaseException]] = [
        ConnectionError,
        OSError,
        TimeoutError,
        TypeError,
        ValueError,
    ]
    try:
        import psycopg
    except ImportError:
        pass
    else:
        types.append(psycopg.Error)
    return tuple(types)


def build_repository() -> QuoteWorkflowRepository:
    backend = quote_workflow_store_backend_name()
    if backend == "POSTGRES":
        dsn = quote_workflow_postgres_dsn()
        if not dsn:
            raise RuntimeError(POSTGRES_DSN_REQUIRED)
        try:
            return cast(QuoteWorkflowRepository, PostgresQuoteWorkflowRepository(dsn=dsn))
        except RuntimeError:
            raise
        except _postgres_connection_exception_types() as exc:
            raise RuntimeError(POSTGRES_CONNECTION_FAILED) from exc
    return cast(QuoteWorkflowRepository, InMemoryQuoteWorkflowRepository())


def build_auth_provider() -> AuthProvider:
    if auth_backend_name() == "STATIC":
        return StaticTokenAuthProvider.from_json(os.getenv("QUOTE_WORKFLOW_STATIC_TOKENS_JSON"))
    base_url = auth_base_url()
    if not base_url:
        raise RuntimeError(AUTH_URL_REQUIRED)
    return HttpAuthProvider(base_url=base_url, api_key=auth_service_key())


def build_email_transports() -> dict[str, EmailTransport]:
    return {
        "resend": ResendEmailTransport(api_key=os.getenv("RESEND_API_KEY")),
        "smtp": SmtpEmailTransport(
            username=os.getenv("SMTP_USER"),
            password=os.getenv("SMTP_PASSWORD"),
        ),
    }
