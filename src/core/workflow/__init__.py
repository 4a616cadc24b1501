from src.core.workflow.errors import (
    BadInputError,
    EmailTemplateNotFoundError,
    ForbiddenError,
    GuardrailViolationError,
    InternalWorkflowError,
    InvalidStateError,
    NotFoundError,
    NotificationDeliveryError,
    ProfileNotFoundError,
    QuoteNotFoundError,
    QuoteWorkflowError,
    UnauthenticatedError,
)
from src.core.workflow.identity import IdentityResolver, normalize_role
from src.core.workflow.models import QuoteRecord, RequestContext
from src.core.workflow.notifications import NotificationDispatcher
from src.core.workflow.repository import ClaimPrimitiveUnavailableError, QuoteWorkflowRepository
from src.core.workflow.service import QuoteWorkflowService

__all__ = [
    "BadInputError",
    "ClaimPrimitiveUnavailableError",
    "EmailTemplateNotFoundError",
    "ForbiddenError",
    "GuardrailViolationError",
    "IdentityResolver",
    "InternalWorkflowError",
    "InvalidStateError",
    "NotFoundError",
    "NotificationDeliveryError",
    "NotificationDispatcher",
    "ProfileNotFoundError",
    "QuoteNotFoundError",
    "QuoteRecord",
    "QuoteWorkflowError",
    "QuoteWorkflowRepository",
    "QuoteWorkflowService",
    "RequestContext",
    "UnauthenticatedError",
    "normalize_role",
]
