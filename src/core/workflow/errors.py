from typing import Optional


class QuoteWorkflowError(Exception):
    pass


class UnauthenticatedError(QuoteWorkflowError):
    pass


class ForbiddenError(QuoteWorkflowError):
    pass


class ProfileNotFoundError(ForbiddenError):
    pass


class NotFoundError(QuoteWorkflowError):
    pass


class QuoteNotFoundError(NotFoundError):
    def __init__(self, message: str = "Quote not found") -> None:
        super().__init__(message)


class EmailTemplateNotFoundError(NotFoundError):
    pass


class InvalidStateError(QuoteWorkflowError):
    def __init__(self, message: str, *, required_state: Optional[str] = None) -> None:
        super().__init__(message)
        self.required_state = required_state


class BadInputError(QuoteWorkflowError):
    pass


class GuardrailViolationError(QuoteWorkflowError):
    pass


class InternalWorkflowError(QuoteWorkflowError):
    pass


class NotificationDeliveryError(InternalWorkflowError):
    pass


class EmailTransportNotConfiguredError(QuoteWorkflowError):
    """Provider credentials or sender settings are missing; callers treat this as a no-op."""
