from typing import NoReturn

from fastapi import HTTPException, status

from src.core.workflow import (
    BadInputError,
    ForbiddenError,
    GuardrailViolationError,
    InternalWorkflowError,
    InvalidStateError,
    NotFoundError,
    UnauthenticatedError,
)

# Older Starlette releases only ship the deprecated HTTP_422_UNPROCESSABLE_ENTITY name.
HTTP_422_UNPROCESSABLE = getattr(status, "HTTP_422_UNPROCESSABLE_CONTENT", 422)


def raise_workflow_http_exception(exc: Exception) -> NoReturn:
    if isinstance(exc, UnauthenticatedError):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc
    if isinstance(exc, ForbiddenError):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
    if isinstance(exc, NotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if isinstance(exc, (InvalidStateError, BadInputError)):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    if isinstance(exc, GuardrailViolationError):
        raise HTTPException(status_code=HTTP_422_UNPROCESSABLE, detail=str(exc)) from exc
    if isinstance(exc, InternalWorkflowError):
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)
        ) from exc
    raise exc
