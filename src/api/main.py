"""
FILE: src/api/main.py
"""

import logging
from contextlib import asynccontextmanager
from typing import Awaitable, Callable

from fastapi import FastAPI, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from src.api.observability import setup_observability
from src.api.persistence_profile import validate_persistence_profile_guardrails
from src.api.routers.quote_workflow import router as quote_workflow_router

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
    "Access-Control-Allow-Methods": "GET,POST,PUT,OPTIONS",
}

UNSUPPORTED_ROUTE_MESSAGE = "Unsupported route or method"


@asynccontextmanager
async def _app_lifespan(_app: FastAPI):
    validate_persistence_profile_guardrails()
    yield


app = FastAPI(
    title="Quote Workflow API",
    version="0.1.0",
    description=(
        "Quote approval workflow: submission, admin and finance review lanes, margin "
        "guardrails, notifications, and audit events.\n\n"
        "Errors are returned as `{\"error\": message}`."
    ),
    openapi_tags=[
        {
            "name": "Quote Workflow",
            "description": "Workflow transitions, guardrail settings, and email templates.",
        },
        {
            "name": "Health",
            "description": "Liveness and readiness checks.",
        },
    ],
    lifespan=_app_lifespan,
)

setup_observability(app)
logger = logging.getLogger(__name__)

app.include_router(quote_workflow_router)


@app.middleware("http")
async def _cors_middleware(
    request: Request, call_next: Callable[[Request], Awaitable[Response]]
) -> Response:
    if request.method == "OPTIONS":
        return Response(content="ok", headers=CORS_HEADERS)
    response = await call_next(request)
    response.headers.update(CORS_HEADERS)
    return response


def _error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


@app.exception_handler(StarletteHTTPException)
async def http_exception_to_error_envelope(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    if exc.status_code in (status.HTTP_404_NOT_FOUND, status.HTTP_405_METHOD_NOT_ALLOWED) and (
        exc.detail in ("Not Found", "Method Not Allowed")
    ):
        return _error_response(status.HTTP_404_NOT_FOUND, UNSUPPORTED_ROUTE_MESSAGE)
    if exc.status_code >= 500:
        logger.error(
            "request.failed",
            extra={
                "extra_fields": {
                    "endpoint": request.url.path,
                    "status_code": exc.status_code,
                    "detail": str(exc.detail),
                }
            },
        )
    return _error_response(exc.status_code, str(exc.detail))


@app.exception_handler(RequestValidationError)
async def validation_error_to_error_envelope(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    return _error_response(status.HTTP_400_BAD_REQUEST, _validation_message(exc))


@app.exception_handler(Exception)
async def unhandled_exception_to_error_envelope(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled exception while serving request", exc_info=exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "An unexpected error occurred."},
        headers=CORS_HEADERS,
    )


def _validation_message(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    first = errors[0]
    location = [str(part) for part in first.get("loc", ()) if part not in ("body", "query")]
    field = ".".join(location)
    if first.get("type") == "missing":
        return f"{field} is required" if field else "Request body is required"
    if not field:
        return str(first.get("msg", "Invalid request"))
    return f"{field}: {first.get('msg', 'is invalid')}"


@app.get("/health", tags=["Health"], summary="Health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/health/live", tags=["Health"], summary="Liveness")
def health_live() -> dict[str, str]:
    return {"status": "live"}


@app.get("/health/ready", tags=["Health"], summary="Readiness")
def health_ready() -> dict[str, str]:
    return {"status": "ready"}
