from typing import Optional

import httpx

from src.core.workflow.errors import InternalWorkflowError
from src.core.workflow.models import AuthUser


class HttpAuthProvider:
    """Verifies bearer tokens against a hosted auth REST API (``GET /auth/v1/user``)."""

    def __init__(
        self,
        *,
        base_url: str,
        api_key: Optional[str] = None,
        timeout_seconds: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        if not base_url:
            raise RuntimeError("QUOTE_WORKFLOW_AUTH_URL_REQUIRED")
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout = httpx.Timeout(timeout_seconds)
        self._transport = transport

    def get_user(self, token: str) -> Optional[AuthUser]:
        headers = {"Authorization": f"Bearer {token}"}
        if self._api_key:
            headers["apikey"] = self._api_key
        try:
            with httpx.Client(
                base_url=self._base_url, timeout=self._timeout, transport=self._transport
            ) as client:
                response = client.get("/auth/v1/user", headers=headers)
        except httpx.HTTPError as exc:
            raise InternalWorkflowError("Auth provider is unavailable") from exc

        if response.status_code in (401, 403, 404):
            return None
        if response.status_code >= 400:
            raise InternalWorkflowError(f"Auth provider returned HTTP {response.status_code}")

        body = response.json()
        user_id = body.get("id") if isinstance(body, dict) else None
        if not user_id:
            return None
        return AuthUser(id=str(user_id), email=body.get("email"))
