import json
from typing import Any, Mapping, Optional

from src.core.workflow.models import AuthUser


class StaticTokenAuthProvider:
    def __init__(self, *, users_by_token: Mapping[str, AuthUser]) -> None:
        self._users_by_token = dict(users_by_token)

    @classmethod
    def from_json(cls, raw: Optional[str]) -> "StaticTokenAuthProvider":
        try:
            parsed: Any = json.loads(raw or "{}")
        except json.JSONDecodeError as exc:
            raise RuntimeError("QUOTE_WORKFLOW_STATIC_TOKENS_JSON_INVALID") from exc
        if not isinstance(parsed, dict):
            raise RuntimeError("QUOTE_WORKFLOW_STATIC_TOKENS_JSON_INVALID")
        return cls(
            users_by_token={
                str(token): AuthUser.model_validate(user) for token, user in parsed.items()
            }
        )

    def get_user(self, token: str) -> Optional[AuthUser]:
        user = self._users_by_token.get(token)
        return user.model_copy() if user is not None else None
