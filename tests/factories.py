import json
from typing import Optional

from src.core.workflow.models import ProfileRecord, QuoteRecord, RequestContext, Role
from src.core.workflow.states import legacy_status_for

PROFILES = {
    "u_sales": ProfileRecord(
        id="u_sales", role="SALES", email="sales@example.com", first_name="Sam", last_name="Sales"
    ),
    "u_level1": ProfileRecord(id="u_level1", role="LEVEL_1", email="junior@example.com"),
    "u_admin": ProfileRecord(
        id="u_admin", role="LEVEL3", email="admin@example.com", first_name="Ada", last_name="Admin"
    ),
    "u_finance": ProfileRecord(
        id="u_finance",
        role="FINANCE",
        email="finance@example.com",
        first_name="Fin",
        last_name="Ance",
    ),
    "u_finance_2": ProfileRecord(id="u_finance_2", role="finance", email="cfo@example.com"),
    "u_master": ProfileRecord(
        id="u_master", role="MASTER", email="master@example.com", first_name="Max"
    ),
}

TOKENS = {
    "sales-token": "u_sales",
    "level1-token": "u_level1",
    "admin-token": "u_admin",
    "finance-token": "u_finance",
    "finance-2-token": "u_finance_2",
    "master-token": "u_master",
    "ghost-token": "u_ghost",
}


def static_tokens_json() -> str:
    return json.dumps(
        {
            token: {"id": user_id, "email": f"{user_id}@auth.example.com"}
            for token, user_id in TOKENS.items()
        }
    )


def auth(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def seed_profiles(repository) -> None:
    for profile in PROFILES.values():
        repository.save_profile(profile)


def context(user_id: str, role: Role, full_name: Optional[str] = None) -> RequestContext:
    return RequestContext(
        user_id=user_id,
        role=role,
        email=f"{user_id}@example.com",
        full_name=full_name or user_id,
    )


def quote(
    quote_id: str = "Q1",
    *,
    state: str = "draft",
    owner_id: Optional[str] = "u_sales",
    **fields,
) -> QuoteRecord:
    return QuoteRecord(
        id=quote_id,
        customer_name=fields.pop("customer_name", "Acme Utilities"),
        user_id=fields.pop("user_id", owner_id),
        owner_id=owner_id,
        workflow_state=state,
        status=legacy_status_for(state),
        **fields,
    )
