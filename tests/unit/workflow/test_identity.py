import logging

import pytest

from src.core.workflow.errors import (
    ForbiddenError,
    ProfileNotFoundError,
    UnauthenticatedError,
)
from src.core.workflow.identity import (
    IdentityResolver,
    assert_role,
    bearer_token,
    normalize_role,
)
from src.core.workflow.models import AuthUser, ProfileRecord
from src.infrastructure.quotes import InMemoryQuoteWorkflowRepository
from tests.factories import context


class _FakeAuthProvider:
    def __init__(self, users: dict[str, AuthUser]) -> None:
        self._users = users
        self.tokens: list[str] = []

    def get_user(self, token: str):
        self.tokens.append(token)
        return self._users.get(token)


@pytest.mark.parametrize(
    "raw_role,expected",
    [
        ("LEVEL1", "SALES"),
        ("LEVEL_1", "SALES"),
        ("level2", "SALES"),
        ("LEVEL_2", "SALES"),
        ("sales", "SALES"),
        ("LEVEL3", "ADMIN"),
        ("level_3", "ADMIN"),
        ("Admin", "ADMIN"),
        ("FINANCE", "FINANCE"),
        (" master ", "MASTER"),
    ],
)
def test_normalize_role_maps_legacy_spellings(raw_role, expected):
    assert normalize_role(raw_role) == expected


def test_normalize_role_defaults_unknown_values_to_sales_with_warning(caplog):
    with caplog.at_level(logging.WARNING, logger="src.core.workflow.identity"):
        assert normalize_role("SUPERUSER") == "SALES"
    assert any(record.getMessage() == "identity.unrecognized_role" for record in caplog.records)


def test_normalize_role_treats_empty_as_sales_without_warning(caplog):
    with caplog.at_level(logging.WARNING, logger="src.core.workflow.identity"):
        assert normalize_role(None) == "SALES"
        assert normalize_role("") == "SALES"
    assert caplog.records == []


def test_bearer_token_strips_prefix_case_insensitively():
    assert bearer_token("Bearer abc") == "abc"
    assert bearer_token("bearer   xyz ") == "xyz"
    assert bearer_token("raw-token") == "raw-token"


@pytest.mark.parametrize("header", [None, "", "Bearer ", "   "])
def test_bearer_token_rejects_missing_header(header):
    with pytest.raises(UnauthenticatedError) as exc:
        bearer_token(header)
    assert str(exc.value) == "Missing Authorization header"


def test_assert_role_raises_forbidden_for_disallowed_role():
    assert_role(context("u1", "ADMIN"), ("ADMIN", "MASTER"))
    with pytest.raises(ForbiddenError) as exc:
        assert_role(context("u1", "SALES"), ("ADMIN", "MASTER"))
    assert str(exc.value) == "Insufficient role for this action"


def test_identity_resolver_builds_context_from_profile():
    repository = InMemoryQuoteWorkflowRepository()
    repository.save_profile(
        ProfileRecord(
            id="u_admin", role="LEVEL_3", email="admin@example.com", first_name="Ada", last_name="Lo"
        )
    )
    provider = _FakeAuthProvider({"tok": AuthUser(id="u_admin", email="ada@auth.example.com")})

    resolved = IdentityResolver(auth_provider=provider, repository=repository).resolve("Bearer tok")

    assert provider.tokens == ["tok"]
    assert resolved.user_id == "u_admin"
    assert resolved.role == "ADMIN"
    assert resolved.email == "ada@auth.example.com"
    assert resolved.full_name == "Ada Lo"


def test_identity_resolver_falls_back_to_profile_email_for_name_and_address():
    repository = InMemoryQuoteWorkflowRepository()
    repository.save_profile(ProfileRecord(id="u1", role="FINANCE", email="fin@example.com"))
    provider = _FakeAuthProvider({"tok": AuthUser(id="u1")})

    resolved = IdentityResolver(auth_provider=provider, repository=repository).resolve("tok")

    assert resolved.email == "fin@example.com"
    assert resolved.full_name == "fin@example.com"


def test_identity_resolver_rejects_unknown_token():
    resolver = IdentityResolver(
        auth_provider=_FakeAuthProvider({}),
        repository=InMemoryQuoteWorkflowRepository(),
    )
    with pytest.raises(UnauthenticatedError) as exc:
        resolver.resolve("Bearer nope")
    assert str(exc.value) == "Invalid or expired token"


def test_identity_resolver_rejects_missing_profile_as_forbidden():
    resolver = IdentityResolver(
        auth_provider=_FakeAuthProvider({"tok": AuthUser(id="u_ghost")}),
        repository=InMemoryQuoteWorkflowRepository(),
    )
    with pytest.raises(ProfileNotFoundError) as exc:
        resolver.resolve("Bearer tok")
    assert isinstance(exc.value, ForbiddenError)
    assert str(exc.value) == "Profile not found"
