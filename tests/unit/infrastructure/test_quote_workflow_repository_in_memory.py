from datetime import datetime, timezone

import pytest

from src.core.workflow.models import EmailTemplateRecord
from src.core.workflow.repository import ClaimPrimitiveUnavailableError
from src.infrastructure.quotes import InMemoryQuoteWorkflowRepository
from tests.factories import quote

_NOW = datetime(2026, 3, 1, 10, 0, tzinfo=timezone.utc)


def _claim(repository, actor_id, lane="admin", expected_state="submitted"):
    return repository.claim_quote(
        quote_id="Q1",
        lane=lane,
        actor_id=actor_id,
        expected_state=expected_state,
        target_state="admin_review" if lane == "admin" else "finance_review",
        claimed_at=_NOW,
    )


def test_in_memory_repository_returns_copies():
    repository = InMemoryQuoteWorkflowRepository()
    repository.create_quote(quote("Q1"))

    loaded = repository.get_quote(quote_id="Q1")
    loaded.customer_name = "Changed"

    assert repository.get_quote(quote_id="Q1").customer_name == "Acme Utilities"


def test_in_memory_update_writes_only_changed_fields():
    repository = InMemoryQuoteWorkflowRepository()
    repository.create_quote(quote("Q1", state="admin_review", finance_reviewer_id="u_finance"))

    updated = repository.update_quote_fields(
        quote_id="Q1",
        changes={"workflow_state": "rejected", "admin_decision_status": "rejected"},
        expected_state="admin_review",
    )

    assert updated.status == "rejected"
    assert updated.finance_reviewer_id == "u_finance"
    assert repository.get_quote(quote_id="Q1").admin_decision_status == "rejected"
    assert repository.update_quote_fields(quote_id="missing", changes={"owner_id": "u_x"}) is None


def test_in_memory_update_skips_quote_that_left_expected_state():
    repository = InMemoryQuoteWorkflowRepository()
    repository.create_quote(quote("Q1", state="approved"))

    stale = repository.update_quote_fields(
        quote_id="Q1", changes={"workflow_state": "rejected"}, expected_state="finance_review"
    )

    assert stale is None
    assert repository.get_quote(quote_id="Q1").workflow_state == "approved"
    with pytest.raises(ValueError, match="status"):
        repository.update_quote_fields(quote_id="Q1", changes={"status": "draft"})
    with pytest.raises(ValueError, match="colour"):
        repository.update_quote_fields(quote_id="Q1", changes={"colour": "red"})


def test_in_memory_claim_compares_state_and_reviewer():
    repository = InMemoryQuoteWorkflowRepository()
    repository.create_quote(quote("Q1", state="submitted"))

    first = _claim(repository, "u_admin")
    second = _claim(repository, "u_admin_2")

    assert first.admin_reviewer_id == "u_admin"
    assert first.status == "under-review"
    assert first.reviewed_at == _NOW
    assert second is None


def test_in_memory_finance_claim_allows_same_reviewer_again():
    repository = InMemoryQuoteWorkflowRepository()
    repository.create_quote(quote("Q1", state="finance_review"))

    assert _claim(repository, "u_finance", lane="finance", expected_state="finance_review")
    assert _claim(repository, "u_finance", lane="finance", expected_state="finance_review")
    assert _claim(repository, "u_other", lane="finance", expected_state="finance_review") is None


def test_in_memory_repository_can_simulate_store_without_conditional_claim():
    repository = InMemoryQuoteWorkflowRepository(atomic_claims=False)
    repository.create_quote(quote("Q1", state="submitted"))

    with pytest.raises(ClaimPrimitiveUnavailableError):
        _claim(repository, "u_admin")


def test_in_memory_templates_keep_id_per_type():
    repository = InMemoryQuoteWorkflowRepository()
    first = repository.upsert_email_template(
        EmailTemplateRecord(template_type="quote_approved", subject_template="a", body_template="b")
    )
    second = repository.upsert_email_template(
        EmailTemplateRecord(template_type="quote_approved", subject_template="c", body_template="d")
    )
    other = repository.upsert_email_template(
        EmailTemplateRecord(template_type="quote_rejected", subject_template="e", body_template="f")
    )

    assert first.id == second.id == "et_001"
    assert other.id == "et_002"
    assert repository.get_email_template(template_type="quote_approved").subject_template == "c"
