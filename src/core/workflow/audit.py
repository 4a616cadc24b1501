import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from src.core.workflow.metrics import SIDE_EFFECT_FAILURES
from src.core.workflow.models import QuoteEventRecord, RequestContext
from src.core.workflow.repository import QuoteWorkflowRepository

logger = logging.getLogger(__name__)


class AuditLogWriter:
    """Appends one ``quote_events`` row per committed transition.

    Write failures (including a datastore without the events table) are logged
    and counted; they never reach the caller.
    """

    def __init__(self, *, repository: QuoteWorkflowRepository) -> None:
        self._repository = repository

    def append(
        self,
        *,
        quote_id: str,
        event_type: str,
        actor: RequestContext,
        previous_state: Optional[str],
        new_state: Optional[str],
        payload: Optional[dict[str, Any]] = None,
    ) -> Optional[QuoteEventRecord]:
        event = QuoteEventRecord(
            event_id=f"qev_{uuid.uuid4().hex[:12]}",
            quote_id=quote_id,
            event_type=event_type,
            actor_id=actor.user_id,
            actor_role=actor.role,
            previous_state=previous_state,
            new_state=new_state,
            payload=payload,
            created_at=datetime.now(timezone.utc),
        )
        try:
            self._repository.append_event(event)
        except Exception as exc:
            SIDE_EFFECT_FAILURES.labels(effect="audit").inc()
            logger.warning(
                "audit.append_failed",
                extra={
                    "extra_fields": {
                        "quote_id": quote_id,
                        "event_type": event_type,
                        "error": str(exc),
                    }
                },
            )
            return None
        return event
