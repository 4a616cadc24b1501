import math
from datetime import datetime, timezone
from typing import Optional

from src.core.workflow.errors import BadInputError
from src.core.workflow.models import AppSettingRecord, FinanceMarginLimit
from src.core.workflow.repository import QuoteWorkflowRepository

FINANCE_MARGIN_LIMIT_KEY = "workflow.finance_margin_limit"
DEFAULT_FINANCE_MARGIN_PERCENT = 22.0
DEFAULT_FINANCE_MARGIN_CURRENCY = "USD"


class FinanceMarginLimitStore:
    """Singleton finance margin floor kept in the generic ``app_settings`` table."""

    def __init__(self, *, repository: QuoteWorkflowRepository) -> None:
        self._repository = repository

    def get(self) -> FinanceMarginLimit:
        setting = self._repository.get_setting(key=FINANCE_MARGIN_LIMIT_KEY)
        if setting is not None:
            percent = setting.value.get("percent")
            if isinstance(percent, (int, float)) and not isinstance(percent, bool):
                return FinanceMarginLimit(
                    percent=float(percent),
                    currency=setting.value.get("currency") or DEFAULT_FINANCE_MARGIN_CURRENCY,
                    updated_by=setting.value.get("updatedBy") or setting.updated_by,
                    updated_at=setting.updated_at,
                )
        return FinanceMarginLimit(
            percent=DEFAULT_FINANCE_MARGIN_PERCENT,
            currency=DEFAULT_FINANCE_MARGIN_CURRENCY,
        )

    def set(
        self,
        *,
        percent: float,
        currency: Optional[str],
        updated_by: str,
    ) -> FinanceMarginLimit:
        if isinstance(percent, bool) or not math.isfinite(percent) or percent <= 0:
            raise BadInputError("percent must be a positive number")

        now = datetime.now(timezone.utc)
        value = FinanceMarginLimit(
            percent=float(percent),
            currency=currency or DEFAULT_FINANCE_MARGIN_CURRENCY,
            updated_by=updated_by,
            updated_at=now,
        )
        self._repository.upsert_setting(
            AppSettingRecord(
                key=FINANCE_MARGIN_LIMIT_KEY,
                value=value.model_dump(mode="json", by_alias=True),
                updated_by=updated_by,
                updated_at=now,
            )
        )
        return value
