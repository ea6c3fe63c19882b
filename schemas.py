import re
from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from models import (
    AlertRuleType,
    ApprovalStatus,
    ExpenseStatus,
    ExpenseType,
    Frequency,
)

ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def coerce_iso_date(value: object) -> date:
    """Accept a date or strict ``YYYY-MM-DD`` text; anything else is rejected."""
    if isinstance(value, datetime):
        raise ValueError("must be a calendar date without a time component")
    if isinstance(value, date):
        return value
    if isinstance(value, str) and ISO_DATE_RE.match(value):
        try:
            return date.fromisoformat(value)
        except ValueError as exc:
            raise ValueError(f"{value} is not a valid calendar date") from exc
    raise ValueError("must use YYYY-MM-DD format")


class ScenarioIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    parent_scenario_id: Optional[str] = None
    approval_status: ApprovalStatus = ApprovalStatus.draft


class ExpenseLineIn(BaseModel):
    scenario_id: str = Field(..., min_length=1)
    service_id: str = Field(..., min_length=1)
    contract_id: Optional[str] = None
    name: str = Field(..., min_length=1, max_length=200)
    expense_type: ExpenseType
    status: ExpenseStatus
    amount_minor: int = Field(..., ge=0, strict=True)
    currency: str = Field(default="USD", min_length=3, max_length=3)
    start_date: Optional[date] = None
    end_date: Optional[date] = None

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, value: str) -> str:
        return value.upper()

    @model_validator(mode="after")
    def _check_window(self) -> "ExpenseLineIn":
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class RecurrenceRuleIn(BaseModel):
    frequency: Frequency
    interval: int = Field(default=1, gt=0)
    day_of_month: int = Field(..., ge=1, le=31)
    month_of_year: Optional[int] = Field(default=None, ge=1, le=12)
    anchor_date: Optional[date] = None

    @model_validator(mode="after")
    def _yearly_needs_month(self) -> "RecurrenceRuleIn":
        if self.frequency == Frequency.yearly and self.month_of_year is None:
            raise ValueError("yearly recurrence requires month_of_year")
        return self


class ActualTransactionIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    scenario_id: str = Field(..., min_length=1)
    service_id: str = Field(..., min_length=1)
    contract_id: Optional[str] = None
    transaction_date: date
    amount_minor: int = Field(..., ge=0, strict=True)
    currency: str = Field(default="USD", min_length=3, max_length=3)
    description: Optional[str] = Field(default=None, max_length=500)

    @field_validator("scenario_id", "service_id")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value

    @field_validator("transaction_date", mode="before")
    @classmethod
    def _iso_date(cls, value: object) -> date:
        return coerce_iso_date(value)

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, value: str) -> str:
        return value.upper()


class WindowParams(BaseModel):
    window_days: Optional[int] = Field(default=None, ge=0, le=3650)


class UpcomingPaymentParams(WindowParams):
    pass


class RenewalWindowParams(WindowParams):
    pass


class NoticeWindowParams(WindowParams):
    pass


class ReplacementMissingParams(WindowParams):
    pass


class EolDateParams(WindowParams):
    pass


ALERT_PARAMS_BY_TYPE: dict[AlertRuleType, type[WindowParams]] = {
    AlertRuleType.upcoming_payment: UpcomingPaymentParams,
    AlertRuleType.renewal_window: RenewalWindowParams,
    AlertRuleType.notice_window: NoticeWindowParams,
    AlertRuleType.replacement_missing: ReplacementMissingParams,
    AlertRuleType.eol_date: EolDateParams,
}


class AlertRuleIn(BaseModel):
    scenario_id: str = Field(..., min_length=1)
    rule_type: AlertRuleType
    params: dict[str, object] = Field(default_factory=dict)
    enabled: bool = True
    channels: list[str] = Field(default_factory=lambda: ["in_app"])

    @model_validator(mode="after")
    def _check_params(self) -> "AlertRuleIn":
        ALERT_PARAMS_BY_TYPE[self.rule_type].model_validate(self.params)
        return self
