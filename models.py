import uuid
from datetime import date, datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


def new_id() -> str:
    return uuid.uuid4().hex


class ApprovalStatus(str, Enum):
    draft = "draft"
    reviewed = "reviewed"
    approved = "approved"


class ServiceStatus(str, Enum):
    active = "active"
    trial = "trial"
    deprecated = "deprecated"
    retiring = "retiring"
    retired = "retired"


class ExpenseType(str, Enum):
    recurring = "recurring"
    one_time = "one_time"


class ExpenseStatus(str, Enum):
    planned = "planned"
    approved = "approved"
    committed = "committed"
    actual = "actual"
    cancelled = "cancelled"


class Frequency(str, Enum):
    monthly = "monthly"
    quarterly = "quarterly"
    yearly = "yearly"


class OccurrenceState(str, Enum):
    forecast = "forecast"
    actualized = "actualized"


class PlannedAction(str, Enum):
    keep = "keep"
    replace = "replace"
    retire = "retire"


class AlertRuleType(str, Enum):
    upcoming_payment = "upcoming_payment"
    renewal_window = "renewal_window"
    notice_window = "notice_window"
    replacement_missing = "replacement_missing"
    eol_date = "eol_date"


class AlertStatus(str, Enum):
    pending = "pending"
    snoozed = "snoozed"
    acked = "acked"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class Scenario(Base, TimestampMixin):
    __tablename__ = "scenarios"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    parent_scenario_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("scenarios.id")
    )
    approval_status: Mapped[ApprovalStatus] = mapped_column(
        SAEnum(ApprovalStatus), default=ApprovalStatus.draft, nullable=False
    )
    is_locked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    forecast_stale: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    forecast_generated_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    expense_lines: Mapped[list["ExpenseLine"]] = relationship(
        "ExpenseLine", back_populates="scenario"
    )


class Vendor(Base, TimestampMixin):
    __tablename__ = "vendors"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    website: Mapped[Optional[str]] = mapped_column(String(300))
    notes: Mapped[Optional[str]] = mapped_column(Text)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)


class Service(Base, TimestampMixin):
    __tablename__ = "services"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    vendor_id: Mapped[str] = mapped_column(ForeignKey("vendors.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    status: Mapped[ServiceStatus] = mapped_column(
        SAEnum(ServiceStatus), default=ServiceStatus.active, nullable=False
    )
    owner_team: Mapped[Optional[str]] = mapped_column(String(120))
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    vendor: Mapped["Vendor"] = relationship("Vendor")


class Contract(Base, TimestampMixin):
    __tablename__ = "contracts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    service_id: Mapped[str] = mapped_column(ForeignKey("services.id"), nullable=False)
    contract_number: Mapped[Optional[str]] = mapped_column(String(120))
    start_date: Mapped[Optional[date]] = mapped_column(Date)
    end_date: Mapped[Optional[date]] = mapped_column(Date)
    renewal_type: Mapped[Optional[str]] = mapped_column(String(20))
    renewal_date: Mapped[Optional[date]] = mapped_column(Date)
    notice_period_days: Mapped[Optional[int]] = mapped_column(Integer)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    __table_args__ = (
        CheckConstraint(
            "notice_period_days IS NULL OR notice_period_days >= 0",
            name="ck_contract_notice_non_negative",
        ),
        Index("ix_contracts_renewal_date", "renewal_date"),
    )


class ExpenseLine(Base, TimestampMixin):
    __tablename__ = "expense_lines"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    scenario_id: Mapped[str] = mapped_column(
        ForeignKey("scenarios.id"), nullable=False
    )
    service_id: Mapped[str] = mapped_column(ForeignKey("services.id"), nullable=False)
    contract_id: Mapped[Optional[str]] = mapped_column(ForeignKey("contracts.id"))
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    expense_type: Mapped[ExpenseType] = mapped_column(
        SAEnum(ExpenseType), nullable=False
    )
    status: Mapped[ExpenseStatus] = mapped_column(SAEnum(ExpenseStatus), nullable=False)
    amount_minor: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    start_date: Mapped[Optional[date]] = mapped_column(Date)
    end_date: Mapped[Optional[date]] = mapped_column(Date)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    scenario: Mapped["Scenario"] = relationship(
        "Scenario", back_populates="expense_lines"
    )
    recurrence_rule: Mapped[Optional["RecurrenceRule"]] = relationship(
        "RecurrenceRule",
        back_populates="expense_line",
        uselist=False,
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        CheckConstraint("amount_minor >= 0", name="ck_expense_line_amount_positive"),
        Index("ix_expense_lines_scenario", "scenario_id", "deleted_at"),
    )


class RecurrenceRule(Base, TimestampMixin):
    __tablename__ = "recurrence_rules"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    expense_line_id: Mapped[str] = mapped_column(
        ForeignKey("expense_lines.id"), nullable=False, unique=True
    )
    frequency: Mapped[Frequency] = mapped_column(SAEnum(Frequency), nullable=False)
    interval: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    day_of_month: Mapped[int] = mapped_column(Integer, nullable=False)
    month_of_year: Mapped[Optional[int]] = mapped_column(Integer)
    anchor_date: Mapped[Optional[date]] = mapped_column(Date)

    expense_line: Mapped["ExpenseLine"] = relationship(
        "ExpenseLine", back_populates="recurrence_rule"
    )

    __table_args__ = (
        CheckConstraint("interval > 0", name="ck_recurrence_interval_positive"),
        CheckConstraint(
            "day_of_month BETWEEN 1 AND 31", name="ck_recurrence_day_of_month"
        ),
        CheckConstraint(
            "month_of_year IS NULL OR month_of_year BETWEEN 1 AND 12",
            name="ck_recurrence_month_of_year",
        ),
    )


class Occurrence(Base, TimestampMixin):
    __tablename__ = "occurrences"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    scenario_id: Mapped[str] = mapped_column(
        ForeignKey("scenarios.id"), nullable=False
    )
    expense_line_id: Mapped[str] = mapped_column(
        ForeignKey("expense_lines.id"), nullable=False
    )
    occurrence_date: Mapped[date] = mapped_column(Date, nullable=False)
    amount_minor: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    state: Mapped[OccurrenceState] = mapped_column(
        SAEnum(OccurrenceState), default=OccurrenceState.forecast, nullable=False
    )

    expense_line: Mapped["ExpenseLine"] = relationship("ExpenseLine")

    __table_args__ = (
        Index("ix_occurrences_scenario_date", "scenario_id", "occurrence_date"),
    )


class SpendTransaction(Base, TimestampMixin):
    __tablename__ = "spend_transactions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    scenario_id: Mapped[str] = mapped_column(
        ForeignKey("scenarios.id"), nullable=False
    )
    service_id: Mapped[str] = mapped_column(ForeignKey("services.id"), nullable=False)
    contract_id: Mapped[Optional[str]] = mapped_column(ForeignKey("contracts.id"))
    transaction_date: Mapped[date] = mapped_column(Date, nullable=False)
    amount_minor: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    # Occurrences are rebuilt wholesale; the link is checked at commit time so
    # a regenerated occurrence with the same id can take the old row's place.
    matched_occurrence_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("occurrences.id", deferrable=True, initially="DEFERRED"),
        unique=True,
    )

    matched_occurrence: Mapped[Optional["Occurrence"]] = relationship("Occurrence")

    __table_args__ = (
        CheckConstraint("amount_minor >= 0", name="ck_spend_txn_amount_positive"),
        Index("ix_spend_txn_scenario_date", "scenario_id", "transaction_date"),
    )


class ServicePlan(Base, TimestampMixin):
    __tablename__ = "service_plans"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    scenario_id: Mapped[str] = mapped_column(
        ForeignKey("scenarios.id"), nullable=False
    )
    service_id: Mapped[str] = mapped_column(ForeignKey("services.id"), nullable=False)
    planned_action: Mapped[PlannedAction] = mapped_column(
        SAEnum(PlannedAction), nullable=False
    )
    decision_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="draft"
    )
    reason_code: Mapped[Optional[str]] = mapped_column(String(40))
    must_replace_by: Mapped[Optional[date]] = mapped_column(Date)
    replacement_required: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    replacement_selected_service_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("services.id")
    )


class AlertRule(Base, TimestampMixin):
    __tablename__ = "alert_rules"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    scenario_id: Mapped[str] = mapped_column(
        ForeignKey("scenarios.id"), nullable=False
    )
    rule_type: Mapped[AlertRuleType] = mapped_column(
        SAEnum(AlertRuleType), nullable=False
    )
    params_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    channels: Mapped[str] = mapped_column(String(120), nullable=False, default="in_app")

    __table_args__ = (Index("ix_alert_rules_enabled", "enabled"),)


class AlertEvent(Base, TimestampMixin):
    __tablename__ = "alert_events"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    scenario_id: Mapped[str] = mapped_column(
        ForeignKey("scenarios.id"), nullable=False
    )
    alert_rule_id: Mapped[str] = mapped_column(
        ForeignKey("alert_rules.id"), nullable=False
    )
    entity_type: Mapped[str] = mapped_column(String(40), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(36), nullable=False)
    fire_at: Mapped[date] = mapped_column(Date, nullable=False)
    fired_at: Mapped[Optional[date]] = mapped_column(Date)
    status: Mapped[AlertStatus] = mapped_column(
        SAEnum(AlertStatus), default=AlertStatus.pending, nullable=False
    )
    snoozed_until: Mapped[Optional[date]] = mapped_column(Date)
    dedupe_key: Mapped[str] = mapped_column(String(300), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)

    __table_args__ = (
        UniqueConstraint("dedupe_key", name="uq_alert_event_dedupe_key"),
        CheckConstraint(
            "status != 'snoozed' OR snoozed_until IS NOT NULL",
            name="ck_alert_event_snooze_date",
        ),
        Index(
            "ix_alert_events_notify", "status", "fired_at", "fire_at", "snoozed_until"
        ),
    )
