import logging
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Callable, Optional, Union

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select
from sqlalchemy.orm import Session

from config import get_settings
from errors import IntegrityError, NotFoundError, ValidationError
from models import (
    AlertEvent,
    AlertRule,
    AlertRuleType,
    AlertStatus,
    Contract,
    Occurrence,
    ServicePlan,
)
from recurrence import local_today
from schemas import ALERT_PARAMS_BY_TYPE, WindowParams, coerce_iso_date

logger = logging.getLogger(__name__)

DateInput = Union[date, str]

EOL_REASON_CODE = "EOL"


def as_date(value: Optional[DateInput], field: str) -> date:
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError(f"{field} is required", field=field)
    try:
        return coerce_iso_date(value)
    except ValueError as exc:
        raise ValidationError(f"{field} {exc}", field=field) from exc


@dataclass(frozen=True)
class AlertCandidate:
    scenario_id: str
    rule_id: str
    rule_type: AlertRuleType
    entity_type: str
    entity_id: str
    fire_at: date
    message: str

    @property
    def dedupe_key(self) -> str:
        return "|".join(
            [
                self.rule_id,
                self.rule_type.value,
                self.entity_type,
                self.entity_id,
                self.fire_at.isoformat(),
            ]
        )


@dataclass(frozen=True)
class TickResult:
    created: int
    evaluated_rules: int


def parse_rule_params(rule: AlertRule) -> WindowParams:
    params_model = ALERT_PARAMS_BY_TYPE[rule.rule_type]
    try:
        return params_model.model_validate_json(rule.params_json or "{}")
    except PydanticValidationError as exc:
        raise IntegrityError(f"Alert rule {rule.id} has invalid params: {exc}") from exc


def _candidate(
    rule: AlertRule, entity_type: str, entity_id: str, fire_at: date, message: str
) -> AlertCandidate:
    return AlertCandidate(
        scenario_id=rule.scenario_id,
        rule_id=rule.id,
        rule_type=rule.rule_type,
        entity_type=entity_type,
        entity_id=entity_id,
        fire_at=fire_at,
        message=message,
    )


def _upcoming_payments(
    session: Session, rule: AlertRule, now: date, cutoff: date
) -> list[AlertCandidate]:
    rows = session.execute(
        select(Occurrence.id, Occurrence.occurrence_date)
        .where(
            Occurrence.scenario_id == rule.scenario_id,
            Occurrence.occurrence_date.between(now, cutoff),
        )
        .order_by(Occurrence.occurrence_date, Occurrence.id)
    ).all()
    return [
        _candidate(rule, "occurrence", occ_id, occ_date, f"Upcoming payment on {occ_date}")
        for occ_id, occ_date in rows
    ]


def _renewals(
    session: Session, rule: AlertRule, now: date, cutoff: date
) -> list[AlertCandidate]:
    rows = session.execute(
        select(Contract.id, Contract.renewal_date)
        .where(
            Contract.deleted_at.is_(None),
            Contract.renewal_date.between(now, cutoff),
        )
        .order_by(Contract.renewal_date, Contract.id)
    ).all()
    return [
        _candidate(
            rule, "contract", contract_id, renewal, f"Contract renewal approaching on {renewal}"
        )
        for contract_id, renewal in rows
    ]


def _notice_deadlines(
    session: Session, rule: AlertRule, now: date, cutoff: date
) -> list[AlertCandidate]:
    rows = session.execute(
        select(Contract.id, Contract.renewal_date, Contract.notice_period_days)
        .where(
            Contract.deleted_at.is_(None),
            Contract.renewal_date.is_not(None),
            Contract.notice_period_days.is_not(None),
        )
        .order_by(Contract.renewal_date, Contract.id)
    ).all()
    candidates = []
    for contract_id, renewal, notice_days in rows:
        deadline = renewal - timedelta(days=notice_days)
        if now <= deadline <= cutoff:
            candidates.append(
                _candidate(
                    rule,
                    "contract",
                    contract_id,
                    deadline,
                    f"Cancellation notice deadline approaching for contract {contract_id}",
                )
            )
    return candidates


def _missing_replacements(
    session: Session, rule: AlertRule, now: date, cutoff: date
) -> list[AlertCandidate]:
    rows = session.execute(
        select(ServicePlan.id, ServicePlan.must_replace_by)
        .where(
            ServicePlan.scenario_id == rule.scenario_id,
            ServicePlan.replacement_required.is_(True),
            ServicePlan.replacement_selected_service_id.is_(None),
            ServicePlan.must_replace_by.between(now, cutoff),
        )
        .order_by(ServicePlan.must_replace_by, ServicePlan.id)
    ).all()
    return [
        _candidate(
            rule, "service_plan", plan_id, due, f"Replacement missing for service plan {plan_id}"
        )
        for plan_id, due in rows
    ]


def _end_of_life(
    session: Session, rule: AlertRule, now: date, cutoff: date
) -> list[AlertCandidate]:
    rows = session.execute(
        select(ServicePlan.id, ServicePlan.must_replace_by)
        .where(
            ServicePlan.scenario_id == rule.scenario_id,
            ServicePlan.reason_code == EOL_REASON_CODE,
            ServicePlan.must_replace_by.between(now, cutoff),
        )
        .order_by(ServicePlan.must_replace_by, ServicePlan.id)
    ).all()
    return [
        _candidate(
            rule,
            "service_plan",
            plan_id,
            due,
            f"EOL milestone approaching for service plan {plan_id}",
        )
        for plan_id, due in rows
    ]


CandidateCollector = Callable[[Session, AlertRule, date, date], list[AlertCandidate]]

COLLECTORS: dict[AlertRuleType, CandidateCollector] = {
    AlertRuleType.upcoming_payment: _upcoming_payments,
    AlertRuleType.renewal_window: _renewals,
    AlertRuleType.notice_window: _notice_deadlines,
    AlertRuleType.replacement_missing: _missing_replacements,
    AlertRuleType.eol_date: _end_of_life,
}

_uncovered = (set(AlertRuleType) - set(COLLECTORS)) | (
    set(AlertRuleType) - set(ALERT_PARAMS_BY_TYPE)
)
if _uncovered:
    raise RuntimeError(
        f"Alert rule types without a collector or params model: {sorted(_uncovered)}"
    )


class AlertEngine:
    def __init__(self, session: Session) -> None:
        self.session = session

    def collect(self, rule: AlertRule, now: date) -> list[AlertCandidate]:
        params = parse_rule_params(rule)
        window_days = (
            params.window_days
            if params.window_days is not None
            else get_settings().alert_window_days
        )
        cutoff = now + timedelta(days=window_days)
        return COLLECTORS[rule.rule_type](self.session, rule, now, cutoff)

    def tick(self, now: Optional[DateInput] = None) -> TickResult:
        today = as_date(now, "now") if now is not None else local_today()
        rules = self.session.scalars(
            select(AlertRule)
            .where(AlertRule.enabled.is_(True))
            .order_by(AlertRule.created_at, AlertRule.id)
        ).all()

        created = 0
        try:
            seen: set[str] = set()
            for rule in rules:
                candidates = self.collect(rule, today)
                keys = [candidate.dedupe_key for candidate in candidates]
                if keys:
                    seen.update(
                        self.session.scalars(
                            select(AlertEvent.dedupe_key).where(
                                AlertEvent.dedupe_key.in_(keys)
                            )
                        ).all()
                    )
                for candidate in candidates:
                    key = candidate.dedupe_key
                    if key in seen:
                        continue
                    seen.add(key)
                    self.session.add(
                        AlertEvent(
                            scenario_id=candidate.scenario_id,
                            alert_rule_id=candidate.rule_id,
                            entity_type=candidate.entity_type,
                            entity_id=candidate.entity_id,
                            fire_at=candidate.fire_at,
                            status=AlertStatus.pending,
                            dedupe_key=key,
                            message=candidate.message,
                        )
                    )
                    created += 1
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        logger.info(
            f"alert_tick: now={today.isoformat()} rules={len(rules)} created={created}"
        )
        return TickResult(created=created, evaluated_rules=len(rules))


class AlertEventService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, event_id: str) -> AlertEvent:
        event = self.session.get(AlertEvent, event_id)
        if not event:
            raise NotFoundError("Alert event", event_id)
        return event

    def list_events(
        self,
        scenario_id: Optional[str] = None,
        status: Optional[AlertStatus] = None,
    ) -> list[AlertEvent]:
        stmt = select(AlertEvent).order_by(
            AlertEvent.fire_at, AlertEvent.created_at, AlertEvent.id
        )
        if scenario_id:
            stmt = stmt.where(AlertEvent.scenario_id == scenario_id)
        if status:
            stmt = stmt.where(AlertEvent.status == status)
        return list(self.session.scalars(stmt).all())

    def list_actionable(self, as_of: DateInput) -> list[AlertEvent]:
        as_of_date = as_date(as_of, "as_of")
        stmt = (
            select(AlertEvent)
            .where(
                AlertEvent.fired_at.is_(None),
                AlertEvent.fire_at <= as_of_date,
                (AlertEvent.status == AlertStatus.pending)
                | (
                    (AlertEvent.status == AlertStatus.snoozed)
                    & AlertEvent.snoozed_until.is_not(None)
                    & (AlertEvent.snoozed_until <= as_of_date)
                ),
            )
            .order_by(AlertEvent.fire_at, AlertEvent.created_at, AlertEvent.id)
        )
        return list(self.session.scalars(stmt).all())

    def acknowledge(
        self, event_id: str, acknowledged_at: Optional[DateInput] = None
    ) -> AlertEvent:
        acked_on = (
            as_date(acknowledged_at, "acknowledged_at")
            if acknowledged_at is not None
            else local_today()
        )
        event = self.get(event_id)
        if event.status == AlertStatus.acked:
            return event
        event.status = AlertStatus.acked
        event.snoozed_until = None
        if event.fired_at is None:
            event.fired_at = acked_on
        self.session.commit()
        logger.info(f"alert_acked: id={event_id}")
        return event

    def snooze(self, event_id: str, until: DateInput) -> AlertEvent:
        until_date = as_date(until, "snoozed_until")
        event = self.get(event_id)
        if event.status == AlertStatus.acked:
            raise ValidationError("Acknowledged alerts cannot be snoozed", field="status")
        event.status = AlertStatus.snoozed
        event.snoozed_until = until_date
        self.session.commit()
        logger.info(f"alert_snoozed: id={event_id} until={until_date.isoformat()}")
        return event

    def unsnooze(self, event_id: str) -> AlertEvent:
        event = self.get(event_id)
        if event.status == AlertStatus.acked:
            raise ValidationError(
                "Acknowledged alerts cannot be unsnoozed", field="status"
            )
        event.status = AlertStatus.pending
        event.snoozed_until = None
        self.session.commit()
        return event

    def mark_notified(self, event_id: str, fired_at: DateInput) -> AlertEvent:
        fired_on = as_date(fired_at, "fired_at")
        event = self.get(event_id)
        if event.fired_at is None:
            event.fired_at = fired_on
            self.session.commit()
        return event


AlertPublisher = Callable[[AlertEvent], None]


def process_alert_notifications(
    session: Session, as_of: DateInput, publish: AlertPublisher
) -> int:
    """Run a tick, hand every actionable event to ``publish`` and mark it notified."""
    as_of_date = as_date(as_of, "as_of")
    AlertEngine(session).tick(as_of_date)
    events = AlertEventService(session)
    actionable = events.list_actionable(as_of_date)
    for event in actionable:
        publish(event)
        events.mark_notified(event.id, as_of_date)
    return len(actionable)
