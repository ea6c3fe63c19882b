from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from errors import LockedStateError, NotFoundError, ValidationError
from models import (
    AlertRule,
    ApprovalStatus,
    ExpenseLine,
    ExpenseType,
    RecurrenceRule,
    Scenario,
    Service,
)
from schemas import AlertRuleIn, ExpenseLineIn, RecurrenceRuleIn, ScenarioIn

logger = logging.getLogger(__name__)

APPROVAL_TRANSITIONS: dict[ApprovalStatus, set[ApprovalStatus]] = {
    ApprovalStatus.draft: {ApprovalStatus.reviewed},
    ApprovalStatus.reviewed: {ApprovalStatus.approved, ApprovalStatus.draft},
    ApprovalStatus.approved: set(),
}


def get_scenario(session: Session, scenario_id: str) -> Scenario:
    scenario = session.get(Scenario, scenario_id)
    if not scenario:
        raise NotFoundError("Scenario", scenario_id)
    return scenario


def get_mutable_scenario(session: Session, scenario_id: str) -> Scenario:
    scenario = get_scenario(session, scenario_id)
    if scenario.is_locked:
        raise LockedStateError(scenario_id)
    return scenario


def get_service(session: Session, service_id: str) -> Service:
    service = session.get(Service, service_id)
    if not service or service.deleted_at is not None:
        raise NotFoundError("Service", service_id)
    return service


class ScenarioService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, scenario_id: str) -> Scenario:
        return get_scenario(self.session, scenario_id)

    def list_all(self) -> list[Scenario]:
        return list(
            self.session.scalars(
                select(Scenario).order_by(Scenario.created_at, Scenario.name)
            ).all()
        )

    def create(self, data: ScenarioIn, scenario_id: Optional[str] = None) -> Scenario:
        if data.parent_scenario_id:
            get_scenario(self.session, data.parent_scenario_id)
        scenario = Scenario(
            name=data.name.strip(),
            parent_scenario_id=data.parent_scenario_id,
            approval_status=data.approval_status,
            is_locked=False,
            forecast_stale=True,
        )
        if scenario_id:
            scenario.id = scenario_id
        self.session.add(scenario)
        self.session.commit()
        self.session.refresh(scenario)
        return scenario

    def set_approval_status(
        self, scenario_id: str, next_status: ApprovalStatus
    ) -> Scenario:
        scenario = self.get(scenario_id)
        if next_status not in APPROVAL_TRANSITIONS[scenario.approval_status]:
            raise ValidationError(
                "Invalid scenario approval transition: "
                f"{scenario.approval_status.value} -> {next_status.value}",
                field="approval_status",
            )
        scenario.approval_status = next_status
        self.session.commit()
        return scenario

    def lock(self, scenario_id: str) -> Scenario:
        scenario = self.get(scenario_id)
        scenario.is_locked = True
        self.session.commit()
        logger.info(f"scenario_locked: id={scenario_id}")
        return scenario

    def clone(self, source_scenario_id: str, name: str) -> Scenario:
        """Copy live expense lines and their rules into a new draft scenario."""
        self.get(source_scenario_id)
        if not name.strip():
            raise ValidationError("Scenario name cannot be empty", field="name")
        try:
            cloned = Scenario(
                name=name.strip(),
                parent_scenario_id=source_scenario_id,
                approval_status=ApprovalStatus.draft,
                is_locked=False,
                forecast_stale=True,
            )
            self.session.add(cloned)
            self.session.flush()

            lines = self.session.scalars(
                select(ExpenseLine)
                .where(
                    ExpenseLine.scenario_id == source_scenario_id,
                    ExpenseLine.deleted_at.is_(None),
                )
                .order_by(ExpenseLine.created_at, ExpenseLine.id)
            ).all()
            for line in lines:
                copy = ExpenseLine(
                    scenario_id=cloned.id,
                    service_id=line.service_id,
                    contract_id=line.contract_id,
                    name=line.name,
                    expense_type=line.expense_type,
                    status=line.status,
                    amount_minor=line.amount_minor,
                    currency=line.currency,
                    start_date=line.start_date,
                    end_date=line.end_date,
                )
                rule = line.recurrence_rule
                if rule:
                    copy.recurrence_rule = RecurrenceRule(
                        frequency=rule.frequency,
                        interval=rule.interval,
                        day_of_month=rule.day_of_month,
                        month_of_year=rule.month_of_year,
                        anchor_date=rule.anchor_date,
                    )
                self.session.add(copy)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        logger.info(
            f"scenario_cloned: source={source_scenario_id} clone={cloned.id} lines={len(lines)}"
        )
        return cloned


class ExpenseLineService:
    """Write path for expense lines and recurrence rules.

    Every mutation checks that the owning scenario exists and is unlocked,
    and flags the scenario's forecast as stale in the same commit.
    """

    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, expense_line_id: str) -> ExpenseLine:
        line = self.session.get(ExpenseLine, expense_line_id)
        if not line or line.deleted_at is not None:
            raise NotFoundError("Expense line", expense_line_id)
        return line

    def list_for_scenario(self, scenario_id: str) -> list[ExpenseLine]:
        stmt = (
            select(ExpenseLine)
            .where(
                ExpenseLine.scenario_id == scenario_id,
                ExpenseLine.deleted_at.is_(None),
            )
            .order_by(ExpenseLine.created_at, ExpenseLine.id)
        )
        return list(self.session.scalars(stmt).all())

    def _commit_stale(self, *scenarios: Scenario) -> None:
        try:
            for scenario in scenarios:
                scenario.forecast_stale = True
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

    @staticmethod
    def _check_recurrence(
        expense_type: ExpenseType, recurrence: Optional[RecurrenceRuleIn]
    ) -> None:
        if expense_type == ExpenseType.recurring and recurrence is None:
            raise ValidationError(
                "Recurring expenses require a recurrence rule", field="recurrence"
            )
        if expense_type == ExpenseType.one_time and recurrence is not None:
            raise ValidationError(
                "One-time expenses cannot carry a recurrence rule", field="recurrence"
            )

    def create(
        self, data: ExpenseLineIn, recurrence: Optional[RecurrenceRuleIn] = None
    ) -> ExpenseLine:
        scenario = get_mutable_scenario(self.session, data.scenario_id)
        get_service(self.session, data.service_id)
        self._check_recurrence(data.expense_type, recurrence)

        line = ExpenseLine(
            scenario_id=data.scenario_id,
            service_id=data.service_id,
            contract_id=data.contract_id,
            name=data.name.strip(),
            expense_type=data.expense_type,
            status=data.status,
            amount_minor=data.amount_minor,
            currency=data.currency,
            start_date=data.start_date,
            end_date=data.end_date,
        )
        if recurrence:
            line.recurrence_rule = self._build_rule(recurrence)
        self.session.add(line)
        self._commit_stale(scenario)
        self.session.refresh(line)
        return line

    def update(self, expense_line_id: str, data: ExpenseLineIn) -> ExpenseLine:
        line = self.get(expense_line_id)
        current = get_mutable_scenario(self.session, line.scenario_id)
        target = get_mutable_scenario(self.session, data.scenario_id)
        get_service(self.session, data.service_id)
        if data.expense_type == ExpenseType.recurring and line.recurrence_rule is None:
            raise ValidationError(
                "Recurring expenses require a recurrence rule", field="recurrence"
            )

        line.scenario_id = data.scenario_id
        line.service_id = data.service_id
        line.contract_id = data.contract_id
        line.name = data.name.strip()
        line.expense_type = data.expense_type
        line.status = data.status
        line.amount_minor = data.amount_minor
        line.currency = data.currency
        line.start_date = data.start_date
        line.end_date = data.end_date
        if data.expense_type == ExpenseType.one_time:
            line.recurrence_rule = None
        self._commit_stale(current, target)
        return line

    def delete(self, expense_line_id: str) -> None:
        line = self.get(expense_line_id)
        scenario = get_mutable_scenario(self.session, line.scenario_id)
        line.deleted_at = datetime.utcnow()
        self._commit_stale(scenario)

    @staticmethod
    def _build_rule(data: RecurrenceRuleIn) -> RecurrenceRule:
        return RecurrenceRule(
            frequency=data.frequency,
            interval=data.interval,
            day_of_month=data.day_of_month,
            month_of_year=data.month_of_year,
            anchor_date=data.anchor_date,
        )

    def set_recurrence(
        self, expense_line_id: str, data: RecurrenceRuleIn
    ) -> RecurrenceRule:
        line = self.get(expense_line_id)
        scenario = get_mutable_scenario(self.session, line.scenario_id)
        if line.expense_type != ExpenseType.recurring:
            raise ValidationError(
                "Only recurring expenses carry a recurrence rule", field="recurrence"
            )
        rule = line.recurrence_rule
        if rule is None:
            rule = self._build_rule(data)
            line.recurrence_rule = rule
        else:
            rule.frequency = data.frequency
            rule.interval = data.interval
            rule.day_of_month = data.day_of_month
            rule.month_of_year = data.month_of_year
            rule.anchor_date = data.anchor_date
        self._commit_stale(scenario)
        return rule

    def delete_recurrence(self, expense_line_id: str) -> None:
        line = self.get(expense_line_id)
        scenario = get_mutable_scenario(self.session, line.scenario_id)
        if line.recurrence_rule is None:
            raise NotFoundError("Recurrence rule", expense_line_id)
        line.recurrence_rule = None
        self._commit_stale(scenario)


class AlertRuleService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, rule_id: str) -> AlertRule:
        rule = self.session.get(AlertRule, rule_id)
        if not rule:
            raise NotFoundError("Alert rule", rule_id)
        return rule

    def list_for_scenario(self, scenario_id: str) -> list[AlertRule]:
        stmt = (
            select(AlertRule)
            .where(AlertRule.scenario_id == scenario_id)
            .order_by(AlertRule.created_at, AlertRule.id)
        )
        return list(self.session.scalars(stmt).all())

    def create(self, data: AlertRuleIn) -> AlertRule:
        get_scenario(self.session, data.scenario_id)
        rule = AlertRule(
            scenario_id=data.scenario_id,
            rule_type=data.rule_type,
            params_json=json.dumps(data.params, sort_keys=True),
            enabled=data.enabled,
            channels=",".join(data.channels),
        )
        self.session.add(rule)
        self.session.commit()
        self.session.refresh(rule)
        return rule

    def set_enabled(self, rule_id: str, enabled: bool) -> AlertRule:
        rule = self.get(rule_id)
        rule.enabled = enabled
        self.session.commit()
        return rule
