import logging
import uuid
from datetime import date, datetime
from typing import Optional

from sqlalchemy import delete, insert, select
from sqlalchemy.orm import Session

from config import get_settings
from errors import IntegrityError, NotFoundError, ValidationError
from models import (
    ExpenseLine,
    ExpenseStatus,
    ExpenseType,
    Frequency,
    Occurrence,
    OccurrenceState,
    RecurrenceRule,
    Scenario,
    SpendTransaction,
)
from recurrence import generate_occurrence_dates, local_today, resolve_anchor_date

logger = logging.getLogger(__name__)

OCCURRENCE_NAMESPACE = uuid.UUID("6f1c9a52-3b1e-4d8e-9a57-0c2f4b7d8e10")


def occurrence_id(scenario_id: str, expense_line_id: str, occurrence_date: date) -> str:
    """Stable id for one expected payment, so regeneration reproduces it."""
    key = f"{scenario_id}|{expense_line_id}|{occurrence_date.isoformat()}"
    return uuid.uuid5(OCCURRENCE_NAMESPACE, key).hex


def _check_rule(line: ExpenseLine, rule: RecurrenceRule) -> None:
    if rule.interval is None or rule.interval < 1:
        raise IntegrityError(
            f"Recurrence rule {rule.id} for expense line {line.id} has interval {rule.interval}"
        )
    if not 1 <= (rule.day_of_month or 0) <= 31:
        raise IntegrityError(
            f"Recurrence rule {rule.id} has day_of_month {rule.day_of_month}"
        )
    if rule.frequency == Frequency.yearly and rule.month_of_year is None:
        raise IntegrityError(
            f"Yearly recurrence rule {rule.id} is missing month_of_year"
        )


class ForecastEngine:
    def __init__(self, session: Session, today: Optional[date] = None) -> None:
        self.session = session
        self.today = today

    def _scenario(self, scenario_id: str) -> Scenario:
        scenario = self.session.get(Scenario, scenario_id)
        if not scenario:
            raise NotFoundError("Scenario", scenario_id)
        return scenario

    def mark_stale(self, scenario_id: str) -> None:
        scenario = self._scenario(scenario_id)
        scenario.forecast_stale = True
        self.session.commit()

    def is_stale(self, scenario_id: str) -> bool:
        return self._scenario(scenario_id).forecast_stale

    def generate(self, scenario_id: str, horizon_months: int) -> list[dict[str, object]]:
        """Expand every active recurring line of the scenario into occurrence rows."""
        today = self.today or local_today()
        stmt = (
            select(ExpenseLine, RecurrenceRule)
            .join(RecurrenceRule, RecurrenceRule.expense_line_id == ExpenseLine.id)
            .where(
                ExpenseLine.scenario_id == scenario_id,
                ExpenseLine.deleted_at.is_(None),
                ExpenseLine.expense_type == ExpenseType.recurring,
                ExpenseLine.status != ExpenseStatus.cancelled,
            )
            .order_by(ExpenseLine.created_at, ExpenseLine.id)
        )
        rows: list[dict[str, object]] = []
        for line, rule in self.session.execute(stmt):
            _check_rule(line, rule)
            anchor = resolve_anchor_date(
                frequency=rule.frequency,
                day_of_month=rule.day_of_month,
                month_of_year=rule.month_of_year,
                anchor_date=rule.anchor_date,
                start_date=line.start_date,
                today=today,
            )
            for occurrence_date in generate_occurrence_dates(
                frequency=rule.frequency,
                interval=rule.interval,
                day_of_month=rule.day_of_month,
                anchor=anchor,
                horizon_months=horizon_months,
                start_date=line.start_date,
                end_date=line.end_date,
            ):
                rows.append(
                    {
                        "id": occurrence_id(scenario_id, line.id, occurrence_date),
                        "scenario_id": scenario_id,
                        "expense_line_id": line.id,
                        "occurrence_date": occurrence_date,
                        "amount_minor": line.amount_minor,
                        "currency": line.currency,
                    }
                )
        return rows

    def materialize(self, scenario_id: str, horizon_months: Optional[int] = None) -> int:
        if horizon_months is None:
            horizon_months = get_settings().forecast_horizon_months
        if horizon_months < 0:
            raise ValidationError("horizon_months must be non-negative", field="horizon_months")

        try:
            scenario = self._scenario(scenario_id)
            rows = self.generate(scenario_id, horizon_months)
            fresh_ids = {row["id"] for row in rows}

            # Matches survive only when the same logical occurrence is regenerated.
            kept_links: set[str] = set()
            released = 0
            linked = self.session.scalars(
                select(SpendTransaction).where(
                    SpendTransaction.scenario_id == scenario_id,
                    SpendTransaction.matched_occurrence_id.is_not(None),
                )
            ).all()
            for txn in linked:
                if txn.matched_occurrence_id in fresh_ids:
                    kept_links.add(txn.matched_occurrence_id)
                else:
                    txn.matched_occurrence_id = None
                    released += 1
            self.session.flush()

            self.session.execute(
                delete(Occurrence).where(Occurrence.scenario_id == scenario_id)
            )
            now = datetime.utcnow()
            for row in rows:
                row["state"] = (
                    OccurrenceState.actualized
                    if row["id"] in kept_links
                    else OccurrenceState.forecast
                )
                row["created_at"] = now
                row["updated_at"] = now
            if rows:
                self.session.execute(insert(Occurrence), rows)

            scenario.forecast_stale = False
            scenario.forecast_generated_at = now
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        logger.info(
            f"forecast_materialized: scenario={scenario_id} horizon={horizon_months} "
            f"occurrences={len(rows)} released_matches={released}"
        )
        return len(rows)

    def refresh_stale(self, horizon_months: Optional[int] = None) -> dict[str, int]:
        stale_ids = self.session.scalars(
            select(Scenario.id)
            .where(Scenario.forecast_stale.is_(True))
            .order_by(Scenario.created_at, Scenario.id)
        ).all()
        return {
            scenario_id: self.materialize(scenario_id, horizon_months)
            for scenario_id in stale_ids
        }
