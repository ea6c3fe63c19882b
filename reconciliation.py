import logging
from dataclasses import dataclass
from datetime import date
from typing import Iterable, Mapping, Optional, Union

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select
from sqlalchemy.orm import Session

from config import get_settings
from errors import ValidationError
from models import (
    ExpenseLine,
    Occurrence,
    OccurrenceState,
    SpendTransaction,
)
from periods import Period, month_key, month_period
from schemas import ActualTransactionIn
from services import get_scenario, get_service

logger = logging.getLogger(__name__)

TransactionInput = Union[ActualTransactionIn, Mapping[str, object]]


@dataclass(frozen=True)
class IngestResult:
    inserted: int
    matched: int
    unmatched: int
    match_rate: float


@dataclass(frozen=True)
class MonthlyVarianceRow:
    month: str
    forecast_minor: int
    actual_minor: int
    variance_minor: int
    unmatched_actual_minor: int
    unmatched_count: int


@dataclass(frozen=True)
class VarianceTotals:
    forecast_minor: int
    actual_minor: int
    variance_minor: int


def validate_transactions(transactions: Iterable[TransactionInput]) -> list[ActualTransactionIn]:
    """Validate the whole batch up front; the first bad row aborts it."""
    currency = get_settings().currency
    parsed: list[ActualTransactionIn] = []
    for index, raw in enumerate(transactions, start=1):
        try:
            item = (
                raw
                if isinstance(raw, ActualTransactionIn)
                else ActualTransactionIn.model_validate(raw)
            )
        except PydanticValidationError as exc:
            first = exc.errors()[0]
            field = ".".join(str(part) for part in first["loc"]) or None
            raise ValidationError(
                f"Transaction {index}: {field}: {first['msg']}", field=field
            ) from exc
        if item.currency != currency:
            raise ValidationError(
                f"Transaction {index}: currency must be {currency}", field="currency"
            )
        parsed.append(item)
    return parsed


def variance_totals(rows: Iterable[MonthlyVarianceRow]) -> VarianceTotals:
    forecast = actual = variance = 0
    for row in rows:
        forecast += row.forecast_minor
        actual += row.actual_minor
        variance += row.variance_minor
    return VarianceTotals(forecast_minor=forecast, actual_minor=actual, variance_minor=variance)


class ReconciliationService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def _find_match(
        self, data: ActualTransactionIn, reserved: set[str]
    ) -> Optional[Occurrence]:
        month = month_period(data.transaction_date)
        linked = select(SpendTransaction.matched_occurrence_id).where(
            SpendTransaction.matched_occurrence_id.is_not(None)
        )
        stmt = (
            select(Occurrence)
            .join(ExpenseLine, ExpenseLine.id == Occurrence.expense_line_id)
            .where(
                Occurrence.scenario_id == data.scenario_id,
                ExpenseLine.service_id == data.service_id,
                Occurrence.amount_minor == data.amount_minor,
                Occurrence.currency == data.currency,
                Occurrence.state == OccurrenceState.forecast,
                Occurrence.occurrence_date.between(month.start, month.end),
                Occurrence.id.not_in(linked),
            )
        )
        candidates = [
            occ for occ in self.session.scalars(stmt).all() if occ.id not in reserved
        ]
        if not candidates:
            return None
        return min(
            candidates,
            key=lambda occ: (
                abs((occ.occurrence_date - data.transaction_date).days),
                occ.occurrence_date,
                occ.id,
            ),
        )

    def ingest(self, transactions: Iterable[TransactionInput]) -> IngestResult:
        batch = validate_transactions(transactions)
        for scenario_id in dict.fromkeys(data.scenario_id for data in batch):
            get_scenario(self.session, scenario_id)
        for service_id in dict.fromkeys(data.service_id for data in batch):
            get_service(self.session, service_id)
        inserted = matched = unmatched = 0
        reserved: set[str] = set()
        try:
            for data in batch:
                occurrence = self._find_match(data, reserved)
                txn = SpendTransaction(
                    scenario_id=data.scenario_id,
                    service_id=data.service_id,
                    contract_id=data.contract_id,
                    transaction_date=data.transaction_date,
                    amount_minor=data.amount_minor,
                    currency=data.currency,
                    description=data.description,
                    matched_occurrence_id=occurrence.id if occurrence else None,
                )
                self.session.add(txn)
                if occurrence:
                    reserved.add(occurrence.id)
                    occurrence.state = OccurrenceState.actualized
                    matched += 1
                else:
                    unmatched += 1
                inserted += 1
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        result = IngestResult(
            inserted=inserted,
            matched=matched,
            unmatched=unmatched,
            match_rate=matched / inserted if inserted else 0.0,
        )
        logger.info(
            f"actuals_ingested: inserted={inserted} matched={matched} unmatched={unmatched}"
        )
        return result

    def list_unmatched(self, scenario_id: str) -> list[SpendTransaction]:
        stmt = (
            select(SpendTransaction)
            .where(
                SpendTransaction.scenario_id == scenario_id,
                SpendTransaction.matched_occurrence_id.is_(None),
            )
            .order_by(
                SpendTransaction.transaction_date,
                SpendTransaction.created_at,
                SpendTransaction.id,
            )
        )
        return list(self.session.scalars(stmt).all())

    def build_monthly_variance(
        self, scenario_id: str, period: Optional[Period] = None
    ) -> list[MonthlyVarianceRow]:
        occ_stmt = select(Occurrence.occurrence_date, Occurrence.amount_minor).where(
            Occurrence.scenario_id == scenario_id
        )
        txn_stmt = select(
            SpendTransaction.transaction_date,
            SpendTransaction.amount_minor,
            SpendTransaction.matched_occurrence_id,
        ).where(SpendTransaction.scenario_id == scenario_id)
        if period:
            occ_stmt = occ_stmt.where(
                Occurrence.occurrence_date.between(period.start, period.end)
            )
            txn_stmt = txn_stmt.where(
                SpendTransaction.transaction_date.between(period.start, period.end)
            )

        buckets: dict[str, dict[str, int]] = {}

        def bucket(value: date) -> dict[str, int]:
            return buckets.setdefault(
                month_key(value),
                {"forecast": 0, "actual": 0, "unmatched": 0, "unmatched_count": 0},
            )

        for occurrence_date, amount in self.session.execute(occ_stmt):
            bucket(occurrence_date)["forecast"] += amount
        for transaction_date, amount, matched_id in self.session.execute(txn_stmt):
            entry = bucket(transaction_date)
            entry["actual"] += amount
            if matched_id is None:
                entry["unmatched"] += amount
                entry["unmatched_count"] += 1

        return [
            MonthlyVarianceRow(
                month=month,
                forecast_minor=entry["forecast"],
                actual_minor=entry["actual"],
                variance_minor=entry["actual"] - entry["forecast"],
                unmatched_actual_minor=entry["unmatched"],
                unmatched_count=entry["unmatched_count"],
            )
            for month, entry in sorted(buckets.items())
        ]
