import csv
import hashlib
import logging
import re
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from io import StringIO
from typing import Optional, Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from config import get_settings
from models import Scenario, Service, SpendTransaction
from reconciliation import ReconciliationService
from schemas import ActualTransactionIn, coerce_iso_date

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("scenario_id", "service_id", "transaction_date", "amount")

FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "scenario_id": ("scenario_id", "scenario", "scenarioid"),
    "service_id": ("service_id", "service", "serviceid"),
    "contract_id": ("contract_id", "contract", "contractid"),
    "transaction_date": ("transaction_date", "date", "posted_date"),
    "amount": ("amount", "amount_usd", "usd", "cost"),
    "currency": ("currency", "curr"),
    "description": ("description", "memo", "notes"),
}

REVIEW_LIMIT = 20


def sanitize_csv_value(value: str) -> str:
    """
    Sanitize CSV values to prevent formula injection by prefixing dangerous patterns with tab.
    """
    if not value or value.strip() == "":
        return ""

    value = value.strip()

    formula_triggers = ("=", "+", "-", "@", "\t", "\r")

    if value.startswith(formula_triggers):
        return "\t" + value

    dangerous_patterns = [
        r"^cmd\s*",
        r"^powershell\s*",
        r"^bash\s*",
        r"^sh\s*",
        r"^http[s]?://",
    ]

    for pattern in dangerous_patterns:
        if re.match(pattern, value, re.IGNORECASE):
            return "\t" + value

    return value


def parse_amount(value: str) -> int:
    """Parse decimal currency text such as ``$1,234.50`` into minor units."""
    clean = value.strip().replace("$", "").replace(" ", "")
    clean = clean.replace(",", ".")
    if clean.count(".") > 1:
        parts = clean.split(".")
        clean = "".join(parts[:-1]) + "." + parts[-1]
    if not re.fullmatch(r"-?\d+(\.\d{1,2})?", clean):
        raise ValueError("Invalid amount")
    try:
        amount = Decimal(clean)
    except InvalidOperation as exc:
        raise ValueError("Invalid amount") from exc
    minor = int((amount * 100).quantize(Decimal("1")))
    if minor < 0:
        raise ValueError("Amount must be non-negative")
    return minor


def normalize_header(value: str) -> str:
    return re.sub(r"\s+", "_", value.strip().lower())


def auto_mapping(headers: Sequence[str]) -> dict[str, str]:
    by_normalized = {normalize_header(header): header for header in headers}
    mapping: dict[str, str] = {}
    for field_name, aliases in FIELD_ALIASES.items():
        for alias in aliases:
            if alias in by_normalized:
                mapping[field_name] = by_normalized[alias]
                break
    return mapping


def fingerprint(row: ActualTransactionIn) -> str:
    parts = [
        row.scenario_id,
        row.service_id,
        row.contract_id or "",
        row.transaction_date.isoformat(),
        str(row.amount_minor),
        row.currency,
        row.description or "",
    ]
    return hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class ImportIssue:
    row_number: int
    code: str
    field: str
    message: str


@dataclass
class ImportPreview:
    total_rows: int
    mapping: dict[str, str]
    accepted_rows: list[ActualTransactionIn] = field(default_factory=list)
    errors: list[ImportIssue] = field(default_factory=list)
    duplicate_count: int = 0

    @property
    def accepted_count(self) -> int:
        return len(self.accepted_rows)

    @property
    def rejected_count(self) -> int:
        return len(self.errors)


@dataclass(frozen=True)
class ImportCommitResult:
    total_rows: int
    accepted_count: int
    rejected_count: int
    duplicate_count: int
    inserted: int
    matched: int
    unmatched: int
    match_rate: float
    errors: list[ImportIssue]
    unmatched_for_review: list[SpendTransaction]


def read_csv(content: str) -> tuple[list[str], list[dict[str, str]]]:
    reader = csv.DictReader(StringIO(content.lstrip("\ufeff")))
    headers = [header.strip() for header in (reader.fieldnames or [])]
    rows: list[dict[str, str]] = []
    for raw in reader:
        if not any((value or "").strip() for value in raw.values() if isinstance(value, str)):
            continue
        rows.append({(key or "").strip(): (value or "") for key, value in raw.items()})
    return headers, rows


class ActualsImportService:
    def __init__(self, session: Session) -> None:
        self.session = session
        self.currency = get_settings().currency

    def _existing_fingerprints(self) -> set[str]:
        stmt = select(
            SpendTransaction.scenario_id,
            SpendTransaction.service_id,
            SpendTransaction.contract_id,
            SpendTransaction.transaction_date,
            SpendTransaction.amount_minor,
            SpendTransaction.currency,
            SpendTransaction.description,
        )
        return {
            fingerprint(
                ActualTransactionIn(
                    scenario_id=row.scenario_id,
                    service_id=row.service_id,
                    contract_id=row.contract_id,
                    transaction_date=row.transaction_date,
                    amount_minor=row.amount_minor,
                    currency=row.currency,
                    description=row.description,
                )
            )
            for row in self.session.execute(stmt)
        }

    def _live_service(self, service_id: str) -> bool:
        service = self.session.get(Service, service_id)
        return service is not None and service.deleted_at is None

    def _validate_row(
        self, row_number: int, raw: dict[str, str], mapping: dict[str, str]
    ) -> tuple[Optional[ActualTransactionIn], list[ImportIssue]]:
        def value_at(name: str) -> str:
            column = mapping.get(name)
            return (raw.get(column) or "").strip() if column else ""

        issues: list[ImportIssue] = []

        def reject(name: str, message: str) -> None:
            issues.append(ImportIssue(row_number, "validation", name, message))

        scenario_id = value_at("scenario_id")
        service_id = value_at("service_id")
        currency = value_at("currency").upper() or self.currency
        if not scenario_id:
            reject("scenario_id", "scenario_id is required.")
        elif self.session.get(Scenario, scenario_id) is None:
            reject("scenario_id", f"Scenario not found: {scenario_id}.")
        if not service_id:
            reject("service_id", "service_id is required.")
        elif not self._live_service(service_id):
            reject("service_id", f"Service not found: {service_id}.")
        try:
            transaction_date = coerce_iso_date(value_at("transaction_date"))
        except ValueError:
            reject("transaction_date", "transaction_date must use YYYY-MM-DD format.")
        if currency != self.currency:
            reject("currency", f"currency must be {self.currency}.")
        try:
            amount_minor = parse_amount(value_at("amount"))
        except ValueError as exc:
            reject("amount", f"amount is invalid: {exc}.")

        if issues:
            return None, issues
        return (
            ActualTransactionIn(
                scenario_id=scenario_id,
                service_id=service_id,
                contract_id=value_at("contract_id") or None,
                transaction_date=transaction_date,
                amount_minor=amount_minor,
                currency=currency,
                description=value_at("description") or None,
            ),
            [],
        )

    def preview(
        self, content: str, mapping: Optional[dict[str, str]] = None
    ) -> ImportPreview:
        headers, rows = read_csv(content)
        if mapping is None:
            resolved = auto_mapping(headers)
        else:
            available = set(headers)
            resolved = {
                name: column for name, column in mapping.items() if column in available
            }
        result = ImportPreview(total_rows=len(rows), mapping=resolved)

        missing = [name for name in REQUIRED_FIELDS if name not in resolved]
        if missing:
            for name in missing:
                result.errors.append(
                    ImportIssue(1, "validation", name, f"Missing mapping for required field: {name}")
                )
            return result

        existing = self._existing_fingerprints()
        seen: set[str] = set()
        # Header is row 1.
        for row_number, raw in enumerate(rows, start=2):
            parsed, issues = self._validate_row(row_number, raw, resolved)
            if issues:
                result.errors.extend(issues)
                continue
            key = fingerprint(parsed)
            if key in seen or key in existing:
                result.duplicate_count += 1
                result.errors.append(
                    ImportIssue(
                        row_number, "duplicate", "row", "Duplicate actual transaction row skipped."
                    )
                )
                continue
            seen.add(key)
            result.accepted_rows.append(parsed)
        return result

    def commit(
        self, content: str, mapping: Optional[dict[str, str]] = None
    ) -> ImportCommitResult:
        preview = self.preview(content, mapping)
        reconciliation = ReconciliationService(self.session)
        ingest = reconciliation.ingest(preview.accepted_rows)

        scenario_ids: list[str] = []
        for row in preview.accepted_rows:
            if row.scenario_id not in scenario_ids:
                scenario_ids.append(row.scenario_id)
        review: list[SpendTransaction] = []
        for scenario_id in scenario_ids:
            review.extend(reconciliation.list_unmatched(scenario_id))

        logger.info(
            f"actuals_import: rows={preview.total_rows} accepted={preview.accepted_count} "
            f"rejected={preview.rejected_count} duplicates={preview.duplicate_count}"
        )
        return ImportCommitResult(
            total_rows=preview.total_rows,
            accepted_count=preview.accepted_count,
            rejected_count=preview.rejected_count,
            duplicate_count=preview.duplicate_count,
            inserted=ingest.inserted,
            matched=ingest.matched,
            unmatched=ingest.unmatched,
            match_rate=ingest.match_rate,
            errors=preview.errors,
            unmatched_for_review=review[:REVIEW_LIMIT],
        )


def export_unmatched(transactions: Sequence[SpendTransaction]) -> str:
    output = StringIO()
    writer = csv.writer(output)
    writer.writerow(
        ["Id", "Scenario", "Service", "Date", "Amount", "Currency", "Description"]
    )
    for txn in transactions:
        writer.writerow(
            [
                txn.id,
                sanitize_csv_value(txn.scenario_id),
                sanitize_csv_value(txn.service_id),
                txn.transaction_date.isoformat(),
                f"{txn.amount_minor / 100:.2f}",
                txn.currency,
                sanitize_csv_value(txn.description or ""),
            ]
        )
    return output.getvalue()
