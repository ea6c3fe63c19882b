from datetime import date

import pytest
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select

from errors import LockedStateError, NotFoundError, ValidationError
from forecast import ForecastEngine
from models import (
    ApprovalStatus,
    ExpenseStatus,
    ExpenseType,
    Frequency,
    RecurrenceRule,
)
from schemas import ExpenseLineIn, RecurrenceRuleIn, ScenarioIn
from services import ExpenseLineService, ScenarioService


def _line_in(seed, **overrides) -> ExpenseLineIn:
    data = dict(
        scenario_id=seed.scenario.id,
        service_id=seed.service.id,
        name="Hosting",
        expense_type=ExpenseType.recurring,
        status=ExpenseStatus.planned,
        amount_minor=10000,
    )
    data.update(overrides)
    return ExpenseLineIn(**data)


def _monthly(day: int = 1) -> RecurrenceRuleIn:
    return RecurrenceRuleIn(
        frequency=Frequency.monthly, day_of_month=day, anchor_date=date(2026, 1, day)
    )


def test_approval_transitions(session, seed) -> None:
    scenarios = ScenarioService(session)

    with pytest.raises(ValidationError):
        scenarios.set_approval_status(seed.scenario.id, ApprovalStatus.approved)

    scenarios.set_approval_status(seed.scenario.id, ApprovalStatus.reviewed)
    scenarios.set_approval_status(seed.scenario.id, ApprovalStatus.approved)
    assert scenarios.get(seed.scenario.id).approval_status == ApprovalStatus.approved

    with pytest.raises(ValidationError):
        scenarios.set_approval_status(seed.scenario.id, ApprovalStatus.draft)


def test_locked_scenario_rejects_line_mutations(session, seed) -> None:
    lines = ExpenseLineService(session)
    line = lines.create(_line_in(seed), _monthly())
    ScenarioService(session).lock(seed.scenario.id)

    with pytest.raises(LockedStateError):
        lines.create(_line_in(seed, name="Backup"), _monthly())
    with pytest.raises(LockedStateError):
        lines.update(line.id, _line_in(seed, amount_minor=1))
    with pytest.raises(LockedStateError):
        lines.set_recurrence(line.id, _monthly(15))
    with pytest.raises(LockedStateError):
        lines.delete_recurrence(line.id)
    with pytest.raises(LockedStateError):
        lines.delete(line.id)

    assert lines.get(line.id).amount_minor == 10000


def test_unknown_scenario_and_line(session, seed) -> None:
    lines = ExpenseLineService(session)
    with pytest.raises(NotFoundError):
        lines.create(_line_in(seed, scenario_id="missing"), _monthly())
    with pytest.raises(NotFoundError):
        lines.get("missing")
    with pytest.raises(NotFoundError):
        ScenarioService(session).lock("missing")


def test_recurring_line_requires_rule(session, seed) -> None:
    lines = ExpenseLineService(session)
    with pytest.raises(ValidationError):
        lines.create(_line_in(seed))
    with pytest.raises(ValidationError):
        lines.create(_line_in(seed, expense_type=ExpenseType.one_time), _monthly())


def test_mutations_mark_scenario_stale(session, seed) -> None:
    lines = ExpenseLineService(session)
    engine = ForecastEngine(session, today=date(2026, 1, 1))
    line = lines.create(_line_in(seed), _monthly())

    engine.materialize(seed.scenario.id, 1)
    lines.update(line.id, _line_in(seed, amount_minor=20000))
    assert engine.is_stale(seed.scenario.id)

    engine.materialize(seed.scenario.id, 1)
    lines.set_recurrence(line.id, _monthly(15))
    assert engine.is_stale(seed.scenario.id)

    engine.materialize(seed.scenario.id, 1)
    lines.delete(line.id)
    assert engine.is_stale(seed.scenario.id)


def test_set_and_delete_recurrence(session, seed) -> None:
    lines = ExpenseLineService(session)
    line = lines.create(_line_in(seed), _monthly())

    rule = lines.set_recurrence(line.id, _monthly(15))
    assert rule.day_of_month == 15
    assert len(session.scalars(select(RecurrenceRule)).all()) == 1

    lines.delete_recurrence(line.id)
    assert session.scalars(select(RecurrenceRule)).all() == []
    with pytest.raises(NotFoundError):
        lines.delete_recurrence(line.id)


def test_switching_to_one_time_drops_rule(session, seed) -> None:
    lines = ExpenseLineService(session)
    line = lines.create(_line_in(seed), _monthly())

    lines.update(line.id, _line_in(seed, expense_type=ExpenseType.one_time))

    assert lines.get(line.id).recurrence_rule is None
    assert session.scalars(select(RecurrenceRule)).all() == []


def test_soft_delete_hides_line(session, seed) -> None:
    lines = ExpenseLineService(session)
    line = lines.create(_line_in(seed), _monthly())

    lines.delete(line.id)

    assert lines.list_for_scenario(seed.scenario.id) == []
    with pytest.raises(NotFoundError):
        lines.get(line.id)


def test_clone_copies_live_lines(session, seed) -> None:
    lines = ExpenseLineService(session)
    lines.create(_line_in(seed), _monthly(31))
    gone = lines.create(_line_in(seed, name="Legacy"), _monthly())
    lines.delete(gone.id)
    ScenarioService(session).lock(seed.scenario.id)

    clone = ScenarioService(session).clone(seed.scenario.id, "Cost cut")

    assert clone.parent_scenario_id == seed.scenario.id
    assert clone.approval_status == ApprovalStatus.draft
    assert not clone.is_locked
    assert clone.forecast_stale
    copied = lines.list_for_scenario(clone.id)
    assert [line.name for line in copied] == ["Hosting"]
    assert copied[0].recurrence_rule.day_of_month == 31


def test_create_scenario_checks_parent(session) -> None:
    with pytest.raises(NotFoundError):
        ScenarioService(session).create(
            ScenarioIn(name="Child", parent_scenario_id="missing")
        )


def test_schema_validation() -> None:
    with pytest.raises(PydanticValidationError):
        RecurrenceRuleIn(frequency=Frequency.yearly, day_of_month=1)
    with pytest.raises(PydanticValidationError):
        RecurrenceRuleIn(frequency=Frequency.monthly, day_of_month=32)
    with pytest.raises(PydanticValidationError):
        ExpenseLineIn(
            scenario_id="s",
            service_id="v",
            name="x",
            expense_type=ExpenseType.one_time,
            status=ExpenseStatus.planned,
            amount_minor=1,
            start_date=date(2026, 2, 1),
            end_date=date(2026, 1, 1),
        )


def test_unknown_service_is_not_found(session, seed) -> None:
    lines = ExpenseLineService(session)
    with pytest.raises(NotFoundError) as exc:
        lines.create(_line_in(seed, service_id="no-such-service"), _monthly())
    assert exc.value.entity == "Service"

    line = lines.create(_line_in(seed), _monthly())
    with pytest.raises(NotFoundError):
        lines.update(line.id, _line_in(seed, service_id="no-such-service"))
    assert lines.get(line.id).service_id == seed.service.id
    assert len(lines.list_for_scenario(seed.scenario.id)) == 1
