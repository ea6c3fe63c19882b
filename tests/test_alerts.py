from datetime import date

import pytest
from sqlalchemy import select

from alerts import AlertEngine, AlertEventService, process_alert_notifications
from errors import IntegrityError, NotFoundError, ValidationError
from forecast import ForecastEngine
from models import (
    AlertEvent,
    AlertRule,
    AlertRuleType,
    AlertStatus,
    Contract,
    PlannedAction,
    ServicePlan,
)
from schemas import AlertRuleIn
from services import AlertRuleService


def _fixture(session, seed) -> None:
    seed.monthly_line(session, 5000, 10, date(2026, 1, 10))
    ForecastEngine(session, today=date(2026, 1, 1)).materialize(seed.scenario.id, 0)
    session.add_all(
        [
            Contract(
                service_id=seed.service.id,
                renewal_date=date(2026, 1, 20),
                notice_period_days=10,
            ),
            ServicePlan(
                scenario_id=seed.scenario.id,
                service_id=seed.service.id,
                planned_action=PlannedAction.replace,
                must_replace_by=date(2026, 1, 25),
                replacement_required=True,
            ),
            ServicePlan(
                scenario_id=seed.scenario.id,
                service_id=seed.service.id,
                planned_action=PlannedAction.retire,
                reason_code="EOL",
                must_replace_by=date(2026, 1, 15),
            ),
        ]
    )
    session.commit()
    rules = AlertRuleService(session)
    for rule_type in AlertRuleType:
        rules.create(
            AlertRuleIn(
                scenario_id=seed.scenario.id,
                rule_type=rule_type,
                params={"window_days": 30},
            )
        )


def _event(session, rule_type: AlertRuleType) -> AlertEvent:
    return session.scalars(
        select(AlertEvent)
        .join(AlertRule, AlertRule.id == AlertEvent.alert_rule_id)
        .where(AlertRule.rule_type == rule_type)
    ).one()


def test_tick_creates_one_event_per_rule(session, seed) -> None:
    _fixture(session, seed)

    result = AlertEngine(session).tick("2026-01-01")

    assert (result.evaluated_rules, result.created) == (5, 5)
    assert _event(session, AlertRuleType.upcoming_payment).fire_at == date(2026, 1, 10)
    assert _event(session, AlertRuleType.renewal_window).fire_at == date(2026, 1, 20)
    assert _event(session, AlertRuleType.replacement_missing).fire_at == date(2026, 1, 25)
    assert _event(session, AlertRuleType.eol_date).fire_at == date(2026, 1, 15)


def test_notice_deadline_fires_before_renewal(session, seed) -> None:
    _fixture(session, seed)
    AlertEngine(session).tick("2026-01-01")

    event = _event(session, AlertRuleType.notice_window)
    assert event.fire_at == date(2026, 1, 10)
    assert event.entity_type == "contract"
    assert event.dedupe_key.endswith("|2026-01-10")


def test_tick_is_deduplicated(session, seed) -> None:
    _fixture(session, seed)
    engine = AlertEngine(session)

    assert engine.tick("2026-01-01").created == 5
    assert engine.tick("2026-01-01").created == 0
    assert len(session.scalars(select(AlertEvent)).all()) == 5


def test_dedupe_survives_rematerialization(session, seed) -> None:
    _fixture(session, seed)
    AlertEngine(session).tick("2026-01-01")

    ForecastEngine(session, today=date(2026, 1, 1)).materialize(seed.scenario.id, 0)

    assert AlertEngine(session).tick("2026-01-01").created == 0


def test_selected_replacement_clears_missing_replacement(session, seed) -> None:
    _fixture(session, seed)
    plan = session.scalars(
        select(ServicePlan).where(ServicePlan.replacement_required.is_(True))
    ).one()
    plan.replacement_selected_service_id = seed.service.id
    session.commit()
    rule = session.scalars(
        select(AlertRule).where(AlertRule.rule_type == AlertRuleType.replacement_missing)
    ).one()

    assert AlertEngine(session).collect(rule, date(2026, 1, 1)) == []


def test_window_limits_candidates(session, seed) -> None:
    _fixture(session, seed)
    AlertRuleService(session).create(
        AlertRuleIn(
            scenario_id=seed.scenario.id,
            rule_type=AlertRuleType.renewal_window,
            params={"window_days": 5},
        )
    )
    short = session.scalars(
        select(AlertRule).where(AlertRule.params_json == '{"window_days": 5}')
    ).one()

    assert AlertEngine(session).collect(short, date(2026, 1, 1)) == []
    assert len(AlertEngine(session).collect(short, date(2026, 1, 16))) == 1


def test_disabled_rules_are_not_evaluated(session, seed) -> None:
    _fixture(session, seed)
    rules = AlertRuleService(session)
    for rule in rules.list_for_scenario(seed.scenario.id):
        rules.set_enabled(rule.id, False)

    result = AlertEngine(session).tick("2026-01-01")

    assert (result.evaluated_rules, result.created) == (0, 0)


def test_malformed_params_are_integrity_error(session, seed) -> None:
    session.add(
        AlertRule(
            scenario_id=seed.scenario.id,
            rule_type=AlertRuleType.upcoming_payment,
            params_json='{"window_days": -3}',
        )
    )
    session.commit()

    with pytest.raises(IntegrityError):
        AlertEngine(session).tick("2026-01-01")
    assert session.scalars(select(AlertEvent)).all() == []


def test_rule_input_rejects_bad_params() -> None:
    with pytest.raises(ValueError):
        AlertRuleIn(
            scenario_id="s1",
            rule_type=AlertRuleType.eol_date,
            params={"window_days": "soon"},
        )


def test_tick_requires_iso_date(session) -> None:
    with pytest.raises(ValidationError):
        AlertEngine(session).tick("")
    with pytest.raises(ValidationError):
        AlertEngine(session).tick("2026/01/01")


def test_snooze_suppresses_until_date(session, seed) -> None:
    _fixture(session, seed)
    AlertEngine(session).tick("2026-01-01")
    events = AlertEventService(session)
    event = _event(session, AlertRuleType.upcoming_payment)

    events.snooze(event.id, "2026-02-20")

    assert event.id not in [e.id for e in events.list_actionable("2026-02-19")]
    assert event.id in [e.id for e in events.list_actionable("2026-02-20")]


def test_actionable_waits_for_fire_date(session, seed) -> None:
    _fixture(session, seed)
    AlertEngine(session).tick("2026-01-01")
    events = AlertEventService(session)

    due = {e.fire_at for e in events.list_actionable("2026-01-12")}

    assert due == {date(2026, 1, 10)}


def test_event_lifecycle(session, seed) -> None:
    _fixture(session, seed)
    AlertEngine(session).tick("2026-01-01")
    events = AlertEventService(session)
    event = _event(session, AlertRuleType.renewal_window)

    snoozed = events.snooze(event.id, date(2026, 1, 25))
    assert (snoozed.status, snoozed.snoozed_until) == (AlertStatus.snoozed, date(2026, 1, 25))

    pending = events.unsnooze(event.id)
    assert (pending.status, pending.snoozed_until) == (AlertStatus.pending, None)

    acked = events.acknowledge(event.id, "2026-01-21")
    assert acked.status == AlertStatus.acked
    assert acked.fired_at == date(2026, 1, 21)

    assert events.acknowledge(event.id, "2026-01-30").fired_at == date(2026, 1, 21)
    with pytest.raises(ValidationError):
        events.snooze(event.id, "2026-02-01")
    with pytest.raises(ValidationError):
        events.unsnooze(event.id)
    assert event.id not in [e.id for e in events.list_actionable("2026-03-01")]


def test_snooze_requires_date(session, seed) -> None:
    _fixture(session, seed)
    AlertEngine(session).tick("2026-01-01")
    event = _event(session, AlertRuleType.eol_date)

    with pytest.raises(ValidationError):
        AlertEventService(session).snooze(event.id, "")
    assert session.get(AlertEvent, event.id).status == AlertStatus.pending


def test_unknown_event_is_not_found(session) -> None:
    events = AlertEventService(session)
    with pytest.raises(NotFoundError):
        events.acknowledge("missing", "2026-01-01")
    with pytest.raises(NotFoundError):
        events.snooze("missing", "2026-01-01")
    with pytest.raises(NotFoundError):
        events.unsnooze("missing")
    with pytest.raises(NotFoundError):
        events.mark_notified("missing", "2026-01-01")


def test_mark_notified_is_idempotent(session, seed) -> None:
    _fixture(session, seed)
    AlertEngine(session).tick("2026-01-01")
    events = AlertEventService(session)
    event = _event(session, AlertRuleType.upcoming_payment)

    events.mark_notified(event.id, "2026-01-10")
    events.mark_notified(event.id, "2026-01-11")

    assert session.get(AlertEvent, event.id).fired_at == date(2026, 1, 10)
    assert event.id not in [e.id for e in events.list_actionable("2026-01-11")]


def test_process_alert_notifications_publishes_once(session, seed) -> None:
    _fixture(session, seed)
    published: list[str] = []

    first = process_alert_notifications(session, "2026-01-10", lambda e: published.append(e.id))
    second = process_alert_notifications(session, "2026-01-10", lambda e: published.append(e.id))

    assert first == 2
    assert second == 0
    assert len(set(published)) == 2


def test_eol_reason_code_match_is_exact(session, seed) -> None:
    session.add(
        ServicePlan(
            scenario_id=seed.scenario.id,
            service_id=seed.service.id,
            planned_action=PlannedAction.retire,
            reason_code="eol",
            must_replace_by=date(2026, 1, 15),
        )
    )
    session.commit()
    rule = AlertRuleService(session).create(
        AlertRuleIn(
            scenario_id=seed.scenario.id,
            rule_type=AlertRuleType.eol_date,
            params={"window_days": 30},
        )
    )

    assert AlertEngine(session).collect(rule, date(2026, 1, 1)) == []
