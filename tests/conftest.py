from dataclasses import dataclass
from datetime import date
from typing import Iterator, Optional

import pytest
from sqlalchemy.orm import Session

from database import Base, make_engine
from models import ExpenseLine, ExpenseStatus, ExpenseType, Frequency, Scenario, Service, Vendor
from schemas import ExpenseLineIn, RecurrenceRuleIn, ScenarioIn
from services import ExpenseLineService, ScenarioService


@pytest.fixture
def session() -> Iterator[Session]:
    engine = make_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        yield session


@dataclass
class Seed:
    scenario: Scenario
    service: Service

    def monthly_line(
        self,
        session: Session,
        amount_minor: int,
        day_of_month: int,
        anchor: date,
        name: str = "Hosting",
        end_date: Optional[date] = None,
    ) -> ExpenseLine:
        return ExpenseLineService(session).create(
            ExpenseLineIn(
                scenario_id=self.scenario.id,
                service_id=self.service.id,
                name=name,
                expense_type=ExpenseType.recurring,
                status=ExpenseStatus.planned,
                amount_minor=amount_minor,
                end_date=end_date,
            ),
            RecurrenceRuleIn(
                frequency=Frequency.monthly,
                day_of_month=day_of_month,
                anchor_date=anchor,
            ),
        )


@pytest.fixture
def seed(session: Session) -> Seed:
    vendor = Vendor(name="Acme Cloud")
    session.add(vendor)
    session.flush()
    service = Service(vendor_id=vendor.id, name="Object storage")
    session.add(service)
    session.commit()
    scenario = ScenarioService(session).create(ScenarioIn(name="Baseline"))
    return Seed(scenario=scenario, service=service)
