from datetime import date
from decimal import Decimal

import pytest
from pydantic import ValidationError
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from database import Base
from periods import year_period
from schemas import IncomeIn
from services import ForbiddenError, IncomeService, NotFoundError, UserService


def make_session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


def test_list_for_year_filters_range_and_orders_newest_first() -> None:
    session = make_session()
    user = UserService(session).upsert_google_user("ann@example.com", "Ann", "g-1")
    incomes = IncomeService(session, user.id)

    incomes.create(IncomeIn(amount=1000, source="Salary", date=date(2025, 1, 31)))
    incomes.create(IncomeIn(amount=250.5, source="Freelance", date=date(2025, 6, 1)))
    incomes.create(IncomeIn(amount=99, source="Bonus", date=date(2024, 12, 31)))
    incomes.create(IncomeIn(amount=10, source="Gift", date=date(2026, 1, 1)))

    rows = incomes.list_for_period(year_period(2025))

    assert [r.source for r in rows] == ["Freelance", "Salary"]
    assert rows[0].amount == Decimal("250.50")


def test_income_is_scoped_to_owner() -> None:
    session = make_session()
    users = UserService(session)
    ann = users.upsert_google_user("ann@example.com", "Ann", "g-1")
    bob = users.upsert_google_user("bob@example.com", "Bob", "g-2")

    IncomeService(session, ann.id).create(
        IncomeIn(amount=500, source="Salary", date=date(2025, 2, 1))
    )

    assert IncomeService(session, bob.id).list_for_period(year_period(2025)) == []


def test_summary_reports_year_and_all_time_totals() -> None:
    session = make_session()
    user = UserService(session).upsert_google_user("ann@example.com", "Ann", "g-1")
    incomes = IncomeService(session, user.id)
    incomes.create(IncomeIn(amount=100.25, source="A", date=date(2025, 3, 1)))
    incomes.create(IncomeIn(amount=200, source="B", date=date(2025, 4, 1)))
    incomes.create(IncomeIn(amount=50, source="C", date=date(2023, 4, 1)))

    summary = incomes.summary(year_period(2025))

    assert len(summary["year_incomes"]) == 2
    assert summary["year_total"] == Decimal("300.25")
    assert summary["all_time_total"] == Decimal("350.25")


def test_years_lists_distinct_years_descending() -> None:
    session = make_session()
    user = UserService(session).upsert_google_user("ann@example.com", "Ann", "g-1")
    incomes = IncomeService(session, user.id)
    for day in (date(2023, 5, 1), date(2025, 1, 1), date(2025, 7, 1), date(2024, 2, 2)):
        incomes.create(IncomeIn(amount=1, source="x", date=day))

    assert incomes.years() == [2025, 2024, 2023]


def test_delete_checks_existence_then_ownership() -> None:
    session = make_session()
    users = UserService(session)
    ann = users.upsert_google_user("ann@example.com", "Ann", "g-1")
    bob = users.upsert_google_user("bob@example.com", "Bob", "g-2")
    income = IncomeService(session, ann.id).create(
        IncomeIn(amount=10, source="Salary", date=date(2025, 1, 1))
    )

    with pytest.raises(NotFoundError):
        IncomeService(session, ann.id).delete(income.id + 100)
    with pytest.raises(ForbiddenError):
        IncomeService(session, bob.id).delete(income.id)

    IncomeService(session, ann.id).delete(income.id)
    assert IncomeService(session, ann.id).list_for_period(year_period(2025)) == []


@pytest.mark.parametrize(
    "payload",
    [
        {"amount": 0, "source": "Salary", "date": "2025-01-01"},
        {"amount": -5, "source": "Salary", "date": "2025-01-01"},
        {"amount": "100", "source": "Salary", "date": "2025-01-01"},
        {"amount": 100, "source": "   ", "date": "2025-01-01"},
        {"amount": 100, "source": "Salary", "date": "yesterday"},
        {"source": "Salary", "date": "2025-01-01"},
    ],
)
def test_income_input_validation(payload: dict) -> None:
    with pytest.raises(ValidationError):
        IncomeIn.model_validate(payload)
