from datetime import date
from decimal import Decimal

import pytest
from pydantic import ValidationError
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from database import Base
from periods import year_period
from schemas import NetWorthAccountsIn, NetWorthIn
from services import NetWorthService, NotFoundError, UserService


def make_session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


def snapshot(day: str, **accounts: float) -> NetWorthIn:
    return NetWorthIn.model_validate(
        {
            "date": day,
            "accounts": [
                {"accountName": name, "amount": amount}
                for name, amount in accounts.items()
            ],
        }
    )


def test_create_snapshot_returns_rows_sorted_by_account() -> None:
    session = make_session()
    user = UserService(session).upsert_google_user("ann@example.com", "Ann", "g-1")

    rows = NetWorthService(session, user.id).create_snapshot(
        snapshot("2025-01-01", Savings=5000, Cash=1000)
    )

    assert [(r.account_name, r.amount) for r in rows] == [
        ("Cash", Decimal("1000.00")),
        ("Savings", Decimal("5000.00")),
    ]
    assert {r.date for r in rows} == {date(2025, 1, 1)}


def test_create_snapshot_rejects_existing_account_on_same_date() -> None:
    session = make_session()
    user = UserService(session).upsert_google_user("ann@example.com", "Ann", "g-1")
    networth = NetWorthService(session, user.id)
    networth.create_snapshot(snapshot("2025-01-01", Cash=1000))

    with pytest.raises(ValueError, match="already has: Cash"):
        networth.create_snapshot(snapshot("2025-01-01", Cash=5, Brokerage=10))

    # all-or-nothing: Brokerage was not written either
    assert [r.account_name for r in networth.current().accounts] == ["Cash"]


def test_current_snapshot_uses_latest_date_and_sums_it() -> None:
    session = make_session()
    user = UserService(session).upsert_google_user("ann@example.com", "Ann", "g-1")
    networth = NetWorthService(session, user.id)
    assert networth.current() is None

    networth.create_snapshot(snapshot("2025-01-01", A=1))
    networth.create_snapshot(snapshot("2025-06-01", A=200, B=300.5))

    current = networth.current()
    assert current.date == date(2025, 6, 1)
    assert current.total == Decimal("500.50")
    assert [a.account_name for a in current.accounts] == ["A", "B"]


def test_snapshots_grouped_by_date_ascending() -> None:
    session = make_session()
    user = UserService(session).upsert_google_user("ann@example.com", "Ann", "g-1")
    networth = NetWorthService(session, user.id)
    networth.create_snapshot(snapshot("2025-03-01", Cash=30))
    networth.create_snapshot(snapshot("2025-01-01", Cash=10, Stocks=5))

    groups = networth.snapshots()

    assert [(g.date, g.total, len(g.accounts)) for g in groups] == [
        (date(2025, 1, 1), Decimal("15.00"), 2),
        (date(2025, 3, 1), Decimal("30.00"), 1),
    ]


def test_monthly_totals_sum_entries_per_calendar_month() -> None:
    session = make_session()
    user = UserService(session).upsert_google_user("ann@example.com", "Ann", "g-1")
    networth = NetWorthService(session, user.id)
    networth.create_snapshot(snapshot("2025-01-10", Cash=100))
    networth.create_snapshot(snapshot("2025-01-20", Cash=200))
    networth.create_snapshot(snapshot("2025-02-05", Cash=300))
    networth.create_snapshot(snapshot("2024-12-31", Cash=999))

    totals = networth.monthly_totals(year_period(2025))

    assert totals == [
        {"month": 1, "total": Decimal("300.00")},
        {"month": 2, "total": Decimal("300.00")},
    ]


def test_replace_snapshot_swaps_rows_for_the_date() -> None:
    session = make_session()
    user = UserService(session).upsert_google_user("ann@example.com", "Ann", "g-1")
    networth = NetWorthService(session, user.id)
    networth.create_snapshot(snapshot("2025-01-01", Cash=1000, Car=8000))
    networth.create_snapshot(snapshot("2025-02-01", Cash=1100))

    rows = networth.replace_snapshot(
        date(2025, 1, 1),
        NetWorthAccountsIn.model_validate(
            {"accounts": [{"accountName": "Cash", "amount": 900}]}
        ),
    )

    assert [(r.account_name, r.amount) for r in rows] == [("Cash", Decimal("900.00"))]
    assert [g.total for g in networth.snapshots()] == [
        Decimal("900.00"),
        Decimal("1100.00"),
    ]


def test_delete_snapshot_returns_count_and_404s_when_empty() -> None:
    session = make_session()
    users = UserService(session)
    ann = users.upsert_google_user("ann@example.com", "Ann", "g-1")
    bob = users.upsert_google_user("bob@example.com", "Bob", "g-2")
    NetWorthService(session, ann.id).create_snapshot(
        snapshot("2025-01-01", Cash=1, Stocks=2)
    )

    with pytest.raises(NotFoundError):
        NetWorthService(session, bob.id).delete_snapshot(date(2025, 1, 1))

    assert NetWorthService(session, ann.id).delete_snapshot(date(2025, 1, 1)) == 2
    assert NetWorthService(session, ann.id).current() is None


@pytest.mark.parametrize(
    "payload",
    [
        {"date": "not a date", "accounts": [{"accountName": "Cash", "amount": 1}]},
        {"date": "2025-01-01", "accounts": []},
        {"date": "2025-01-01", "accounts": [{"accountName": "", "amount": 1}]},
        {"date": "2025-01-01", "accounts": [{"accountName": "Cash"}]},
        {"date": "2025-01-01", "accounts": [{"accountName": "Cash", "amount": "1"}]},
        {"date": "2025-01-01", "accounts": [{"accountName": "Cash", "amount": -1}]},
        {
            "date": "2025-01-01",
            "accounts": [
                {"accountName": "Cash", "amount": 1},
                {"accountName": "Cash", "amount": 2},
            ],
        },
    ],
)
def test_snapshot_input_validation(payload: dict) -> None:
    with pytest.raises(ValidationError):
        NetWorthIn.model_validate(payload)
