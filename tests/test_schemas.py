from datetime import date

import pytest
from pydantic import ValidationError

from schemas import IncomeIn, NetWorthAccountIn, TransactionIn, check_money


@pytest.mark.parametrize(
    "value,expected",
    [(0.005, 0.01), (12.345, 12.35), (9999999999.99, 9999999999.99), (7, 7.0)],
)
def test_check_money_rounds_to_cents(value: float, expected: float) -> None:
    assert check_money(value, 10) == expected


@pytest.mark.parametrize("value", [0.001, 0.0049, 9999999999.995, 1e10, 1e300])
def test_check_money_rejects_zero_and_overflowing_amounts(value: float) -> None:
    with pytest.raises(ValueError):
        check_money(value, 10)


def test_income_amount_is_rounded_on_input() -> None:
    data = IncomeIn(amount=19.999, source="Refund", date="2025-02-01")

    assert data.amount == 20.0
    assert data.date == date(2025, 2, 1)


def test_net_worth_accounts_allow_wider_amounts() -> None:
    assert NetWorthAccountIn(account_name="Home", amount=5e11).amount == 5e11
    with pytest.raises(ValidationError):
        NetWorthAccountIn(account_name="Home", amount=1e12)
    with pytest.raises(ValidationError):
        NetWorthAccountIn(account_name="Dust", amount=0.001)


def test_transaction_reference_ids_must_fit_a_row_id() -> None:
    base = {
        "category": "Food",
        "item": "Bread",
        "payment_type": "cash",
        "amount": 3,
        "date": "2025-02-01",
    }

    assert TransactionIn(company_id=2**63 - 1, **base).company_id == 2**63 - 1
    with pytest.raises(ValidationError):
        TransactionIn(company_id=2**63, **base)
