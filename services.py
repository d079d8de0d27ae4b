from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from sqlalchemy import delete, extract, func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from models import Category, Company, Income, NetWorth, Transaction, User
from periods import Period
from schemas import (
    CategoryIn,
    CompanyIn,
    IncomeIn,
    NetWorthAccountsIn,
    NetWorthIn,
    TransactionIn,
)


logger = logging.getLogger(__name__)

COMPANY_LIMIT_DEFAULT = 20
COMPANY_LIMIT_MAX = 100
CATEGORY_LIMIT_DEFAULT = 50
CATEGORY_LIMIT_MAX = 200

_CENT = Decimal("0.01")
_UPSERT_INSERTS = {"postgresql": pg_insert, "sqlite": sqlite_insert}


class NotFoundError(ValueError):
    pass


class ForbiddenError(ValueError):
    pass


def to_money(value: float | int | Decimal) -> Decimal:
    return Decimal(str(value)).quantize(_CENT, rounding=ROUND_HALF_UP)


def clamp_limit(limit: Optional[int], default: int, maximum: int) -> int:
    if limit is None:
        return default
    return min(max(limit, 1), maximum)


def _upsert_insert(session: Session, model):
    dialect = session.get_bind().dialect.name
    insert = _UPSERT_INSERTS.get(dialect)
    if insert is None:
        raise RuntimeError(f"Atomic upserts are not supported on {dialect}")
    return insert(model)


def _insert_or_ignore(
    session: Session, model, values: dict[str, object], conflict: list[str]
) -> bool:
    """Insert unless the unique key already exists; True when a row was added."""
    stmt = (
        _upsert_insert(session, model)
        .values(**values)
        .on_conflict_do_nothing(index_elements=conflict)
    )
    result = session.execute(stmt)
    return result.rowcount == 1


class UserService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def upsert_google_user(self, email: str, name: str, google_id: str) -> User:
        changes = {
            key: value
            for key, value in (("name", name), ("google_id", google_id))
            if value
        }
        stmt = _upsert_insert(self.session, User).values(
            email=email, name=name or "", google_id=google_id or ""
        )
        if changes:
            stmt = stmt.on_conflict_do_update(index_elements=["email"], set_=changes)
        else:
            stmt = stmt.on_conflict_do_nothing(index_elements=["email"])
        self.session.execute(stmt)
        user = self.session.scalar(
            select(User)
            .where(User.email == email)
            .execution_options(populate_existing=True)
        )
        self.session.commit()
        return user

    def get(self, user_id: int) -> User:
        user = self.session.get(User, user_id)
        if not user:
            raise NotFoundError("User not found")
        return user


class IncomeService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def create(self, data: IncomeIn) -> Income:
        income = Income(
            user_id=self.user_id,
            amount=to_money(data.amount),
            source=data.source,
            date=data.date,
        )
        self.session.add(income)
        self.session.commit()
        self.session.refresh(income)
        logger.info(f"income_created: user_id={self.user_id} income_id={income.id}")
        return income

    def list_for_period(self, period: Period) -> list[Income]:
        stmt = (
            select(Income)
            .where(
                Income.user_id == self.user_id,
                Income.date >= period.start,
                Income.date < period.end,
            )
            .order_by(Income.date.desc(), Income.id.desc())
        )
        return self.session.scalars(stmt).all()

    def summary(self, period: Period) -> dict[str, object]:
        year_incomes = self.list_for_period(period)
        year_total = sum((income.amount for income in year_incomes), Decimal("0"))
        all_time = self.session.scalar(
            select(func.coalesce(func.sum(Income.amount), 0)).where(
                Income.user_id == self.user_id
            )
        )
        return {
            "year_incomes": year_incomes,
            "year_total": to_money(year_total),
            "all_time_total": to_money(all_time or 0),
        }

    def years(self) -> list[int]:
        year = extract("year", Income.date)
        stmt = (
            select(year)
            .where(Income.user_id == self.user_id)
            .group_by(year)
            .order_by(year.desc())
        )
        return [int(value) for value in self.session.scalars(stmt).all()]

    def delete(self, income_id: int) -> None:
        income = self.session.get(Income, income_id)
        if not income:
            raise NotFoundError("Income not found")
        if income.user_id != self.user_id:
            raise ForbiddenError("Not authorized to delete this income")
        self.session.delete(income)
        self.session.commit()
        logger.info(f"income_deleted: user_id={self.user_id} income_id={income_id}")


class CompanyService:
    """Companies are global: every user shares the same name space."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def search(self, query: Optional[str] = None, limit: Optional[int] = None) -> list[Company]:
        stmt = select(Company).order_by(Company.name).limit(
            clamp_limit(limit, COMPANY_LIMIT_DEFAULT, COMPANY_LIMIT_MAX)
        )
        if query:
            stmt = stmt.where(
                func.lower(Company.name).contains(query.lower(), autoescape=True)
            )
        return self.session.scalars(stmt).all()

    def get(self, company_id: int) -> Company:
        company = self.session.get(Company, company_id)
        if not company:
            raise ValueError("Company not found")
        return company

    def get_or_create(self, name: str) -> tuple[Company, bool]:
        clean_name = name.strip()
        if not clean_name:
            raise ValueError("name required")
        created = _insert_or_ignore(
            self.session, Company, {"name": clean_name}, ["name"]
        )
        company = self.session.scalar(select(Company).where(Company.name == clean_name))
        return company, created

    def create(self, data: CompanyIn) -> tuple[Company, bool]:
        company, created = self.get_or_create(data.name)
        self.session.commit()
        if created:
            logger.info(f"company_created: company_id={company.id}")
        return company, created


class CategoryService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def search(self, query: Optional[str] = None, limit: Optional[int] = None) -> list[Category]:
        stmt = (
            select(Category)
            .where(Category.user_id == self.user_id)
            .order_by(Category.name)
            .limit(clamp_limit(limit, CATEGORY_LIMIT_DEFAULT, CATEGORY_LIMIT_MAX))
        )
        if query:
            stmt = stmt.where(
                func.lower(Category.name).contains(query.lower(), autoescape=True)
            )
        return self.session.scalars(stmt).all()

    def get_owned(self, category_id: int) -> Category:
        category = self.session.get(Category, category_id)
        if not category:
            raise ValueError("Category not found")
        if category.user_id != self.user_id:
            raise ForbiddenError("Category belongs to another user")
        return category

    def get_or_create(self, name: str) -> tuple[Category, bool]:
        clean_name = name.strip()
        if not clean_name:
            raise ValueError("name required")
        created = _insert_or_ignore(
            self.session,
            Category,
            {"user_id": self.user_id, "name": clean_name},
            ["user_id", "name"],
        )
        category = self.session.scalar(
            select(Category).where(
                Category.user_id == self.user_id, Category.name == clean_name
            )
        )
        return category, created

    def create(self, data: CategoryIn) -> tuple[Category, bool]:
        category, created = self.get_or_create(data.name)
        self.session.commit()
        if created:
            logger.info(
                f"category_created: user_id={self.user_id} category_id={category.id}"
            )
        return category, created


@dataclass
class TransactionFilters:
    period: Optional[Period] = None
    company_id: Optional[int] = None
    category_id: Optional[int] = None


class TransactionService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def _resolve_references(self, data: TransactionIn) -> tuple[int, int]:
        if data.company_id is not None:
            company = CompanyService(self.session).get(data.company_id)
        else:
            company, _ = CompanyService(self.session).get_or_create(data.company)

        categories = CategoryService(self.session, self.user_id)
        if data.category_id is not None:
            category = categories.get_owned(data.category_id)
        else:
            category, _ = categories.get_or_create(data.category)
        return company.id, category.id

    def create(self, data: TransactionIn) -> Transaction:
        company_id, category_id = self._resolve_references(data)
        txn = Transaction(
            user_id=self.user_id,
            company_id=company_id,
            category_id=category_id,
            item=data.item,
            payment_type=data.payment_type,
            amount=to_money(data.amount),
            date=data.date,
        )
        self.session.add(txn)
        self.session.commit()
        logger.info(f"transaction_created: user_id={self.user_id} transaction_id={txn.id}")
        return self.get(txn.id)

    def get(self, transaction_id: int) -> Transaction:
        stmt = (
            select(Transaction)
            .options(joinedload(Transaction.company), joinedload(Transaction.category))
            .where(Transaction.id == transaction_id)
            .execution_options(populate_existing=True)
        )
        txn = self.session.scalar(stmt)
        if not txn:
            raise NotFoundError("Transaction not found")
        if txn.user_id != self.user_id:
            raise ForbiddenError("Not authorized to access this transaction")
        return txn

    def update(self, transaction_id: int, data: TransactionIn) -> Transaction:
        txn = self.get(transaction_id)
        company_id, category_id = self._resolve_references(data)
        txn.company_id = company_id
        txn.category_id = category_id
        txn.item = data.item
        txn.payment_type = data.payment_type
        txn.amount = to_money(data.amount)
        txn.date = data.date
        self.session.commit()
        return self.get(transaction_id)

    def list(self, filters: TransactionFilters) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .options(joinedload(Transaction.company), joinedload(Transaction.category))
            .where(Transaction.user_id == self.user_id)
            .order_by(Transaction.date.desc(), Transaction.id.desc())
        )
        if filters.period:
            stmt = stmt.where(
                Transaction.date >= filters.period.start,
                Transaction.date < filters.period.end,
            )
        if filters.company_id is not None:
            stmt = stmt.where(Transaction.company_id == filters.company_id)
        if filters.category_id is not None:
            stmt = stmt.where(Transaction.category_id == filters.category_id)
        return self.session.scalars(stmt).unique().all()

    def delete(self, transaction_id: int) -> None:
        txn = self.get(transaction_id)
        self.session.delete(txn)
        self.session.commit()
        logger.info(
            f"transaction_deleted: user_id={self.user_id} transaction_id={transaction_id}"
        )


@dataclass
class Snapshot:
    date: date
    accounts: list[NetWorth] = field(default_factory=list)

    @property
    def total(self) -> Decimal:
        return to_money(sum((a.amount for a in self.accounts), Decimal("0")))


class NetWorthService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def _rows_for(self, day: date) -> list[NetWorth]:
        stmt = (
            select(NetWorth)
            .where(NetWorth.user_id == self.user_id, NetWorth.date == day)
            .order_by(NetWorth.account_name)
        )
        return self.session.scalars(stmt).all()

    def _build_rows(self, day: date, data: NetWorthAccountsIn) -> list[NetWorth]:
        return [
            NetWorth(
                user_id=self.user_id,
                account_name=account.account_name,
                amount=to_money(account.amount),
                date=day,
            )
            for account in data.accounts
        ]

    def create_snapshot(self, data: NetWorthIn) -> list[NetWorth]:
        names = [account.account_name for account in data.accounts]
        clashes = self.session.scalars(
            select(NetWorth.account_name).where(
                NetWorth.user_id == self.user_id,
                NetWorth.date == data.date,
                NetWorth.account_name.in_(names),
            )
        ).all()
        if clashes:
            raise ValueError(
                f"Snapshot for {data.date.isoformat()} already has: "
                + ", ".join(sorted(clashes))
            )
        self.session.add_all(self._build_rows(data.date, data))
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise ValueError(
                f"Snapshot for {data.date.isoformat()} already exists"
            ) from exc
        logger.info(
            f"networth_created: user_id={self.user_id} date={data.date.isoformat()} "
            f"accounts={len(names)}"
        )
        return self._rows_for(data.date)

    def current(self) -> Optional[Snapshot]:
        latest = self.session.scalar(
            select(func.max(NetWorth.date)).where(NetWorth.user_id == self.user_id)
        )
        if latest is None:
            return None
        return Snapshot(latest, self._rows_for(latest))

    def snapshots(self) -> list[Snapshot]:
        stmt = (
            select(NetWorth)
            .where(NetWorth.user_id == self.user_id)
            .order_by(NetWorth.date, NetWorth.account_name)
        )
        grouped: dict[date, Snapshot] = {}
        for row in self.session.scalars(stmt).all():
            grouped.setdefault(row.date, Snapshot(row.date)).accounts.append(row)
        return list(grouped.values())

    def monthly_totals(self, period: Period) -> list[dict[str, object]]:
        stmt = select(NetWorth).where(
            NetWorth.user_id == self.user_id,
            NetWorth.date >= period.start,
            NetWorth.date < period.end,
        )
        monthly: dict[int, Decimal] = defaultdict(Decimal)
        for row in self.session.scalars(stmt).all():
            monthly[row.date.month] += row.amount
        return [
            {"month": month, "total": to_money(monthly[month])}
            for month in sorted(monthly)
        ]

    def replace_snapshot(self, day: date, data: NetWorthAccountsIn) -> list[NetWorth]:
        self.session.execute(
            delete(NetWorth).where(
                NetWorth.user_id == self.user_id, NetWorth.date == day
            )
        )
        self.session.add_all(self._build_rows(day, data))
        self.session.commit()
        logger.info(
            f"networth_replaced: user_id={self.user_id} date={day.isoformat()} "
            f"accounts={len(data.accounts)}"
        )
        return self._rows_for(day)

    def delete_snapshot(self, day: date) -> int:
        result = self.session.execute(
            delete(NetWorth).where(
                NetWorth.user_id == self.user_id, NetWorth.date == day
            )
        )
        if result.rowcount == 0:
            self.session.rollback()
            raise NotFoundError(f"No net worth entries for {day.isoformat()}")
        self.session.commit()
        logger.info(
            f"networth_deleted: user_id={self.user_id} date={day.isoformat()} "
            f"count={result.rowcount}"
        )
        return result.rowcount
