import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from sqlalchemy.orm import Session

from database import get_db
from periods import parse_day, parse_year
from schemas import (
    MAX_ROW_ID,
    CategoryIn,
    CategoryOut,
    CompanyIn,
    CompanyOut,
    IncomeIn,
    IncomeOut,
    LoginIn,
    NetWorthAccountsIn,
    NetWorthIn,
    NetWorthOut,
    TransactionIn,
    TransactionOut,
    UserOut,
    dump,
    dump_all,
)
from security import (
    InvalidIdentityToken,
    SessionUser,
    clear_session_cookie,
    get_current_user,
    set_session_cookie,
)
from services import (
    CategoryService,
    CompanyService,
    ForbiddenError,
    IncomeService,
    NetWorthService,
    NotFoundError,
    Snapshot,
    TransactionFilters,
    TransactionService,
    UserService,
)


logger = logging.getLogger(__name__)


def http_error(exc: ValueError) -> HTTPException:
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, ForbiddenError):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc))
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))


def validation_detail(errors: list[Any]) -> str:
    """Flattens pydantic/FastAPI validation errors into one readable message."""
    parts = []
    for err in errors:
        loc = ".".join(str(p) for p in err["loc"] if p != "body") or "body"
        parts.append(f"{loc}: {err['msg']}")
    return "; ".join(parts)


def _row_id(raw: str) -> Optional[int]:
    """Digits only; None when the text is not a non-negative integer."""
    value = raw.strip()
    if not (value and value.isascii() and value.isdigit()):
        return None
    digits = value.lstrip("0") or "0"
    if len(digits) > len(str(MAX_ROW_ID)):
        return MAX_ROW_ID + 1
    return int(digits)


def parse_id(raw: str, label: str) -> int:
    pk = _row_id(raw)
    if pk is None:
        raise HTTPException(status_code=400, detail=f"Invalid {label} id")
    if pk > MAX_ROW_ID:
        # larger than any stored key
        raise HTTPException(status_code=404, detail=f"{label.capitalize()} not found")
    return pk


def parse_optional_int(raw: Optional[str], label: str) -> Optional[int]:
    if raw is None:
        return None
    value = _row_id(raw)
    if value is None or value > MAX_ROW_ID:
        raise HTTPException(status_code=400, detail=f"Invalid {label}")
    return value


def parse_path_day(raw: str):
    try:
        return parse_day(raw)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid date") from exc


def year_from_request(request: Request, *, required: bool = True):
    try:
        return parse_year(request.query_params.get("year"), required=required)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def auth_router() -> APIRouter:
    router = APIRouter(prefix="/auth", tags=["auth"])

    @router.post("/login")
    def login(
        data: LoginIn,
        request: Request,
        response: Response,
        db: Session = Depends(get_db),
    ):
        raw_token = data.raw_token
        if not raw_token:
            raise HTTPException(status_code=400, detail="Missing id token")

        verifier = request.app.state.identity_verifier
        try:
            identity = verifier.verify(raw_token)
        except InvalidIdentityToken as exc:
            logger.warning(f"login_failed: reason={exc}")
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Authentication failed",
            ) from exc

        user = UserService(db).upsert_google_user(
            identity.email, identity.name, identity.subject
        )
        token = request.app.state.session_tokens.issue(user.id, user.email)
        set_session_cookie(response, token, request.app.state.settings)
        logger.info(f"login_succeeded: user_id={user.id}")
        return {"user": dump(UserOut, user), "token": token}

    @router.post("/logout")
    def logout(response: Response):
        clear_session_cookie(response)
        return {"ok": True}

    @router.get("/me")
    def me(
        user: SessionUser = Depends(get_current_user), db: Session = Depends(get_db)
    ):
        try:
            row = UserService(db).get(user.user_id)
        except ValueError as exc:
            raise http_error(exc) from exc
        return {"user": dump(UserOut, row)}

    return router


def income_router() -> APIRouter:
    router = APIRouter(prefix="/income", tags=["income"])

    @router.post("", status_code=201)
    def create_income(
        data: IncomeIn,
        user: SessionUser = Depends(get_current_user),
        db: Session = Depends(get_db),
    ):
        income = IncomeService(db, user.user_id).create(data)
        return dump(IncomeOut, income)

    @router.get("")
    def list_income(
        request: Request,
        user: SessionUser = Depends(get_current_user),
        db: Session = Depends(get_db),
    ):
        period = year_from_request(request)
        return dump_all(IncomeOut, IncomeService(db, user.user_id).list_for_period(period))

    @router.get("/summary")
    def income_summary(
        request: Request,
        user: SessionUser = Depends(get_current_user),
        db: Session = Depends(get_db),
    ):
        period = year_from_request(request)
        summary = IncomeService(db, user.user_id).summary(period)
        return {
            "yearIncomes": dump_all(IncomeOut, summary["year_incomes"]),
            "yearTotal": float(summary["year_total"]),
            "allTimeTotal": float(summary["all_time_total"]),
        }

    @router.get("/years")
    def income_years(
        user: SessionUser = Depends(get_current_user), db: Session = Depends(get_db)
    ):
        return {"years": IncomeService(db, user.user_id).years()}

    @router.delete("/{income_id}")
    def delete_income(
        income_id: str,
        user: SessionUser = Depends(get_current_user),
        db: Session = Depends(get_db),
    ):
        pk = parse_id(income_id, "income")
        try:
            IncomeService(db, user.user_id).delete(pk)
        except ValueError as exc:
            raise http_error(exc) from exc
        return Response(status_code=204)

    return router


def transaction_router() -> APIRouter:
    router = APIRouter(prefix="/transactions", tags=["transactions"])

    @router.post("", status_code=201)
    def create_transaction(
        data: TransactionIn,
        user: SessionUser = Depends(get_current_user),
        db: Session = Depends(get_db),
    ):
        try:
            txn = TransactionService(db, user.user_id).create(data)
        except ValueError as exc:
            db.rollback()
            raise http_error(exc) from exc
        return dump(TransactionOut, txn)

    @router.put("/{transaction_id}")
    def update_transaction(
        transaction_id: str,
        data: TransactionIn,
        user: SessionUser = Depends(get_current_user),
        db: Session = Depends(get_db),
    ):
        pk = parse_id(transaction_id, "transaction")
        try:
            txn = TransactionService(db, user.user_id).update(pk, data)
        except ValueError as exc:
            db.rollback()
            raise http_error(exc) from exc
        return dump(TransactionOut, txn)

    @router.get("")
    def list_transactions(
        request: Request,
        user: SessionUser = Depends(get_current_user),
        db: Session = Depends(get_db),
    ):
        params = request.query_params
        filters = TransactionFilters(
            period=year_from_request(request, required=False),
            company_id=parse_optional_int(params.get("companyId"), "companyId"),
            category_id=parse_optional_int(params.get("categoryId"), "categoryId"),
        )
        return dump_all(TransactionOut, TransactionService(db, user.user_id).list(filters))

    @router.get("/{transaction_id}")
    def get_transaction(
        transaction_id: str,
        user: SessionUser = Depends(get_current_user),
        db: Session = Depends(get_db),
    ):
        pk = parse_id(transaction_id, "transaction")
        try:
            txn = TransactionService(db, user.user_id).get(pk)
        except ValueError as exc:
            raise http_error(exc) from exc
        return dump(TransactionOut, txn)

    @router.delete("/{transaction_id}")
    def delete_transaction(
        transaction_id: str,
        user: SessionUser = Depends(get_current_user),
        db: Session = Depends(get_db),
    ):
        pk = parse_id(transaction_id, "transaction")
        try:
            TransactionService(db, user.user_id).delete(pk)
        except ValueError as exc:
            raise http_error(exc) from exc
        return Response(status_code=204)

    return router


def _limit_from_request(request: Request) -> Optional[int]:
    raw = request.query_params.get("limit")
    if raw is None or not raw.strip():
        return None
    try:
        return int(raw)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid limit") from exc


def company_router() -> APIRouter:
    router = APIRouter(prefix="/companies", tags=["companies"])

    @router.get("")
    def list_companies(
        request: Request,
        user: SessionUser = Depends(get_current_user),
        db: Session = Depends(get_db),
    ):
        companies = CompanyService(db).search(
            request.query_params.get("query"), _limit_from_request(request)
        )
        return dump_all(CompanyOut, companies)

    @router.post("")
    def create_company(
        data: CompanyIn,
        response: Response,
        user: SessionUser = Depends(get_current_user),
        db: Session = Depends(get_db),
    ):
        company, created = CompanyService(db).create(data)
        response.status_code = 201 if created else 200
        return dump(CompanyOut, company)

    return router


def category_router() -> APIRouter:
    router = APIRouter(prefix="/categories", tags=["categories"])

    @router.get("")
    def list_categories(
        request: Request,
        user: SessionUser = Depends(get_current_user),
        db: Session = Depends(get_db),
    ):
        categories = CategoryService(db, user.user_id).search(
            request.query_params.get("query"), _limit_from_request(request)
        )
        return dump_all(CategoryOut, categories)

    @router.post("")
    def create_category(
        data: CategoryIn,
        response: Response,
        user: SessionUser = Depends(get_current_user),
        db: Session = Depends(get_db),
    ):
        category, created = CategoryService(db, user.user_id).create(data)
        response.status_code = 201 if created else 200
        return dump(CategoryOut, category)

    return router


def _snapshot_payload(snapshot: Snapshot) -> dict[str, Any]:
    return {
        "date": snapshot.date.isoformat(),
        "accounts": dump_all(NetWorthOut, snapshot.accounts),
        "totalAmount": float(snapshot.total),
    }


def networth_router() -> APIRouter:
    router = APIRouter(prefix="/networth", tags=["networth"])

    @router.post("", status_code=201)
    def create_snapshot(
        data: NetWorthIn,
        user: SessionUser = Depends(get_current_user),
        db: Session = Depends(get_db),
    ):
        try:
            rows = NetWorthService(db, user.user_id).create_snapshot(data)
        except ValueError as exc:
            raise http_error(exc) from exc
        return dump_all(NetWorthOut, rows)

    @router.get("/current")
    def current_snapshot(
        user: SessionUser = Depends(get_current_user), db: Session = Depends(get_db)
    ):
        snapshot = NetWorthService(db, user.user_id).current()
        if snapshot is None:
            return {"total": 0, "accounts": []}
        return {
            "date": snapshot.date.isoformat(),
            "total": float(snapshot.total),
            "accounts": dump_all(NetWorthOut, snapshot.accounts),
        }

    @router.get("/all")
    def all_snapshots(
        user: SessionUser = Depends(get_current_user), db: Session = Depends(get_db)
    ):
        snapshots = NetWorthService(db, user.user_id).snapshots()
        return [_snapshot_payload(snapshot) for snapshot in snapshots]

    @router.get("")
    def monthly_totals(
        request: Request,
        user: SessionUser = Depends(get_current_user),
        db: Session = Depends(get_db),
    ):
        period = year_from_request(request)
        totals = NetWorthService(db, user.user_id).monthly_totals(period)
        return [{"month": t["month"], "total": float(t["total"])} for t in totals]

    @router.put("/{snapshot_date}")
    def replace_snapshot(
        snapshot_date: str,
        data: NetWorthAccountsIn,
        user: SessionUser = Depends(get_current_user),
        db: Session = Depends(get_db),
    ):
        day = parse_path_day(snapshot_date)
        rows = NetWorthService(db, user.user_id).replace_snapshot(day, data)
        return dump_all(NetWorthOut, rows)

    @router.delete("/{snapshot_date}")
    def delete_snapshot(
        snapshot_date: str,
        user: SessionUser = Depends(get_current_user),
        db: Session = Depends(get_db),
    ):
        day = parse_path_day(snapshot_date)
        try:
            count = NetWorthService(db, user.user_id).delete_snapshot(day)
        except ValueError as exc:
            raise http_error(exc) from exc
        return {
            "message": f"Deleted net worth snapshot for {day.isoformat()}",
            "count": count,
        }

    return router
