import logging
from importlib.metadata import PackageNotFoundError, version
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from config import Settings, get_settings
from database import create_db_engine, make_session_factory
from routers import (
    auth_router,
    category_router,
    company_router,
    income_router,
    networth_router,
    transaction_router,
    validation_detail,
)
from security import GoogleIdentityVerifier, SessionTokens


logger = logging.getLogger(__name__)


def _load_app_version() -> str:
    try:
        return version("finance-tracker-api")
    except PackageNotFoundError:
        return "unknown"


APP_VERSION = _load_app_version()


def create_app(
    settings: Optional[Settings] = None,
    session_factory: Optional[sessionmaker] = None,
    identity_verifier: Optional[GoogleIdentityVerifier] = None,
) -> FastAPI:
    settings = settings or get_settings()
    logging.basicConfig(level=settings.log_level)

    if session_factory is None:
        session_factory = make_session_factory(create_db_engine(settings.database_url))

    app = FastAPI(title="Finance Tracker API", version=APP_VERSION)
    app.state.settings = settings
    app.state.session_factory = session_factory
    app.state.session_tokens = SessionTokens(
        settings.session_secret, settings.session_max_age_secs
    )
    app.state.identity_verifier = identity_verifier or GoogleIdentityVerifier(
        settings.google_client_id
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.frontend_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH"],
        allow_headers=["*"],
    )

    @app.exception_handler(RequestValidationError)
    async def invalid_request(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400, content={"detail": validation_detail(exc.errors())}
        )

    @app.exception_handler(SQLAlchemyError)
    async def database_error(request: Request, exc: SQLAlchemyError):
        logger.exception(f"database_error: path={request.url.path}")
        message = str(getattr(exc, "orig", None) or exc)
        return JSONResponse(
            status_code=500, content={"detail": f"Database error: {message}"}
        )

    @app.get("/health")
    def health():
        return {"status": "ok"}

    for router in (
        auth_router(),
        income_router(),
        transaction_router(),
        company_router(),
        category_router(),
        networth_router(),
    ):
        app.include_router(router)

    logger.info(f"app_created: version={APP_VERSION}")
    return app


def main():
    import uvicorn

    uvicorn.run("main:create_app", factory=True, host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
