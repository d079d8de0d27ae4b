import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        session_secret: str,
        google_client_id: str,
        frontend_origins: list[str],
        cookie_secure: bool,
        session_max_age_days: int,
        log_level: str,
    ) -> None:
        self.database_url = database_url
        self.session_secret = session_secret
        self.google_client_id = google_client_id
        self.frontend_origins = frontend_origins
        self.cookie_secure = cookie_secure
        self.session_max_age_days = session_max_age_days
        self.log_level = log_level

    @property
    def session_max_age_secs(self) -> int:
        return self.session_max_age_days * 24 * 3600


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("FINANCE_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    database_url = os.getenv("FINANCE_DATABASE_URL")
    if not database_url:
        database_url = f"sqlite:///{_ensure_data_dir() / 'finance.db'}"
    session_secret = os.getenv(
        "FINANCE_SESSION_SECRET",
        "3f0c5b0b9b4e4d0f8a9c2e41d7a6b18c6f2d9e07a1b34c58d2e6f9a0b7c4d1e3",
    )
    google_client_id = os.getenv("FINANCE_GOOGLE_CLIENT_ID", "")
    raw_origins = os.getenv("FINANCE_FRONTEND_ORIGIN", "http://localhost:5173")
    frontend_origins = [o.strip() for o in raw_origins.split(",") if o.strip()]
    return Settings(
        database_url=database_url,
        session_secret=session_secret,
        google_client_id=google_client_id,
        frontend_origins=frontend_origins,
        cookie_secure=_env_flag("FINANCE_COOKIE_SECURE"),
        session_max_age_days=int(os.getenv("FINANCE_SESSION_MAX_AGE_DAYS", "7")),
        log_level=os.getenv("FINANCE_LOG_LEVEL", "INFO").upper(),
    )
