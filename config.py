import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        default_currency: str,
        materialize_history: bool,
        log_level: str,
        data_dir: Path,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.default_currency = default_currency
        self.materialize_history = materialize_history
        self.log_level = log_level
        self.data_dir = data_dir


def _data_dir() -> Path:
    return Path(os.getenv("FINANCE_DATA_DIR", "./data")).resolve()


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _data_dir()
    default_db = data_dir / "finance.db"
    database_url = os.getenv("FINANCE_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("FINANCE_TIMEZONE", "Asia/Colombo")
    default_currency = os.getenv("FINANCE_DEFAULT_CURRENCY", "LKR").upper()
    materialize_history = _env_flag("FINANCE_MATERIALIZE_HISTORY", "1")
    log_level = os.getenv("FINANCE_LOG_LEVEL", "INFO").upper()
    return Settings(
        database_url=database_url,
        timezone=timezone,
        default_currency=default_currency,
        materialize_history=materialize_history,
        log_level=log_level,
        data_dir=data_dir,
    )
