import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        balance_horizon_months: int,
        initialize_years_back: int,
        initialize_years_ahead: int,
        scheduler_enabled: bool,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.balance_horizon_months = balance_horizon_months
        self.initialize_years_back = initialize_years_back
        self.initialize_years_ahead = initialize_years_ahead
        self.scheduler_enabled = scheduler_enabled


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("LEDGER_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "ledger.db"
    database_url = os.getenv("LEDGER_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("LEDGER_TIMEZONE", "Europe/Berlin")
    balance_horizon_months = int(os.getenv("LEDGER_BALANCE_HORIZON_MONTHS", "16"))
    if balance_horizon_months < 1:
        raise ValueError("LEDGER_BALANCE_HORIZON_MONTHS must be at least 1")
    initialize_years_back = int(os.getenv("LEDGER_INITIALIZE_YEARS_BACK", "10"))
    initialize_years_ahead = int(os.getenv("LEDGER_INITIALIZE_YEARS_AHEAD", "2"))
    scheduler_enabled = _env_flag("LEDGER_SCHEDULER_ENABLED", "true")
    return Settings(
        database_url=database_url,
        timezone=timezone,
        balance_horizon_months=balance_horizon_months,
        initialize_years_back=initialize_years_back,
        initialize_years_ahead=initialize_years_ahead,
        scheduler_enabled=scheduler_enabled,
    )
