import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        log_level: str,
        max_days_overdue: int,
        fetch_timeout_secs: float,
        recurring_run_at: tuple[int, int],
        recurring_interval_minutes: int,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.log_level = log_level
        self.max_days_overdue = max_days_overdue
        self.fetch_timeout_secs = fetch_timeout_secs
        self.recurring_run_at = recurring_run_at
        self.recurring_interval_minutes = recurring_interval_minutes


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("FINANCE_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _parse_clock(value: str) -> tuple[int, int]:
    hour, _, minute = value.partition(":")
    parsed = (int(hour), int(minute or 0))
    if not (0 <= parsed[0] < 24 and 0 <= parsed[1] < 60):
        raise ValueError(f"Invalid time of day: {value!r}")
    return parsed


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "finance.db"
    return Settings(
        database_url=os.getenv("FINANCE_DATABASE_URL", f"sqlite:///{default_db}"),
        timezone=os.getenv("FINANCE_TIMEZONE", "Europe/Rome"),
        log_level=os.getenv("FINANCE_LOG_LEVEL", "INFO").upper(),
        max_days_overdue=int(os.getenv("FINANCE_MAX_DAYS_OVERDUE", "7")),
        fetch_timeout_secs=float(os.getenv("FINANCE_FETCH_TIMEOUT_SECS", "10")),
        recurring_run_at=_parse_clock(os.getenv("FINANCE_RECURRING_RUN_AT", "03:15")),
        recurring_interval_minutes=int(
            os.getenv("FINANCE_RECURRING_INTERVAL_MINUTES", "60")
        ),
    )
