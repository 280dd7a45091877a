import os
from datetime import time
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        notification_time: time,
        lookback_months: int,
        lookahead_months: int,
        max_materialize: int,
        max_projection_steps: int,
        autopay_notify_days: int,
        notifications_granted: bool,
        notification_id_base: int = 100,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.notification_time = notification_time
        self.lookback_months = lookback_months
        self.lookahead_months = lookahead_months
        self.max_materialize = max_materialize
        self.max_projection_steps = max_projection_steps
        self.autopay_notify_days = autopay_notify_days
        self.notifications_granted = notifications_granted
        self.notification_id_base = notification_id_base


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("BUDGET_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in {"1", "true", "yes", "on"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "budget.db"
    database_url = os.getenv("BUDGET_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("BUDGET_TIMEZONE", "Europe/Berlin")
    notification_time = time.fromisoformat(
        os.getenv("BUDGET_NOTIFICATION_TIME", "06:00")
    )
    lookback_months = int(os.getenv("BUDGET_LOOKBACK_MONTHS", "24"))
    lookahead_months = int(os.getenv("BUDGET_LOOKAHEAD_MONTHS", "24"))
    max_materialize = int(os.getenv("BUDGET_MAX_MATERIALIZE", "36"))
    max_projection_steps = int(os.getenv("BUDGET_MAX_PROJECTION_STEPS", "2000"))
    autopay_notify_days = int(os.getenv("BUDGET_AUTOPAY_NOTIFY_DAYS", "0"))
    notifications_granted = _parse_bool(
        os.getenv("BUDGET_NOTIFICATIONS_GRANTED", "true")
    )
    return Settings(
        database_url=database_url,
        timezone=timezone,
        notification_time=notification_time,
        lookback_months=lookback_months,
        lookahead_months=lookahead_months,
        max_materialize=max_materialize,
        max_projection_steps=max_projection_steps,
        autopay_notify_days=autopay_notify_days,
        notifications_granted=notifications_granted,
    )
