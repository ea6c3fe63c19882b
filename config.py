import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        currency: str,
        forecast_horizon_months: int,
        alert_window_days: int,
        scheduler_hour: int,
        scheduler_minute: int,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.currency = currency
        self.forecast_horizon_months = forecast_horizon_months
        self.alert_window_days = alert_window_days
        self.scheduler_hour = scheduler_hour
        self.scheduler_minute = scheduler_minute


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("VENDORSPEND_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "vendorspend.db"
    database_url = os.getenv("VENDORSPEND_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("VENDORSPEND_TIMEZONE", "UTC")
    currency = os.getenv("VENDORSPEND_CURRENCY", "USD").upper()
    forecast_horizon_months = int(
        os.getenv("VENDORSPEND_FORECAST_HORIZON_MONTHS", "24")
    )
    alert_window_days = int(os.getenv("VENDORSPEND_ALERT_WINDOW_DAYS", "30"))
    scheduler_hour = int(os.getenv("VENDORSPEND_SCHEDULER_HOUR", "6"))
    scheduler_minute = int(os.getenv("VENDORSPEND_SCHEDULER_MINUTE", "0"))
    return Settings(
        database_url=database_url,
        timezone=timezone,
        currency=currency,
        forecast_horizon_months=forecast_horizon_months,
        alert_window_days=alert_window_days,
        scheduler_hour=scheduler_hour,
        scheduler_minute=scheduler_minute,
    )
