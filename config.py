import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        csrf_secret: str,
        log_level: str,
        coverage_sweep_hour: int,
        environment: str,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.csrf_secret = csrf_secret
        self.log_level = log_level
        self.coverage_sweep_hour = coverage_sweep_hour
        self.environment = environment


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("FINANCES_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "finances.db"
    database_url = os.getenv("FINANCES_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("FINANCES_TIMEZONE", "Europe/Berlin")
    csrf_secret = os.getenv(
        "FINANCES_CSRF_SECRET",
        "3f0c9a51d2e84b7a9c6e1f08b4d27a5e6c1b9f30d8a47e25c6b1f9e0a3d7c482",
    )
    log_level = os.getenv("FINANCES_LOG_LEVEL", "INFO").upper()
    sweep_hour = int(os.getenv("FINANCES_COVERAGE_SWEEP_HOUR", "4"))
    if not 0 <= sweep_hour <= 23:
        raise ValueError("FINANCES_COVERAGE_SWEEP_HOUR must be between 0 and 23")
    environment = os.getenv("FINANCES_ENV", "Local")
    return Settings(
        database_url=database_url,
        timezone=timezone,
        csrf_secret=csrf_secret,
        log_level=log_level,
        coverage_sweep_hour=sweep_hour,
        environment=environment,
    )
