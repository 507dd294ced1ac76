import os
from functools import lru_cache
from pathlib import Path
from typing import Optional


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        csrf_secret: str,
        remote_url: Optional[str],
        http_timeout_secs: float,
        http_retries: int,
        http_retry_delay_secs: float,
        batch_workers: int,
        keepalive_minutes: int,
        log_level: str,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.csrf_secret = csrf_secret
        self.remote_url = remote_url
        self.http_timeout_secs = http_timeout_secs
        self.http_retries = http_retries
        self.http_retry_delay_secs = http_retry_delay_secs
        self.batch_workers = batch_workers
        self.keepalive_minutes = keepalive_minutes
        self.log_level = log_level


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("LEDGER_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "ledger.db"
    database_url = os.getenv("LEDGER_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("LEDGER_TIMEZONE", "America/Sao_Paulo")
    csrf_secret = os.getenv(
        "LEDGER_CSRF_SECRET",
        "5d0f7c1e8a4b2f9e6c3d1a7b8e2f4c6a9d0b3e5f7a1c2d4e6f8a0b1c3d5e7f9a",
    )
    remote_url = os.getenv("LEDGER_REMOTE_URL") or None
    http_timeout_secs = float(os.getenv("LEDGER_HTTP_TIMEOUT_SECS", "4.5"))
    http_retries = int(os.getenv("LEDGER_HTTP_RETRIES", "3"))
    http_retry_delay_secs = float(os.getenv("LEDGER_HTTP_RETRY_DELAY_SECS", "2"))
    batch_workers = int(os.getenv("LEDGER_BATCH_WORKERS", "8"))
    keepalive_minutes = int(os.getenv("LEDGER_KEEPALIVE_MINUTES", "0"))
    log_level = os.getenv("LEDGER_LOG_LEVEL", "INFO")
    return Settings(
        database_url=database_url,
        timezone=timezone,
        csrf_secret=csrf_secret,
        remote_url=remote_url,
        http_timeout_secs=http_timeout_secs,
        http_retries=http_retries,
        http_retry_delay_secs=http_retry_delay_secs,
        batch_workers=batch_workers,
        keepalive_minutes=keepalive_minutes,
        log_level=log_level,
    )
