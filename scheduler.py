import logging
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from config import get_settings
from remote_client import RemoteLedgerClient


logging.basicConfig(level=get_settings().log_level)
logger = logging.getLogger(__name__)


class SchedulerManager:
    """Keeps a remote transaction store warm between user actions.

    Hosted backends that sleep when idle make the first request of a session
    slow; a periodic ping avoids that. Nothing is scheduled when no remote
    store is configured or the interval is zero.
    """

    def __init__(self, client: Optional[RemoteLedgerClient] = None) -> None:
        settings = get_settings()
        self.interval_minutes = settings.keepalive_minutes
        self.scheduler = BackgroundScheduler(timezone=settings.timezone)
        if client is None and settings.remote_url:
            client = RemoteLedgerClient(settings.remote_url)
        self.client = client

    @property
    def enabled(self) -> bool:
        return self.client is not None and self.interval_minutes > 0

    def _run_job(self, source: str = "manual") -> bool:
        if self.client is None:
            return False
        alive = self.client.ping()
        if alive:
            logger.info(f"keepalive_ping: source={source} ok=True")
        else:
            logger.warning(f"keepalive_ping: source={source} ok=False")
        return alive

    def start(self) -> None:
        if not self.enabled:
            logger.info("Scheduler idle: no remote store or keep-alive disabled")
            return

        trigger = IntervalTrigger(minutes=self.interval_minutes)
        self.scheduler.add_job(
            self._run_job,
            trigger,
            args=["interval"],
            id="remote_keepalive",
            replace_existing=True,
            misfire_grace_time=60,
        )
        self.scheduler.start()
        logger.info(
            f"Scheduler started with keep-alive every {self.interval_minutes} minutes"
        )

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
