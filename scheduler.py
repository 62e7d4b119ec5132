import logging
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from config import get_settings
from errors import NotFound, RecomputeCancelled, StoreError
from services import SummaryService
from store import SummaryStore, build_store


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def run_sweep(store: SummaryStore, source: str = "manual") -> tuple[int, int]:
    """Recompute every user's summary; one user's failure never stops the rest."""
    service = SummaryService(store)
    succeeded = 0
    failed = 0
    for user_id in store.list_user_ids():
        try:
            service.recompute_summary(user_id)
        except Exception as exc:
            failed += 1
            level = (
                logging.WARNING
                if isinstance(exc, (NotFound, RecomputeCancelled))
                else logging.ERROR
            )
            logger.log(
                level,
                f"sweep_user_failed: source={source} user_id={user_id} "
                f"reason={type(exc).__name__}: {exc}",
            )
            continue
        succeeded += 1
    logger.info(f"sweep_run: source={source} succeeded={succeeded} failed={failed}")
    return succeeded, failed


class SweepScheduler:
    def __init__(
        self,
        store: Optional[SummaryStore] = None,
        interval_minutes: Optional[int] = None,
    ) -> None:
        settings = get_settings()
        self.store = store
        self.interval_minutes = (
            settings.sweep_minutes if interval_minutes is None else interval_minutes
        )
        self.scheduler = BackgroundScheduler()

    def _run_job(self, source: str = "manual") -> None:
        if self.store is None:
            self.store = build_store()
        try:
            run_sweep(self.store, source)
        except StoreError as exc:
            logger.error(f"sweep_run: source={source} aborted error={exc}")

    def start(self) -> None:
        if self.interval_minutes <= 0:
            logger.info("Reconciliation sweep disabled")
            return

        self._run_job("startup")

        trigger = IntervalTrigger(minutes=self.interval_minutes)
        self.scheduler.add_job(
            self._run_job,
            trigger,
            args=["interval"],
            id="summary_sweep",
            replace_existing=True,
            misfire_grace_time=300,
        )

        self.scheduler.start()
        logger.info(
            f"Scheduler started with summary sweep every {self.interval_minutes} minutes"
        )

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
