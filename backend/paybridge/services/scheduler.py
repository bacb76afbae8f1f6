"""
APScheduler Configuration for the Reconciliation Sweep

Periodically polls gateways for pending transactions whose terminal
webhook never arrived. Opt-in via settings.reconciliation_sweep_enabled.

The job is rebuilt on every startup from configuration, so an in-memory
job store is sufficient.
"""
import logging
from typing import Callable, Dict
from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import Settings
from .webhook_reconciler import WebhookReconciler

logger = logging.getLogger(__name__)

SWEEP_JOB_ID = "reconciliation_sweep"


async def run_reconciliation_sweep(
    session_factory: Callable[[], AsyncSession],
    reconciler: WebhookReconciler,
    stale_after_minutes: int,
    batch_size: int
) -> Dict[str, int]:
    """
    One sweep run with its own session.

    Errors are logged, not raised; the next interval retries.
    """
    async with session_factory() as db:
        try:
            return await reconciler.reconcile_stale(db, stale_after_minutes, batch_size)
        except Exception as e:
            logger.error(f"Reconciliation sweep failed: {e}", exc_info=True)
            return {"checked": 0, "applied": 0, "still_pending": 0, "errors": 1}


class ReconciliationScheduler:
    """
    Owns the AsyncIOScheduler that runs the reconciliation sweep.

    Configuration:
    - AsyncIOScheduler on the application's event loop
    - MemoryJobStore (the job is re-registered at startup)
    - Coalesce: True (skip missed runs)
    - Max instances: 1 (runs never overlap)
    """

    def __init__(
        self,
        app_settings: Settings,
        session_factory: Callable[[], AsyncSession],
        reconciler: WebhookReconciler
    ):
        self.settings = app_settings
        self.session_factory = session_factory
        self.reconciler = reconciler

        self._scheduler = AsyncIOScheduler(
            jobstores={"default": MemoryJobStore()},
            executors={"default": AsyncIOExecutor()},
            job_defaults={
                "coalesce": True,
                "max_instances": 1,
                "misfire_grace_time": 300,
            },
            timezone="UTC",
        )

    @property
    def running(self) -> bool:
        return self._scheduler.running

    def start(self) -> bool:
        """
        Register the sweep job and start the scheduler.

        Returns:
            False when the sweep is disabled in settings
        """
        if not self.settings.reconciliation_sweep_enabled:
            logger.info("Reconciliation sweep disabled")
            return False

        if self._scheduler.running:
            logger.warning("Scheduler already running")
            return True

        self._scheduler.add_job(
            run_reconciliation_sweep,
            trigger=IntervalTrigger(minutes=self.settings.reconciliation_sweep_interval_minutes),
            id=SWEEP_JOB_ID,
            name="Reconcile stale pending transactions",
            replace_existing=True,
            kwargs={
                "session_factory": self.session_factory,
                "reconciler": self.reconciler,
                "stale_after_minutes": self.settings.reconciliation_stale_after_minutes,
                "batch_size": self.settings.reconciliation_sweep_batch_size,
            },
        )
        self._scheduler.start()

        job = self._scheduler.get_job(SWEEP_JOB_ID)
        logger.info(
            f"Reconciliation sweep scheduled every "
            f"{self.settings.reconciliation_sweep_interval_minutes}min, next_run={job.next_run_time}"
        )
        return True

    def shutdown(self, wait: bool = True) -> None:
        """Stop the scheduler; called from the FastAPI lifespan."""
        if self._scheduler.running:
            self._scheduler.shutdown(wait=wait)
            logger.info(f"Scheduler shutdown (wait={wait})")

    def get_job(self, job_id: str = SWEEP_JOB_ID):
        return self._scheduler.get_job(job_id)

