"""
Consolidated Background Job Scheduler

Two recurring jobs run inside the API process:
1. Bounty Expiry - refund bounties left active past the expiry window
2. Withdrawal Reconciliation - settle withdrawals still pending with the provider
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from config import Config
from jobs.bounty_expiry_job import run_bounty_expiry_sweep
from jobs.withdrawal_reconciliation_job import run_withdrawal_reconciliation

logger = logging.getLogger(__name__)


class ConsolidatedScheduler:
    """
    Scheduling Strategy:
    - Bounty Expiry: every BOUNTY_EXPIRY_SWEEP_MINUTES (default 5), first run shortly after startup
    - Withdrawal Reconciliation: every WITHDRAWAL_RECONCILE_MINUTES (default 10), staggered
    """

    def __init__(self):
        jobstores = {
            'default': MemoryJobStore()
        }
        executors = {
            'default': AsyncIOExecutor()
        }
        job_defaults = {
            'coalesce': True,  # Prevent job pileup
            'max_instances': 1,  # Single instance enforcement
            'misfire_grace_time': 120
        }

        self.scheduler = AsyncIOScheduler(
            jobstores=jobstores,
            executors=executors,
            job_defaults=job_defaults,
            timezone='UTC'
        )

    def setup_jobs(self):
        now = datetime.now()

        self.scheduler.add_job(
            run_bounty_expiry_sweep,
            trigger=IntervalTrigger(
                minutes=Config.BOUNTY_EXPIRY_SWEEP_MINUTES,
                start_date=now + timedelta(seconds=10),
            ),
            id="bounty_expiry_sweep",
            name="⏰ Bounty Expiry - Refund Unclaimed Escrow",
            replace_existing=True
        )
        logger.info(f"✅ Bounty Expiry scheduled every {Config.BOUNTY_EXPIRY_SWEEP_MINUTES} minutes")

        self.scheduler.add_job(
            run_withdrawal_reconciliation,
            trigger=IntervalTrigger(
                minutes=Config.WITHDRAWAL_RECONCILE_MINUTES,
                start_date=now + timedelta(seconds=40),
            ),
            id="withdrawal_reconciliation",
            name="🏦 Withdrawal Reconciliation - Settle Pending Transfers",
            replace_existing=True
        )
        logger.info(f"✅ Withdrawal Reconciliation scheduled every {Config.WITHDRAWAL_RECONCILE_MINUTES} minutes")

    def start(self):
        self.setup_jobs()
        self.scheduler.start()

        job_names = [f"{job.name} ({job.id})" for job in self.scheduler.get_jobs()]
        logger.info(f"📋 Active jobs: {job_names}")

    def stop(self):
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        logger.info("📴 Consolidated job scheduler stopped")


_global_scheduler: Optional[ConsolidatedScheduler] = None


def get_consolidated_scheduler_instance() -> ConsolidatedScheduler:
    """Get the global consolidated scheduler instance"""
    global _global_scheduler
    if _global_scheduler is None:
        _global_scheduler = ConsolidatedScheduler()
    return _global_scheduler
