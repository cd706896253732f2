"""
Recurring background loops.

Each loop is one APScheduler interval job with max_instances=1, so a tick
never starts while the previous one is still running. stop() only prevents
future ticks; an in-flight tick is allowed to finish.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, List, Optional

from apscheduler.job import Job
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.schedulers.base import BaseScheduler

from .config import Settings
from .ledger import LedgerAdapter
from .ordering import OrderingEngine
from .scanner import TreasuryScanner
from .store import Store
from .tracker import AcceptanceTracker
from .validator import PurchaseValidator


class RecurringLoop:
    def __init__(
        self,
        name: str,
        tick: Callable[[], Any],
        interval_s: float,
        scheduler: Optional[BaseScheduler] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        if interval_s <= 0:
            raise ValueError(f"interval_s must be > 0, got {interval_s}")
        self.name = name
        self.tick = tick
        self.interval_s = interval_s
        self._owns_scheduler = scheduler is None
        self.scheduler = scheduler
        self._job: Optional[Job] = None
        self.log = logger or logging.getLogger(f"ledger_raffle.loops.{name}")

    @property
    def running(self) -> bool:
        return self._job is not None

    def run_once(self) -> Any:
        try:
            return self.tick()
        except Exception:
            self.log.exception("%s loop error", self.name)
            return None

    def start(self) -> None:
        if self._job is not None:
            return
        if self._owns_scheduler or self.scheduler is None:
            self.scheduler = BackgroundScheduler(daemon=True)
        scheduler = self.scheduler

        self._job = scheduler.add_job(
            self.run_once,
            "interval",
            seconds=self.interval_s,
            id=f"ledger_raffle.{self.name}",
            max_instances=1,
            coalesce=True,
            misfire_grace_time=10,
            next_run_time=datetime.now(timezone.utc),
        )
        if not scheduler.running:
            scheduler.start()
        self.log.info("%s loop started (every %ss)", self.name, self.interval_s)

    def stop(self) -> None:
        if self._job is None:
            return
        try:
            self._job.remove()
        except JobLookupError:
            pass
        self._job = None
        if self._owns_scheduler and self.scheduler is not None and self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        self.log.info("%s loop stopped", self.name)


class IndexerService:
    """Intake (scan + validate), acceptance tracking and ordering on one scheduler."""

    def __init__(
        self,
        store: Store,
        adapter: LedgerAdapter,
        settings: Settings,
        scheduler: Optional[BaseScheduler] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.log = logger or logging.getLogger("ledger_raffle.indexer")
        self._owns_scheduler = scheduler is None
        self.scheduler = scheduler or BackgroundScheduler(daemon=True)

        self.scanner = TreasuryScanner(store, adapter, fetch_limit=settings.scanner_fetch_limit)
        self.validator = PurchaseValidator(store, adapter)
        self.tracker = AcceptanceTracker(store, adapter, batch_size=settings.tracker_batch_size)
        self.ordering = OrderingEngine(store)

        self.loops: List[RecurringLoop] = [
            RecurringLoop("intake", self._intake, settings.intake_interval_s, self.scheduler),
            RecurringLoop("tracker", self.tracker.track, settings.tracker_interval_s, self.scheduler),
            RecurringLoop("ordering", self.ordering.compute_ranks, settings.ordering_interval_s, self.scheduler),
        ]

    def _intake(self) -> None:
        self.scanner.scan()
        self.validator.validate_pending()

    def start(self) -> None:
        for loop in self.loops:
            loop.start()

    def stop(self) -> None:
        for loop in self.loops:
            loop.stop()
        if self._owns_scheduler and self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        self.log.info("Indexer stopped")
