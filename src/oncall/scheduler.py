"""Periodic scan that escalates unacknowledged incidents on timeout."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

import structlog
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from oncall.engine import IncidentStateMachine
from oncall.errors import InvalidTransition, NotFound
from oncall.store import IncidentStore

logger = structlog.get_logger(__name__)

JOB_ID = "escalation_scan"


@dataclass
class TickReport:
    """Outcome of one scan over the open incidents."""

    at: datetime
    scanned: int = 0
    escalated: int = 0
    skipped: int = 0
    errors: int = 0


class EscalationScheduler:
    """Runs ``tick`` on a fixed interval in a background thread.

    Tests and ``oncall drill`` call ``tick`` directly after moving a manual
    clock; ``start``/``shutdown`` are only needed for wall-clock operation.
    """

    def __init__(
        self,
        machine: IncidentStateMachine,
        store: IncidentStore,
        interval_seconds: float = 60,
        max_levels_per_tick: int = 1,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        if max_levels_per_tick < 1:
            raise ValueError("max_levels_per_tick must be at least 1")
        self.machine = machine
        self.store = store
        self.interval_seconds = interval_seconds
        self.max_levels_per_tick = max_levels_per_tick
        self.last_report: TickReport | None = None
        self._scheduler: BackgroundScheduler | None = None

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    def tick(self) -> TickReport:
        """Escalate every open incident whose pending step has timed out.

        Each incident is handled in isolation: an error while escalating one
        incident is logged and counted, and the scan moves on.
        """
        report = TickReport(at=self.machine.clock.now())

        for incident_id in self.store.open_ids():
            report.scanned += 1
            try:
                levels = self._escalate(incident_id)
            except (InvalidTransition, NotFound):
                # resolved between listing and locking
                report.skipped += 1
                continue
            except Exception:
                logger.exception("escalation_scan_failed", incident_id=incident_id)
                report.errors += 1
                continue

            if levels:
                report.escalated += levels
            else:
                report.skipped += 1

        self.last_report = report
        logger.debug(
            "escalation_scan_completed",
            scanned=report.scanned,
            escalated=report.escalated,
            skipped=report.skipped,
            errors=report.errors,
        )
        return report

    def _escalate(self, incident_id: str) -> int:
        levels = 0
        for _ in range(self.max_levels_per_tick):
            if self.machine.escalate_automatic(incident_id) is None:
                break
            levels += 1
        return levels

    def _run_tick(self) -> None:
        try:
            self.tick()
        except Exception:
            logger.exception("escalation_tick_failed")

    def start(self) -> None:
        """Start ticking every ``interval_seconds`` in a background thread."""
        if self.running:
            logger.warning("escalation_scheduler_already_running")
            return

        scheduler = BackgroundScheduler(timezone="UTC")
        scheduler.add_job(
            self._run_tick,
            trigger=IntervalTrigger(seconds=self.interval_seconds),
            id=JOB_ID,
            name="Incident escalation scan",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        scheduler.start()
        self._scheduler = scheduler
        logger.info(
            "escalation_scheduler_started", interval_seconds=self.interval_seconds
        )

    def shutdown(self, wait: bool = True) -> None:
        """Stop issuing ticks; with ``wait`` let an in-flight tick finish."""
        if self._scheduler is None:
            return
        if self._scheduler.running:
            self._scheduler.shutdown(wait=wait)
        self._scheduler = None
        logger.info("escalation_scheduler_stopped")
