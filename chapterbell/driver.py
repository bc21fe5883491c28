"""Tick driver: two independent, non-overlapping timers on an APScheduler background scheduler."""
from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from apscheduler.events import EVENT_JOB_MAX_INSTANCES, JobSubmissionEvent
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

logger = logging.getLogger(__name__)

IDLE = "IDLE"
RUNNING = "RUNNING"

TICK = "tick"
POLL = "poll"


class TickDriver:
    """Run ``tick_job`` every ``tick_seconds`` and ``poll_job`` every ``poll_seconds``.

    A timer that fires while the previous run of the same job is still
    RUNNING is skipped, never queued: the scheduler's ``max_instances=1``
    refuses it (counted through a listener), and ``run_job`` guards direct
    calls with a non-blocking lock. ``stop()`` stops new runs and waits for
    in-flight ones to finish. ``poll_job`` receives a ``should_stop`` callable
    so a long poll can end after its current record.
    """

    def __init__(
        self,
        tick_job: Callable[[], Any],
        poll_job: Callable[[Callable[[], bool]], Any],
        tick_seconds: float,
        poll_seconds: float,
        scheduler: BackgroundScheduler | None = None,
    ) -> None:
        if tick_seconds <= 0 or poll_seconds <= 0:
            raise ValueError("timer periods must be > 0")
        self.tick_seconds = tick_seconds
        self.poll_seconds = poll_seconds
        self._jobs: dict[str, Callable[[], Any]] = {
            TICK: tick_job,
            POLL: lambda: poll_job(self.stopping),
        }
        self._locks = {name: threading.Lock() for name in self._jobs}
        self._skipped = {name: 0 for name in self._jobs}
        self._stopping = threading.Event()
        self.scheduler = scheduler or BackgroundScheduler(
            timezone=timezone.utc,
            job_defaults={
                "max_instances": 1,
                "coalesce": True,
            },
        )
        self.scheduler.add_listener(self._on_max_instances, EVENT_JOB_MAX_INSTANCES)

    def stopping(self) -> bool:
        return self._stopping.is_set()

    def state(self, name: str) -> str:
        return RUNNING if self._locks[name].locked() else IDLE

    def skipped(self, name: str) -> int:
        return self._skipped[name]

    def _on_max_instances(self, event: JobSubmissionEvent) -> None:
        # The scheduler refused to start the job because a run is still going
        if event.job_id in self._skipped:
            self._skipped[event.job_id] += 1
            logger.warning("%s: previous run still in progress, skipping this tick", event.job_id)

    def run_job(self, name: str) -> bool:
        """Run one pass of the named job unless it is already running; True if it ran."""
        if self._stopping.is_set():
            logger.debug("%s: shutting down, not starting a new run", name)
            return False
        lock = self._locks[name]
        if not lock.acquire(blocking=False):
            self._skipped[name] += 1
            logger.warning("%s: previous run still in progress, skipping this tick", name)
            return False
        try:
            self._jobs[name]()
        except Exception:
            logger.exception("%s: run failed", name)
        finally:
            lock.release()
        return True

    def start(self) -> None:
        now = datetime.now(timezone.utc)
        for name, seconds in ((TICK, self.tick_seconds), (POLL, self.poll_seconds)):
            self.scheduler.add_job(
                self.run_job,
                IntervalTrigger(seconds=seconds, timezone=timezone.utc),
                args=[name],
                id=name,
                name=name,
                next_run_time=now,
                misfire_grace_time=max(1, int(seconds)),
            )
        self.scheduler.start()
        logger.info("Tick driver started: tick=%ss poll=%ss", self.tick_seconds, self.poll_seconds)

    def stop(self, wait: bool = True) -> None:
        """Stop scheduling new runs; with wait=True block until running ones finish."""
        self._stopping.set()
        if self.scheduler.running:
            self.scheduler.shutdown(wait=wait)
        logger.info("Tick driver stopped")
