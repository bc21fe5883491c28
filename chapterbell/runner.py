"""Runner: wire store, evaluator, monitor, source and dispatcher into the two passes."""
from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from chapterbell.config import Settings
from chapterbell.dispatcher import DispatchReport, Dispatcher
from chapterbell.evaluator import DueEventEvaluator
from chapterbell.models import CounterIncrease, CounterSource, DueOccurrence
from chapterbell.monitor import DiffMonitor
from chapterbell.sources import get_source
from chapterbell.store import ScheduleStore, StoreError, YamlStore

logger = logging.getLogger(__name__)


class Engine:
    """Owns one instance of each component and runs the schedule and poll passes.

    A store read failure aborts only the current pass; per-record failures
    are handled inside the evaluator, monitor and dispatcher.
    """

    def __init__(
        self,
        store: ScheduleStore,
        source: CounterSource,
        dispatcher: Dispatcher,
        evaluator: DueEventEvaluator,
        monitor: DiffMonitor,
    ) -> None:
        self.store = store
        self.source = source
        self.dispatcher = dispatcher
        self.evaluator = evaluator
        self.monitor = monitor

    @classmethod
    def from_settings(cls, settings: Settings, dry_run: bool = False) -> "Engine":
        store = YamlStore(settings.store_path, default_tz=settings.timezone)
        source = get_source(settings.source_type)(settings.source_config)
        dispatcher = Dispatcher(
            channels=settings.channels,
            default_targets=settings.default_targets,
            dry_run=dry_run,
        )
        evaluator = DueEventEvaluator(timedelta(seconds=settings.tolerance_seconds), tz=settings.timezone)
        monitor = DiffMonitor(store.update_counter, min_delay=settings.poll_delay_seconds)
        return cls(store, source, dispatcher, evaluator, monitor)

    def tick(self, now: datetime | None = None) -> list[tuple[DueOccurrence, DispatchReport]]:
        """Evaluate all schedules at now and dispatch every due occurrence once."""
        now = now or datetime.now(timezone.utc)
        logger.debug("Checking for events at %s", now.isoformat())
        try:
            definitions = self.store.list_schedule_definitions()
        except StoreError as e:
            logger.error("schedule pass aborted: %s", e)
            return []

        results = []
        for occurrence in self.evaluator.evaluate(definitions, now):
            payload = occurrence.definition.payload
            logger.info("TRIGGERING EVENT: %s - %s", payload.title, payload.description or "")
            results.append((occurrence, self.dispatcher.dispatch(occurrence)))
        return results

    def poll(self, should_stop: Callable[[], bool] | None = None) -> list[CounterIncrease]:
        """Check every subscription against the source; notify after each persisted increase."""
        logger.info("Checking for manga updates...")
        try:
            subscriptions = self.store.list_counter_subscriptions()
        except StoreError as e:
            logger.error("poll pass aborted: %s", e)
            return []
        return self.monitor.poll(
            subscriptions,
            self.source.fetch_latest_counter,
            notify=self.dispatcher.dispatch,
            should_stop=should_stop,
        )
