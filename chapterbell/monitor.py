"""Diff monitor: poll the external source and report counters that went up."""
from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable
from typing import Any

from chapterbell.models import CounterIncrease, CounterSubscription
from chapterbell.store import StoreError

logger = logging.getLogger(__name__)

FetchFn = Callable[[str], "int | None"]
UpdateFn = Callable[[str, int], Any]
NotifyFn = Callable[[CounterIncrease], Any]

DEFAULT_POLL_DELAY = 2.0


def group_by_series(subscriptions: Iterable[CounterSubscription]) -> dict[str, list[CounterSubscription]]:
    """Group subscriptions by series key, keeping first-seen order."""
    groups: dict[str, list[CounterSubscription]] = {}
    for sub in subscriptions:
        groups.setdefault(sub.series_key, []).append(sub)
    return groups


class DiffMonitor:
    """Compare fetched counters with stored ones, persist increases, then notify.

    ``update`` is called for a subscription before the matching
    CounterIncrease is handed to ``notify``; if the update fails the increase
    is neither reported nor notified and the next poll sees it again.
    Consecutive fetches are spaced at least ``min_delay`` seconds apart.
    """

    def __init__(
        self,
        update: UpdateFn,
        min_delay: float = DEFAULT_POLL_DELAY,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if min_delay < 0:
            raise ValueError("min_delay must be >= 0")
        self.update = update
        self.min_delay = min_delay
        self._sleep = sleep
        self._clock = clock

    def _fetch(self, fetch: FetchFn, series_key: str) -> int | None:
        try:
            value = fetch(series_key)
        except Exception as e:
            logger.warning("fetch failed for series %r: %s", series_key, e)
            return None
        if value is None:
            return None
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            logger.warning("ignoring invalid counter %r for series %r", value, series_key)
            return None
        return value

    def poll(
        self,
        subscriptions: Iterable[CounterSubscription],
        fetch: FetchFn,
        notify: NotifyFn | None = None,
        should_stop: Callable[[], bool] | None = None,
    ) -> list[CounterIncrease]:
        groups = group_by_series(subscriptions)
        if not groups:
            logger.info("No subscriptions to check.")
            return []
        logger.info("Checking %s series for %s subscriptions", len(groups), sum(len(g) for g in groups.values()))

        increases: list[CounterIncrease] = []
        last_call: float | None = None
        for series_key, subs in groups.items():
            if should_stop is not None and should_stop():
                logger.info("Poll interrupted by shutdown before series %r", series_key)
                break
            if last_call is not None:
                wait = self.min_delay - (self._clock() - last_call)
                if wait > 0:
                    self._sleep(wait)
            last_call = self._clock()
            latest = self._fetch(fetch, series_key)
            if latest is None:
                logger.info("series %r unavailable, retry next poll", series_key)
                continue
            for sub in subs:
                increase = self._apply(sub, latest)
                if increase is None:
                    continue
                increases.append(increase)
                if notify is None:
                    continue
                try:
                    notify(increase)
                except Exception:
                    logger.exception("notification for subscription %s failed", sub.id)
        logger.info("Poll completed: %s increase(s)", len(increases))
        return increases

    def _apply(self, sub: CounterSubscription, latest: int) -> CounterIncrease | None:
        previous = sub.last_observed_counter
        if latest <= previous:
            if latest < previous:
                logger.debug("series %r reported %s below stored %s, ignored", sub.series_key, latest, previous)
            return None
        try:
            self.update(sub.id, latest)
        except StoreError as e:
            logger.error("failed to persist counter for subscription %s: %s", sub.id, e)
            return None
        logger.info("New chapter detected for %s: %s (was %s)", sub.display_title, latest, previous)
        sub.last_observed_counter = latest
        return CounterIncrease(
            subscription_id=sub.id,
            previous_counter=previous,
            new_counter=latest,
            subscription=sub,
        )
