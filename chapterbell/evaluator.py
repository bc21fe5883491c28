"""Due-event evaluator: decide which schedule definitions fire at a given instant."""
from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from croniter import croniter

from chapterbell.models import DueOccurrence, ScheduleDefinition, ScheduleKind

logger = logging.getLogger(__name__)

CRON_FIELDS = 5


def _zone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("invalid timezone %r, falling back to UTC", name)
        return ZoneInfo("UTC")


def validate_rule(rule: str) -> None:
    """Raise ValueError unless rule is a valid five-field cron expression."""
    if not isinstance(rule, str):
        raise ValueError(f"cron rule must be a string, got {type(rule).__name__}")
    if len(rule.split()) != CRON_FIELDS:
        raise ValueError(f"cron rule must have {CRON_FIELDS} fields: {rule!r}")
    if not croniter.is_valid(rule):
        raise ValueError(f"invalid cron rule: {rule!r}")


def previous_fire_time(rule: str, now: datetime, tz: str = "UTC") -> datetime:
    """Most recent instant matching rule that is at or before now (returned in UTC).

    The rule is evaluated in the wall-clock time of ``tz`` so that "09:00"
    means 09:00 local across DST changes.
    """
    validate_rule(rule)
    local_now = now.astimezone(_zone(tz))
    if local_now.second == 0 and local_now.microsecond == 0 and croniter.match(rule, local_now):
        return now.astimezone(timezone.utc)
    prev_local = croniter(rule, local_now).get_prev(datetime)
    return prev_local.astimezone(timezone.utc)


def find_due(
    definitions: Iterable[ScheduleDefinition],
    now: datetime,
    tolerance: timedelta,
    tz: str = "UTC",
) -> list[DueOccurrence]:
    """Return one DueOccurrence per definition whose scheduled instant is within tolerance of now.

    A definition with a malformed rule is logged and skipped; it never prevents
    the remaining definitions from being evaluated.
    """
    if now.tzinfo is None:
        raise ValueError("now must be timezone-aware")
    due: list[DueOccurrence] = []
    for definition in definitions:
        if definition.kind is ScheduleKind.ONE_SHOT:
            instant = definition.fire_at
        else:
            try:
                instant = previous_fire_time(definition.recurrence_rule, now, tz)
            except (ValueError, KeyError) as e:
                logger.warning("skipping schedule %s: bad recurrence rule %r: %s", definition.id, definition.recurrence_rule, e)
                continue
        diff = abs(now - instant)
        if diff <= tolerance:
            logger.debug("schedule %s due: instant=%s now=%s", definition.id, instant.isoformat(), now.isoformat())
            due.append(DueOccurrence(schedule_id=definition.id, occurrence_timestamp=instant, definition=definition))
    return due


class DueEventEvaluator:
    """Stateful wrapper around find_due used by the tick driver.

    Remembers the occurrences it already reported so that two ticks falling
    inside the same tolerance window cannot fire the same instant twice.
    Entries are dropped once they are older than two windows.
    """

    def __init__(self, tolerance: timedelta, tz: str = "UTC") -> None:
        if tolerance < timedelta(0):
            raise ValueError("tolerance must be >= 0")
        self.tolerance = tolerance
        self.tz = tz
        self._reported: dict[tuple[str, datetime], datetime] = {}

    def evaluate(self, definitions: Iterable[ScheduleDefinition], now: datetime) -> list[DueOccurrence]:
        self._forget_before(now - 2 * self.tolerance)
        fresh: list[DueOccurrence] = []
        for occurrence in find_due(definitions, now, self.tolerance, self.tz):
            if occurrence.key in self._reported:
                logger.debug(
                    "schedule %s already fired for %s, skip",
                    occurrence.schedule_id,
                    occurrence.occurrence_timestamp.isoformat(),
                )
                continue
            self._reported[occurrence.key] = occurrence.occurrence_timestamp
            fresh.append(occurrence)
        return fresh

    def _forget_before(self, cutoff: datetime) -> None:
        stale = [key for key, instant in self._reported.items() if instant < cutoff]
        for key in stale:
            del self._reported[key]

    def __len__(self) -> int:
        return len(self._reported)
