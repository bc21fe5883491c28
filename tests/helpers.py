"""Factories and fakes shared by the tests."""
from __future__ import annotations

from datetime import datetime, timezone

from chapterbell.channel import Channel, ChannelError
from chapterbell.models import (
    CounterSubscription,
    NotificationTarget,
    PushMessage,
    ScheduleDefinition,
    ScheduleKind,
    SchedulePayload,
)
from chapterbell.store import StoreError

# 2024-01-01 is a Monday
MONDAY_9AM = datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)


def one_shot(sid: str, fire_at: datetime, targets=None) -> ScheduleDefinition:
    return ScheduleDefinition(
        id=sid,
        kind=ScheduleKind.ONE_SHOT,
        fire_at=fire_at,
        payload=SchedulePayload(title=f"event {sid}", targets=list(targets or [])),
    )


def recurring(sid: str, rule: str, targets=None) -> ScheduleDefinition:
    return ScheduleDefinition(
        id=sid,
        kind=ScheduleKind.RECURRING,
        recurrence_rule=rule,
        payload=SchedulePayload(title=f"event {sid}", targets=list(targets or [])),
    )


def subscription(sid: str, series: str, last: int, targets=None) -> CounterSubscription:
    return CounterSubscription(
        id=sid,
        series_key=series,
        last_observed_counter=last,
        targets=list(targets or [NotificationTarget("fake", f"chan-{sid}")]),
        title=series,
    )


class FakeChannel(Channel):
    """Records sends; addresses listed in ``failing`` raise ChannelError."""

    style = "discord"

    def __init__(self, failing: set[str] | None = None) -> None:
        self.failing = failing or set()
        self.sent: list[tuple[str, PushMessage]] = []

    def send(self, msg: PushMessage, address: str, channel_config: dict) -> None:
        if address in self.failing:
            raise ChannelError(f"channel {address} deleted")
        self.sent.append((address, msg))


class FakeStore:
    """In-memory store with the persistence operations the core consumes."""

    def __init__(self, schedules=None, subscriptions=None) -> None:
        self.schedules = list(schedules or [])
        self.subscriptions = {s.id: s for s in subscriptions or []}
        self.counters = {s.id: s.last_observed_counter for s in subscriptions or []}
        self.fail_updates: set[str] = set()
        self.fail_reads = False
        self.updates: list[tuple[str, int]] = []

    def list_schedule_definitions(self):
        if self.fail_reads:
            raise StoreError("database unavailable")
        return list(self.schedules)

    def list_counter_subscriptions(self):
        if self.fail_reads:
            raise StoreError("database unavailable")
        # Fresh copies, like rows read from a database
        return [
            CounterSubscription(
                id=s.id,
                series_key=s.series_key,
                last_observed_counter=self.counters[s.id],
                targets=list(s.targets),
                title=s.title,
            )
            for s in self.subscriptions.values()
        ]

    def update_counter(self, subscription_id: str, new_counter: int) -> None:
        if subscription_id in self.fail_updates:
            raise StoreError(f"write failed for {subscription_id}")
        self.counters[subscription_id] = new_counter
        self.updates.append((subscription_id, new_counter))


class FakeSource:
    """Counter source returning preset values and counting calls per key."""

    def __init__(self, values: dict[str, int | None] | None = None) -> None:
        self.values = dict(values or {})
        self.calls: list[str] = []

    def fetch_latest_counter(self, series_key: str) -> int | None:
        self.calls.append(series_key)
        return self.values.get(series_key)
