"""Core data models shared by the evaluator, monitor and dispatcher."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Literal, Protocol, Union


class ScheduleKind(str, Enum):
    ONE_SHOT = "one_shot"
    RECURRING = "recurring"


@dataclass(frozen=True)
class NotificationTarget:
    """Where a notification goes: a registered channel type plus its address."""

    channel: str
    address: str


@dataclass
class SchedulePayload:
    title: str
    description: str | None = None
    creator: str | None = None
    targets: list[NotificationTarget] = field(default_factory=list)


@dataclass
class ScheduleDefinition:
    """A stored schedule: either a one-shot timestamp or a cron recurrence.

    ``fire_at`` must be timezone-aware. Exactly one of ``fire_at`` and
    ``recurrence_rule`` is set, matching ``kind``.
    """

    id: str
    kind: ScheduleKind
    payload: SchedulePayload
    fire_at: datetime | None = None
    recurrence_rule: str | None = None

    def __post_init__(self) -> None:
        if self.kind is ScheduleKind.ONE_SHOT:
            if self.fire_at is None or self.recurrence_rule is not None:
                raise ValueError(f"schedule {self.id}: one-shot needs fire_at and no recurrence_rule")
            if self.fire_at.tzinfo is None:
                raise ValueError(f"schedule {self.id}: fire_at must be timezone-aware")
        elif self.kind is ScheduleKind.RECURRING:
            if self.recurrence_rule is None or self.fire_at is not None:
                raise ValueError(f"schedule {self.id}: recurring needs recurrence_rule and no fire_at")
        else:
            raise ValueError(f"schedule {self.id}: unknown kind {self.kind!r}")


@dataclass
class CounterSubscription:
    """A tracked external counter (latest chapter of a series)."""

    id: str
    series_key: str
    last_observed_counter: int
    targets: list[NotificationTarget] = field(default_factory=list)
    title: str | None = None
    cover_url: str | None = None

    def __post_init__(self) -> None:
        if self.last_observed_counter < 0:
            raise ValueError(f"subscription {self.id}: last_observed_counter must be >= 0")

    @property
    def display_title(self) -> str:
        return self.title or self.series_key


@dataclass(frozen=True)
class DueOccurrence:
    """One firing instance of a schedule."""

    schedule_id: str
    occurrence_timestamp: datetime
    definition: ScheduleDefinition = field(compare=False, repr=False)

    @property
    def key(self) -> tuple[str, datetime]:
        return (self.schedule_id, self.occurrence_timestamp)


@dataclass(frozen=True)
class CounterIncrease:
    subscription_id: str
    previous_counter: int
    new_counter: int
    subscription: CounterSubscription = field(compare=False, repr=False)


Event = Union[DueOccurrence, CounterIncrease]


@dataclass
class PushMessage:
    """Rendered message handed to a channel."""

    title: str
    body: str
    format: Literal["text", "markdown"] = "markdown"


class CounterSource(Protocol):
    """External content source: latest counter for a series, or None when unavailable."""

    def fetch_latest_counter(self, series_key: str) -> int | None:
        ...
