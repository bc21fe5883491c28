"""Schedule store: schedule definitions and counter subscriptions in a YAML file."""
from __future__ import annotations

import logging
import os
import tempfile
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Protocol
from zoneinfo import ZoneInfo

import yaml

from chapterbell.models import (
    CounterSubscription,
    NotificationTarget,
    ScheduleDefinition,
    ScheduleKind,
    SchedulePayload,
)

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """Raised when the store cannot be read or written."""


class ScheduleStore(Protocol):
    def list_schedule_definitions(self) -> list[ScheduleDefinition]:
        ...

    def list_counter_subscriptions(self) -> list[CounterSubscription]:
        ...

    def update_counter(self, subscription_id: str, new_counter: int) -> None:
        ...


def targets_from_list(raw: Any) -> list[NotificationTarget]:
    targets: list[NotificationTarget] = []
    for item in raw or []:
        if not isinstance(item, dict):
            raise ValueError(f"target must be a mapping, got {item!r}")
        channel = str(item.get("channel") or "").strip()
        address = str(item.get("address") or "").strip()
        if not channel or not address:
            raise ValueError(f"target needs channel and address: {item!r}")
        targets.append(NotificationTarget(channel=channel, address=address))
    return targets


def _targets_to_list(targets: list[NotificationTarget]) -> list[dict[str, str]]:
    return [{"channel": t.channel, "address": t.address} for t in targets]


def _parse_instant(value: Any, default_tz: str) -> datetime:
    # yaml.safe_load already turns ISO timestamps into datetime objects
    if isinstance(value, datetime):
        dt = value
    else:
        dt = datetime.fromisoformat(str(value))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=ZoneInfo(default_tz))
    return dt


def schedule_from_dict(data: dict[str, Any], default_tz: str = "UTC") -> ScheduleDefinition:
    """Parse one schedule record; raises ValueError on malformed input."""
    sid = data.get("id")
    if sid is None or str(sid) == "":
        raise ValueError("schedule missing 'id'")
    title = data.get("title")
    if not title:
        raise ValueError(f"schedule {sid} missing 'title'")
    kind_raw = str(data.get("kind") or "").lower()
    try:
        kind = ScheduleKind(kind_raw)
    except ValueError:
        raise ValueError(f"schedule {sid}: unknown kind {kind_raw!r}") from None

    fire_at = data.get("fire_at")
    cron = data.get("cron")
    if cron is not None and not isinstance(cron, str):
        raise ValueError(f"schedule {sid}: cron must be a string, got {cron!r}")
    return ScheduleDefinition(
        id=str(sid),
        kind=kind,
        fire_at=_parse_instant(fire_at, default_tz) if fire_at is not None else None,
        recurrence_rule=cron,
        payload=SchedulePayload(
            title=str(title),
            description=data.get("description"),
            creator=data.get("creator"),
            targets=targets_from_list(data.get("targets")),
        ),
    )


def schedule_to_dict(definition: ScheduleDefinition) -> dict[str, Any]:
    data: dict[str, Any] = {"id": definition.id, "kind": definition.kind.value}
    if definition.fire_at is not None:
        data["fire_at"] = definition.fire_at.isoformat()
    if definition.recurrence_rule is not None:
        data["cron"] = definition.recurrence_rule
    data["title"] = definition.payload.title
    if definition.payload.description:
        data["description"] = definition.payload.description
    if definition.payload.creator:
        data["creator"] = definition.payload.creator
    if definition.payload.targets:
        data["targets"] = _targets_to_list(definition.payload.targets)
    return data


def subscription_from_dict(data: dict[str, Any]) -> CounterSubscription:
    """Parse one subscription record; raises ValueError on malformed input."""
    sid = data.get("id")
    if sid is None or str(sid) == "":
        raise ValueError("subscription missing 'id'")
    series = data.get("series")
    if series is None or str(series) == "":
        raise ValueError(f"subscription {sid} missing 'series'")
    try:
        last = int(data.get("last_chapter") or 0)
    except (TypeError, ValueError):
        raise ValueError(f"subscription {sid}: last_chapter must be an integer") from None
    return CounterSubscription(
        id=str(sid),
        series_key=str(series),
        last_observed_counter=last,
        targets=targets_from_list(data.get("targets")),
        title=data.get("title"),
        cover_url=data.get("cover_url"),
    )


def subscription_to_dict(sub: CounterSubscription) -> dict[str, Any]:
    data: dict[str, Any] = {
        "id": sub.id,
        "series": sub.series_key,
        "last_chapter": sub.last_observed_counter,
    }
    if sub.title:
        data["title"] = sub.title
    if sub.cover_url:
        data["cover_url"] = sub.cover_url
    if sub.targets:
        data["targets"] = _targets_to_list(sub.targets)
    return data


class YamlStore:
    """File-backed store.

    The file holds two top-level lists, ``schedules`` and ``subscriptions``.
    A record that fails to parse is logged and left out of the listing; the
    raw record is kept untouched on rewrite. Writes replace the file
    atomically and are serialized by an instance lock.
    """

    def __init__(self, path: str | Path, default_tz: str = "UTC") -> None:
        self.path = Path(path)
        self.default_tz = default_tz
        self._lock = threading.RLock()

    def _read(self) -> dict[str, list[dict[str, Any]]]:
        if not self.path.exists():
            logger.info("store %s does not exist yet, treating as empty", self.path)
            return {"schedules": [], "subscriptions": []}
        try:
            with open(self.path, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise StoreError(f"cannot read store {self.path}: {e}") from e
        if not isinstance(data, dict):
            raise StoreError(f"store {self.path}: top level must be a mapping")
        out: dict[str, list[dict[str, Any]]] = {}
        for key in ("schedules", "subscriptions"):
            records = data.get(key) or []
            if not isinstance(records, list):
                raise StoreError(f"store {self.path}: '{key}' must be a list")
            out[key] = records
        return out

    def _write(self, data: dict[str, list[dict[str, Any]]]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(prefix=f".{self.path.name}.", dir=self.path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                yaml.safe_dump(data, f, allow_unicode=True, sort_keys=False)
            os.replace(tmp, self.path)
        except OSError as e:
            Path(tmp).unlink(missing_ok=True)
            raise StoreError(f"cannot write store {self.path}: {e}") from e

    def list_schedule_definitions(self) -> list[ScheduleDefinition]:
        with self._lock:
            records = self._read()["schedules"]
        definitions = []
        for i, raw in enumerate(records):
            try:
                if not isinstance(raw, dict):
                    raise ValueError("record must be a mapping")
                definitions.append(schedule_from_dict(raw, self.default_tz))
            except ValueError as e:
                logger.warning("skipping malformed schedule record #%s: %s", i, e)
        return definitions

    def list_counter_subscriptions(self) -> list[CounterSubscription]:
        with self._lock:
            records = self._read()["subscriptions"]
        subs = []
        for i, raw in enumerate(records):
            try:
                if not isinstance(raw, dict):
                    raise ValueError("record must be a mapping")
                subs.append(subscription_from_dict(raw))
            except ValueError as e:
                logger.warning("skipping malformed subscription record #%s: %s", i, e)
        return subs

    def update_counter(self, subscription_id: str, new_counter: int) -> None:
        """Store a higher counter for one subscription.

        Refuses to lower the stored value; raises StoreError for an unknown id.
        """
        with self._lock:
            data = self._read()
            for raw in data["subscriptions"]:
                if isinstance(raw, dict) and str(raw.get("id")) == subscription_id:
                    try:
                        current = int(raw.get("last_chapter") or 0)
                    except (TypeError, ValueError):
                        raise StoreError(
                            f"subscription {subscription_id}: stored last_chapter is not an integer"
                        ) from None
                    if new_counter < current:
                        raise StoreError(
                            f"subscription {subscription_id}: refusing to lower counter {current} -> {new_counter}"
                        )
                    raw["last_chapter"] = new_counter
                    self._write(data)
                    return
        raise StoreError(f"unknown subscription id: {subscription_id}")

    def add_schedule(self, definition: ScheduleDefinition) -> None:
        with self._lock:
            data = self._read()
            if any(isinstance(r, dict) and str(r.get("id")) == definition.id for r in data["schedules"]):
                raise StoreError(f"duplicate schedule id: {definition.id}")
            data["schedules"].append(schedule_to_dict(definition))
            self._write(data)

    def remove_schedule(self, schedule_id: str) -> bool:
        with self._lock:
            data = self._read()
            kept = [r for r in data["schedules"] if not (isinstance(r, dict) and str(r.get("id")) == schedule_id)]
            if len(kept) == len(data["schedules"]):
                return False
            data["schedules"] = kept
            self._write(data)
            return True

    def add_subscription(self, sub: CounterSubscription) -> None:
        with self._lock:
            data = self._read()
            if any(isinstance(r, dict) and str(r.get("id")) == sub.id for r in data["subscriptions"]):
                raise StoreError(f"duplicate subscription id: {sub.id}")
            data["subscriptions"].append(subscription_to_dict(sub))
            self._write(data)

    def remove_subscription(self, subscription_id: str) -> bool:
        with self._lock:
            data = self._read()
            kept = [r for r in data["subscriptions"] if not (isinstance(r, dict) and str(r.get("id")) == subscription_id)]
            if len(kept) == len(data["subscriptions"]):
                return False
            data["subscriptions"] = kept
            self._write(data)
            return True
