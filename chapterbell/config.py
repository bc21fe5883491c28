"""Configuration: load YAML, validate, and turn it into Settings."""
from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml

from chapterbell.models import NotificationTarget

logger = logging.getLogger(__name__)

# Match ${VAR_NAME} in config strings
ENV_PLACEHOLDER_RE = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")

DEFAULT_TICK_SECONDS = 60
DEFAULT_TOLERANCE_SECONDS = 60
DEFAULT_POLL_SECONDS = 6 * 60 * 60
DEFAULT_POLL_DELAY_SECONDS = 2


def resolve_env(raw: str) -> str:
    """Replace ${ENV_VAR} in raw with os.environ values; unset vars are left as-is."""
    def repl(match: re.Match[str]) -> str:
        key = match.group(1)
        return os.environ.get(key, match.group(0))
    return ENV_PLACEHOLDER_RE.sub(repl, raw)


def load_config(path: str | Path) -> dict:
    """Load YAML config from path."""
    with open(path, encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def _number(section: dict, key: str, default: float) -> float:
    value = section.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"config: scheduler.{key} must be a number")
    return float(value)


def validate_config(config: dict) -> None:
    """Validate store, timezone, scheduler periods, source, channels and default targets; raise on error."""
    from chapterbell.channel import channel_types
    from chapterbell.sources import SOURCES

    if not isinstance(config, dict):
        raise ValueError("config: top level must be a mapping")
    if not config.get("store"):
        raise ValueError("config: 'store' path is required")

    tz = config.get("timezone") or "UTC"
    try:
        ZoneInfo(str(tz))
    except (ZoneInfoNotFoundError, ValueError):
        raise ValueError(f"config: unknown timezone '{tz}'") from None

    sched = config.get("scheduler") or {}
    if not isinstance(sched, dict):
        raise ValueError("config: scheduler must be a dict")
    tick = _number(sched, "tick_seconds", DEFAULT_TICK_SECONDS)
    tolerance = _number(sched, "tolerance_seconds", DEFAULT_TOLERANCE_SECONDS)
    poll = _number(sched, "poll_seconds", DEFAULT_POLL_SECONDS)
    delay = _number(sched, "poll_delay_seconds", DEFAULT_POLL_DELAY_SECONDS)
    if tick <= 0 or poll <= 0:
        raise ValueError("config: scheduler periods must be > 0")
    if tolerance < 0 or delay < 0:
        raise ValueError("config: tolerance_seconds and poll_delay_seconds must be >= 0")
    if tolerance < tick:
        logger.warning(
            "tolerance_seconds=%s is below tick_seconds=%s; recurring occurrences between ticks can be missed",
            tolerance,
            tick,
        )

    source = config.get("source") or {}
    if not isinstance(source, dict):
        raise ValueError("config: source must be a dict")
    source_type = source.get("type", "mangaupdates")
    if source_type not in SOURCES:
        raise ValueError(f"config: source type '{source_type}' not in source registry")

    channels = config.get("channels") or {}
    if not isinstance(channels, dict):
        raise ValueError("config: channels must be a dict")
    known = channel_types()
    for name in channels:
        if name not in known:
            raise ValueError(f"config: unknown channel type '{name}'")

    defaults = config.get("default_targets") or []
    if not isinstance(defaults, list):
        raise ValueError("config: default_targets must be a list")
    for i, t in enumerate(defaults):
        if not isinstance(t, dict) or not t.get("channel") or not t.get("address"):
            raise ValueError(f"config: default_targets[{i}] needs channel and address")
        if t["channel"] not in channels:
            raise ValueError(f"config: default_targets[{i}] channel '{t['channel']}' not in channels")


@dataclass
class Settings:
    store_path: Path
    timezone: str = "UTC"
    tick_seconds: float = DEFAULT_TICK_SECONDS
    tolerance_seconds: float = DEFAULT_TOLERANCE_SECONDS
    poll_seconds: float = DEFAULT_POLL_SECONDS
    poll_delay_seconds: float = DEFAULT_POLL_DELAY_SECONDS
    source_type: str = "mangaupdates"
    source_config: dict = field(default_factory=dict)
    channels: dict[str, dict] = field(default_factory=dict)
    default_targets: list[NotificationTarget] = field(default_factory=list)

    @classmethod
    def from_config(cls, config: dict, base_dir: Path | None = None) -> "Settings":
        """Build Settings from an already validated config dict.

        A relative store path is resolved against base_dir (the config file's folder).
        """
        store_path = Path(resolve_env(str(config["store"])))
        if not store_path.is_absolute() and base_dir is not None:
            store_path = base_dir / store_path
        sched = config.get("scheduler") or {}
        source = dict(config.get("source") or {})
        targets = []
        for t in config.get("default_targets") or []:
            address = resolve_env(str(t["address"])).strip()
            if not address or ENV_PLACEHOLDER_RE.search(address):
                logger.warning("default target %s:%s is not set, skipped", t["channel"], t["address"])
                continue
            targets.append(NotificationTarget(channel=str(t["channel"]), address=address))
        return cls(
            store_path=store_path,
            timezone=str(config.get("timezone") or "UTC"),
            tick_seconds=float(sched.get("tick_seconds", DEFAULT_TICK_SECONDS)),
            tolerance_seconds=float(sched.get("tolerance_seconds", DEFAULT_TOLERANCE_SECONDS)),
            poll_seconds=float(sched.get("poll_seconds", DEFAULT_POLL_SECONDS)),
            poll_delay_seconds=float(sched.get("poll_delay_seconds", DEFAULT_POLL_DELAY_SECONDS)),
            source_type=str(source.pop("type", "mangaupdates")),
            source_config=source,
            channels={str(k): dict(v or {}) for k, v in (config.get("channels") or {}).items()},
            default_targets=targets,
        )


def load_settings(path: str | Path) -> Settings:
    """Load, validate and convert the config file at path."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"config not found: {path}")
    config = load_config(path)
    validate_config(config)
    return Settings.from_config(config, base_dir=path.parent)
