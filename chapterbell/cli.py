"""CLI entry: python -m chapterbell.cli {serve,tick,poll,list,add-event,remove-event,subscribe,unsubscribe} [--config path]."""
from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading
from datetime import datetime, timezone
from pathlib import Path
from zoneinfo import ZoneInfo

from dotenv import load_dotenv

from chapterbell.config import Settings, load_settings
from chapterbell.cronfmt import describe_cron
from chapterbell.driver import TickDriver
from chapterbell.evaluator import validate_rule
from chapterbell.models import (
    CounterSubscription,
    NotificationTarget,
    ScheduleDefinition,
    ScheduleKind,
    SchedulePayload,
)
from chapterbell.runner import Engine
from chapterbell.sources import get_source
from chapterbell.store import StoreError, YamlStore

load_dotenv()

DEFAULT_CONFIG = "config/config.yaml"
LOG_DIR = Path("logs")

logger = logging.getLogger(__name__)


def _setup_logging(verbose: bool = False) -> None:
    LOG_DIR.mkdir(exist_ok=True)
    log_file = LOG_DIR / "app.log"
    fmt = "%(asctime)s %(levelname)s %(name)s %(message)s"
    formatter = logging.Formatter(fmt)
    root = logging.getLogger()
    root.setLevel(logging.DEBUG if verbose else logging.INFO)
    if not root.handlers:
        h_stderr = logging.StreamHandler(sys.stderr)
        h_stderr.setFormatter(formatter)
        root.addHandler(h_stderr)
        h_file = logging.FileHandler(log_file, encoding="utf-8")
        h_file.setFormatter(formatter)
        root.addHandler(h_file)
    # APScheduler logs every job execution at INFO
    logging.getLogger("apscheduler").setLevel(logging.WARNING)


def _parse_at(value: str) -> datetime:
    try:
        at = datetime.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not an ISO timestamp: {value!r}") from None
    if at.tzinfo is None:
        at = at.replace(tzinfo=timezone.utc)
    return at


def serve(settings: Settings) -> None:
    """Run both timers until SIGINT/SIGTERM, then let in-flight runs finish."""
    engine = Engine.from_settings(settings)
    driver = TickDriver(
        tick_job=engine.tick,
        poll_job=lambda should_stop: engine.poll(should_stop=should_stop),
        tick_seconds=settings.tick_seconds,
        poll_seconds=settings.poll_seconds,
    )
    done = threading.Event()

    def _on_signal(signum, frame) -> None:
        logger.info("Received signal %s, shutting down", signum)
        done.set()

    signal.signal(signal.SIGINT, _on_signal)
    signal.signal(signal.SIGTERM, _on_signal)
    driver.start()
    try:
        done.wait()
    finally:
        driver.stop(wait=True)


def list_records(settings: Settings) -> None:
    store = YamlStore(settings.store_path, default_tz=settings.timezone)
    print("Schedules:")
    for d in store.list_schedule_definitions():
        if d.kind is ScheduleKind.ONE_SHOT:
            when = f"once at {d.fire_at.isoformat()}"
        else:
            when = describe_cron(d.recurrence_rule)
        print(f"  [{d.id}] {d.payload.title} - {when}")
    print("Subscriptions:")
    for s in store.list_counter_subscriptions():
        print(f"  [{s.id}] {s.display_title} - last chapter {s.last_observed_counter}")


def _parse_target(value: str) -> NotificationTarget:
    channel, sep, address = value.partition(":")
    if not sep or not channel.strip() or not address.strip():
        raise argparse.ArgumentTypeError(f"target must be channel:address, got {value!r}")
    return NotificationTarget(channel=channel.strip(), address=address.strip())


def add_event(settings: Settings, args: argparse.Namespace) -> ScheduleDefinition:
    """Store a new one-shot (--at) or recurring (--cron) schedule."""
    payload = SchedulePayload(
        title=args.title,
        description=args.description,
        creator=args.creator,
        targets=list(args.target or []),
    )
    if args.cron is not None:
        validate_rule(args.cron)
        definition = ScheduleDefinition(
            id=args.id,
            kind=ScheduleKind.RECURRING,
            recurrence_rule=args.cron,
            payload=payload,
        )
    else:
        try:
            fire_at = datetime.fromisoformat(args.at)
        except ValueError:
            raise ValueError(f"not an ISO timestamp: {args.at!r}") from None
        if fire_at.tzinfo is None:
            fire_at = fire_at.replace(tzinfo=ZoneInfo(settings.timezone))
        if fire_at < datetime.now(timezone.utc):
            raise ValueError("fire time cannot be in the past")
        definition = ScheduleDefinition(
            id=args.id,
            kind=ScheduleKind.ONE_SHOT,
            fire_at=fire_at,
            payload=payload,
        )
    YamlStore(settings.store_path, default_tz=settings.timezone).add_schedule(definition)
    logger.info("Added schedule %s: %s", definition.id, definition.payload.title)
    return definition


def remove_event(settings: Settings, schedule_id: str) -> None:
    if not YamlStore(settings.store_path, default_tz=settings.timezone).remove_schedule(schedule_id):
        raise StoreError(f"no schedule with id {schedule_id}")
    logger.info("Removed schedule %s", schedule_id)


def subscribe(settings: Settings, args: argparse.Namespace) -> CounterSubscription:
    """Store a new subscription.

    Without --last the current counter is fetched from the source, so that only
    chapters released after subscribing are announced.
    """
    last = args.last
    if last is None:
        source = get_source(settings.source_type)(settings.source_config)
        last = source.fetch_latest_counter(args.series) or 0
    sub = CounterSubscription(
        id=args.id,
        series_key=args.series,
        last_observed_counter=last,
        targets=list(args.target or []),
        title=args.title,
        cover_url=args.cover_url,
    )
    YamlStore(settings.store_path, default_tz=settings.timezone).add_subscription(sub)
    logger.info("Subscribed %s to %s at chapter %s", sub.id, sub.series_key, last)
    return sub


def unsubscribe(settings: Settings, subscription_id: str) -> None:
    if not YamlStore(settings.store_path, default_tz=settings.timezone).remove_subscription(subscription_id):
        raise StoreError(f"no subscription with id {subscription_id}")
    logger.info("Removed subscription %s", subscription_id)


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="chapterbell scheduler and notifier")
    parser.add_argument(
        "--config",
        default=DEFAULT_CONFIG,
        help=f"Config file path (default: {DEFAULT_CONFIG})",
    )
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("serve", help="Run the schedule and poll timers until interrupted")
    tick_parser = sub.add_parser("tick", help="Evaluate schedules once")
    tick_parser.add_argument("--at", type=_parse_at, default=None, help="Evaluate at this ISO time instead of now")
    tick_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Evaluate and log messages but do not send to channels",
    )
    poll_parser = sub.add_parser("poll", help="Check subscriptions once")
    poll_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Fetch and persist counters but log messages instead of sending",
    )
    sub.add_parser("list", help="Show stored schedules and subscriptions")
    add_parser = sub.add_parser("add-event", help="Store a one-shot or recurring schedule")
    add_parser.add_argument("id", help="Schedule id")
    add_parser.add_argument("title", help="Event title")
    when = add_parser.add_mutually_exclusive_group(required=True)
    when.add_argument("--at", default=None, help="One-shot ISO time (naive times use the configured timezone)")
    when.add_argument("--cron", default=None, help="Five-field cron rule, e.g. \"0 9 * * 1\"")
    add_parser.add_argument("--description", default=None)
    add_parser.add_argument("--creator", default=None)
    add_parser.add_argument(
        "--target",
        type=_parse_target,
        action="append",
        help="channel:address, repeatable (default: configured default targets)",
    )
    remove_parser = sub.add_parser("remove-event", help="Delete a stored schedule")
    remove_parser.add_argument("id")
    subscribe_parser = sub.add_parser("subscribe", help="Track the chapter counter of a series")
    subscribe_parser.add_argument("id", help="Subscription id")
    subscribe_parser.add_argument("series", help="Series key understood by the configured source")
    subscribe_parser.add_argument("--title", default=None)
    subscribe_parser.add_argument("--cover-url", default=None)
    subscribe_parser.add_argument(
        "--last",
        type=int,
        default=None,
        help="Last known chapter (default: fetch the current one from the source)",
    )
    subscribe_parser.add_argument("--target", type=_parse_target, action="append", help="channel:address, repeatable")
    unsubscribe_parser = sub.add_parser("unsubscribe", help="Delete a stored subscription")
    unsubscribe_parser.add_argument("id")
    args = parser.parse_args(argv)

    _setup_logging(args.verbose)

    try:
        settings = load_settings(args.config)
        if args.command == "serve":
            serve(settings)
        elif args.command == "tick":
            results = Engine.from_settings(settings, dry_run=args.dry_run).tick(args.at)
            logger.info("%s occurrence(s) fired", len(results))
        elif args.command == "poll":
            increases = Engine.from_settings(settings, dry_run=args.dry_run).poll()
            logger.info("%s increase(s) found", len(increases))
        elif args.command == "list":
            list_records(settings)
        elif args.command == "add-event":
            add_event(settings, args)
        elif args.command == "remove-event":
            remove_event(settings, args.id)
        elif args.command == "subscribe":
            subscribe(settings, args)
        elif args.command == "unsubscribe":
            unsubscribe(settings, args.id)
    except FileNotFoundError as e:
        logging.error("%s", e)
        sys.exit(1)
    except (ValueError, StoreError) as e:
        logging.error("%s", e)
        sys.exit(1)


if __name__ == "__main__":
    main()
