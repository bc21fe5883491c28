"""Notification dispatcher: render an event and fan it out to its targets."""
from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from chapterbell.channel import Channel, ChannelError, get_channel
from chapterbell.models import CounterIncrease, DueOccurrence, Event, NotificationTarget, PushMessage

logger = logging.getLogger(__name__)


def render(event: Event, style: str = "text") -> PushMessage:
    """Build the message for one event in the given channel style."""
    if isinstance(event, DueOccurrence):
        payload = event.definition.payload
        title = payload.title
        if style == "whatsapp":
            body = f"*EVENT TRIGGERED*: {title}\n{payload.description or ''}"
        else:
            body = f"**EVENT TRIGGERED**: {title}\n{payload.description or ''}"
        return PushMessage(title=title, body=body.rstrip("\n"), format="markdown")

    if isinstance(event, CounterIncrease):
        sub = event.subscription
        title = sub.display_title
        n = event.new_counter
        if style == "whatsapp":
            body = f"*New Chapter Released!*\n\n*{title}*\nChapter {n} is now available!"
        elif style == "discord":
            body = f"**NEW CHAPTER RELEASED!**\n\n**{title}**\nChapter {n} is now available!"
            if sub.cover_url:
                body += f"\n{sub.cover_url}"
        else:
            body = f"New chapter released: {title} chapter {n} is now available!"
        return PushMessage(title=title, body=body, format="markdown" if style != "text" else "text")

    raise TypeError(f"cannot render {type(event).__name__}")


def event_targets(event: Event) -> list[NotificationTarget]:
    if isinstance(event, DueOccurrence):
        return list(event.definition.payload.targets)
    return list(event.subscription.targets)


@dataclass
class TargetResult:
    target: NotificationTarget
    ok: bool
    error: str | None = None


@dataclass
class DispatchReport:
    """Per-target outcome of one dispatch call."""

    results: list[TargetResult] = field(default_factory=list)

    @property
    def succeeded(self) -> list[NotificationTarget]:
        return [r.target for r in self.results if r.ok]

    @property
    def failed(self) -> list[NotificationTarget]:
        return [r.target for r in self.results if not r.ok]

    @property
    def all_ok(self) -> bool:
        return all(r.ok for r in self.results)


class Dispatcher:
    """Deliver events at most once to every target, isolating per-target failures.

    ``channels`` maps a channel type to its config (token etc.). Channel
    instances may be injected for tests; otherwise they are built from the
    registry on first use. Events that carry no targets go to
    ``default_targets``.
    """

    def __init__(
        self,
        channels: dict[str, dict] | None = None,
        default_targets: Iterable[NotificationTarget] = (),
        dry_run: bool = False,
        instances: dict[str, Channel] | None = None,
    ) -> None:
        self.channel_configs = channels or {}
        self.default_targets = list(default_targets)
        self.dry_run = dry_run
        self._instances: dict[str, Channel] = dict(instances or {})

    def _channel(self, channel_type: str) -> Channel:
        if channel_type not in self._instances:
            self._instances[channel_type] = get_channel(channel_type)()
        return self._instances[channel_type]

    def dispatch(self, event: Event, targets: Iterable[NotificationTarget] | None = None) -> DispatchReport:
        resolved = list(targets) if targets is not None else event_targets(event)
        if not resolved:
            resolved = list(self.default_targets)
        report = DispatchReport()
        if not resolved:
            logger.warning("no delivery target for %s, notification dropped", _describe(event))
            return report

        for target in resolved:
            report.results.append(self._send_one(event, target))
        if report.failed:
            logger.warning(
                "%s: delivered to %s/%s target(s)",
                _describe(event),
                len(report.succeeded),
                len(report.results),
            )
        return report

    def _send_one(self, event: Event, target: NotificationTarget) -> TargetResult:
        try:
            channel = self._channel(target.channel)
        except ValueError as e:
            logger.error("target %s:%s: %s", target.channel, target.address, e)
            return TargetResult(target=target, ok=False, error=str(e))

        msg = render(event, channel.style)
        if self.dry_run:
            preview = msg.body[:200].replace("\n", " ")
            logger.info("Dry-run: would send to %s:%s preview=%r", target.channel, target.address, preview)
            return TargetResult(target=target, ok=True)

        try:
            channel.send(msg, target.address, self.channel_configs.get(target.channel) or {})
        except ChannelError as e:
            logger.error("send to %s:%s failed: %s", target.channel, target.address, e)
            return TargetResult(target=target, ok=False, error=str(e))
        except Exception as e:
            logger.exception("unexpected error sending to %s:%s", target.channel, target.address)
            return TargetResult(target=target, ok=False, error=str(e))
        return TargetResult(target=target, ok=True)


def _describe(event: Event) -> str:
    if isinstance(event, DueOccurrence):
        return f"schedule {event.schedule_id} @ {event.occurrence_timestamp.isoformat()}"
    return f"subscription {event.subscription_id} chapter {event.new_counter}"
