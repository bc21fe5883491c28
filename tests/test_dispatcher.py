"""Tests for notification rendering and fan-out."""
from __future__ import annotations

from datetime import timedelta

import pytest

from chapterbell.dispatcher import Dispatcher, render
from chapterbell.models import CounterIncrease, DueOccurrence, NotificationTarget
from tests.helpers import MONDAY_9AM, FakeChannel, one_shot, subscription


def occurrence(targets=None) -> DueOccurrence:
    d = one_shot("e1", MONDAY_9AM, targets=targets)
    d.payload.description = "Team sync"
    return DueOccurrence(schedule_id="e1", occurrence_timestamp=MONDAY_9AM, definition=d)


def increase(targets=None) -> CounterIncrease:
    sub = subscription("s1", "One Piece", 1100, targets=targets)
    return CounterIncrease(subscription_id="s1", previous_counter=1100, new_counter=1101, subscription=sub)


class TestRender:
    def test_event_discord(self):
        msg = render(occurrence(), "discord")
        assert msg.body == "**EVENT TRIGGERED**: event e1\nTeam sync"

    def test_event_without_description(self):
        occ = occurrence()
        occ.definition.payload.description = None
        assert render(occ, "discord").body == "**EVENT TRIGGERED**: event e1"

    def test_chapter_discord(self):
        msg = render(increase(), "discord")
        assert msg.body == "**NEW CHAPTER RELEASED!**\n\n**One Piece**\nChapter 1101 is now available!"

    def test_chapter_whatsapp(self):
        msg = render(increase(), "whatsapp")
        assert msg.body == "*New Chapter Released!*\n\n*One Piece*\nChapter 1101 is now available!"

    def test_unknown_event_type(self):
        with pytest.raises(TypeError):
            render("nope")  # type: ignore[arg-type]


class TestDispatcher:
    def test_failing_target_is_isolated(self):
        targets = [NotificationTarget("fake", addr) for addr in ("a", "b", "c")]
        channel = FakeChannel(failing={"b"})
        dispatcher = Dispatcher(instances={"fake": channel})

        report = dispatcher.dispatch(occurrence(), targets)

        assert [addr for addr, _ in channel.sent] == ["a", "c"]
        assert report.failed == [NotificationTarget("fake", "b")]
        assert report.succeeded == [NotificationTarget("fake", "a"), NotificationTarget("fake", "c")]
        assert not report.all_ok
        assert "deleted" in report.results[1].error

    def test_deleted_channel_does_not_block_direct_message(self):
        chat = FakeChannel(failing={"gone"})
        dm = FakeChannel()
        dm.style = "whatsapp"
        dispatcher = Dispatcher(instances={"discord": chat, "whatsapp": dm})
        targets = [NotificationTarget("discord", "gone"), NotificationTarget("whatsapp", "+1 555 0100")]

        report = dispatcher.dispatch(increase(targets))

        assert len(dm.sent) == 1
        assert dm.sent[0][1].body.startswith("*New Chapter Released!*")
        assert report.failed == [targets[0]]

    def test_unexpected_exception_is_contained(self):
        class Broken(FakeChannel):
            def send(self, msg, address, channel_config):
                raise RuntimeError("socket closed")

        ok = FakeChannel()
        dispatcher = Dispatcher(instances={"broken": Broken(), "fake": ok})
        report = dispatcher.dispatch(
            occurrence(), [NotificationTarget("broken", "x"), NotificationTarget("fake", "y")]
        )
        assert report.failed == [NotificationTarget("broken", "x")]
        assert len(ok.sent) == 1

    def test_unknown_channel_type_fails_only_that_target(self, fake_channel):
        dispatcher = Dispatcher(instances={"fake": fake_channel})
        report = dispatcher.dispatch(
            occurrence(), [NotificationTarget("pigeon", "x"), NotificationTarget("fake", "y")]
        )
        assert report.failed == [NotificationTarget("pigeon", "x")]
        assert len(fake_channel.sent) == 1

    def test_targets_default_to_event_targets(self, fake_channel):
        dispatcher = Dispatcher(instances={"fake": fake_channel})
        dispatcher.dispatch(occurrence([NotificationTarget("fake", "own")]))
        assert [addr for addr, _ in fake_channel.sent] == ["own"]

    def test_falls_back_to_default_targets(self, fake_channel):
        dispatcher = Dispatcher(default_targets=[NotificationTarget("fake", "default")], instances={"fake": fake_channel})
        report = dispatcher.dispatch(occurrence())
        assert [addr for addr, _ in fake_channel.sent] == ["default"]
        assert report.all_ok

    def test_no_targets_at_all(self, fake_channel):
        dispatcher = Dispatcher(instances={"fake": fake_channel})
        report = dispatcher.dispatch(occurrence())
        assert report.results == []
        assert fake_channel.sent == []

    def test_dry_run_sends_nothing(self, fake_channel):
        dispatcher = Dispatcher(dry_run=True, instances={"fake": fake_channel})
        report = dispatcher.dispatch(occurrence([NotificationTarget("fake", "a")]))
        assert fake_channel.sent == []
        assert report.all_ok

    def test_channel_config_is_passed(self):
        seen = {}

        class Recording(FakeChannel):
            def send(self, msg, address, channel_config):
                seen.update(channel_config)

        dispatcher = Dispatcher(channels={"rec": {"token": "t"}}, instances={"rec": Recording()})
        dispatcher.dispatch(occurrence([NotificationTarget("rec", "1")]))
        assert seen == {"token": "t"}

    def test_registry_channels_built_on_demand(self):
        dispatcher = Dispatcher()
        assert dispatcher._channel("discord").style == "discord"
        assert dispatcher._channel("whatsapp").style == "whatsapp"

    def test_occurrence_equality_ignores_definition(self):
        a = occurrence()
        b = DueOccurrence(schedule_id="e1", occurrence_timestamp=MONDAY_9AM + timedelta(0), definition=one_shot("e1", MONDAY_9AM))
        assert a == b
        assert a.key == b.key
