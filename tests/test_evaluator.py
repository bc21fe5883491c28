"""Tests for due-event evaluation."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from chapterbell.evaluator import DueEventEvaluator, find_due, previous_fire_time, validate_rule
from tests.helpers import MONDAY_9AM, one_shot, recurring

MINUTE = timedelta(seconds=60)


class TestFindDueOneShot:
    def test_within_tolerance_after(self):
        d = one_shot("a", MONDAY_9AM)
        due = find_due([d], MONDAY_9AM + timedelta(seconds=59), MINUTE)
        assert [o.schedule_id for o in due] == ["a"]
        assert due[0].occurrence_timestamp == MONDAY_9AM

    def test_within_tolerance_before(self):
        d = one_shot("a", MONDAY_9AM)
        assert len(find_due([d], MONDAY_9AM - timedelta(seconds=30), MINUTE)) == 1

    def test_boundary_is_inclusive(self):
        d = one_shot("a", MONDAY_9AM)
        assert len(find_due([d], MONDAY_9AM + MINUTE, MINUTE)) == 1

    def test_outside_tolerance_is_missed(self):
        d = one_shot("a", MONDAY_9AM)
        assert find_due([d], MONDAY_9AM + timedelta(seconds=61), MINUTE) == []
        assert find_due([d], MONDAY_9AM - timedelta(seconds=61), MINUTE) == []

    def test_empty_input(self):
        assert find_due([], MONDAY_9AM, MINUTE) == []

    def test_naive_now_rejected(self):
        with pytest.raises(ValueError):
            find_due([], datetime(2024, 1, 1, 9, 0), MINUTE)


class TestFindDueRecurring:
    def test_monday_nine_am_due(self):
        d = recurring("weekly", "0 9 * * 1")
        due = find_due([d], MONDAY_9AM + timedelta(seconds=30), MINUTE)
        assert len(due) == 1
        assert due[0].occurrence_timestamp == MONDAY_9AM

    def test_monday_nine_oh_two_not_due(self):
        d = recurring("weekly", "0 9 * * 1")
        assert find_due([d], MONDAY_9AM + timedelta(minutes=2), MINUTE) == []

    def test_exact_instant_counts(self):
        d = recurring("weekly", "0 9 * * 1")
        due = find_due([d], MONDAY_9AM, MINUTE)
        assert len(due) == 1
        assert due[0].occurrence_timestamp == MONDAY_9AM

    def test_just_before_instant_not_due(self):
        # The previous occurrence is a week earlier
        d = recurring("weekly", "0 9 * * 1")
        assert find_due([d], MONDAY_9AM - timedelta(seconds=10), MINUTE) == []

    def test_one_occurrence_per_definition(self):
        d = recurring("every", "* * * * *")
        due = find_due([d], MONDAY_9AM + timedelta(seconds=30), timedelta(minutes=5))
        assert len(due) == 1
        assert due[0].occurrence_timestamp == MONDAY_9AM

    def test_cron_in_local_timezone(self):
        d = recurring("daily", "0 9 * * *")
        # 09:00 in New York (EST) is 14:00 UTC in January
        now = datetime(2024, 1, 1, 14, 0, 10, tzinfo=timezone.utc)
        due = find_due([d], now, MINUTE, tz="America/New_York")
        assert len(due) == 1
        assert due[0].occurrence_timestamp == datetime(2024, 1, 1, 14, 0, tzinfo=timezone.utc)
        assert find_due([d], now, MINUTE, tz="UTC") == []

    def test_malformed_rule_is_isolated(self, caplog):
        good = recurring("good", "0 9 * * 1")
        bad = recurring("bad", "not a cron")
        short = recurring("short", "0 9 * *")
        due = find_due([bad, good, short], MONDAY_9AM + timedelta(seconds=5), MINUTE)
        assert [o.schedule_id for o in due] == ["good"]
        assert "bad recurrence rule" in caplog.text

    def test_non_string_rule_is_isolated(self, caplog):
        good = recurring("good", "0 9 * * 1")
        numeric = recurring("numeric", 5)
        due = find_due([numeric, good], MONDAY_9AM + timedelta(seconds=5), MINUTE)
        assert [o.schedule_id for o in due] == ["good"]
        assert "skipping schedule numeric" in caplog.text


class TestPreviousFireTime:
    def test_previous_week(self):
        prev = previous_fire_time("0 9 * * 1", MONDAY_9AM + timedelta(days=3))
        assert prev == MONDAY_9AM

    def test_end_of_month(self):
        # Day 31 skips months that are too short
        now = datetime(2024, 4, 15, tzinfo=timezone.utc)
        assert previous_fire_time("0 0 31 * *", now) == datetime(2024, 3, 31, tzinfo=timezone.utc)

    def test_validate_rule(self):
        validate_rule("*/5 * * * *")
        with pytest.raises(ValueError):
            validate_rule("0 0 * * * *")
        with pytest.raises(ValueError):
            validate_rule("61 * * * *")
        with pytest.raises(ValueError):
            validate_rule(5)


class TestDueEventEvaluator:
    def test_adjacent_ticks_do_not_double_fire(self):
        evaluator = DueEventEvaluator(timedelta(seconds=30))
        d = recurring("weekly", "0 9 * * 1")
        first = evaluator.evaluate([d], MONDAY_9AM + timedelta(seconds=5))
        second = evaluator.evaluate([d], MONDAY_9AM + timedelta(seconds=20))
        assert len(first) == 1
        assert second == []

    def test_one_shot_fires_once_across_window(self):
        evaluator = DueEventEvaluator(MINUTE)
        d = one_shot("a", MONDAY_9AM)
        fired = []
        for offset in (-50, -10, 0, 30, 55, 120):
            fired += evaluator.evaluate([d], MONDAY_9AM + timedelta(seconds=offset))
        assert len(fired) == 1

    def test_next_occurrence_still_fires(self):
        evaluator = DueEventEvaluator(MINUTE)
        d = recurring("weekly", "0 9 * * 1")
        assert len(evaluator.evaluate([d], MONDAY_9AM + timedelta(seconds=10))) == 1
        next_week = MONDAY_9AM + timedelta(days=7, seconds=10)
        assert len(evaluator.evaluate([d], next_week)) == 1
        # The first week's entry has been forgotten
        assert len(evaluator) == 1

    def test_negative_tolerance_rejected(self):
        with pytest.raises(ValueError):
            DueEventEvaluator(timedelta(seconds=-1))
