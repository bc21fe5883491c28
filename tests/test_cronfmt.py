"""Tests for cron descriptions."""
from __future__ import annotations

import pytest

from chapterbell.cronfmt import describe_cron


@pytest.mark.parametrize(
    "expr, text",
    [
        ("* * * * *", "Every minute"),
        ("*/15 * * * *", "Every 15 minutes"),
        ("5 * * * *", "Every hour at minute 05"),
        ("30 */2 * * *", "Every 2 hours at :30"),
        ("0 9 * * *", "Daily at 09:00"),
        ("0 9 * * 1", "Weekly on Monday at 09:00"),
        ("30 18 15 * *", "Monthly on day 15 at 18:30"),
        ("0 0 25 12 *", "Yearly on December 25 at 00:00"),
        ("0 9 * * 1-5", "Weekly on day 1-5 at 09:00"),
        ("0 9 1 * 1", "Custom schedule: 0 9 1 * 1"),
        ("0 9 * *", "Custom schedule: 0 9 * *"),
        ("", "Unknown schedule"),
    ],
)
def test_describe_cron(expr, text):
    assert describe_cron(expr) == text
