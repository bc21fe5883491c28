"""Shared test fixtures."""
from __future__ import annotations

import pytest

from tests.helpers import FakeChannel


@pytest.fixture
def fake_channel() -> FakeChannel:
    return FakeChannel()
