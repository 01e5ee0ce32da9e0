"""Shared fixtures for Wallet Guard tests."""

from datetime import datetime, timedelta, timezone

import pytest

from walletguard.config import DEFAULT_CONFIG, merge_config


ADDRESS = "0xABCD"
START = datetime(2026, 3, 14, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start: datetime = START):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


def fast_config(**overrides) -> dict:
    """Defaults with cooldown and anomaly freezing out of the way."""
    doc = merge_config(DEFAULT_CONFIG, {
        "cooldown": {"betweenTransactions": 0, "afterRejection": 0},
        "freezeOnAnomalies": {"rapidRequests": 100, "windowSeconds": 1},
    })
    return merge_config(doc, overrides)


@pytest.fixture(autouse=True)
def _no_ambient_secret(monkeypatch):
    monkeypatch.delenv("AWG_INTEGRITY_SECRET", raising=False)
    monkeypatch.delenv("AWG_DIR", raising=False)


@pytest.fixture
def clock():
    return FakeClock()
