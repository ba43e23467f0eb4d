import logging
import sys
import types

import pytest

from ogp_gateway.config import ThresholdConfig
from ogp_gateway.fraud_window import (
    FraudWindowTracker,
    LocalTimeSource,
    ManualTimeSource,
    NTPTimeSource,
    build_time_source,
)


def test_window_not_opened_is_not_elapsed():
    tracker = FraudWindowTracker(ThresholdConfig(quorum=2, window_duration=10), ManualTimeSource(1000))
    assert tracker.opened_at(b"m") is None
    assert tracker.closes_at(b"m") is None
    assert tracker.has_elapsed(b"m") is False
    assert tracker.describe(b"m") == {"opened_at_utc": None, "closes_at_utc": None}


def test_window_elapses_strictly_after_duration():
    clock = ManualTimeSource(1000)
    tracker = FraudWindowTracker(ThresholdConfig(quorum=2, window_duration=10), clock)

    assert tracker.open_window(b"m") == 1000
    assert tracker.closes_at(b"m") == 1011

    clock.set(1010)
    assert tracker.has_elapsed(b"m") is False
    clock.set(1011)
    assert tracker.has_elapsed(b"m") is True


def test_zero_duration_elapses_next_second():
    clock = ManualTimeSource(50)
    tracker = FraudWindowTracker(ThresholdConfig(quorum=2, window_duration=0), clock)
    tracker.open_window(b"m")
    assert tracker.has_elapsed(b"m") is False
    clock.advance(1)
    assert tracker.has_elapsed(b"m") is True


def test_reopen_overwrites_start():
    clock = ManualTimeSource(0)
    tracker = FraudWindowTracker(ThresholdConfig(quorum=2, window_duration=10), clock)
    tracker.open_window(b"m")
    clock.set(8)
    tracker.open_window(b"m")
    clock.set(15)
    assert tracker.opened_at(b"m") == 8
    assert tracker.has_elapsed(b"m") is False


def test_describe_uses_utc_iso():
    clock = ManualTimeSource(0)
    tracker = FraudWindowTracker(ThresholdConfig(quorum=2, window_duration=59), clock)
    tracker.open_window(b"m")
    assert tracker.describe(b"m") == {
        "opened_at_utc": "1970-01-01T00:00:00+00:00",
        "closes_at_utc": "1970-01-01T00:01:00+00:00",
    }


def test_local_time_source_returns_int():
    assert isinstance(LocalTimeSource().now(), int)


def test_build_time_source_modes():
    assert isinstance(build_time_source("local"), LocalTimeSource)
    assert isinstance(build_time_source("NTP", ["ntp.example"]), NTPTimeSource)
    assert build_time_source("ntp", ["ntp.example"]).ntp_servers == ["ntp.example"]
    assert isinstance(build_time_source("bogus"), LocalTimeSource)


def test_ntp_time_source_uses_server_time(monkeypatch):
    class _Resp:
        tx_time = 1_234_567_890.7

    class _Client:
        def request(self, server, version=3, timeout=2):
            if server == "down.example":
                raise OSError("unreachable")
            return _Resp()

    monkeypatch.setitem(sys.modules, "ntplib", types.SimpleNamespace(NTPClient=_Client))
    src = NTPTimeSource(ntp_servers=["down.example", "up.example"], max_drift_seconds=1e12)
    assert src.now() == 1_234_567_890


def test_ntp_time_source_falls_back_when_unreachable(monkeypatch, caplog):
    class _Client:
        def request(self, server, version=3, timeout=2):
            raise OSError("unreachable")

    monkeypatch.setitem(sys.modules, "ntplib", types.SimpleNamespace(NTPClient=_Client))
    monkeypatch.setattr("ogp_gateway.fraud_window.time.time", lambda: 42.9)

    with caplog.at_level(logging.WARNING, logger="ogp_gateway"):
        assert NTPTimeSource(ntp_servers=["a", "b"]).now() == 42
    assert "All NTP servers unreachable" in caplog.text


def test_manual_time_source_advance():
    clock = ManualTimeSource(5)
    assert clock.advance(10) == 15
    clock.set(3)
    assert clock.now() == 3
