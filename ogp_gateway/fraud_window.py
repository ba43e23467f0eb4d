"""Fraud window tracking and time sources.

A fraud window opens when a message is pre-verified and is "elapsed" once
the current time is strictly past opened_at + window_duration. The duration
is read from the live ThresholdConfig at every check.

Time sources return integer epoch seconds. The NTP source exists so that a
relayer who controls the host clock cannot fast-forward past the window.
"""

from __future__ import annotations

import logging
import threading
import time
from datetime import datetime, timezone
from typing import Dict, List, Optional

from .config import ThresholdConfig

logger = logging.getLogger("ogp_gateway")


# ---------------------------
# Time Sources
# ---------------------------

class TimeSource:
    """Source of the current time, in integer epoch seconds."""

    def now(self) -> int:
        raise NotImplementedError


class LocalTimeSource(TimeSource):
    """Local system time (not secure against clock skew)."""

    def now(self) -> int:
        return int(time.time())


class NTPTimeSource(TimeSource):
    """
    NTP-verified time source.

    Queries NTP servers to get time independent of the system clock. Falls
    back to local time (with a warning) when ntplib is missing or every
    server is unreachable.
    """

    def __init__(self, ntp_servers: Optional[List[str]] = None, max_drift_seconds: float = 5.0):
        self.ntp_servers = ntp_servers or ["pool.ntp.org", "time.google.com"]
        self.max_drift_seconds = max_drift_seconds

    def now(self) -> int:
        try:
            import ntplib
        except ImportError:
            logger.warning("ntplib not installed, using local time")
            return int(time.time())

        client = ntplib.NTPClient()
        for server in self.ntp_servers:
            try:
                response = client.request(server, version=3, timeout=2)
            except Exception as e:
                logger.debug("NTP server %s unreachable: %s", server, e)
                continue
            local_now = time.time()
            drift = abs(response.tx_time - local_now)
            if drift > self.max_drift_seconds:
                logger.warning("Clock drift detected: %.1fs", drift)
            return int(response.tx_time)

        logger.warning("All NTP servers unreachable, using local time")
        return int(time.time())


class ManualTimeSource(TimeSource):
    """Settable clock for demos, simulations and tests."""

    def __init__(self, start: int = 0):
        self._now = int(start)
        self._lock = threading.Lock()

    def now(self) -> int:
        with self._lock:
            return self._now

    def set(self, ts: int) -> None:
        with self._lock:
            self._now = int(ts)

    def advance(self, seconds: int) -> int:
        with self._lock:
            self._now += int(seconds)
            return self._now


def build_time_source(mode: str, ntp_servers: Optional[List[str]] = None) -> TimeSource:
    mode = (mode or "local").strip().lower()
    if mode == "ntp":
        return NTPTimeSource(ntp_servers=ntp_servers or None)
    if mode != "local":
        logger.warning("Unsupported OGP_TIME_SOURCE=%r; using local time", mode)
    return LocalTimeSource()


def _iso(ts: int) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


# ---------------------------
# Fraud Window Tracker
# ---------------------------

class FraudWindowTracker:
    """message -> window start time."""

    def __init__(self, config: ThresholdConfig, time_source: Optional[TimeSource] = None):
        self.config = config
        self.time_source = time_source or LocalTimeSource()
        self._opened_at: Dict[bytes, int] = {}

    def now(self) -> int:
        return self.time_source.now()

    def open_window(self, message: bytes) -> int:
        """Record the current time as the window start. Overwrites any previous start."""
        ts = self.now()
        self._opened_at[bytes(message)] = ts
        return ts

    def opened_at(self, message: bytes) -> Optional[int]:
        return self._opened_at.get(bytes(message))

    def closes_at(self, message: bytes) -> Optional[int]:
        """First instant at which has_elapsed() turns true, using the live duration."""
        start = self.opened_at(message)
        if start is None:
            return None
        return start + self.config.window_duration + 1

    def has_elapsed(self, message: bytes) -> bool:
        start = self.opened_at(message)
        if start is None:
            return False
        return self.now() > start + self.config.window_duration

    def describe(self, message: bytes) -> Dict[str, Optional[str]]:
        start = self.opened_at(message)
        closes = self.closes_at(message)
        return {
            "opened_at_utc": _iso(start) if start is not None else None,
            "closes_at_utc": _iso(closes) if closes is not None else None,
        }
