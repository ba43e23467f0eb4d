"""Operational statistics for the gateway.

This module intentionally avoids Prometheus / external dependencies.
It provides lightweight in-memory counters and a snapshot endpoint.

Notes
-----
- Counters reset on process restart.
- Do not treat these as audit evidence. Use the tamper-evident audit log.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict


@dataclass
class _Counters:
    # Pre-verification
    preverify_total: int = 0
    preverify_by_outcome: Dict[str, int] = field(default_factory=dict)  # accepted/invalid/conflict/error

    # Delivery
    deliver_attempts_total: int = 0
    delivered_total: int = 0
    not_admitted_by_reason: Dict[str, int] = field(default_factory=dict)

    # Challenges
    flags_total: int = 0
    flags_by_kind: Dict[str, int] = field(default_factory=dict)
    duplicate_flags_total: int = 0

    # Fail-closed signals
    dependency_errors_total: int = 0
    dependency_errors_by_kind: Dict[str, int] = field(default_factory=dict)
    authorization_denied_total: int = 0


class OpsStats:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._start_monotonic = time.monotonic()
        self._c = _Counters()

    def _inc_map(self, m: Dict[str, int], key: str) -> None:
        m[key] = int(m.get(key, 0)) + 1

    def record_preverify(self, outcome: str) -> None:
        with self._lock:
            self._c.preverify_total += 1
            self._inc_map(self._c.preverify_by_outcome, outcome or "unknown")

    def record_deliver_attempt(self, delivered: bool, reasons: tuple = ()) -> None:
        with self._lock:
            self._c.deliver_attempts_total += 1
            if delivered:
                self._c.delivered_total += 1
            for reason in reasons:
                self._inc_map(self._c.not_admitted_by_reason, reason)

    def record_flag(self, kind: str, counted: bool) -> None:
        with self._lock:
            if counted:
                self._c.flags_total += 1
                self._inc_map(self._c.flags_by_kind, kind or "unknown")
            else:
                self._c.duplicate_flags_total += 1

    def record_dependency_error(self, kind: str) -> None:
        with self._lock:
            self._c.dependency_errors_total += 1
            self._inc_map(self._c.dependency_errors_by_kind, kind or "unknown")

    def record_authorization_denied(self) -> None:
        with self._lock:
            self._c.authorization_denied_total += 1

    def snapshot(self, extra: Dict[str, Any] | None = None) -> Dict[str, Any]:
        with self._lock:
            c = self._c
            snap: Dict[str, Any] = {
                "uptime_seconds": int(time.monotonic() - self._start_monotonic),
                "preverify_total": c.preverify_total,
                "preverify_by_outcome": dict(c.preverify_by_outcome),
                "deliver_attempts_total": c.deliver_attempts_total,
                "delivered_total": c.delivered_total,
                "not_admitted_by_reason": dict(c.not_admitted_by_reason),
                "flags_total": c.flags_total,
                "flags_by_kind": dict(c.flags_by_kind),
                "duplicate_flags_total": c.duplicate_flags_total,
                "dependency_errors_total": c.dependency_errors_total,
                "dependency_errors_by_kind": dict(c.dependency_errors_by_kind),
                "authorization_denied_total": c.authorization_denied_total,
            }
        if extra:
            snap.update(extra)
        return snap


OPS_STATS = OpsStats()
