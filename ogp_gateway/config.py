"""Gateway configuration.

Two layers:

- ThresholdConfig: the live quorum / dispute-window values. The gateway
  reads these at every check, so a change applies to every later evaluation,
  including windows that were opened before the change.
- GatewaySettings: deployment wiring (identities, file paths, optional
  HTTP collaborators), loaded once from the environment.

Environment variables:
- OGP_QUORUM: flags must EXCEED this count (default: 2)
- OGP_WINDOW_DURATION_SECONDS: dispute window length (default: 1800)
- OGP_GATEWAY_ID: gateway identifier (default: ogp_gateway_001)
- OGP_AUTHORITY_ID: configuration authority identity (default: admin)
- OGP_AUDIT_LOG_PATH: tamper-evident event log path (default: unset, disabled)
- OGP_TIME_SOURCE: local|ntp (default: local)
- OGP_NTP_SERVERS: comma-separated NTP servers for OGP_TIME_SOURCE=ntp
- OGP_WATCHERS_JSON: JSON object {"watcher_id": true, ...} applied at startup
- OGP_VERIFIER_URL / OGP_VERIFIER_DOMAIN: optional HTTP verification module
- OGP_DELIVERY_URL: optional HTTP delivery target
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .errors import ogp_error, OGP_E_BAD_REQUEST

logger = logging.getLogger("ogp_gateway")

DEFAULT_QUORUM = 2
DEFAULT_WINDOW_DURATION_SECONDS = 1800


def _get_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)).strip())
    except Exception:
        logger.warning("Invalid %s=%r; using default %s", name, os.getenv(name), default)
        return default


def _require_non_negative_int(name: str, value: object) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ogp_error(OGP_E_BAD_REQUEST, f"{name} must be an integer", field=name)
    if value < 0:
        raise ogp_error(OGP_E_BAD_REQUEST, f"{name} must be non-negative", field=name, value=value)
    return value


@dataclass
class ThresholdConfig:
    """Quorum and dispute-window configuration.

    quorum is an exclusive lower bound: a target is fraudulent only when its
    distinct-watcher flag count is strictly greater than quorum.
    """

    quorum: int = DEFAULT_QUORUM
    window_duration: int = DEFAULT_WINDOW_DURATION_SECONDS

    def __post_init__(self) -> None:
        _require_non_negative_int("quorum", self.quorum)
        _require_non_negative_int("window_duration", self.window_duration)

    @classmethod
    def from_env(cls) -> "ThresholdConfig":
        quorum = _get_int("OGP_QUORUM", DEFAULT_QUORUM)
        duration = _get_int("OGP_WINDOW_DURATION_SECONDS", DEFAULT_WINDOW_DURATION_SECONDS)

        # Clamp
        if quorum < 0:
            quorum = DEFAULT_QUORUM
        if duration < 0:
            duration = DEFAULT_WINDOW_DURATION_SECONDS

        return cls(quorum=quorum, window_duration=duration)

    def set_quorum(self, quorum: int) -> int:
        self.quorum = _require_non_negative_int("quorum", quorum)
        return self.quorum

    def set_window_duration(self, duration: int) -> int:
        self.window_duration = _require_non_negative_int("window_duration", duration)
        return self.window_duration


@dataclass(frozen=True)
class GatewaySettings:
    """Deployment wiring for the gateway process."""

    gateway_id: str = "ogp_gateway_001"
    authority_id: str = "admin"
    audit_log_path: Optional[str] = None
    time_source: str = "local"
    ntp_servers: List[str] = field(default_factory=list)
    initial_watchers: Dict[str, bool] = field(default_factory=dict)
    verifier_url: Optional[str] = None
    verifier_domain: str = "default"
    delivery_url: Optional[str] = None

    @classmethod
    def from_env(cls) -> "GatewaySettings":
        watchers: Dict[str, bool] = {}
        raw_watchers = (os.getenv("OGP_WATCHERS_JSON", "") or "").strip()
        if raw_watchers:
            try:
                parsed = json.loads(raw_watchers)
                if isinstance(parsed, dict):
                    watchers = {str(k): bool(v) for k, v in parsed.items()}
                else:
                    logger.warning("OGP_WATCHERS_JSON must be a JSON object")
            except Exception as e:
                logger.warning("Failed to parse OGP_WATCHERS_JSON: %s", e)

        ntp_raw = (os.getenv("OGP_NTP_SERVERS", "") or "").strip()
        ntp_servers = [s.strip() for s in ntp_raw.split(",") if s.strip()]

        return cls(
            gateway_id=(os.getenv("OGP_GATEWAY_ID", "") or "").strip() or cls.gateway_id,
            authority_id=(os.getenv("OGP_AUTHORITY_ID", "") or "").strip() or cls.authority_id,
            audit_log_path=(os.getenv("OGP_AUDIT_LOG_PATH", "") or "").strip() or None,
            time_source=(os.getenv("OGP_TIME_SOURCE", "") or "local").strip().lower(),
            ntp_servers=ntp_servers,
            initial_watchers=watchers,
            verifier_url=(os.getenv("OGP_VERIFIER_URL", "") or "").strip() or None,
            verifier_domain=(os.getenv("OGP_VERIFIER_DOMAIN", "") or "").strip() or "default",
            delivery_url=(os.getenv("OGP_DELIVERY_URL", "") or "").strip() or None,
        )
