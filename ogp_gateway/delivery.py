"""Delivery targets.

A delivery target hands an admitted message to its final recipient. The
gateway calls it at most once per admitted delivery. Any exception raised
here propagates to the gateway, which keeps the relayer's session so the
delivery can be retried.

Enable the HTTP target by setting:
- OGP_DELIVERY_URL=http://executor:9000/deliver
"""

from __future__ import annotations

import abc
import base64
import json
import threading
import urllib.error
import urllib.request
from dataclasses import dataclass
from typing import Any, List


class DeliveryTarget(abc.ABC):
    """Receiver of admitted messages."""

    @abc.abstractmethod
    def deliver(self, message: bytes, destination: str, value: int) -> Any:
        raise NotImplementedError


@dataclass(frozen=True)
class DeliveryRecord:
    message: bytes
    destination: str
    value: int


class RecordingDeliveryTarget(DeliveryTarget):
    """Keeps every delivery in memory. Used by the demo and in tests."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.deliveries: List[DeliveryRecord] = []

    def deliver(self, message: bytes, destination: str, value: int) -> Any:
        rec = DeliveryRecord(message=bytes(message), destination=destination, value=int(value))
        with self._lock:
            self.deliveries.append(rec)
        return {"delivered": True, "index": len(self.deliveries) - 1}


class HttpDeliveryTarget(DeliveryTarget):
    """Deliver a message via HTTP POST to an executor service."""

    def __init__(self, url: str, timeout_seconds: float = 10.0):
        self.url = url
        self.timeout_seconds = float(timeout_seconds)

    def deliver(self, message: bytes, destination: str, value: int) -> Any:
        payload = json.dumps(
            {
                "message_b64": base64.b64encode(message).decode("ascii"),
                "destination": destination,
                "value": int(value),
            }
        ).encode("utf-8")
        req = urllib.request.Request(
            self.url,
            data=payload,
            headers={"Content-Type": "application/json"},
            method="POST",
        )
        try:
            with urllib.request.urlopen(req, timeout=self.timeout_seconds) as resp:
                body = resp.read().decode("utf-8", errors="replace")
        except urllib.error.HTTPError as e:
            try:
                body = e.read().decode("utf-8", errors="replace")
            except Exception:
                body = ""
            raise RuntimeError(f"DELIVERY_HTTP_ERROR_{e.code}: {body[:200]}") from e

        try:
            data = json.loads(body) if body else {}
        except Exception:
            raise RuntimeError(f"DELIVERY_RESPONSE_NOT_JSON: {body[:200]}")
        if isinstance(data, dict) and data.get("ok") is False:
            raise RuntimeError(str(data.get("error", "DELIVERY_REJECTED")))
        return data
