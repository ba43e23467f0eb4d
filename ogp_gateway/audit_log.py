"""Tamper-evident append-only audit log for gateway events.

Implements a JSONL log where each record includes:
- prev_hash: entry_hash of the previous record (hex)
- event_hash: SHA256 of the canonical event JSON (hex)
- entry_hash: SHA256(prev_hash || event_hash || ts) (hex, length-prefixed)
- signature_b64: Ed25519 signature over the canonical payload

This makes after-the-fact tampering with the notification stream detectable
by external auditors who hold only the public key.
"""

from __future__ import annotations

import base64
import hashlib
import json
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from .signing import Ed25519Signer, verify_signature

AUDIT_VERSION = "OGP_AUDIT_V1"
GENESIS_HASH = "0" * 64


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def _safe_hash_encode(components: List[str]) -> bytes:
    """Length-prefixed encoding for hash inputs (no delimiter collisions)."""
    result = b""
    for component in components:
        encoded = component.encode("utf-8")
        result += len(encoded).to_bytes(8, byteorder="big") + encoded
    return result


def canonical_json_dumps(obj: Any) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


@dataclass
class AuditLogRecord:
    version: str
    ts_utc: str
    prev_hash: str
    event: Dict[str, Any]
    event_hash: str
    entry_hash: str
    key_id: str
    signature_b64: str

    def to_json(self) -> str:
        return json.dumps(
            {
                "version": self.version,
                "ts_utc": self.ts_utc,
                "prev_hash": self.prev_hash,
                "event": self.event,
                "event_hash": self.event_hash,
                "entry_hash": self.entry_hash,
                "key_id": self.key_id,
                "signature_b64": self.signature_b64,
            },
            sort_keys=True,
        )


class TamperEvidentAuditLog:
    """Append-only tamper-evident audit log."""

    def __init__(self, path: str, signer: Ed25519Signer):
        self.path = str(path)
        self.signer = signer
        self._last_hash = GENESIS_HASH
        self._lock = threading.Lock()

        p = Path(self.path)
        p.parent.mkdir(parents=True, exist_ok=True)
        if p.exists() and p.stat().st_size > 0:
            try:
                rec = json.loads(self._read_last_line(p))
                self._last_hash = str(rec.get("entry_hash", GENESIS_HASH))
            except Exception:
                # Corrupt tail: restart from genesis; verify_file reports the break.
                self._last_hash = GENESIS_HASH

    @staticmethod
    def _read_last_line(path: Path) -> str:
        with path.open("rb") as f:
            f.seek(0, 2)
            end = f.tell()
            if end == 0:
                return ""
            pos = max(0, end - 4096)
            f.seek(pos)
            lines = f.read(end - pos).splitlines()
            if not lines:
                return ""
            return lines[-1].decode("utf-8")

    def append_event(self, event: Dict[str, Any], ts_utc: Optional[str] = None) -> AuditLogRecord:
        """Append an event and return the created record."""
        ts = ts_utc or _now_iso()
        event_hash = _sha256_hex(canonical_json_dumps(event).encode("utf-8"))

        with self._lock:
            prev = self._last_hash
            entry_hash = _sha256_hex(_safe_hash_encode([prev, event_hash, ts]))
            payload = _safe_hash_encode([AUDIT_VERSION, ts, prev, event_hash, entry_hash])
            sig_b64 = base64.b64encode(self.signer.sign(payload)).decode("ascii")

            rec = AuditLogRecord(
                version=AUDIT_VERSION,
                ts_utc=ts,
                prev_hash=prev,
                event=event,
                event_hash=event_hash,
                entry_hash=entry_hash,
                key_id=self.signer.key_id,
                signature_b64=sig_b64,
            )
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(rec.to_json() + "\n")
            self._last_hash = entry_hash
        return rec

    @staticmethod
    def verify_file(path: str, public_keys: Dict[str, str]) -> Tuple[bool, str, int]:
        """Verify an audit log file against {key_id: public_key_hex}. Returns (ok, reason, count)."""
        p = Path(path)
        if not p.exists():
            return True, "NO_FILE", 0

        prev = GENESIS_HASH
        count = 0

        with p.open("r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                count += 1
                try:
                    rec = json.loads(line)
                except Exception:
                    return False, "PARSE_ERROR", count

                version = rec.get("version")
                if version != AUDIT_VERSION:
                    return False, f"BAD_VERSION:{version}", count
                ts = str(rec.get("ts_utc"))
                prev_hash = str(rec.get("prev_hash"))
                if prev_hash != prev:
                    return False, "CHAIN_BROKEN", count

                event = rec.get("event")
                if not isinstance(event, dict):
                    return False, "BAD_EVENT", count

                event_hash = _sha256_hex(canonical_json_dumps(event).encode("utf-8"))
                if event_hash != str(rec.get("event_hash")):
                    return False, "EVENT_HASH_MISMATCH", count

                expected_entry_hash = _sha256_hex(_safe_hash_encode([prev_hash, event_hash, ts]))
                if expected_entry_hash != str(rec.get("entry_hash")):
                    return False, "ENTRY_HASH_MISMATCH", count

                public_key_hex = public_keys.get(str(rec.get("key_id")))
                if not public_key_hex:
                    return False, "UNKNOWN_KEY", count
                try:
                    sig = base64.b64decode(str(rec.get("signature_b64")), validate=True)
                except Exception:
                    return False, "BAD_SIGNATURE_ENCODING", count

                payload = _safe_hash_encode([AUDIT_VERSION, ts, prev_hash, event_hash, expected_entry_hash])
                if not verify_signature(public_key_hex, payload, sig):
                    return False, "INVALID_SIGNATURE", count

                prev = expected_entry_hash

        return True, "OK", count
