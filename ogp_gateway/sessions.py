"""Relayer session store.

Tracks, per relayer, the single outstanding (message, evidence, submodule)
tuple between pre-verification and delivery. A relayer is "pending" iff it
has a session here.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from typing import Dict, Optional

from .errors import ogp_error, OGP_E_SESSION_ALREADY_OPEN
from .submodules import VerificationModule


def message_id(message: bytes) -> str:
    """Stable identifier for a message in logs, events and HTTP responses."""
    return hashlib.sha256(bytes(message)).hexdigest()


@dataclass(frozen=True)
class RelayerSession:
    relayer: str
    message: bytes
    evidence: bytes
    submodule: VerificationModule

    @property
    def message_id(self) -> str:
        return message_id(self.message)

    def as_dict(self) -> Dict[str, str]:
        return {
            "relayer": self.relayer,
            "message_id": self.message_id,
            "submodule_id": self.submodule.module_id,
        }


class RelayerSessionStore:
    """At most one live session per relayer."""

    def __init__(self) -> None:
        self._sessions: Dict[str, RelayerSession] = {}

    def begin_session(
        self,
        relayer: str,
        message: bytes,
        evidence: bytes,
        submodule: VerificationModule,
    ) -> RelayerSession:
        if relayer in self._sessions:
            raise ogp_error(
                OGP_E_SESSION_ALREADY_OPEN,
                "relayer already has a message pending delivery",
                relayer=relayer,
                message_id=self._sessions[relayer].message_id,
            )
        session = RelayerSession(
            relayer=relayer,
            message=bytes(message),
            evidence=bytes(evidence),
            submodule=submodule,
        )
        self._sessions[relayer] = session
        return session

    def end_session(self, relayer: str) -> Optional[RelayerSession]:
        # No-op when nothing is pending.
        return self._sessions.pop(relayer, None)

    def session_of(self, relayer: str) -> Optional[RelayerSession]:
        return self._sessions.get(relayer)

    def is_pending(self, relayer: str) -> bool:
        return relayer in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)
