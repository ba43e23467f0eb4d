"""Watcher set, flag registry and threshold evaluation.

Watchers challenge either a submodule (the verification module is believed
compromised) or a single message. Each watcher counts at most once per
target; duplicate flags are silent no-ops. Counters only ever grow, so once a
target crosses the quorum it stays fraudulent.

Quorum is an exclusive lower bound: with quorum Q a target needs Q+1
distinct watcher flags.
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Set, Tuple

from .config import ThresholdConfig
from .errors import ogp_error, OGP_E_LENGTH_MISMATCH


class WatcherSet:
    """identity -> active flag.

    Deactivated watchers stay in the map with active=False.
    """

    def __init__(self) -> None:
        self._watchers: Dict[str, bool] = {}

    def configure(self, identities: Iterable[str], statuses: Iterable[bool]) -> List[Tuple[str, bool]]:
        ids = [str(i) for i in identities]
        flags = [bool(s) for s in statuses]
        # Validate before touching state.
        if len(ids) != len(flags):
            raise ogp_error(
                OGP_E_LENGTH_MISMATCH,
                "identities and statuses must have equal length",
                identities=len(ids),
                statuses=len(flags),
            )
        changes = list(zip(ids, flags))
        for identity, active in changes:
            self._watchers[identity] = active
        return changes

    def is_active(self, identity: str) -> bool:
        return bool(self._watchers.get(identity, False))

    def snapshot(self) -> Dict[str, bool]:
        return dict(self._watchers)


class FlagRegistry:
    """Per-target flag counters with per-watcher deduplication."""

    def __init__(self) -> None:
        self._submodule_counts: Dict[str, int] = {}
        self._message_counts: Dict[bytes, int] = {}
        self._submodule_flagged: Set[Tuple[str, str]] = set()
        self._message_flagged: Set[Tuple[str, bytes]] = set()

    def flag_submodule(self, watcher: str, submodule_id: str) -> bool:
        """Returns True iff this flag was counted."""
        key = (watcher, submodule_id)
        if key in self._submodule_flagged:
            return False
        self._submodule_flagged.add(key)
        self._submodule_counts[submodule_id] = self._submodule_counts.get(submodule_id, 0) + 1
        return True

    def flag_message(self, watcher: str, message: bytes) -> bool:
        """Returns True iff this flag was counted."""
        message = bytes(message)
        key = (watcher, message)
        if key in self._message_flagged:
            return False
        self._message_flagged.add(key)
        self._message_counts[message] = self._message_counts.get(message, 0) + 1
        return True

    def submodule_flags(self, submodule_id: str) -> int:
        return self._submodule_counts.get(submodule_id, 0)

    def message_flags(self, message: bytes) -> int:
        return self._message_counts.get(bytes(message), 0)

    def has_flagged_submodule(self, watcher: str, submodule_id: str) -> bool:
        return (watcher, submodule_id) in self._submodule_flagged

    def has_flagged_message(self, watcher: str, message: bytes) -> bool:
        return (watcher, bytes(message)) in self._message_flagged


class ThresholdEvaluator:
    """Binary fraud verdicts from flag counts and the live quorum."""

    def __init__(self, flags: FlagRegistry, config: ThresholdConfig):
        self.flags = flags
        self.config = config

    def is_submodule_fraudulent(self, submodule_id: str) -> bool:
        # Strict: quorum must be exceeded, not met.
        return self.flags.submodule_flags(submodule_id) > self.config.quorum

    def is_message_fraudulent(self, message: bytes) -> bool:
        return self.flags.message_flags(message) > self.config.quorum
