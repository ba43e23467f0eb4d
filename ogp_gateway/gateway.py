"""
OGP Gateway - optimistic delivery gate.

Decouples acceptance of a cross-domain message from its execution:

1. A relayer pre-verifies (evidence, message) against the current
   verification module. On success the relayer becomes PendingDelivery,
   the message is bound to the module that vetted it, and a fraud window
   opens.
2. While the window is open, active watchers may flag the bound module or
   the message itself. Flags are counted once per watcher and never decay.
3. The relayer asks for delivery. The gate admits it only if the relayer is
   pending, neither the module nor the message is fraudulent, and the window
   has elapsed. Admitted deliveries call the delivery target exactly once,
   then return the relayer to Idle.

Concurrency model
-----------------
All stores are guarded by one re-entrant lock, so every request observes
sessions, windows and flag counts together. The only call made without the
lock held is the external delivery (and the external verification). During
delivery the relayer carries an "in delivery" marker: nested or concurrent
deliver() calls for that relayer are no-ops, while flags from watchers
(including ones made from inside the delivery target) proceed normally.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from . import metrics
from .audit_log import TamperEvidentAuditLog
from .config import GatewaySettings, ThresholdConfig
from .delivery import DeliveryTarget, HttpDeliveryTarget, RecordingDeliveryTarget
from .errors import (
    OGPError,
    ogp_error,
    OGP_E_BAD_REQUEST,
    OGP_E_DELIVERY_FAILED,
    OGP_E_INVALID_CAPABILITY,
    OGP_E_NOT_AUTHORITY,
    OGP_E_NOT_WATCHER,
    OGP_E_VERIFIER_FAILED,
)
from .events import (
    AuditLogSink,
    EventBus,
    LoggingSink,
    MESSAGE_DELIVERED,
    MESSAGE_FLAGGED,
    QUORUM_CHANGED,
    SUBMODULE_CHANGED,
    SUBMODULE_FLAGGED,
    WATCHERS_CONFIGURED,
    WINDOW_DURATION_CHANGED,
    WINDOW_OPENED,
)
from .fraud_window import FraudWindowTracker, TimeSource, build_time_source
from .ops_stats import OPS_STATS, OpsStats
from .sessions import RelayerSession, RelayerSessionStore, message_id
from .signing import load_signer_from_env
from .submodules import HttpVerificationModule, SubmoduleRegistry, VerificationModule
from .watchers import FlagRegistry, ThresholdEvaluator, WatcherSet

logger = logging.getLogger("ogp_gateway")

# Reasons a delivery is not admitted. These are results, not errors.
NO_SESSION = "NO_SESSION"
SUBMODULE_FRAUDULENT = "SUBMODULE_FRAUDULENT"
MESSAGE_FRAUDULENT = "MESSAGE_FRAUDULENT"
WINDOW_NOT_ELAPSED = "WINDOW_NOT_ELAPSED"
DELIVERY_IN_PROGRESS = "DELIVERY_IN_PROGRESS"


def _as_bytes(name: str, value: Any) -> bytes:
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value)
    raise ogp_error(OGP_E_BAD_REQUEST, f"{name} must be bytes", field=name, type=type(value).__name__)


def _as_identity(name: str, value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ogp_error(OGP_E_BAD_REQUEST, f"{name} must be a non-empty string", field=name)
    return value


@dataclass(frozen=True)
class Admission:
    """Outcome of the four delivery gates for one relayer, at one instant."""

    relayer: str
    admitted: bool
    reasons: Tuple[str, ...] = ()
    message_id: Optional[str] = None
    submodule_id: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "relayer": self.relayer,
            "admitted": self.admitted,
            "reasons": list(self.reasons),
            "message_id": self.message_id,
            "submodule_id": self.submodule_id,
        }


@dataclass(frozen=True)
class DeliveryResult:
    relayer: str
    delivered: bool
    reasons: Tuple[str, ...] = ()
    message_id: Optional[str] = None
    receipt: Any = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "relayer": self.relayer,
            "delivered": self.delivered,
            "reasons": list(self.reasons),
            "message_id": self.message_id,
            "receipt": self.receipt,
        }


@dataclass(frozen=True)
class FlagResult:
    kind: str
    watcher: str
    target_id: str
    counted: bool
    count: int
    fraudulent: bool

    def as_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "watcher": self.watcher,
            "target_id": self.target_id,
            "counted": self.counted,
            "count": self.count,
            "fraudulent": self.fraudulent,
        }


class OptimisticGateway:
    """
    Delivery gate orchestrating the relayer state machine:

        Idle --pre_verify--> PendingDelivery --deliver (admitted)--> Idle

    A flagged message never becomes admissible again; its relayer stays in
    PendingDelivery.
    """

    def __init__(
        self,
        authority_id: str = "admin",
        gateway_id: str = "ogp_gateway_001",
        config: Optional[ThresholdConfig] = None,
        time_source: Optional[TimeSource] = None,
        delivery_target: Optional[DeliveryTarget] = None,
        events: Optional[EventBus] = None,
        stats: Optional[OpsStats] = None,
    ):
        self.authority_id = _as_identity("authority_id", authority_id)
        self.gateway_id = gateway_id
        self.config = config or ThresholdConfig()
        self.stats = stats or OPS_STATS
        self.events = events or EventBus([LoggingSink(logging.DEBUG)])
        self.delivery_target = delivery_target or RecordingDeliveryTarget()

        self.submodules = SubmoduleRegistry()
        self.sessions = RelayerSessionStore()
        self.watchers = WatcherSet()
        self.flags = FlagRegistry()
        self.evaluator = ThresholdEvaluator(self.flags, self.config)
        self.windows = FraudWindowTracker(self.config, time_source)

        self._lock = threading.RLock()
        self._in_delivery: Set[str] = set()

    # ---------------------------
    # Role checks
    # ---------------------------

    def _require_authority(self, caller: str) -> None:
        if caller != self.authority_id:
            self.stats.record_authorization_denied()
            logger.warning("Rejected configuration call from %s", caller)
            raise ogp_error(OGP_E_NOT_AUTHORITY, "caller is not the configuration authority", caller=caller)

    def _require_watcher(self, caller: str) -> None:
        if not self.watchers.is_active(caller):
            self.stats.record_authorization_denied()
            raise ogp_error(OGP_E_NOT_WATCHER, "caller is not an active watcher", caller=caller)

    def now(self) -> int:
        return self.windows.now()

    # ---------------------------
    # Configuration authority
    # ---------------------------

    def set_submodule(self, caller: str, domain: str, capability: Any) -> VerificationModule:
        with self._lock:
            self._require_authority(caller)
            domain = _as_identity("domain", domain)
            module = self.submodules.set_submodule(domain, capability)
            handle = self.submodules.handle_of(module)
            self.events.emit(SUBMODULE_CHANGED, self.now(), domain=domain, submodule_id=handle)
            logger.info("Submodule for domain %s set to %s", domain, handle)
            return module

    def configure_watchers(
        self,
        caller: str,
        identities: Iterable[str],
        statuses: Iterable[bool],
    ) -> List[Tuple[str, bool]]:
        with self._lock:
            self._require_authority(caller)
            changes = self.watchers.configure(identities, statuses)
            self.events.emit(
                WATCHERS_CONFIGURED,
                self.now(),
                watchers=[{"watcher": w, "active": a} for w, a in changes],
            )
            return changes

    def set_quorum(self, caller: str, quorum: int) -> int:
        with self._lock:
            self._require_authority(caller)
            previous = self.config.quorum
            current = self.config.set_quorum(quorum)
            self.events.emit(QUORUM_CHANGED, self.now(), previous=previous, quorum=current)
            logger.info("Quorum changed %s -> %s", previous, current)
            return current

    def set_window_duration(self, caller: str, duration: int) -> int:
        with self._lock:
            self._require_authority(caller)
            previous = self.config.window_duration
            current = self.config.set_window_duration(duration)
            self.events.emit(WINDOW_DURATION_CHANGED, self.now(), previous=previous, window_duration=current)
            logger.info("Window duration changed %s -> %s", previous, current)
            return current

    # ---------------------------
    # Relayer: pre-verification
    # ---------------------------

    def pre_verify(self, relayer: str, evidence: bytes, message: bytes) -> bool:
        """Vet (evidence, message) and open a fraud window for it.

        Returns False (no state change) if the module rejects the message.
        Raises StateConflictError if the relayer already has a pending session,
        DependencyError if the module itself fails.
        """
        relayer = _as_identity("relayer", relayer)
        evidence = _as_bytes("evidence", evidence)
        message = _as_bytes("message", message)

        with self._lock:
            module = self.submodules.current_submodule()
            handle = self.submodules.handle_of(module) if module is not None else None
        if module is None:
            raise ogp_error(OGP_E_INVALID_CAPABILITY, "no verification module configured")

        try:
            valid = bool(module.verify(message, evidence))
        except OGPError:
            raise
        except Exception as e:
            self.stats.record_preverify("error")
            self.stats.record_dependency_error("verifier")
            metrics.record_preverify("error")
            raise ogp_error(
                OGP_E_VERIFIER_FAILED,
                "verification module failed",
                submodule_id=handle,
                error=f"{type(e).__name__}: {e}",
            ) from e

        if not valid:
            self.stats.record_preverify("invalid")
            metrics.record_preverify("invalid")
            logger.debug("Pre-verification rejected by %s for relayer %s", handle, relayer)
            return False

        with self._lock:
            try:
                session = self.sessions.begin_session(relayer, message, evidence, module)
            except OGPError:
                self.stats.record_preverify("conflict")
                metrics.record_preverify("conflict")
                raise
            previous = self.windows.opened_at(message)
            self.submodules.bind_message(message, module)
            opened_at = self.windows.open_window(message)
            if previous is not None:
                logger.warning(
                    "Fraud window for message %s re-opened by %s (was %s, now %s)",
                    session.message_id, relayer, previous, opened_at,
                )
            self.events.emit(
                WINDOW_OPENED,
                opened_at,
                relayer=relayer,
                message_id=session.message_id,
                submodule_id=handle,
                opened_at=opened_at,
                previous_opened_at=previous,
            )
            metrics.set_pending_sessions(len(self.sessions))

        self.stats.record_preverify("accepted")
        metrics.record_preverify("accepted")
        return True

    # ---------------------------
    # Watchers: challenges
    # ---------------------------

    def flag_submodule_fraudulent(self, watcher: str, message: bytes) -> FlagResult:
        """Challenge the module that vetted `message`. Duplicate flags are no-ops."""
        with self._lock:
            self._require_watcher(watcher)
            message = _as_bytes("message", message)
            module = self.submodules.submodule_for_message(message)
            if module is None:
                raise ogp_error(
                    OGP_E_BAD_REQUEST,
                    "no submodule is bound to this message",
                    message_id=message_id(message),
                )
            handle = self.submodules.handle_of(module)
            counted = self.flags.flag_submodule(watcher, handle)
            result = FlagResult(
                kind="submodule",
                watcher=watcher,
                target_id=handle,
                counted=counted,
                count=self.flags.submodule_flags(handle),
                fraudulent=self.evaluator.is_submodule_fraudulent(handle),
            )
            if counted:
                self.events.emit(
                    SUBMODULE_FLAGGED,
                    self.now(),
                    watcher=watcher,
                    submodule_id=handle,
                    message_id=message_id(message),
                    count=result.count,
                    fraudulent=result.fraudulent,
                )
        self._after_flag(result)
        return result

    def flag_message_fraudulent(self, watcher: str, message: bytes) -> FlagResult:
        """Challenge a single message. Duplicate flags are no-ops."""
        with self._lock:
            self._require_watcher(watcher)
            message = _as_bytes("message", message)
            counted = self.flags.flag_message(watcher, message)
            mid = message_id(message)
            result = FlagResult(
                kind="message",
                watcher=watcher,
                target_id=mid,
                counted=counted,
                count=self.flags.message_flags(message),
                fraudulent=self.evaluator.is_message_fraudulent(message),
            )
            if counted:
                self.events.emit(
                    MESSAGE_FLAGGED,
                    self.now(),
                    watcher=watcher,
                    message_id=mid,
                    count=result.count,
                    fraudulent=result.fraudulent,
                )
        self._after_flag(result)
        return result

    def _after_flag(self, result: FlagResult) -> None:
        self.stats.record_flag(result.kind, result.counted)
        metrics.record_flag(result.kind, result.counted)
        if not result.counted:
            logger.debug("Duplicate %s flag from %s ignored", result.kind, result.watcher)

    # ---------------------------
    # Relayer: delivery
    # ---------------------------

    def _admission_locked(self, relayer: str) -> Admission:
        session = self.sessions.session_of(relayer)
        if session is None:
            return Admission(relayer=relayer, admitted=False, reasons=(NO_SESSION,))

        submodule_id = self.submodules.handle_of(session.submodule)
        # Every gate is evaluated on every call; nothing is cached.
        checks = (
            (SUBMODULE_FRAUDULENT, self.evaluator.is_submodule_fraudulent(submodule_id)),
            (MESSAGE_FRAUDULENT, self.evaluator.is_message_fraudulent(session.message)),
            (WINDOW_NOT_ELAPSED, not self.windows.has_elapsed(session.message)),
            (DELIVERY_IN_PROGRESS, relayer in self._in_delivery),
        )
        reasons = tuple(reason for reason, failed in checks if failed)
        return Admission(
            relayer=relayer,
            admitted=not reasons,
            reasons=reasons,
            message_id=session.message_id,
            submodule_id=submodule_id,
        )

    def admission(self, relayer: str) -> Admission:
        """Evaluate the delivery gates without side effects."""
        with self._lock:
            return self._admission_locked(relayer)

    def deliver(self, relayer: str, destination: str, value: int = 0) -> DeliveryResult:
        """Deliver the relayer's pending message if every gate passes.

        A non-admitted call is a no-op and may be retried later. If the
        delivery target raises, the session is kept and DependencyError is raised.
        """
        relayer = _as_identity("relayer", relayer)
        destination = _as_identity("destination", destination)
        if isinstance(value, bool) or not isinstance(value, int):
            raise ogp_error(OGP_E_BAD_REQUEST, "value must be an integer", field="value")

        with self._lock:
            adm = self._admission_locked(relayer)
            if not adm.admitted:
                self.stats.record_deliver_attempt(False, adm.reasons)
                metrics.record_admission("denied")
                logger.debug("Delivery for %s not admitted: %s", relayer, ",".join(adm.reasons))
                return DeliveryResult(relayer=relayer, delivered=False, reasons=adm.reasons, message_id=adm.message_id)
            session: RelayerSession = self.sessions.session_of(relayer)  # type: ignore[assignment]
            self._in_delivery.add(relayer)

        metrics.record_admission("admitted")
        try:
            try:
                receipt = self.delivery_target.deliver(session.message, destination, value)
            except Exception as e:
                self.stats.record_deliver_attempt(False)
                self.stats.record_dependency_error("delivery")
                logger.warning("Delivery of %s for %s failed: %s", session.message_id, relayer, e)
                raise ogp_error(
                    OGP_E_DELIVERY_FAILED,
                    "delivery target failed",
                    relayer=relayer,
                    message_id=session.message_id,
                    error=f"{type(e).__name__}: {e}",
                ) from e

            with self._lock:
                self.sessions.end_session(relayer)
                self.events.emit(
                    MESSAGE_DELIVERED,
                    self.now(),
                    relayer=relayer,
                    message_id=session.message_id,
                    submodule_id=adm.submodule_id,
                    destination=destination,
                    value=value,
                )
                metrics.set_pending_sessions(len(self.sessions))
        finally:
            with self._lock:
                self._in_delivery.discard(relayer)

        self.stats.record_deliver_attempt(True)
        logger.info("Delivered message %s for relayer %s to %s", session.message_id, relayer, destination)
        return DeliveryResult(
            relayer=relayer,
            delivered=True,
            message_id=session.message_id,
            receipt=receipt,
        )

    # ---------------------------
    # Read accessors
    # ---------------------------

    def current_submodule(self) -> Optional[VerificationModule]:
        with self._lock:
            return self.submodules.current_submodule()

    def submodule_for_message(self, message: bytes) -> Optional[VerificationModule]:
        message = _as_bytes("message", message)
        with self._lock:
            return self.submodules.submodule_for_message(message)

    def submodule_handle(self, module: VerificationModule) -> str:
        """Identifier that fraud flags for `module` are counted under."""
        with self._lock:
            return self.submodules.handle_of(module)

    def session_of(self, relayer: str) -> Optional[RelayerSession]:
        with self._lock:
            return self.sessions.session_of(relayer)

    def is_submodule_fraudulent(self, message: bytes) -> bool:
        """Whether the module bound to `message` has exceeded the quorum."""
        message = _as_bytes("message", message)
        with self._lock:
            module = self.submodules.submodule_for_message(message)
            if module is None:
                return False
            return self.evaluator.is_submodule_fraudulent(self.submodules.handle_of(module))

    def is_message_fraudulent(self, message: bytes) -> bool:
        message = _as_bytes("message", message)
        with self._lock:
            return self.evaluator.is_message_fraudulent(message)

    def has_elapsed(self, message: bytes) -> bool:
        message = _as_bytes("message", message)
        with self._lock:
            return self.windows.has_elapsed(message)

    def status(self) -> Dict[str, Any]:
        with self._lock:
            current = self.submodules.current_submodule()
            watchers = self.watchers.snapshot()
            return {
                "gateway_id": self.gateway_id,
                "quorum": self.config.quorum,
                "window_duration": self.config.window_duration,
                "current_submodule": self.submodules.handle_of(current) if current else None,
                "domains": self.submodules.domains(),
                "pending_sessions": len(self.sessions),
                "in_delivery": len(self._in_delivery),
                "active_watchers": sum(1 for a in watchers.values() if a),
                "known_watchers": len(watchers),
            }


def build_gateway_from_env(
    settings: Optional[GatewaySettings] = None,
    config: Optional[ThresholdConfig] = None,
    time_source: Optional[TimeSource] = None,
    delivery_target: Optional[DeliveryTarget] = None,
) -> OptimisticGateway:
    """Assemble a gateway from environment configuration.

    Wires the audit log (if OGP_AUDIT_LOG_PATH is set), the time source,
    initial watchers, and optional HTTP verifier / delivery target.
    """
    settings = settings or GatewaySettings.from_env()
    config = config or ThresholdConfig.from_env()

    bus = EventBus([LoggingSink(logging.INFO)])
    if settings.audit_log_path:
        signer = load_signer_from_env()
        if signer is None:
            raise RuntimeError(
                "OGP_AUDIT_LOG_PATH is set but no signing key is configured. Set "
                "OGP_AUDIT_SIGNING_KEY, or OGP_ALLOW_EPHEMERAL_SIGNING_KEYS=1 for demos/tests."
            )
        bus.add_sink(AuditLogSink(TamperEvidentAuditLog(settings.audit_log_path, signer)))
        logger.info("Audit log at %s (key_id=%s, public_key=%s)", settings.audit_log_path, signer.key_id, signer.public_key_hex)

    if delivery_target is None and settings.delivery_url:
        delivery_target = HttpDeliveryTarget(settings.delivery_url)

    gateway = OptimisticGateway(
        authority_id=settings.authority_id,
        gateway_id=settings.gateway_id,
        config=config,
        time_source=time_source or build_time_source(settings.time_source, settings.ntp_servers),
        delivery_target=delivery_target,
        events=bus,
    )

    if settings.initial_watchers:
        ids = list(settings.initial_watchers.keys())
        gateway.configure_watchers(settings.authority_id, ids, [settings.initial_watchers[i] for i in ids])
    if settings.verifier_url:
        gateway.set_submodule(
            settings.authority_id,
            settings.verifier_domain,
            HttpVerificationModule(module_id=f"http:{settings.verifier_domain}", url=settings.verifier_url),
        )
    return gateway
