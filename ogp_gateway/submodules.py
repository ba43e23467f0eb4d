"""Submodule registry: which verification module is trusted for which domain.

A verification module ("submodule") is an opaque capability that answers
valid/invalid for a (message, evidence) pair. The registry keeps:

- a per-origin-domain binding,
- a single "current" pointer used for new pre-verifications,
- the module that vetted each message at pre-verification time. This can
  differ from "current" once the authority rotates modules,
- a handle per registered module object. Fraud flags are counted against
  the handle, so two distinct modules never share a counter even when they
  carry the same module_id.

Modules may be local (any object with a callable `verify`, or a plain
callable) or remote (HTTP verifier service).
"""

from __future__ import annotations

import abc
import base64
import json
import urllib.error
import urllib.request
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Set, Tuple

from .errors import ogp_error, OGP_E_INVALID_CAPABILITY


class VerificationModule(abc.ABC):
    """Pluggable verification capability."""

    module_id: str

    @abc.abstractmethod
    def verify(self, message: bytes, evidence: bytes) -> bool:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.module_id!r})"


@dataclass(eq=False, repr=False)
class StaticVerificationModule(VerificationModule):
    """Always returns the same verdict. Useful for demos and tests."""

    module_id: str
    valid: bool = True

    def verify(self, message: bytes, evidence: bytes) -> bool:
        return bool(self.valid)


@dataclass(eq=False, repr=False)
class CallableVerificationModule(VerificationModule):
    """Adapts a plain `fn(message, evidence) -> bool` callable."""

    module_id: str
    fn: Callable[[bytes, bytes], Any]

    def verify(self, message: bytes, evidence: bytes) -> bool:
        return bool(self.fn(message, evidence))


@dataclass(eq=False, repr=False)
class HttpVerificationModule(VerificationModule):
    """HTTP-based verification module.

    Request body: {"message_b64": ..., "evidence_b64": ...}
    Response body: {"valid": true|false} (or {"result": {"valid": ...}})

    Transport and parse failures raise; they are never read as "valid".
    """

    module_id: str
    url: str
    timeout_seconds: float = 5.0

    def verify(self, message: bytes, evidence: bytes) -> bool:
        body = json.dumps(
            {
                "message_b64": base64.b64encode(message).decode("ascii"),
                "evidence_b64": base64.b64encode(evidence).decode("ascii"),
            }
        ).encode("utf-8")
        req = urllib.request.Request(
            self.url,
            data=body,
            headers={"Content-Type": "application/json"},
            method="POST",
        )
        try:
            with urllib.request.urlopen(req, timeout=self.timeout_seconds) as resp:
                decoded = json.loads(resp.read().decode("utf-8"))
        except urllib.error.HTTPError as e:
            raise RuntimeError(f"VERIFIER_HTTP_ERROR: HTTP {getattr(e, 'code', '???')}") from e

        verdict = decoded
        if isinstance(decoded, dict) and isinstance(decoded.get("result"), dict):
            verdict = decoded["result"]
        if not isinstance(verdict, dict) or not isinstance(verdict.get("valid"), bool):
            raise RuntimeError("VERIFIER_INVALID_RESPONSE: expected {\"valid\": bool}")
        return verdict["valid"]


def coerce_module(obj: Any, module_id: Optional[str] = None) -> VerificationModule:
    """Coerce a supported object into a VerificationModule.

    Raises InvalidInputError if `obj` is not a callable verification capability.
    """
    if isinstance(obj, VerificationModule):
        mid = getattr(obj, "module_id", None)
        if not isinstance(mid, str) or not mid:
            raise ogp_error(
                OGP_E_INVALID_CAPABILITY,
                "verification module must carry a non-empty module_id",
                capability_type=type(obj).__name__,
            )
        return obj
    verify = getattr(obj, "verify", None)
    if obj is not None and callable(verify):
        mid = module_id or str(getattr(obj, "module_id", "") or type(obj).__name__)
        return CallableVerificationModule(module_id=mid, fn=verify)
    if obj is not None and callable(obj):
        mid = module_id or str(getattr(obj, "__name__", "") or type(obj).__name__)
        return CallableVerificationModule(module_id=mid, fn=obj)
    raise ogp_error(
        OGP_E_INVALID_CAPABILITY,
        "capability is not a callable verification module",
        capability_type=type(obj).__name__,
    )


class SubmoduleRegistry:
    """Domain -> module bindings plus the per-message binding history."""

    def __init__(self) -> None:
        self._by_domain: Dict[str, VerificationModule] = {}
        self._current: Optional[VerificationModule] = None
        self._by_message: Dict[bytes, VerificationModule] = {}
        # id(module) -> (module, handle). Holding the module keeps id() unique.
        self._handles: Dict[int, Tuple[VerificationModule, str]] = {}
        self._used_handles: Set[str] = set()

    def set_submodule(self, domain: str, capability: Any) -> VerificationModule:
        module = coerce_module(capability)
        self.handle_of(module)
        self._by_domain[str(domain)] = module
        self._current = module
        return module

    def current_submodule(self) -> Optional[VerificationModule]:
        return self._current

    def submodule_for_domain(self, domain: str) -> Optional[VerificationModule]:
        return self._by_domain.get(str(domain))

    def bind_message(self, message: bytes, module: VerificationModule) -> None:
        self._by_message[bytes(message)] = module

    def submodule_for_message(self, message: bytes) -> Optional[VerificationModule]:
        return self._by_message.get(bytes(message))

    def handle_of(self, module: VerificationModule) -> str:
        """Counter key for `module`.

        Stable for the lifetime of the registry. The first module seen with a
        given module_id gets that id; later distinct objects reusing it get
        `<module_id>#2`, `<module_id>#3` and so on.
        """
        entry = self._handles.get(id(module))
        if entry is not None:
            return entry[1]
        handle, n = module.module_id, 1
        while handle in self._used_handles:
            n += 1
            handle = f"{module.module_id}#{n}"
        self._handles[id(module)] = (module, handle)
        self._used_handles.add(handle)
        return handle

    def domains(self) -> Dict[str, str]:
        return {d: self.handle_of(m) for d, m in self._by_domain.items()}
