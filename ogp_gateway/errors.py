"""Stable error taxonomy for the OGP gateway.

This module defines machine-readable error codes and the exception types
raised by the gateway, the HTTP surface, and the integration helpers.

Design goals:
- Stable `code` string suitable for programmatic handling.
- One subclass per failure family (authorization, input, state, dependency)
  so callers can catch by kind without parsing codes.
- Optional `retryable` flag and `http_status` for transport layers.
- Structured `details` for debugging without parsing messages.

Delivery admission failures are NOT errors. A delivery that is not admitted
returns a negative result the caller may retry later.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Type


# Authorization
OGP_E_AUTH_REQUIRED = "OGP_E_AUTH_REQUIRED"
OGP_E_NOT_WATCHER = "OGP_E_NOT_WATCHER"
OGP_E_NOT_AUTHORITY = "OGP_E_NOT_AUTHORITY"

# Invalid input
OGP_E_BAD_REQUEST = "OGP_E_BAD_REQUEST"
OGP_E_LENGTH_MISMATCH = "OGP_E_LENGTH_MISMATCH"
OGP_E_INVALID_CAPABILITY = "OGP_E_INVALID_CAPABILITY"

# State conflicts
OGP_E_SESSION_ALREADY_OPEN = "OGP_E_SESSION_ALREADY_OPEN"

# External dependencies
OGP_E_VERIFIER_FAILED = "OGP_E_VERIFIER_FAILED"
OGP_E_DELIVERY_FAILED = "OGP_E_DELIVERY_FAILED"


@dataclass
class OGPError(Exception):
    """Base OGP exception with stable error code."""

    code: str
    message: str
    retryable: bool = False
    http_status: int = 400
    details: Dict[str, Any] = field(default_factory=dict)

    def as_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "code": self.code,
            "message": self.message,
            "retryable": bool(self.retryable),
            "http_status": int(self.http_status),
        }
        if self.details:
            d["details"] = self.details
        return d

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


class AuthorizationError(OGPError):
    """Caller lacks the required role (watcher or configuration authority)."""


class InvalidInputError(OGPError):
    """Malformed request: mismatched lists, non-callable capability, etc."""


class StateConflictError(OGPError):
    """Request conflicts with current state (e.g. a session is already open)."""


class DependencyError(OGPError):
    """The verification module or the delivery target failed."""


_CODE_CLASSES: Dict[str, Type[OGPError]] = {
    OGP_E_AUTH_REQUIRED: AuthorizationError,
    OGP_E_NOT_WATCHER: AuthorizationError,
    OGP_E_NOT_AUTHORITY: AuthorizationError,
    OGP_E_BAD_REQUEST: InvalidInputError,
    OGP_E_LENGTH_MISMATCH: InvalidInputError,
    OGP_E_INVALID_CAPABILITY: InvalidInputError,
    OGP_E_SESSION_ALREADY_OPEN: StateConflictError,
    OGP_E_VERIFIER_FAILED: DependencyError,
    OGP_E_DELIVERY_FAILED: DependencyError,
}

_DEFAULT_STATUS: Dict[Type[OGPError], int] = {
    AuthorizationError: 403,
    InvalidInputError: 400,
    StateConflictError: 409,
    DependencyError: 502,
}


def ogp_error(
    code: str,
    message: str,
    *,
    retryable: bool | None = None,
    http_status: int | None = None,
    **details: Any,
) -> OGPError:
    """Build the exception matching `code`.

    Dependency failures default to retryable; everything else does not.
    """
    cls = _CODE_CLASSES.get(code, OGPError)
    if http_status is None:
        http_status = _DEFAULT_STATUS.get(cls, 400)
    if retryable is None:
        retryable = cls is DependencyError
    return cls(code=code, message=message, retryable=retryable, http_status=http_status, details=details)
