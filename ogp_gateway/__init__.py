"""OGP Gateway package.

This package provides an optimistic delivery gate for cross-domain messages:

- Pluggable verification modules, bound per message at pre-verification
- One in-flight message per relayer
- A fraud window per message, challengeable by an authorized watcher set
- Strict quorum thresholds for module and message fraud
- Tamper-evident, Ed25519-signed event logging

Convenience imports
------------------
The package intentionally avoids heavy import-time side effects. For convenience,
these are available as top-level imports:

    from ogp_gateway import OptimisticGateway, create_app

Configuration and error types are also re-exported:

    from ogp_gateway import ThresholdConfig, OGPError

All of the above are loaded lazily.
"""

from __future__ import annotations

import re
from importlib import import_module
from pathlib import Path
from typing import Any


def _read_version_from_pyproject() -> str | None:
    """Best-effort version discovery for dev/test environments.

    The project version is a simple `version = "..."` field in
    `pyproject.toml`, so a regex parse is enough.
    """

    try:
        pyproject = Path(__file__).resolve().parents[1] / "pyproject.toml"
        txt = pyproject.read_text(encoding="utf-8")
        m = re.search(r"^version\s*=\s*\"([^\"]+)\"\s*$", txt, flags=re.MULTILINE)
        return m.group(1) if m else None
    except Exception:
        return None


# Prefer repo-local pyproject version (tests), otherwise a hardcoded default.
__version__ = (
    _read_version_from_pyproject()
    or "0.3.0"
)

# Public symbols we want to make available at the package root.
__all__ = [
    "__version__",
    "OptimisticGateway",
    "build_gateway_from_env",
    "create_app",
    "ThresholdConfig",
    "OGPError",
    "AuthorizationError",
    "InvalidInputError",
    "StateConflictError",
    "DependencyError",
]

# Lazy export map: name -> (module, attribute)
_LAZY_EXPORTS: dict[str, tuple[str, str]] = {
    "OptimisticGateway": ("ogp_gateway.gateway", "OptimisticGateway"),
    "build_gateway_from_env": ("ogp_gateway.gateway", "build_gateway_from_env"),
    "create_app": ("ogp_gateway.server", "create_app"),
    "ThresholdConfig": ("ogp_gateway.config", "ThresholdConfig"),
    "OGPError": ("ogp_gateway.errors", "OGPError"),
    "AuthorizationError": ("ogp_gateway.errors", "AuthorizationError"),
    "InvalidInputError": ("ogp_gateway.errors", "InvalidInputError"),
    "StateConflictError": ("ogp_gateway.errors", "StateConflictError"),
    "DependencyError": ("ogp_gateway.errors", "DependencyError"),
}


def __getattr__(name: str) -> Any:
    if name in _LAZY_EXPORTS:
        module_name, attr = _LAZY_EXPORTS[name]
        module = import_module(module_name)
        value = getattr(module, attr)
        globals()[name] = value
        return value
    raise AttributeError(f"module 'ogp_gateway' has no attribute {name!r}")


def __dir__() -> list[str]:
    return sorted(set(list(globals().keys()) + list(_LAZY_EXPORTS.keys())))
