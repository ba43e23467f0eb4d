"""Caller authentication for the OGP HTTP surface.

Relayer, watcher and authority identities must not be client-controlled once
a deployment configures API keys. Each key maps to exactly one identity; the
gateway then applies its own role checks (watcher set, configuration
authority) to that identity.

If no key map is configured, callers may supply X-Caller-Id directly. That
mode is for local development only and is reported as unauthenticated.

Env vars:
  - OGP_API_KEYS_JSON: JSON object mapping api_key -> caller identity
  - OGP_API_KEYS_FILE: path to a JSON file with the same mapping
"""

from __future__ import annotations

import hmac
import json
import os
from dataclasses import dataclass, field
from typing import Dict, Optional

from .errors import ogp_error, OGP_E_AUTH_REQUIRED

ENV_API_KEYS_JSON = "OGP_API_KEYS_JSON"
ENV_API_KEYS_FILE = "OGP_API_KEYS_FILE"


@dataclass(frozen=True)
class CallerContext:
    """Resolved caller identity."""

    caller_id: Optional[str]
    authenticated: bool
    error: Optional[str] = None


@dataclass(frozen=True)
class ApiKeyAuth:
    """API key -> caller identity mapping."""

    api_key_to_caller: Dict[str, str] = field(default_factory=dict)
    configured: bool = False
    config_error: Optional[str] = None

    @classmethod
    def load_from_env(cls) -> "ApiKeyAuth":
        """Load the key map from env/file.

        A present but malformed configuration yields config_error so every
        request fails closed instead of silently falling back to open mode.
        """
        raw_json = os.getenv(ENV_API_KEYS_JSON)
        file_path = os.getenv(ENV_API_KEYS_FILE)
        if not raw_json and not file_path:
            return cls()

        try:
            if raw_json:
                data = json.loads(raw_json)
            else:
                with open(file_path, "r", encoding="utf-8") as f:
                    data = json.load(f)
            if not isinstance(data, dict):
                raise ValueError("API key config must be a JSON object")
        except Exception:
            return cls(configured=True, config_error="API_KEY_CONFIG_INVALID")

        mapping = {str(k): str(v) for k, v in data.items()}
        return cls(api_key_to_caller=mapping, configured=True)

    def enabled(self) -> bool:
        return self.configured

    def _lookup(self, api_key: str) -> Optional[str]:
        # Constant-time comparison per candidate key.
        for known, caller in self.api_key_to_caller.items():
            if hmac.compare_digest(known.encode("utf-8"), api_key.encode("utf-8")):
                return caller
        return None

    def resolve(self, api_key: Optional[str], claimed_id: Optional[str] = None) -> CallerContext:
        if self.config_error:
            return CallerContext(caller_id=None, authenticated=False, error=self.config_error)

        if not self.enabled():
            return CallerContext(caller_id=claimed_id or None, authenticated=False)

        if not api_key:
            return CallerContext(caller_id=None, authenticated=False, error="API_KEY_REQUIRED")

        caller_id = self._lookup(api_key)
        if not caller_id:
            return CallerContext(caller_id=None, authenticated=False, error="API_KEY_INVALID")

        if claimed_id and claimed_id != caller_id:
            return CallerContext(caller_id=None, authenticated=False, error="CALLER_ID_MISMATCH")

        return CallerContext(caller_id=caller_id, authenticated=True)

    def require(self, api_key: Optional[str], claimed_id: Optional[str] = None) -> str:
        """Resolve the caller or raise AuthorizationError."""
        ctx = self.resolve(api_key, claimed_id)
        if ctx.error:
            raise ogp_error(OGP_E_AUTH_REQUIRED, ctx.error, http_status=401)
        if not ctx.caller_id:
            raise ogp_error(OGP_E_AUTH_REQUIRED, "caller identity required", http_status=401)
        return ctx.caller_id

