"""
ogp_gateway.signing: Ed25519 signing for gateway audit records.

Keys are loaded from the environment:
- OGP_AUDIT_SIGNING_KEY: 64 hex chars (32-byte Ed25519 seed)
- OGP_AUDIT_KEY_ID: key identifier recorded in each audit entry (default: gateway)
- OGP_ALLOW_EPHEMERAL_SIGNING_KEYS: if 1/true/yes, generate a throwaway key
  when none is configured (demos/tests only)

Private keys never leave this module; callers get a Signer and a public
key hex for verification.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Dict, Optional

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)


def _raw_public_bytes(public_key: Ed25519PublicKey) -> bytes:
    return public_key.public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    )


@dataclass
class Ed25519Signer:
    """In-process Ed25519 signer."""

    key_id: str
    private_key: Ed25519PrivateKey

    @classmethod
    def generate(cls, key_id: str) -> "Ed25519Signer":
        return cls(key_id=key_id, private_key=Ed25519PrivateKey.generate())

    @classmethod
    def from_seed_hex(cls, seed_hex: str, key_id: str = "gateway") -> "Ed25519Signer":
        seed_hex = (seed_hex or "").strip()
        if len(seed_hex) != 64:
            raise ValueError(f"Key must be 64 hex chars (32 bytes), got {len(seed_hex)}")
        seed = bytes.fromhex(seed_hex)
        return cls(key_id=key_id, private_key=Ed25519PrivateKey.from_private_bytes(seed))

    @property
    def public_key_bytes(self) -> bytes:
        return _raw_public_bytes(self.private_key.public_key())

    @property
    def public_key_hex(self) -> str:
        return self.public_key_bytes.hex()

    def seed_hex(self) -> str:
        return self.private_key.private_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PrivateFormat.Raw,
            encryption_algorithm=serialization.NoEncryption(),
        ).hex()

    def sign(self, message: bytes) -> bytes:
        return self.private_key.sign(message)


def verify_signature(public_key_hex: str, message: bytes, signature: bytes) -> bool:
    """Verify an Ed25519 signature. Never raises."""
    try:
        public_key = Ed25519PublicKey.from_public_bytes(bytes.fromhex(public_key_hex))
        public_key.verify(signature, message)
        return True
    except InvalidSignature:
        return False
    except Exception:
        return False


def parse_public_keys(pairs: list[str]) -> Dict[str, str]:
    """Parse ["key_id=hex", ...] into {key_id: hex}."""
    keys: Dict[str, str] = {}
    for pair in pairs:
        if "=" not in pair:
            raise ValueError(f"expected key_id=hex, got {pair!r}")
        key_id, hex_key = pair.split("=", 1)
        keys[key_id.strip()] = hex_key.strip()
    return keys


def load_signer_from_env(
    env_var: str = "OGP_AUDIT_SIGNING_KEY",
    key_id_env: str = "OGP_AUDIT_KEY_ID",
    allow_ephemeral: Optional[bool] = None,
) -> Optional[Ed25519Signer]:
    """Load the audit signing key from env.

    Returns None when nothing is configured and ephemeral keys are not allowed.
    A configured but malformed key raises: the gateway must not start with a
    key it cannot use.
    """
    key_id = (os.getenv(key_id_env, "") or "").strip() or "gateway"
    seed_hex = (os.getenv(env_var, "") or "").strip()
    if seed_hex:
        return Ed25519Signer.from_seed_hex(seed_hex, key_id=key_id)

    if allow_ephemeral is None:
        allow_ephemeral = os.getenv("OGP_ALLOW_EPHEMERAL_SIGNING_KEYS", "").strip().lower() in ("1", "true", "yes")
    if allow_ephemeral:
        return Ed25519Signer.generate(key_id)
    return None
