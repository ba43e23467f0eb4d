import json

import pytest

from ogp_gateway.auth import ApiKeyAuth, ENV_API_KEYS_JSON, ENV_API_KEYS_FILE
from ogp_gateway.errors import AuthorizationError, OGP_E_AUTH_REQUIRED


def test_auth_disabled_allows_claimed_identity(monkeypatch):
    monkeypatch.delenv(ENV_API_KEYS_JSON, raising=False)
    monkeypatch.delenv(ENV_API_KEYS_FILE, raising=False)

    auth = ApiKeyAuth.load_from_env()
    assert auth.enabled() is False

    ctx = auth.resolve(api_key=None, claimed_id="relayer-1")
    assert ctx.caller_id == "relayer-1"
    assert ctx.authenticated is False
    assert ctx.error is None
    assert auth.require(None, "relayer-1") == "relayer-1"


def test_auth_disabled_still_needs_some_identity(monkeypatch):
    monkeypatch.delenv(ENV_API_KEYS_JSON, raising=False)
    monkeypatch.delenv(ENV_API_KEYS_FILE, raising=False)

    with pytest.raises(AuthorizationError) as ei:
        ApiKeyAuth.load_from_env().require(None, None)
    assert ei.value.code == OGP_E_AUTH_REQUIRED
    assert ei.value.http_status == 401


def test_auth_configured_requires_api_key(monkeypatch):
    monkeypatch.setenv(ENV_API_KEYS_JSON, json.dumps({"k1": "watcher-1"}))
    monkeypatch.delenv(ENV_API_KEYS_FILE, raising=False)

    auth = ApiKeyAuth.load_from_env()
    assert auth.enabled() is True

    ctx = auth.resolve(api_key=None, claimed_id="watcher-1")
    assert ctx.caller_id is None
    assert ctx.error == "API_KEY_REQUIRED"


def test_auth_valid_key_resolves_identity_and_checks_claim(monkeypatch):
    monkeypatch.setenv(ENV_API_KEYS_JSON, json.dumps({"k1": "watcher-1"}))
    monkeypatch.delenv(ENV_API_KEYS_FILE, raising=False)

    auth = ApiKeyAuth.load_from_env()

    ctx = auth.resolve(api_key="k1", claimed_id=None)
    assert ctx.caller_id == "watcher-1"
    assert ctx.authenticated is True

    # Claim mismatch should be rejected
    ctx = auth.resolve(api_key="k1", claimed_id="admin")
    assert ctx.caller_id is None
    assert ctx.error == "CALLER_ID_MISMATCH"
    with pytest.raises(AuthorizationError):
        auth.require("k1", "admin")


def test_auth_invalid_key_rejected(monkeypatch):
    monkeypatch.setenv(ENV_API_KEYS_JSON, json.dumps({"k1": "watcher-1"}))
    monkeypatch.delenv(ENV_API_KEYS_FILE, raising=False)

    ctx = ApiKeyAuth.load_from_env().resolve(api_key="nope", claimed_id="watcher-1")
    assert ctx.caller_id is None
    assert ctx.error == "API_KEY_INVALID"


def test_auth_malformed_config_fails_closed(monkeypatch):
    # If the deployer sets env but it's malformed, fail closed.
    monkeypatch.setenv(ENV_API_KEYS_JSON, "not json")
    monkeypatch.delenv(ENV_API_KEYS_FILE, raising=False)

    auth = ApiKeyAuth.load_from_env()
    assert auth.enabled() is True

    ctx = auth.resolve(api_key="anything", claimed_id="watcher-1")
    assert ctx.caller_id is None
    assert ctx.error == "API_KEY_CONFIG_INVALID"


def test_auth_file_config(monkeypatch, tmp_path):
    p = tmp_path / "keys.json"
    p.write_text(json.dumps({"k2": "relayer-2"}), encoding="utf-8")

    monkeypatch.delenv(ENV_API_KEYS_JSON, raising=False)
    monkeypatch.setenv(ENV_API_KEYS_FILE, str(p))

    auth = ApiKeyAuth.load_from_env()
    assert auth.enabled() is True
    assert auth.require("k2", "relayer-2") == "relayer-2"
