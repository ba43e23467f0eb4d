import json

import pytest

from ogp_gateway.audit_log import TamperEvidentAuditLog
from ogp_gateway.delivery import HttpDeliveryTarget
from ogp_gateway.events import AuditLogSink
from ogp_gateway.fraud_window import ManualTimeSource
from ogp_gateway.gateway import build_gateway_from_env
from ogp_gateway.submodules import HttpVerificationModule


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in (
        "OGP_QUORUM",
        "OGP_WINDOW_DURATION_SECONDS",
        "OGP_GATEWAY_ID",
        "OGP_AUTHORITY_ID",
        "OGP_AUDIT_LOG_PATH",
        "OGP_AUDIT_SIGNING_KEY",
        "OGP_AUDIT_KEY_ID",
        "OGP_ALLOW_EPHEMERAL_SIGNING_KEYS",
        "OGP_TIME_SOURCE",
        "OGP_WATCHERS_JSON",
        "OGP_VERIFIER_URL",
        "OGP_VERIFIER_DOMAIN",
        "OGP_DELIVERY_URL",
    ):
        monkeypatch.delenv(name, raising=False)


def test_build_gateway_defaults():
    gw = build_gateway_from_env(time_source=ManualTimeSource(0))
    assert gw.authority_id == "admin"
    assert gw.config.quorum == 2
    assert gw.config.window_duration == 1800
    assert gw.current_submodule() is None
    assert gw.watchers.snapshot() == {}


def test_build_gateway_wires_env(monkeypatch, tmp_path):
    audit_path = tmp_path / "audit" / "events.jsonl"
    monkeypatch.setenv("OGP_AUTHORITY_ID", "root")
    monkeypatch.setenv("OGP_QUORUM", "1")
    monkeypatch.setenv("OGP_WATCHERS_JSON", json.dumps({"w1": True, "w2": False}))
    monkeypatch.setenv("OGP_VERIFIER_URL", "http://verifier.invalid/verify")
    monkeypatch.setenv("OGP_VERIFIER_DOMAIN", "chain-a")
    monkeypatch.setenv("OGP_DELIVERY_URL", "http://executor.invalid/deliver")
    monkeypatch.setenv("OGP_AUDIT_LOG_PATH", str(audit_path))
    monkeypatch.setenv("OGP_ALLOW_EPHEMERAL_SIGNING_KEYS", "1")

    gw = build_gateway_from_env(time_source=ManualTimeSource(0))

    assert gw.authority_id == "root"
    assert gw.config.quorum == 1
    assert gw.watchers.snapshot() == {"w1": True, "w2": False}
    assert isinstance(gw.current_submodule(), HttpVerificationModule)
    assert gw.submodules.domains() == {"chain-a": "http:chain-a"}
    assert isinstance(gw.delivery_target, HttpDeliveryTarget)

    sinks = [s for s in gw.events.sinks if isinstance(s, AuditLogSink)]
    assert len(sinks) == 1
    signer = sinks[0].audit_log.signer
    ok, reason, count = TamperEvidentAuditLog.verify_file(str(audit_path), {signer.key_id: signer.public_key_hex})
    # watchers_configured + submodule_changed
    assert (ok, reason, count) == (True, "OK", 2)


def test_build_gateway_audit_log_requires_key(monkeypatch, tmp_path):
    monkeypatch.setenv("OGP_AUDIT_LOG_PATH", str(tmp_path / "events.jsonl"))
    with pytest.raises(RuntimeError, match="OGP_AUDIT_SIGNING_KEY"):
        build_gateway_from_env(time_source=ManualTimeSource(0))
