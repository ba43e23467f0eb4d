import json

import ogp_cli
from ogp_gateway.audit_log import TamperEvidentAuditLog
from ogp_gateway.signing import Ed25519Signer


def test_cli_keygen_outputs_usable_seed(capsys):
    assert ogp_cli.main(["keygen", "--key-id", "ops"]) == 0
    out = json.loads(capsys.readouterr().out)
    assert out["key_id"] == "ops"
    signer = Ed25519Signer.from_seed_hex(out["seed_hex"], key_id="ops")
    assert signer.public_key_hex == out["public_key_hex"]


def test_cli_verify_audit_log(tmp_path, capsys):
    signer = Ed25519Signer.generate("k")
    path = tmp_path / "audit.jsonl"
    log = TamperEvidentAuditLog(str(path), signer)
    log.append_event({"event": "a"})
    log.append_event({"event": "b"})

    rc = ogp_cli.main(["verify-audit-log", str(path), "--public-key", f"k={signer.public_key_hex}", "--json"])
    assert rc == 0
    assert json.loads(capsys.readouterr().out) == {"ok": True, "reason": "OK", "records": 2}

    other = Ed25519Signer.generate("k")
    rc = ogp_cli.main(["verify-audit-log", str(path), "--public-key", f"k={other.public_key_hex}"])
    assert rc == 1


def test_cli_verify_requires_key(tmp_path):
    assert ogp_cli.main(["verify-audit-log", str(tmp_path / "x.jsonl")]) == 2
    assert ogp_cli.main(["verify-audit-log", str(tmp_path / "x.jsonl"), "--public-key", "nonsense"]) == 2


def test_cli_demo_delivers_and_writes_verifiable_log(tmp_path, capsys):
    path = tmp_path / "demo.jsonl"
    assert ogp_cli.main(["demo", "--window", "30", "--audit-log", str(path)]) == 0
    out = capsys.readouterr().out
    assert "WINDOW_NOT_ELAPSED" in out
    assert "delivery target calls: 1" in out

    key_line = [line for line in out.splitlines() if line.startswith("Verify with:")][0]
    key_id, public_hex = key_line.rsplit(" ", 1)[1].split("=", 1)
    ok, reason, count = TamperEvidentAuditLog.verify_file(str(path), {key_id: public_hex})
    assert ok is True
    assert count >= 4


def test_cli_without_command_prints_help(capsys):
    assert ogp_cli.main([]) == 1
    assert "keygen" in capsys.readouterr().out
