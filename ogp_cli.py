#!/usr/bin/env python3
"""
Optimistic Gate Protocol - Command Line Interface

Usage:
    ogp keygen [--key-id ID]                        Generate an audit signing key
    ogp verify-audit-log <path> --public-key ID=HEX Verify a tamper-evident event log
    ogp demo [--audit-log PATH]                     Run a pre-verify / wait / deliver walkthrough
    ogp serve [--host H] [--port P]                 Start the HTTP gateway
"""

import argparse
import json
import logging
import sys
from typing import List, Optional

from ogp_gateway.audit_log import TamperEvidentAuditLog
from ogp_gateway.config import ThresholdConfig
from ogp_gateway.delivery import RecordingDeliveryTarget
from ogp_gateway.events import EventBus, LoggingSink, MemorySink, AuditLogSink
from ogp_gateway.fraud_window import ManualTimeSource
from ogp_gateway.gateway import OptimisticGateway
from ogp_gateway.signing import Ed25519Signer, parse_public_keys
from ogp_gateway.submodules import StaticVerificationModule

logger = logging.getLogger("ogp_gateway")


def setup_logging(verbose: bool = False):
    """Configure logging for CLI usage."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S"
    )
    logger.setLevel(level)


def cmd_keygen(args):
    """Print a fresh Ed25519 seed and public key as JSON."""
    signer = Ed25519Signer.generate(args.key_id)
    print(json.dumps({
        "key_id": signer.key_id,
        "seed_hex": signer.seed_hex(),
        "public_key_hex": signer.public_key_hex,
    }, indent=2))
    return 0


def cmd_verify_audit_log(args):
    try:
        keys = parse_public_keys(args.public_key or [])
    except ValueError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 2
    if not keys:
        print("ERROR: at least one --public-key key_id=hex is required", file=sys.stderr)
        return 2

    ok, reason, count = TamperEvidentAuditLog.verify_file(args.path, keys)
    if args.json:
        print(json.dumps({"ok": ok, "reason": reason, "records": count}))
    elif ok:
        print(f"✓ Audit log verified: {count} record(s) ({reason})")
    else:
        print(f"✗ Audit log verification failed at record {count}: {reason}")
    return 0 if ok else 1


def _print_step(title: str, detail: str = ""):
    print(f"  {title}" + (f": {detail}" if detail else ""))


def cmd_demo(args):
    """Walk one message through pre-verification, the fraud window and delivery."""
    clock = ManualTimeSource(start=1_700_000_000)
    memory = MemorySink()
    bus = EventBus([memory, LoggingSink(logging.DEBUG)])
    signer = None
    if args.audit_log:
        signer = Ed25519Signer.generate("demo")
        bus.add_sink(AuditLogSink(TamperEvidentAuditLog(args.audit_log, signer)))

    target = RecordingDeliveryTarget()
    gateway = OptimisticGateway(
        authority_id="admin",
        config=ThresholdConfig(quorum=args.quorum, window_duration=args.window),
        time_source=clock,
        delivery_target=target,
        events=bus,
    )
    gateway.set_submodule("admin", "origin-chain", StaticVerificationModule("demo-verifier", valid=True))
    gateway.configure_watchers("admin", ["watcher-1", "watcher-2", "watcher-3"], [True, True, True])

    message = b"transfer:42:to:bob"
    print("\n" + "=" * 60)
    print("OGP DEMO: optimistic delivery")
    print("=" * 60)

    accepted = gateway.pre_verify("relayer-1", b"proof", message)
    _print_step("pre_verify", "accepted" if accepted else "rejected")
    _print_step("window", json.dumps(gateway.windows.describe(message)))

    early = gateway.deliver("relayer-1", "destination-chain", 0)
    _print_step("deliver (window open)", ",".join(early.reasons) or "delivered")

    clock.advance(args.window + 1)
    result = gateway.deliver("relayer-1", "destination-chain", 0)
    _print_step("deliver (window elapsed)", "delivered" if result.delivered else ",".join(result.reasons))
    _print_step("delivery target calls", str(len(target.deliveries)))
    _print_step("session after delivery", "idle" if gateway.session_of("relayer-1") is None else "pending")

    print("\nEvents:")
    for ev in memory.events:
        print(f"  {ev.ts} {ev.name}")
    if signer is not None:
        print(f"\nAudit log: {args.audit_log}")
        print(f"Verify with: ogp verify-audit-log {args.audit_log} --public-key {signer.key_id}={signer.public_key_hex}")
    return 0 if result.delivered else 1


def cmd_serve(args):
    from ogp_gateway import server

    return server.main(["--host", args.host, "--port", str(args.port)])


def main(argv: Optional[List[str]] = None):
    parser = argparse.ArgumentParser(
        description="Optimistic Gate Protocol CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose logging")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # keygen command
    keygen_parser = subparsers.add_parser("keygen", help="Generate an Ed25519 audit signing key")
    keygen_parser.add_argument("--key-id", default="gateway", help="Key identifier (default: gateway)")
    keygen_parser.set_defaults(func=cmd_keygen)

    # verify-audit-log command
    verify_parser = subparsers.add_parser("verify-audit-log", help="Verify a tamper-evident event log")
    verify_parser.add_argument("path", help="Path to the JSONL audit log")
    verify_parser.add_argument(
        "--public-key",
        action="append",
        help="Trusted key as key_id=hex (repeatable)",
    )
    verify_parser.add_argument("--json", action="store_true", help="Emit machine-readable output")
    verify_parser.set_defaults(func=cmd_verify_audit_log)

    # demo command
    demo_parser = subparsers.add_parser("demo", help="Run demo")
    demo_parser.add_argument("--window", type=int, default=1800, help="Fraud window in seconds")
    demo_parser.add_argument("--quorum", type=int, default=2, help="Flags must exceed this count")
    demo_parser.add_argument("--audit-log", default=None, help="Also write a signed audit log here")
    demo_parser.set_defaults(func=cmd_demo)

    # serve command
    serve_parser = subparsers.add_parser("serve", help="Start the HTTP gateway")
    serve_parser.add_argument("--host", default="0.0.0.0")
    serve_parser.add_argument("--port", type=int, default=8000)
    serve_parser.set_defaults(func=cmd_serve)

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 1

    setup_logging(args.verbose)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
