"""
OGP Gateway Server

FastAPI-based HTTP surface for relayers, watchers and the configuration
authority.

Security Properties:
- Caller identity comes from X-Api-Key when a key map is configured
- Role checks (watcher, authority) are enforced by the gateway, not the client
- Errors use a stable envelope: {"code", "message", "retryable", "http_status"}
- Non-admitted deliveries are 200 responses with delivered=false, not errors

Binary fields (messages, evidence) are base64 in request bodies and hex in
query strings.
"""

from __future__ import annotations

import base64
import binascii
import logging
import os
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .auth import ApiKeyAuth
from .errors import OGPError, ogp_error, OGP_E_BAD_REQUEST
from .gateway import OptimisticGateway, build_gateway_from_env
from .metrics import instrument_fastapi
from .sessions import message_id
from .submodules import HttpVerificationModule

logger = logging.getLogger("ogp_gateway")


# ---------------------------
# Request/Response Models
# ---------------------------

class PreVerifyRequest(BaseModel):
    """Relayer request to vet a message and open its fraud window."""
    message_b64: str
    evidence_b64: str = ""


class PreVerifyResponse(BaseModel):
    accepted: bool
    relayer: str
    message_id: str
    submodule_id: Optional[str] = None
    opened_at_utc: Optional[str] = None
    closes_at_utc: Optional[str] = None


class DeliverRequest(BaseModel):
    destination: str
    value: int = 0


class FlagRequest(BaseModel):
    message_b64: str


class WatchersRequest(BaseModel):
    identities: List[str]
    statuses: List[bool]


class QuorumRequest(BaseModel):
    quorum: int = Field(ge=0)


class WindowDurationRequest(BaseModel):
    window_duration: int = Field(ge=0)


class SubmoduleRequest(BaseModel):
    """Bind an HTTP verification service to an origin domain."""
    domain: str
    url: str
    module_id: Optional[str] = None
    timeout_seconds: float = Field(default=5.0, gt=0, le=60)


def _b64(field_name: str, value: str) -> bytes:
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError):
        raise ogp_error(OGP_E_BAD_REQUEST, f"{field_name} is not valid base64", field=field_name)


def _hex(field_name: str, value: str) -> bytes:
    try:
        return bytes.fromhex(value)
    except ValueError:
        raise ogp_error(OGP_E_BAD_REQUEST, f"{field_name} is not valid hex", field=field_name)


# ---------------------------
# FastAPI App Factory
# ---------------------------

def create_app(gateway: Optional[OptimisticGateway] = None, api_auth: Optional[ApiKeyAuth] = None) -> FastAPI:
    """Create FastAPI application with gateway endpoints."""
    from . import __version__ as ogp_version

    app = FastAPI(
        title="OGP Gateway",
        description="Optimistic Gate Protocol - fraud-window delivery gate",
        version=ogp_version,
    )

    @app.exception_handler(OGPError)
    async def _ogp_error_handler(request: Request, exc: OGPError):
        return JSONResponse(status_code=int(exc.http_status or 400), content=exc.as_dict())

    if gateway is None:
        gateway = build_gateway_from_env()
    api_auth = api_auth or ApiKeyAuth.load_from_env()
    if not api_auth.enabled():
        logger.warning("No API keys configured; caller identity is taken from X-Caller-Id (dev mode)")

    app.state.gateway = gateway

    def _caller(
        x_api_key: Optional[str] = Header(None, alias="X-Api-Key"),
        x_caller_id: Optional[str] = Header(None, alias="X-Caller-Id"),
    ) -> str:
        return api_auth.require(x_api_key, x_caller_id)

    # ---------------------------
    # Observability (/metrics)
    # ---------------------------
    metrics_token = (os.getenv("OGP_METRICS_TOKEN", "") or "").strip()

    def _authorize_metrics(req: Request) -> bool:
        if not metrics_token:
            return True
        authz = (req.headers.get("Authorization") or "").strip()
        if authz.lower().startswith("bearer ") and authz.split(" ", 1)[1].strip() == metrics_token:
            return True
        return (req.headers.get("X-Metrics-Token") or "").strip() == metrics_token

    instrument_fastapi(app, authorize=_authorize_metrics)

    # ---------------------------
    # Relayer endpoints
    # ---------------------------

    @app.post("/v1/preverify", response_model=PreVerifyResponse)
    def preverify(request: PreVerifyRequest, caller: str = Depends(_caller)):
        message = _b64("message_b64", request.message_b64)
        evidence = _b64("evidence_b64", request.evidence_b64)
        accepted = gateway.pre_verify(caller, evidence, message)
        resp = PreVerifyResponse(accepted=accepted, relayer=caller, message_id=message_id(message))
        if accepted:
            session = gateway.session_of(caller)
            window = gateway.windows.describe(message)
            resp.submodule_id = session.submodule.module_id if session else None
            resp.opened_at_utc = window["opened_at_utc"]
            resp.closes_at_utc = window["closes_at_utc"]
        return resp

    @app.post("/v1/deliver")
    def deliver(request: DeliverRequest, caller: str = Depends(_caller)) -> Dict[str, Any]:
        return gateway.deliver(caller, request.destination, request.value).as_dict()

    @app.get("/v1/relayers/{relayer}/session")
    def relayer_session(relayer: str) -> Dict[str, Any]:
        session = gateway.session_of(relayer)
        if session is None:
            raise HTTPException(404, "NO_SESSION")
        out: Dict[str, Any] = session.as_dict()
        out.update(gateway.windows.describe(session.message))
        out["admission"] = gateway.admission(relayer).as_dict()
        return out

    # ---------------------------
    # Watcher endpoints
    # ---------------------------

    @app.post("/v1/flags/submodule")
    def flag_submodule(request: FlagRequest, caller: str = Depends(_caller)) -> Dict[str, Any]:
        message = _b64("message_b64", request.message_b64)
        return gateway.flag_submodule_fraudulent(caller, message).as_dict()

    @app.post("/v1/flags/message")
    def flag_message(request: FlagRequest, caller: str = Depends(_caller)) -> Dict[str, Any]:
        message = _b64("message_b64", request.message_b64)
        return gateway.flag_message_fraudulent(caller, message).as_dict()

    # ---------------------------
    # Configuration authority endpoints
    # ---------------------------

    @app.post("/v1/admin/watchers")
    def configure_watchers(request: WatchersRequest, caller: str = Depends(_caller)) -> Dict[str, Any]:
        changes = gateway.configure_watchers(caller, request.identities, request.statuses)
        return {"watchers": [{"watcher": w, "active": a} for w, a in changes]}

    @app.post("/v1/admin/quorum")
    def set_quorum(request: QuorumRequest, caller: str = Depends(_caller)) -> Dict[str, Any]:
        return {"quorum": gateway.set_quorum(caller, request.quorum)}

    @app.post("/v1/admin/window-duration")
    def set_window_duration(request: WindowDurationRequest, caller: str = Depends(_caller)) -> Dict[str, Any]:
        return {"window_duration": gateway.set_window_duration(caller, request.window_duration)}

    @app.post("/v1/admin/submodule")
    def set_submodule(request: SubmoduleRequest, caller: str = Depends(_caller)) -> Dict[str, Any]:
        module = HttpVerificationModule(
            module_id=request.module_id or f"http:{request.domain}",
            url=request.url,
            timeout_seconds=request.timeout_seconds,
        )
        module = gateway.set_submodule(caller, request.domain, module)
        return {"domain": request.domain, "submodule_id": gateway.submodule_handle(module)}

    # ---------------------------
    # Public reads
    # ---------------------------

    @app.get("/v1/submodule")
    def submodule_for_message(message_hex: str) -> Dict[str, Any]:
        message = _hex("message_hex", message_hex)
        module = gateway.submodule_for_message(message)
        return {
            "message_id": message_id(message),
            "submodule_id": gateway.submodule_handle(module) if module else None,
            "submodule_fraudulent": gateway.is_submodule_fraudulent(message),
            "message_fraudulent": gateway.is_message_fraudulent(message),
        }

    @app.get("/v1/status")
    def status() -> Dict[str, Any]:
        return gateway.status()

    @app.get("/v1/stats")
    def stats() -> Dict[str, Any]:
        return gateway.stats.snapshot(extra={"pending_sessions": len(gateway.sessions)})

    @app.get("/v1/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy", "gateway_id": gateway.gateway_id}

    return app


def main(argv=None):
    """
    Main entry point for the ogp-gateway CLI.

    Usage:
        ogp-gateway                    # Start on default port 8000
        ogp-gateway --port 9000        # Start on custom port
        ogp-gateway --host 127.0.0.1   # Bind to localhost only
    """
    import argparse

    parser = argparse.ArgumentParser(
        description="OGP Gateway - optimistic fraud-window delivery gate",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Environment Variables:
    OGP_AUTHORITY_ID             Configuration authority identity
    OGP_QUORUM                   Flags must exceed this count (default: 2)
    OGP_WINDOW_DURATION_SECONDS  Dispute window length (default: 1800)
    OGP_API_KEYS_JSON            JSON object api_key -> caller identity
    OGP_AUDIT_LOG_PATH           Tamper-evident event log path
    OGP_AUDIT_SIGNING_KEY        Ed25519 seed (64 hex chars) for the audit log
        """,
    )
    parser.add_argument("--host", default="0.0.0.0", help="Host to bind (default: 0.0.0.0)")
    parser.add_argument("--port", type=int, default=8000, help="Port to bind (default: 8000)")
    parser.add_argument("--log-level", default="info", help="Log level (default: info)")
    args = parser.parse_args(argv)

    import uvicorn

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
    )
    logger.info("Starting OGP Gateway on %s:%s", args.host, args.port)
    uvicorn.run(create_app(), host=args.host, port=args.port, log_level=args.log_level)
    return 0


if __name__ == "__main__":
    import sys
    sys.exit(main() or 0)
