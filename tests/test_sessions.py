from __future__ import annotations

import hashlib

import pytest

from ogp_gateway.errors import StateConflictError, OGP_E_SESSION_ALREADY_OPEN
from ogp_gateway.sessions import RelayerSessionStore, message_id
from ogp_gateway.submodules import StaticVerificationModule


def test_session_store_begin_and_end_roundtrip():
    store = RelayerSessionStore()
    module = StaticVerificationModule("mod-a")

    session = store.begin_session("relayer_001", b"msg", b"ev", module)
    assert store.is_pending("relayer_001") is True
    assert store.session_of("relayer_001") is session
    assert len(store) == 1
    assert session.as_dict() == {
        "relayer": "relayer_001",
        "message_id": hashlib.sha256(b"msg").hexdigest(),
        "submodule_id": "mod-a",
    }

    assert store.end_session("relayer_001") is session
    assert store.is_pending("relayer_001") is False
    assert store.session_of("relayer_001") is None
    assert len(store) == 0


def test_session_store_one_session_per_relayer():
    store = RelayerSessionStore()
    module = StaticVerificationModule("mod-a")
    store.begin_session("relayer_001", b"first", b"", module)

    with pytest.raises(StateConflictError) as ei:
        store.begin_session("relayer_001", b"second", b"", module)
    assert ei.value.code == OGP_E_SESSION_ALREADY_OPEN
    assert ei.value.details["message_id"] == message_id(b"first")
    assert store.session_of("relayer_001").message == b"first"

    # Other relayers are independent.
    store.begin_session("relayer_002", b"second", b"", module)
    assert len(store) == 2


def test_end_session_when_idle_is_noop():
    store = RelayerSessionStore()
    assert store.end_session("nobody") is None
    assert len(store) == 0


def test_session_copies_mutable_buffers():
    store = RelayerSessionStore()
    buf = bytearray(b"abc")
    session = store.begin_session("r", buf, bytearray(b"e"), StaticVerificationModule("m"))
    buf[0] = ord("z")
    assert session.message == b"abc"
    assert isinstance(session.evidence, bytes)
