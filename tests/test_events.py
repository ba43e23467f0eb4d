import logging

import pytest

from ogp_gateway.config import ThresholdConfig
from ogp_gateway.errors import InvalidInputError
from ogp_gateway.events import (
    EventBus,
    EventSink,
    GatewayEvent,
    LoggingSink,
    MemorySink,
    QUORUM_CHANGED,
    SUBMODULE_CHANGED,
    WATCHERS_CONFIGURED,
    WINDOW_DURATION_CHANGED,
)
from ogp_gateway.fraud_window import ManualTimeSource
from ogp_gateway.gateway import OptimisticGateway
from ogp_gateway.ops_stats import OpsStats
from ogp_gateway.submodules import StaticVerificationModule


class _BrokenSink(EventSink):
    def publish(self, event):
        raise OSError("disk full")


def test_event_as_dict_merges_fields():
    ev = GatewayEvent(name="x", ts=5, fields={"a": 1})
    assert ev.as_dict() == {"event": "x", "ts": 5, "a": 1}


def test_bus_fans_out_and_survives_broken_sink(caplog):
    first, second = MemorySink(), MemorySink()
    bus = EventBus([first, _BrokenSink(), second])

    with caplog.at_level(logging.ERROR, logger="ogp_gateway"):
        ev = bus.emit("something", 10, key="value")

    assert first.events == [ev]
    assert second.events == [ev]
    assert "_BrokenSink" in caplog.text


def test_logging_sink_writes_record(caplog):
    bus = EventBus([LoggingSink(logging.INFO)])
    with caplog.at_level(logging.INFO, logger="ogp_gateway"):
        bus.emit("quorum_changed", 1, quorum=3)
    rec = caplog.records[-1]
    assert "quorum_changed" in rec.getMessage()
    assert rec.ogp_event == {"event": "quorum_changed", "ts": 1, "quorum": 3}


def test_configuration_changes_emit_events():
    sink = MemorySink()
    gw = OptimisticGateway(
        config=ThresholdConfig(quorum=2, window_duration=30),
        time_source=ManualTimeSource(77),
        events=EventBus([sink]),
        stats=OpsStats(),
    )
    gw.set_submodule("admin", "chain-a", StaticVerificationModule("mod-a"))
    gw.configure_watchers("admin", ["w1", "w2"], [True, False])
    gw.set_quorum("admin", 4)
    gw.set_window_duration("admin", 60)

    assert sink.named(SUBMODULE_CHANGED)[0].fields == {"domain": "chain-a", "submodule_id": "mod-a"}
    assert sink.named(WATCHERS_CONFIGURED)[0].fields == {
        "watchers": [{"watcher": "w1", "active": True}, {"watcher": "w2", "active": False}]
    }
    assert sink.named(QUORUM_CHANGED)[0].fields == {"previous": 2, "quorum": 4}
    assert sink.named(WINDOW_DURATION_CHANGED)[0].fields == {"previous": 30, "window_duration": 60}
    assert all(e.ts == 77 for e in sink.events)


def test_failed_configuration_emits_nothing():
    sink = MemorySink()
    gw = OptimisticGateway(time_source=ManualTimeSource(0), events=EventBus([sink]), stats=OpsStats())
    with pytest.raises(InvalidInputError):
        gw.configure_watchers("admin", ["a", "b"], [True])
    assert sink.events == []
