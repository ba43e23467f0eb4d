import pytest

from ogp_gateway.config import ThresholdConfig
from ogp_gateway.errors import InvalidInputError, OGP_E_LENGTH_MISMATCH
from ogp_gateway.watchers import FlagRegistry, ThresholdEvaluator, WatcherSet


def test_watcher_set_configure_and_deactivate():
    ws = WatcherSet()
    changes = ws.configure(["a", "b"], [True, True])
    assert changes == [("a", True), ("b", True)]
    assert ws.is_active("a") and ws.is_active("b")

    ws.configure(["a"], [False])
    assert ws.is_active("a") is False
    # Deactivated watchers are kept, not removed.
    assert ws.snapshot() == {"a": False, "b": True}
    assert ws.is_active("unknown") is False


def test_watcher_set_length_mismatch_is_atomic():
    ws = WatcherSet()
    ws.configure(["a"], [True])

    with pytest.raises(InvalidInputError) as ei:
        ws.configure(["a", "b", "c"], [False, True])
    assert ei.value.code == OGP_E_LENGTH_MISMATCH
    assert ei.value.details == {"identities": 3, "statuses": 2}
    assert ws.snapshot() == {"a": True}


def test_watcher_set_accepts_generators():
    ws = WatcherSet()
    ws.configure((w for w in ["x", "y"]), (s for s in [True, False]))
    assert ws.snapshot() == {"x": True, "y": False}


def test_flag_registry_dedupes_per_watcher():
    flags = FlagRegistry()
    assert flags.flag_submodule("w1", "mod") is True
    assert flags.flag_submodule("w1", "mod") is False
    assert flags.flag_submodule("w2", "mod") is True
    assert flags.submodule_flags("mod") == 2
    assert flags.has_flagged_submodule("w1", "mod") is True
    assert flags.has_flagged_submodule("w3", "mod") is False

    assert flags.flag_message("w1", b"m") is True
    assert flags.flag_message("w1", bytearray(b"m")) is False
    assert flags.message_flags(b"m") == 1
    assert flags.message_flags(b"other") == 0
    assert flags.has_flagged_message("w1", b"m") is True


def test_submodule_and_message_flags_are_independent():
    flags = FlagRegistry()
    flags.flag_submodule("w1", "mod")
    assert flags.message_flags(b"mod") == 0
    assert flags.flag_message("w1", b"mod") is True


@pytest.mark.parametrize("quorum", [0, 1, 2, 5])
def test_threshold_is_strictly_greater_than_quorum(quorum):
    cfg = ThresholdConfig(quorum=quorum, window_duration=10)
    flags = FlagRegistry()
    ev = ThresholdEvaluator(flags, cfg)

    for i in range(quorum):
        flags.flag_submodule(f"w{i}", "mod")
        flags.flag_message(f"w{i}", b"m")
    assert ev.is_submodule_fraudulent("mod") is False
    assert ev.is_message_fraudulent(b"m") is False

    flags.flag_submodule("last", "mod")
    flags.flag_message("last", b"m")
    assert ev.is_submodule_fraudulent("mod") is True
    assert ev.is_message_fraudulent(b"m") is True


def test_threshold_reads_live_quorum():
    cfg = ThresholdConfig(quorum=3, window_duration=10)
    flags = FlagRegistry()
    ev = ThresholdEvaluator(flags, cfg)
    flags.flag_message("w1", b"m")
    flags.flag_message("w2", b"m")
    assert ev.is_message_fraudulent(b"m") is False

    cfg.set_quorum(1)
    assert ev.is_message_fraudulent(b"m") is True
