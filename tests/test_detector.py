import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from extensions import db
from incidence_engine import detector as detector_module
from incidence_engine.cooldown import pair_key
from incidence_engine.errors import RecorderError, RegistryLookupError
from incidence_engine.telemetry import BeaconSighting, TelemetryEvent
from models.blindspot import (
    BlindSpotCallHistory,
    BlindSpotIncidence,
    BlindSpotLastSms,
    BlindSpotSmsHistory,
)


def _event(device="D1", *beacons):
    return TelemetryEvent(
        reporting_device_id=device,
        beacons=tuple(BeaconSighting(beacon_id=b, signal_strength=r) for b, r in beacons),
        event_timestamp=1772463600.0,
    )


def _counts():
    return (
        BlindSpotIncidence.query.count(),
        BlindSpotCallHistory.query.count(),
        BlindSpotSmsHistory.query.count(),
    )


@pytest.fixture
def registry(seed):
    seed(
        devices=[("D1", "Cold room A", True), ("D9", "Office", False)],
        beacons=[("B1", "Jane Roe", True), ("B2", "Visitor tag", False), ("B3", "John Doe", True)],
    )


# ---------------------------------------------------------------------
# End-to-end scenarios
# ---------------------------------------------------------------------
def test_scenario_a_single_qualifying_beacon(engine, registry, modem, email, executor):
    created = engine.on_telemetry_event(_event("D1", ("B1", -80)))

    assert len(created) == 1
    assert _counts() == (1, 1, 1)

    inc = db.session.get(BlindSpotIncidence, created[0])
    assert (inc.device_id, inc.beacon_id, inc.detection_type) == ("D1", "B1", "beacon")
    call = BlindSpotCallHistory.query.one()
    assert call.call_state == "initiated"
    assert BlindSpotSmsHistory.query.one().delivery_state == "sent"

    assert executor.jobs == 1
    assert len(modem.sent) == 5
    assert len(email.sent) == 1


def test_scenario_b_repeat_within_cooldown(engine, registry, clock):
    engine.on_telemetry_event(_event("D1", ("B1", -80)))
    counts = _counts()

    clock.advance(5)
    assert engine.on_telemetry_event(_event("D1", ("B1", -80))) == []
    assert _counts() == counts


def test_scenario_c_cooldown_over_but_rate_limited(engine, registry, clock, modem):
    engine.on_telemetry_event(_event("D1", ("B1", -80)))
    sent_before = len(modem.sent)

    # the first dispatch already consumed 28s of fake time
    clock.advance(8)
    created = engine.on_telemetry_event(_event("D1", ("B1", -80)))

    assert len(created) == 1
    assert BlindSpotIncidence.query.count() == 2
    assert BlindSpotCallHistory.query.count() == 2
    assert BlindSpotSmsHistory.query.count() == 1
    assert len(modem.sent) == sent_before


def test_scenario_d_unflagged_beacon(engine, registry, executor):
    assert engine.on_telemetry_event(_event("D1", ("B2", -40))) == []
    assert _counts() == (0, 0, 0)
    assert executor.jobs == 0


def test_scenario_e_modem_unreachable(engine, registry, modem, email):
    modem.reachable = False

    created = engine.on_telemetry_event(_event("D1", ("B1", -70)))

    assert len(created) == 1
    assert len(email.sent) == 1
    row = BlindSpotSmsHistory.query.one()
    assert row.delivery_state == "error"
    assert "Could not connect to modem" in row.error
    assert BlindSpotIncidence.query.count() == 1
    assert BlindSpotLastSms.query.count() == 0


# ---------------------------------------------------------------------
# Filtering
# ---------------------------------------------------------------------
@pytest.mark.parametrize("rssi", [-90, -95, -120])
def test_weak_signal_never_records(engine, registry, rssi):
    assert engine.on_telemetry_event(_event("D1", ("B1", rssi))) == []
    assert _counts() == (0, 0, 0)


def test_just_above_threshold_records(engine, registry):
    assert len(engine.on_telemetry_event(_event("D1", ("B1", -89)))) == 1


def test_nan_signal_strength_never_records(engine, registry):
    assert engine.on_telemetry_event(_event("D1", ("B1", float("nan")))) == []
    assert _counts() == (0, 0, 0)


def test_unflagged_device_ignores_flagged_beacons(engine, registry):
    assert engine.on_telemetry_event(_event("D9", ("B1", -50), ("B3", -50))) == []
    assert engine.on_telemetry_event(_event("UNKNOWN", ("B1", -50))) == []
    assert _counts() == (0, 0, 0)


def test_device_lookup_error_is_fail_closed(engine, registry, monkeypatch):
    def broken(entity_id, kind):
        raise RegistryLookupError(entity_id, kind.value, "connection lost")

    monkeypatch.setattr(detector_module, "is_flagged", broken)

    assert engine.on_telemetry_event(_event("D1", ("B1", -50))) == []
    assert _counts() == (0, 0, 0)


def test_empty_beacon_list(engine, registry, executor):
    assert engine.on_telemetry_event(_event("D1")) == []
    assert executor.jobs == 0


def test_each_beacon_processed_independently(engine, registry):
    created = engine.on_telemetry_event(
        _event("D1", ("B1", -60), ("B1", -60), ("B2", -60), ("B3", -60))
    )

    assert len(created) == 2
    pairs = {(i.device_id, i.beacon_id) for i in BlindSpotIncidence.query.all()}
    assert pairs == {("D1", "B1"), ("D1", "B3")}


# ---------------------------------------------------------------------
# Failure isolation
# ---------------------------------------------------------------------
def test_recorder_failure_skips_only_that_beacon(engine, registry, monkeypatch):
    real_record = engine.recorder.record

    def flaky(device_id, detector_id, detection_type=None):
        if detector_id == "B1":
            raise RecorderError("disk full")
        return real_record(device_id, detector_id, detection_type)

    monkeypatch.setattr(engine.recorder, "record", flaky)

    created = engine.on_telemetry_event(_event("D1", ("B1", -60), ("B3", -60)))

    assert len(created) == 1
    assert BlindSpotIncidence.query.one().beacon_id == "B3"
    # the failed pair is not left in cooldown
    assert not engine.cooldowns.is_active(pair_key("D1", "B1"))
    assert engine.cooldowns.is_active(pair_key("D1", "B3"))


def test_dispatch_failure_keeps_incidence(engine, registry, modem, email):
    modem.reachable = False
    email.fail = True

    created = engine.on_telemetry_event(_event("D1", ("B1", -60)))

    assert len(created) == 1
    assert BlindSpotIncidence.query.count() == 1
    assert BlindSpotSmsHistory.query.one().delivery_state == "error"


def test_new_incidence_is_pushed_to_observers(engine, registry, emitted):
    created = engine.on_telemetry_event(_event("D1", ("B1", -60)))

    name, payload = emitted[0]
    assert name == "new_incidence"
    assert payload["incidence_id"] == created[0]
    assert payload["detection_type"] == "beacon"


# ---------------------------------------------------------------------
# Background dispatch
# ---------------------------------------------------------------------
def test_same_pair_never_runs_two_alert_sequences(engine, registry, modem, clock, monkeypatch):
    modem_entered = threading.Event()
    modem_gate = threading.Event()
    real_check = modem.check_connection

    def slow_check():
        modem_entered.set()
        modem_gate.wait(5)
        return real_check()

    monkeypatch.setattr(modem, "check_connection", slow_check)

    outcomes = []
    first_outcome = threading.Event()
    real_dispatch = engine.dispatcher.dispatch

    def tracked_dispatch(*args):
        result = real_dispatch(*args)
        outcomes.append(result)
        first_outcome.set()
        return result

    monkeypatch.setattr(engine.dispatcher, "dispatch", tracked_dispatch)

    pool = ThreadPoolExecutor(max_workers=2)
    monkeypatch.setattr(engine, "executor", pool)
    try:
        first = engine.on_telemetry_event(_event("D1", ("B1", -60)))
        # ingestion returned while the modem is still busy
        assert modem_entered.wait(5)
        assert outcomes == []

        # cooldown over, first sequence still running
        clock.advance(36)
        second = engine.on_telemetry_event(_event("D1", ("B1", -60)))
        assert first_outcome.wait(5)
        assert outcomes == [None]
    finally:
        modem_gate.set()
        pool.shutdown(wait=True)

    assert len(first) == len(second) == 1
    assert outcomes == [None, "sent"]
    assert modem.probes == 1
    assert modem.numbers().count("+56900000001") == 1
    assert BlindSpotIncidence.query.count() == 2
    assert BlindSpotSmsHistory.query.one().delivery_state == "sent"
    assert BlindSpotLastSms.query.count() == 1


def test_other_pairs_dispatch_while_one_is_in_flight(engine, registry, modem, monkeypatch):
    b1_entered = threading.Event()
    b1_gate = threading.Event()
    real_check = modem.check_connection

    def check():
        if not b1_entered.is_set():
            b1_entered.set()
            b1_gate.wait(5)
        return real_check()

    monkeypatch.setattr(modem, "check_connection", check)

    b3_done = threading.Event()
    real_dispatch = engine.dispatcher.dispatch

    def tracked_dispatch(device_id, detector_id, detection_type=None):
        result = real_dispatch(device_id, detector_id, detection_type)
        if detector_id == "B3":
            b3_done.set()
        return result

    monkeypatch.setattr(engine.dispatcher, "dispatch", tracked_dispatch)

    pool = ThreadPoolExecutor(max_workers=2)
    monkeypatch.setattr(engine, "executor", pool)
    try:
        engine.on_telemetry_event(_event("D1", ("B1", -60)))
        assert b1_entered.wait(5)
        engine.on_telemetry_event(_event("D1", ("B3", -60)))
        # B3 completes while B1 is still held at the modem probe
        assert b3_done.wait(5)
    finally:
        b1_gate.set()
        pool.shutdown(wait=True)

    assert modem.probes == 2
    assert BlindSpotLastSms.query.count() == 2
