# incidence_engine/detector.py

import logging

from incidence_engine.cooldown import pair_key
from incidence_engine.errors import DispatchError, RecorderError, RegistryLookupError
from incidence_engine.recorder import detection_type_for
from incidence_engine.registry import EntityKind, is_flagged

logger = logging.getLogger("incidence_engine.detector")


class IncidenceDetector:
    """
    Entry point for decoded telemetry.

    Recording happens inline so a failed write is visible to the caller's
    logs right away; the alert sequence is submitted to `executor` and runs
    in its own application context.
    """

    def __init__(self, app, settings, cooldowns, recorder, dispatcher, executor):
        self.app = app
        self.settings = settings
        self.cooldowns = cooldowns
        self.recorder = recorder
        self.dispatcher = dispatcher
        self.executor = executor

    # ---------------------------------------------------------
    def on_telemetry_event(self, event):
        device_id = event.reporting_device_id

        try:
            if not is_flagged(device_id, EntityKind.DEVICE):
                logger.debug("Device %s is not a blind spot", device_id)
                return []
        except RegistryLookupError as exc:
            logger.error("Blind-spot check failed for device %s, skipping event: %s", device_id, exc)
            return []

        if not event.beacons:
            return []

        created = []
        for beacon in event.beacons:
            try:
                incidence_id = self._process_beacon(device_id, beacon)
            except Exception:
                logger.exception(
                    "Processing beacon %s from device %s failed", beacon.beacon_id, device_id
                )
                continue
            if incidence_id is not None:
                created.append(incidence_id)
        return created

    # ---------------------------------------------------------
    def _process_beacon(self, device_id, beacon):
        try:
            if not is_flagged(beacon.beacon_id, EntityKind.BEACON):
                return None
        except RegistryLookupError as exc:
            logger.error("Blind-spot check failed for beacon %s: %s", beacon.beacon_id, exc)
            return None

        if not beacon.signal_strength > self.settings.rssi_threshold:
            logger.debug(
                "Beacon %s too far (rssi=%s <= %s)",
                beacon.beacon_id, beacon.signal_strength, self.settings.rssi_threshold,
            )
            return None

        key = pair_key(device_id, beacon.beacon_id)
        if not self.cooldowns.try_acquire(key):
            logger.debug("Cooldown active for %s, skipping", key)
            return None

        detection_type = detection_type_for(beacon.beacon_id)
        try:
            incidence_id = self.recorder.record(device_id, beacon.beacon_id, detection_type)
        except RecorderError:
            # nothing durable happened, let the next event try again
            self.cooldowns.release(key)
            raise

        self.executor.submit(self._run_dispatch, device_id, beacon.beacon_id, detection_type)
        return incidence_id

    def _run_dispatch(self, device_id, detector_id, detection_type):
        with self.app.app_context():
            try:
                return self.dispatcher.dispatch(device_id, detector_id, detection_type)
            except DispatchError as exc:
                logger.error("Alert dispatch for %s/%s failed: %s", device_id, detector_id, exc)
            except Exception:
                logger.exception("Alert dispatch for %s/%s crashed", device_id, detector_id)
        return None
