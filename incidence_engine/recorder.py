# incidence_engine/recorder.py

import logging
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError

from extensions import db
from models.blindspot import BlindSpotIncidence, BlindSpotCallHistory
from incidence_engine.errors import RecorderError

logger = logging.getLogger("incidence_engine.recorder")

SENSOR_DETECTOR_ID = "SENSOR_DIN2"

DETECTION_BEACON = "beacon"
DETECTION_SENSOR = "sensor"

CALL_STATE_INITIATED = "initiated"

NEW_INCIDENCE_EVENT = "new_incidence"


def detection_type_for(detector_id) -> str:
    return DETECTION_SENSOR if detector_id == SENSOR_DETECTOR_ID else DETECTION_BEACON


class IncidenceRecorder:
    """
    Writes the incidence row and its call-history row in one transaction.
    `emit` (optional) is called with (event_name, payload) after commit.
    """

    def __init__(self, emit=None, clock=datetime.utcnow):
        self._emit = emit
        self._clock = clock

    def record(self, device_id, detector_id, detection_type=None):
        detection_type = detection_type or detection_type_for(detector_id)
        now = self._clock()

        try:
            incidence = BlindSpotIncidence(
                device_id=str(device_id),
                beacon_id=str(detector_id),
                entry_time=now,
                detection_type=detection_type,
            )
            call = BlindSpotCallHistory(
                device_id=str(device_id),
                beacon_id=str(detector_id),
                timestamp=now,
                call_state=CALL_STATE_INITIATED,
                detection_type=detection_type,
            )
            db.session.add(incidence)
            db.session.add(call)
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            logger.error(
                "Could not record incidence %s/%s: %s", device_id, detector_id, exc
            )
            raise RecorderError(
                f"Could not record incidence for {device_id}/{detector_id}: {exc}"
            ) from exc

        logger.info(
            "Incidence %s recorded: device=%s detector=%s type=%s",
            incidence.id, device_id, detector_id, detection_type,
        )
        self._notify(incidence)
        return incidence.id

    def _notify(self, incidence):
        if not self._emit:
            return
        payload = {
            "message": "New incidence recorded",
            "incidence_id": incidence.id,
            "device_id": incidence.device_id,
            "detector_id": incidence.beacon_id,
            "detection_type": incidence.detection_type,
            "timestamp": incidence.entry_time.isoformat(),
        }
        try:
            self._emit(NEW_INCIDENCE_EVENT, payload)
        except Exception:
            logger.warning("Live push of incidence %s failed", incidence.id, exc_info=True)
