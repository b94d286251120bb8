# incidence_engine/sms_gateway.py

import logging
from datetime import datetime

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from extensions import db
from models.blindspot import BlindSpotLastSms, BlindSpotSmsHistory

logger = logging.getLogger("incidence_engine.sms_gateway")

SMS_SENT = "sent"
SMS_ERROR = "error"


class SmsRateLimiter:
    """
    Persisted minimum interval between alert SMS runs per (device, beacon).
    Independent of the in-memory cooldown: this one survives restarts.
    """

    def __init__(self, min_interval_seconds=35, clock=datetime.utcnow):
        self.min_interval = float(min_interval_seconds)
        self._clock = clock

    def _marker(self, device_id, beacon_id):
        return BlindSpotLastSms.query.filter_by(
            device_id=str(device_id), beacon_id=str(beacon_id)
        ).first()

    def can_send(self, device_id, beacon_id) -> bool:
        marker = self._marker(device_id, beacon_id)
        if not marker:
            return True

        elapsed = (self._clock() - marker.last_sent_at).total_seconds()
        logger.debug(
            "Seconds since last SMS for %s/%s: %.0f", device_id, beacon_id, elapsed
        )
        return elapsed >= self.min_interval

    def mark_sent(self, device_id, beacon_id):
        now = self._clock()
        try:
            marker = self._marker(device_id, beacon_id)
            if marker:
                marker.last_sent_at = now
            else:
                db.session.add(BlindSpotLastSms(
                    device_id=str(device_id),
                    beacon_id=str(beacon_id),
                    last_sent_at=now,
                ))
            try:
                db.session.commit()
            except IntegrityError:
                # another writer inserted the marker between our read and commit
                db.session.rollback()
                self._marker(device_id, beacon_id).last_sent_at = now
                db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            raise
        logger.info("Last SMS marker updated for %s/%s", device_id, beacon_id)


def log_sms_attempt(device_id, beacon_id, state, detection_type, error=None, clock=datetime.utcnow):
    row = BlindSpotSmsHistory(
        device_id=str(device_id),
        beacon_id=str(beacon_id),
        timestamp=clock(),
        delivery_state=state,
        error=error,
        detection_type=detection_type,
    )
    try:
        db.session.add(row)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        raise
    return row.id
