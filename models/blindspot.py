# models/blindspot.py
from extensions import db
from datetime import datetime


class BlindSpotIncidence(db.Model):
    __tablename__ = "blindspot_incidences"

    id = db.Column(db.Integer, primary_key=True)

    device_id = db.Column(db.String(64), nullable=False, index=True)
    beacon_id = db.Column(db.String(64), nullable=False, index=True)

    entry_time = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)
    # closed by the occupancy tracker, never by the incidence engine
    exit_time = db.Column(db.DateTime)

    detection_type = db.Column(db.String(16), nullable=False, default="beacon")

    def to_dict(self):
        return {
            "id": self.id,
            "device_id": self.device_id,
            "beacon_id": self.beacon_id,
            "entry_time": self.entry_time.isoformat() if self.entry_time else None,
            "exit_time": self.exit_time.isoformat() if self.exit_time else None,
            "detection_type": self.detection_type,
        }


class BlindSpotCallHistory(db.Model):
    __tablename__ = "blindspot_call_history"

    id = db.Column(db.Integer, primary_key=True)

    device_id = db.Column(db.String(64), nullable=False, index=True)
    beacon_id = db.Column(db.String(64), nullable=False)

    timestamp = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)
    call_state = db.Column(db.String(16), nullable=False, default="initiated")
    detection_type = db.Column(db.String(16), nullable=False, default="beacon")

    def to_dict(self):
        return {
            "id": self.id,
            "device_id": self.device_id,
            "beacon_id": self.beacon_id,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "call_state": self.call_state,
            "detection_type": self.detection_type,
        }


class BlindSpotSmsHistory(db.Model):
    __tablename__ = "blindspot_sms_history"

    id = db.Column(db.Integer, primary_key=True)

    device_id = db.Column(db.String(64), nullable=False, index=True)
    beacon_id = db.Column(db.String(64), nullable=False)

    timestamp = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)
    delivery_state = db.Column(db.String(16), nullable=False)  # sent | error
    error = db.Column(db.Text)
    detection_type = db.Column(db.String(16), nullable=False, default="beacon")

    def to_dict(self):
        return {
            "id": self.id,
            "device_id": self.device_id,
            "beacon_id": self.beacon_id,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "delivery_state": self.delivery_state,
            "error": self.error,
            "detection_type": self.detection_type,
        }


class BlindSpotLastSms(db.Model):
    __tablename__ = "blindspot_last_sms"

    id = db.Column(db.Integer, primary_key=True)

    device_id = db.Column(db.String(64), nullable=False)
    beacon_id = db.Column(db.String(64), nullable=False)
    last_sent_at = db.Column(db.DateTime, nullable=False)

    __table_args__ = (
        db.UniqueConstraint("device_id", "beacon_id", name="uq_blindspot_last_sms_pair"),
    )
