from extensions import db
from datetime import datetime


class Beacon(db.Model):
    __tablename__ = "beacons"

    id = db.Column(db.String(64), primary_key=True)

    mac = db.Column(db.String(32), index=True)
    # who/what the tag is assigned to; shown in intrusion alerts
    location = db.Column(db.String(255))
    is_blind_spot = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(
        db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    def to_dict(self):
        return {
            "id": self.id,
            "mac": self.mac,
            "location": self.location,
            "is_blind_spot": bool(self.is_blind_spot),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
