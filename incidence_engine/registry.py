# incidence_engine/registry.py

import enum
import logging

from sqlalchemy.exc import SQLAlchemyError

from extensions import db
from models.beacon import Beacon
from models.device import Device
from incidence_engine.errors import RegistryLookupError

logger = logging.getLogger("incidence_engine.registry")


class EntityKind(enum.Enum):
    DEVICE = "device"
    BEACON = "beacon"


_MODELS = {
    EntityKind.DEVICE: Device,
    EntityKind.BEACON: Beacon,
}


def is_flagged(entity_id, kind: EntityKind) -> bool:
    """
    True when the device/beacon exists and is marked as a blind spot.
    Unknown ids are never blind spots. Store errors raise RegistryLookupError.
    """
    if not entity_id:
        return False

    model = _MODELS[kind]
    try:
        flag = (
            db.session.query(model.is_blind_spot)
            .filter(model.id == str(entity_id))
            .scalar()
        )
    except SQLAlchemyError as exc:
        db.session.rollback()
        raise RegistryLookupError(entity_id, kind.value, exc) from exc

    result = bool(flag)
    logger.debug("is_flagged(%s, %s) -> %s", entity_id, kind.value, result)
    return result


def describe_detector(device_id, beacon_id):
    """
    (sector, individual) used in alert messages. Missing rows give None.
    """
    try:
        sector = (
            db.session.query(Device.assigned_sector)
            .filter(Device.id == str(device_id))
            .scalar()
        )
        individual = None
        if beacon_id:
            individual = (
                db.session.query(Beacon.location)
                .filter(Beacon.id == str(beacon_id))
                .scalar()
            )
    except SQLAlchemyError as exc:
        db.session.rollback()
        raise RegistryLookupError(device_id, EntityKind.DEVICE.value, exc) from exc

    return sector, individual
