from flask import Blueprint, request, jsonify, current_app
from datetime import datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

from extensions import db
from models.beacon import Beacon
from models.blindspot import BlindSpotCallHistory, BlindSpotSmsHistory
from models.device import Device
from routes.telemetry_routes import api_key_required

blindspot_bp = Blueprint("blindspot", __name__)


# ============================================================
# HELPERS
# ============================================================
def _local_tz():
    return ZoneInfo(current_app.config.get("BLINDSPOT_TIMEZONE") or "America/Santiago")


def _day_bounds_utc(day_str):
    """
    Local calendar day -> naive UTC [start, end) as stored in the DB.
    """
    day = datetime.strptime(day_str, "%Y-%m-%d").date()
    tz = _local_tz()
    start = datetime.combine(day, time.min, tzinfo=tz)
    end = start + timedelta(days=1)
    return (
        start.astimezone(timezone.utc).replace(tzinfo=None),
        end.astimezone(timezone.utc).replace(tzinfo=None),
    )


def _fmt_local(dt):
    if not dt:
        return None
    return dt.replace(tzinfo=timezone.utc).astimezone(_local_tz()).strftime("%Y-%m-%d %H:%M:%S")


def _parse_date_arg():
    day_str = (request.args.get("date") or "").strip()
    if not day_str:
        day_str = datetime.now(_local_tz()).strftime("%Y-%m-%d")
    return day_str, _day_bounds_utc(day_str)


# ============================================================
# API
# ============================================================
@blindspot_bp.route("/api/blindspot/intrusions", methods=["GET"])
@api_key_required
def list_intrusions():
    try:
        day_str, (start, end) = _parse_date_arg()
    except ValueError:
        return jsonify({"ok": False, "error": "date must be YYYY-MM-DD"}), 400

    rows = (
        db.session.query(BlindSpotCallHistory, Device.assigned_sector, Beacon.location)
        .outerjoin(Device, Device.id == BlindSpotCallHistory.device_id)
        .outerjoin(Beacon, Beacon.id == BlindSpotCallHistory.beacon_id)
        .filter(BlindSpotCallHistory.timestamp >= start, BlindSpotCallHistory.timestamp < end)
        .order_by(BlindSpotCallHistory.timestamp.asc())
        .all()
    )

    items = [
        {
            "device_id": call.device_id,
            "beacon_id": call.beacon_id,
            "timestamp": _fmt_local(call.timestamp),
            "call_state": call.call_state,
            "detection_type": call.detection_type,
            "assigned_sector": sector,
            "location": location,
        }
        for call, sector, location in rows
    ]
    return jsonify({"ok": True, "date": day_str, "items": items})


@blindspot_bp.route("/api/blindspot/sms-history", methods=["GET"])
@api_key_required
def list_sms_history():
    try:
        day_str, (start, end) = _parse_date_arg()
    except ValueError:
        return jsonify({"ok": False, "error": "date must be YYYY-MM-DD"}), 400

    rows = (
        BlindSpotSmsHistory.query
        .filter(BlindSpotSmsHistory.timestamp >= start, BlindSpotSmsHistory.timestamp < end)
        .order_by(BlindSpotSmsHistory.timestamp.asc())
        .all()
    )

    items = []
    for r in rows:
        d = r.to_dict()
        d["timestamp"] = _fmt_local(r.timestamp)
        items.append(d)
    return jsonify({"ok": True, "date": day_str, "items": items})
