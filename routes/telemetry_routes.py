from flask import Blueprint, request, jsonify, current_app
from functools import wraps
import hmac
import logging

from incidence_engine import get_engine
from incidence_engine.telemetry import TelemetryDecodeError, event_from_payload

telemetry_bp = Blueprint("telemetry", __name__)

logger = logging.getLogger("routes.telemetry")


# ============================================================
# AUTH HELPERS
# ============================================================
def api_key_required(fn):
    """
    Trackers/collectors authenticate with X-API-Key.
    No key configured means the endpoint is open (lab setups).
    """
    @wraps(fn)
    def wrapper(*a, **kw):
        expected = current_app.config.get("TELEMETRY_API_KEY")
        if expected:
            given = request.headers.get("X-API-Key", "")
            if not hmac.compare_digest(given, expected):
                return jsonify({"ok": False, "error": "Unauthorized"}), 401
        return fn(*a, **kw)
    return wrapper


# ============================================================
# INGEST
# ============================================================
@telemetry_bp.route("/api/telemetry", methods=["POST"])
@api_key_required
def ingest_telemetry():
    data = request.get_json(silent=True)
    if data is None:
        return jsonify({"ok": False, "error": "JSON body required"}), 400

    messages = data if isinstance(data, list) else [data]

    try:
        events = [event_from_payload(m) for m in messages]
    except TelemetryDecodeError as e:
        return jsonify({"ok": False, "error": str(e)}), 400

    engine = get_engine()
    created = []
    for event in events:
        created.extend(engine.on_telemetry_event(event))

    logger.info("Ingested %d telemetry message(s), %d new incidence(s)", len(events), len(created))
    return jsonify({"ok": True, "received": len(events), "incidences": created}), 202
