"""
Decoded telemetry as handed over by ingestion.

Two payload shapes are accepted by ``event_from_payload``:

* the tracker platform's flattened message
  (``device.name`` / ``ident``, ``ble.beacons``, ``timestamp``), where
  ``ble.beacons`` may be a list or a JSON-encoded string of
  ``{"id", "rssi", "type", "mac"}``;
* the plain shape (``reporting_device_id``, ``beacons`` of
  ``{"beacon_id", "signal_strength", "beacon_kind", "mac_address"}``,
  ``event_timestamp``).
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple


class TelemetryDecodeError(ValueError):
    pass


@dataclass(frozen=True)
class BeaconSighting:
    beacon_id: str
    signal_strength: float
    beacon_kind: Optional[str] = None
    mac_address: Optional[str] = None


@dataclass(frozen=True)
class TelemetryEvent:
    reporting_device_id: str
    beacons: Tuple[BeaconSighting, ...] = field(default_factory=tuple)
    event_timestamp: Optional[float] = None


def _first(data: Dict[str, Any], *keys):
    for k in keys:
        v = data.get(k)
        if v is not None and v != "":
            return v
    return None


def _sighting(raw: Dict[str, Any]) -> BeaconSighting:
    if not isinstance(raw, dict):
        raise TelemetryDecodeError(f"Beacon entry must be an object, got {type(raw).__name__}")

    beacon_id = _first(raw, "beacon_id", "id")
    rssi = _first(raw, "signal_strength", "rssi")
    if beacon_id is None or rssi is None:
        raise TelemetryDecodeError(f"Beacon entry without id/rssi: {raw}")
    try:
        rssi = float(rssi)
    except (TypeError, ValueError) as exc:
        raise TelemetryDecodeError(f"Invalid rssi {rssi!r} for beacon {beacon_id}") from exc
    if not math.isfinite(rssi):
        raise TelemetryDecodeError(f"Invalid rssi {rssi!r} for beacon {beacon_id}")

    kind = _first(raw, "beacon_kind", "type")
    mac = _first(raw, "mac_address", "mac")
    return BeaconSighting(
        beacon_id=str(beacon_id),
        signal_strength=rssi,
        beacon_kind=str(kind) if kind is not None else None,
        mac_address=str(mac) if mac is not None else None,
    )


def parse_beacons(value) -> List[BeaconSighting]:
    if value is None or value == "":
        return []
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError as exc:
            raise TelemetryDecodeError(f"ble.beacons is not valid JSON: {exc}") from exc
    if not isinstance(value, list):
        raise TelemetryDecodeError("ble.beacons must be a list")
    return [_sighting(b) for b in value]


def event_from_payload(data: Dict[str, Any]) -> TelemetryEvent:
    if not isinstance(data, dict):
        raise TelemetryDecodeError("Telemetry message must be an object")

    device = _first(data, "reporting_device_id", "device.name", "ident")
    if device is None:
        raise TelemetryDecodeError("Telemetry message without a device identifier")

    beacons = parse_beacons(
        data["beacons"] if "beacons" in data else data.get("ble.beacons")
    )

    ts = _first(data, "event_timestamp", "timestamp")
    if ts is not None:
        try:
            ts = float(ts)
        except (TypeError, ValueError) as exc:
            raise TelemetryDecodeError(f"Invalid timestamp {ts!r}") from exc

    return TelemetryEvent(
        reporting_device_id=str(device),
        beacons=tuple(beacons),
        event_timestamp=ts,
    )
