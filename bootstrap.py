#!/usr/bin/env python3
"""
Blind-spot registry – Bootstrap Script
--------------------------------------

This script initializes:
 - Database tables (when migrations are not in use)
 - Tracking devices and their blind-spot flag
 - Beacons and their blind-spot flag

Input is a JSON file:

    {
      "devices": [{"id": "864...", "name": "Gate 3", "assigned_sector": "Cold room A",
                   "is_blind_spot": true}],
      "beacons": [{"id": "7cd9...", "mac": "7C:D9:...", "location": "J. Perez",
                   "is_blind_spot": true}]
    }

Idempotent: existing rows get their fields updated, nothing is deleted.
"""

import argparse
import json

from app import app
from extensions import db
from models.beacon import Beacon
from models.device import Device


# ----------------------------------------------------
# Utility helpers
# ----------------------------------------------------
def upsert(model, key, fields):
    """Return (instance, created) after applying fields."""
    instance = db.session.get(model, key)
    created = instance is None
    if created:
        instance = model(id=key)
        db.session.add(instance)
    for name, value in fields.items():
        setattr(instance, name, value)
    return instance, created


# ----------------------------------------------------
# 1. Devices
# ----------------------------------------------------
def seed_devices(rows):
    print("\n[+] Seeding devices:")
    for row in rows:
        dev_id = str(row["id"])
        _, created = upsert(Device, dev_id, {
            "name": row.get("name"),
            "assigned_sector": row.get("assigned_sector"),
            "is_blind_spot": bool(row.get("is_blind_spot", False)),
        })
        print(f"   - {dev_id} ({'created' if created else 'updated'})")


# ----------------------------------------------------
# 2. Beacons
# ----------------------------------------------------
def seed_beacons(rows):
    print("\n[+] Seeding beacons:")
    for row in rows:
        beacon_id = str(row["id"])
        _, created = upsert(Beacon, beacon_id, {
            "mac": row.get("mac"),
            "location": row.get("location"),
            "is_blind_spot": bool(row.get("is_blind_spot", False)),
        })
        print(f"   - {beacon_id} ({'created' if created else 'updated'})")


def run(path=None, create_tables=True):
    with app.app_context():
        if create_tables:
            db.create_all()
            print("[+] Tables ensured")

        if path:
            with open(path, encoding="utf-8") as fh:
                data = json.load(fh)
            seed_devices(data.get("devices", []))
            seed_beacons(data.get("beacons", []))

        db.session.commit()
        print("\n[✓] Bootstrap complete")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Seed the blind-spot registry")
    parser.add_argument("registry", nargs="?", help="JSON file with devices/beacons")
    parser.add_argument("--no-create", action="store_true", help="skip db.create_all()")
    args = parser.parse_args()
    run(args.registry, create_tables=not args.no_create)
