#!/usr/bin/env python3
# incidence_service.py
# Runs the telemetry/incidence API with the Socket.IO push channel.

import logging
import os
from datetime import datetime, timezone

from app import app
from extensions import socketio
from incidence_engine import shutdown_engine

logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger("incidence_service")


def main():
    host = os.environ.get("INCIDENCE_HOST", "0.0.0.0")
    port = int(os.environ.get("INCIDENCE_PORT", 5050))

    logger.info("=" * 46)
    logger.info("      Blind-spot Incidence Engine Started")
    logger.info("=" * 46)
    logger.info("Listening on %s:%s at %s UTC", host, port, datetime.now(timezone.utc).isoformat())

    try:
        socketio.run(app, host=host, port=port, allow_unsafe_werkzeug=True)
    except KeyboardInterrupt:
        logger.info("[IncidenceService] Stopped by user")
    finally:
        shutdown_engine(app, wait=False)


if __name__ == "__main__":
    main()
