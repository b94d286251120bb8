"""
Alert dispatch for an accepted blind-spot detection.

Sequence (strictly sequential, fixed delays):

    in-flight gate (one sequence per pair), rate-limit gate
    -> modem probe, activation SMS, confirmation SMS, alert SMS fan-out
    -> incident email
    -> one SMS history row (sent | error), then the last-SMS marker

The modem leg and the email leg are isolated from each other: a dead modem
still lets the email go out. A single recipient failing is logged and
skipped; it only counts against the run if no recipient got the alert.
"""

import logging
import threading
import time
from datetime import datetime
from zoneinfo import ZoneInfo

import requests

from incidence_engine.errors import (
    DispatchError,
    IncidenceEngineError,
    RegistryLookupError,
)
from incidence_engine.cooldown import pair_key
from incidence_engine.email_notifier import render_incidence_body
from incidence_engine.recorder import DETECTION_SENSOR, detection_type_for
from incidence_engine.registry import describe_detector
from incidence_engine.sms_gateway import SMS_ERROR, SMS_SENT, log_sms_attempt

logger = logging.getLogger("incidence_engine.dispatcher")

UNKNOWN = "Unknown"

# failures we expect from the channels; anything else is a bug and still
# ends up in the history as an error before propagating
CHANNEL_ERRORS = (IncidenceEngineError, requests.RequestException)


def build_alert_message(detection_type, sector, individual):
    sector = sector or UNKNOWN
    if detection_type == DETECTION_SENSOR:
        return f"Alert! Unidentified presence detected in sector: {sector}"
    return f"Intrusion in sector: {sector} by individual {individual or UNKNOWN}"


class AlertDispatcher:

    def __init__(self, settings, modem, rate_limiter, email, sleep=time.sleep, clock=None):
        self.settings = settings
        self.modem = modem
        self.rate_limiter = rate_limiter
        self.email = email
        self._sleep = sleep
        self._clock = clock or (lambda: datetime.now(ZoneInfo(settings.timezone)))
        # one modem sequence per pair at a time; different pairs may overlap
        self._in_flight = set()
        self._in_flight_lock = threading.Lock()

    # ---------------------------------------------------------
    def dispatch(self, device_id, detector_id, detection_type=None):
        """
        Returns "sent", or None when the run was held back (a sequence for
        the same pair still in flight, or the rate limit).
        Raises DispatchError after writing the error row.
        """
        key = pair_key(device_id, detector_id)
        with self._in_flight_lock:
            if key in self._in_flight:
                logger.info(
                    "Alert sequence for %s/%s already in flight, skipping",
                    device_id, detector_id,
                )
                return None
            self._in_flight.add(key)

        try:
            return self._dispatch(device_id, detector_id, detection_type)
        finally:
            with self._in_flight_lock:
                self._in_flight.discard(key)

    def _dispatch(self, device_id, detector_id, detection_type):
        detection_type = detection_type or detection_type_for(detector_id)

        if not self.rate_limiter.can_send(device_id, detector_id):
            logger.info(
                "SMS for %s/%s held back: minimum interval not reached",
                device_id, detector_id,
            )
            return None

        try:
            message = self._message_for(device_id, detector_id, detection_type)
            failures = {}

            try:
                self._modem_leg(message)
            except CHANNEL_ERRORS as exc:
                logger.error("Modem leg failed for %s/%s: %s", device_id, detector_id, exc)
                failures["modem"] = exc

            try:
                body = render_incidence_body(message, self._clock())
                self.email.send(self.settings.email_subject, body)
            except CHANNEL_ERRORS as exc:
                logger.error("Email leg failed for %s/%s: %s", device_id, detector_id, exc)
                failures["email"] = exc

            if failures:
                detail = "; ".join(f"{leg}: {exc}" for leg, exc in failures.items())
                raise DispatchError(detail, failures)

        except Exception as exc:
            detail = exc.detail if isinstance(exc, DispatchError) else f"{type(exc).__name__}: {exc}"
            log_sms_attempt(device_id, detector_id, SMS_ERROR, detection_type, error=detail)
            logger.error("Dispatch for %s/%s recorded as error: %s", device_id, detector_id, detail)
            if isinstance(exc, DispatchError):
                raise
            raise DispatchError(detail, {"unexpected": exc}) from exc

        log_sms_attempt(device_id, detector_id, SMS_SENT, detection_type)
        self.rate_limiter.mark_sent(device_id, detector_id)
        logger.info("Dispatch for %s/%s completed", device_id, detector_id)
        return SMS_SENT

    # ---------------------------------------------------------
    def _message_for(self, device_id, detector_id, detection_type):
        try:
            sector, individual = describe_detector(
                device_id, None if detection_type == DETECTION_SENSOR else detector_id
            )
        except RegistryLookupError as exc:
            logger.error("Could not load alert context for %s/%s: %s", device_id, detector_id, exc)
            sector, individual = None, None
        return build_alert_message(detection_type, sector, individual)

    def _modem_leg(self, message):
        s = self.settings

        self.modem.check_connection()
        self._sleep(s.probe_delay)

        if s.activation:
            self.modem.send_sms(s.activation.number, s.activation.message)
            logger.info("Activation SMS sent")
            self._sleep(s.activation_delay)
        else:
            logger.warning("No activation SMS configured, skipping")

        if s.confirmation:
            self.modem.send_sms(s.confirmation.number, s.confirmation.message)
            logger.info("Confirmation SMS sent")
            self._sleep(s.confirmation_delay)
        else:
            logger.warning("No confirmation SMS configured, skipping")

        delivered, failed = self._fan_out(message)
        if failed and not delivered:
            raise DispatchError(f"No alert recipient could be reached ({len(failed)} failed)")

    def _fan_out(self, message):
        recipients = list(self.settings.alert_recipients)
        delivered, failed = [], []

        for i, number in enumerate(recipients):
            try:
                self.modem.send_sms(number, message)
                delivered.append(number)
                logger.info("Alert SMS sent to %s", number)
            except CHANNEL_ERRORS as exc:
                failed.append(number)
                logger.error("Alert SMS to %s failed: %s", number, exc)

            if i < len(recipients) - 1:
                self._sleep(self.settings.recipient_delay)

        logger.info("Alert fan-out: %d delivered, %d failed", len(delivered), len(failed))
        return delivered, failed
