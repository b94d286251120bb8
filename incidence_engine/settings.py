"""
Engine settings.

Everything the incidence engine needs from ``app.config`` is read once,
here, into an immutable ``EngineSettings``. The dispatch delays are fixed
timings required by the cellular modem's own processing cadence; they are
not a backoff policy.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, List, Mapping, Optional, Tuple

logger = logging.getLogger("incidence_engine.settings")


DEFAULT_COOLDOWN_SECONDS = 35
DEFAULT_RSSI_THRESHOLD = -90
DEFAULT_MIN_SMS_INTERVAL = 35

DEFAULT_MODEM_URL = "http://192.168.8.1"
DEFAULT_MODEM_TIMEOUT = 15

PROBE_DELAY = 1.0
ACTIVATION_DELAY = 2.0
CONFIRMATION_DELAY = 5.0
RECIPIENT_DELAY = 10.0

EMAIL_SUBJECT = "Intrusion incidence detected"


@dataclass(frozen=True)
class SmsTarget:
    number: str
    message: str


@dataclass(frozen=True)
class EngineSettings:
    cooldown_seconds: float = DEFAULT_COOLDOWN_SECONDS
    rssi_threshold: float = DEFAULT_RSSI_THRESHOLD
    min_sms_interval: float = DEFAULT_MIN_SMS_INTERVAL

    modem_url: str = DEFAULT_MODEM_URL
    modem_host: Optional[str] = None
    modem_timeout: float = DEFAULT_MODEM_TIMEOUT

    probe_delay: float = PROBE_DELAY
    activation_delay: float = ACTIVATION_DELAY
    confirmation_delay: float = CONFIRMATION_DELAY
    recipient_delay: float = RECIPIENT_DELAY

    activation: Optional[SmsTarget] = None
    confirmation: Optional[SmsTarget] = None
    alert_recipients: Tuple[str, ...] = field(default_factory=tuple)

    email_provider: str = "smtp"
    email_sender: str = ""
    email_recipients: Tuple[str, ...] = field(default_factory=tuple)
    email_subject: str = EMAIL_SUBJECT
    email_timeout: float = 15
    sendgrid_api_key: Optional[str] = None
    smtp_host: Optional[str] = None
    smtp_port: int = 25
    smtp_security: str = "None"
    smtp_username: Optional[str] = None
    smtp_password: Optional[str] = None

    dispatch_workers: int = 4
    timezone: str = "America/Santiago"

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "EngineSettings":
        activation = _target(
            config.get("SMS_ACTIVATION_NUMBER"), config.get("SMS_ACTIVATION_MESSAGE")
        )
        confirmation = _target(
            config.get("SMS_CONFIRMATION_NUMBER"), config.get("SMS_CONFIRMATION_MESSAGE")
        )
        alerts = _as_list(config.get("SMS_ALERT_RECIPIENTS"))

        sms_file = config.get("BLINDSPOT_SMS_CONFIG_FILE")
        if sms_file:
            activation, confirmation, alerts = _load_sms_file(
                sms_file, activation, confirmation, alerts
            )

        api_key = config.get("SENDGRID_API_KEY") or None
        provider = (config.get("EMAIL_PROVIDER") or ("sendgrid" if api_key else "smtp")).lower()

        return cls(
            cooldown_seconds=float(config.get("BLINDSPOT_COOLDOWN_SECONDS", DEFAULT_COOLDOWN_SECONDS)),
            rssi_threshold=float(config.get("BLINDSPOT_RSSI_THRESHOLD", DEFAULT_RSSI_THRESHOLD)),
            min_sms_interval=float(config.get("BLINDSPOT_MIN_SMS_INTERVAL", DEFAULT_MIN_SMS_INTERVAL)),
            modem_url=(config.get("MODEM_URL") or DEFAULT_MODEM_URL).rstrip("/"),
            modem_host=config.get("MODEM_HOST") or None,
            modem_timeout=float(config.get("MODEM_TIMEOUT", DEFAULT_MODEM_TIMEOUT)),
            probe_delay=float(config.get("DISPATCH_PROBE_DELAY", PROBE_DELAY)),
            activation_delay=float(config.get("DISPATCH_ACTIVATION_DELAY", ACTIVATION_DELAY)),
            confirmation_delay=float(config.get("DISPATCH_CONFIRMATION_DELAY", CONFIRMATION_DELAY)),
            recipient_delay=float(config.get("DISPATCH_RECIPIENT_DELAY", RECIPIENT_DELAY)),
            activation=activation,
            confirmation=confirmation,
            alert_recipients=tuple(alerts),
            email_provider=provider,
            email_sender=config.get("EMAIL_SENDER") or "",
            email_recipients=tuple(_as_list(config.get("EMAIL_RECIPIENTS"))),
            email_subject=config.get("EMAIL_SUBJECT") or EMAIL_SUBJECT,
            email_timeout=float(config.get("EMAIL_TIMEOUT", 15)),
            sendgrid_api_key=api_key,
            smtp_host=config.get("SMTP_HOST") or None,
            smtp_port=int(config.get("SMTP_PORT", 25)),
            smtp_security=config.get("SMTP_SECURITY") or "None",
            smtp_username=config.get("SMTP_USERNAME") or None,
            smtp_password=config.get("SMTP_PASSWORD") or None,
            dispatch_workers=max(1, int(config.get("DISPATCH_WORKERS", 4))),
            timezone=config.get("BLINDSPOT_TIMEZONE") or "America/Santiago",
        )


def _as_list(value) -> List[str]:
    if not value:
        return []
    if isinstance(value, str):
        return [v.strip() for v in value.split(",") if v.strip()]
    return [str(v).strip() for v in value if str(v).strip()]


def _target(number, message) -> Optional[SmsTarget]:
    if not number:
        return None
    return SmsTarget(number=str(number), message=message or "")


def _load_sms_file(path, activation, confirmation, alerts):
    """
    Optional JSON file:
        {"activation": {"number": "...", "message": "..."},
         "confirmation": {"number": "...", "message": "..."},
         "alerts": ["+56...", ...]}
    Keys present in the file win over the environment.
    """
    with open(path, encoding="utf-8") as fh:
        data = json.load(fh)

    act = data.get("activation") or {}
    conf = data.get("confirmation") or {}

    activation = _target(act.get("number"), act.get("message")) or activation
    confirmation = _target(conf.get("number"), conf.get("message")) or confirmation
    if "alerts" in data:
        alerts = _as_list(data.get("alerts"))

    logger.info("Loaded SMS targets from %s (%d alert recipients)", path, len(alerts))
    return activation, confirmation, alerts
