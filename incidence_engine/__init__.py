# incidence_engine/__init__.py
#
# Blind-spot incidence detection and alert dispatch.

import logging
from concurrent.futures import ThreadPoolExecutor

from flask import current_app

from incidence_engine.cooldown import CooldownTracker
from incidence_engine.detector import IncidenceDetector
from incidence_engine.dispatcher import AlertDispatcher
from incidence_engine.email_notifier import EmailNotifier
from incidence_engine.modem import ModemClient
from incidence_engine.recorder import IncidenceRecorder
from incidence_engine.settings import EngineSettings
from incidence_engine.sms_gateway import SmsRateLimiter

logger = logging.getLogger("incidence_engine")

EXTENSION_KEY = "incidence_engine"


def init_engine(app, *, modem=None, email=None, executor=None, emit=None, sleep=None):
    """
    Build the engine from app.config and attach it to the app.
    Keyword overrides swap collaborators (tests, alternative transports).
    """
    settings = EngineSettings.from_config(app.config)

    modem = modem or ModemClient(
        settings.modem_url,
        host=settings.modem_host,
        timeout=settings.modem_timeout,
    )
    email = email or EmailNotifier(settings)
    executor = executor or ThreadPoolExecutor(
        max_workers=settings.dispatch_workers,
        thread_name_prefix="incidence-dispatch",
    )

    dispatcher_kwargs = {}
    if sleep is not None:
        dispatcher_kwargs["sleep"] = sleep

    detector = IncidenceDetector(
        app=app,
        settings=settings,
        cooldowns=CooldownTracker(settings.cooldown_seconds),
        recorder=IncidenceRecorder(emit=emit),
        dispatcher=AlertDispatcher(
            settings,
            modem=modem,
            rate_limiter=SmsRateLimiter(settings.min_sms_interval),
            email=email,
            **dispatcher_kwargs,
        ),
        executor=executor,
    )

    app.extensions[EXTENSION_KEY] = detector
    logger.info(
        "Incidence engine ready (cooldown=%ss, rssi>%s, sms interval=%ss, modem=%s)",
        settings.cooldown_seconds, settings.rssi_threshold,
        settings.min_sms_interval, settings.modem_url,
    )
    return detector


def get_engine() -> IncidenceDetector:
    return current_app.extensions[EXTENSION_KEY]


def shutdown_engine(app, wait=True):
    detector = app.extensions.pop(EXTENSION_KEY, None)
    if not detector:
        return
    detector.cooldowns.clear()
    shutdown = getattr(detector.executor, "shutdown", None)
    if shutdown:
        shutdown(wait=wait)
