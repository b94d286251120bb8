"""
Client for the cellular modem's web management interface (HiLink style).

Every SMS needs a fresh SessionID/token pair from ``SesTokInfo``; the
pair is single use on this firmware, so nothing is cached between calls.
All vendor XML handling lives in ``parse_session_info`` and
``parse_send_result``; callers only see ``ModemSession`` and exceptions.
No retries happen here.
"""

import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional
from xml.sax.saxutils import escape

import requests

from incidence_engine.errors import (
    DeviceProtocolError,
    ModemUnreachableError,
    ProtocolError,
)

logger = logging.getLogger("incidence_engine.modem")

SESSION_PATH = "/api/webserver/SesTokInfo"
SEND_SMS_PATH = "/api/sms/send-sms"
STATUS_PATH = "/api/monitoring/status"

SESSION_PREFIX = "SessionID="


@dataclass(frozen=True)
class ModemSession:
    session_id: str
    token: str


@dataclass(frozen=True)
class SendResult:
    ok: bool
    code: Optional[str] = None
    message: Optional[str] = None


# ---------------------------------------------------------------------
# Vendor XML
# ---------------------------------------------------------------------
def _parse_xml(body):
    if body is None:
        raise ET.ParseError("empty body")
    if isinstance(body, str):
        body = body.encode("utf-8")
    return ET.fromstring(body.strip())


def _find_text(root, tag):
    if root.tag == tag:
        return root.text
    return root.findtext(f".//{tag}")


def parse_session_info(body) -> ModemSession:
    try:
        root = _parse_xml(body)
    except ET.ParseError as exc:
        raise ProtocolError(f"Unreadable session response: {exc}") from exc

    ses = _find_text(root, "SesInfo")
    tok = _find_text(root, "TokInfo")
    if not ses or not tok:
        raise ProtocolError("Session response is missing SesInfo/TokInfo")

    ses = ses.strip()
    if ses.startswith(SESSION_PREFIX):
        ses = ses[len(SESSION_PREFIX):]
    return ModemSession(session_id=ses, token=tok.strip())


def parse_send_result(body) -> SendResult:
    try:
        root = _parse_xml(body)
    except ET.ParseError:
        return SendResult(ok=False)

    if root.tag == "response" and (root.text or "").strip() == "OK":
        return SendResult(ok=True)

    error = root if root.tag == "error" else root.find(".//error")
    if error is not None:
        code = (error.findtext("code") or "").strip() or None
        message = (error.findtext("message") or "").strip() or None
        return SendResult(ok=False, code=code, message=message)

    return SendResult(ok=False)


def build_sms_payload(phone, message, sent_at: datetime) -> str:
    return (
        '<?xml version="1.0" encoding="UTF-8"?>\n'
        "<request>\n"
        "  <Index>-1</Index>\n"
        "  <Phones>\n"
        f"    <Phone>{escape(str(phone))}</Phone>\n"
        "  </Phones>\n"
        "  <Sca></Sca>\n"
        f"  <Content>{escape(message)}</Content>\n"
        f"  <Length>{len(message)}</Length>\n"
        "  <Reserved>1</Reserved>\n"
        f"  <Date>{sent_at.strftime('%Y-%m-%d %H:%M:%S')}</Date>\n"
        "</request>"
    )


def _utcnow():
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------
class ModemClient:

    def __init__(self, base_url, host=None, timeout=15, session=None, clock=_utcnow):
        self.base_url = base_url.rstrip("/")
        self.host = host
        self.timeout = timeout
        self._http = session or requests
        self._clock = clock

    def _basic_headers(self):
        return {
            "Accept": "*/*",
            "X-Requested-With": "XMLHttpRequest",
            "Cache-Control": "no-cache",
            "Pragma": "no-cache",
        }

    # ---------------------------------------------------------
    def check_connection(self) -> bool:
        url = f"{self.base_url}{STATUS_PATH}"
        try:
            resp = self._http.get(url, headers=self._basic_headers(), timeout=self.timeout)
            resp.raise_for_status()
        except requests.RequestException as exc:
            logger.error("Modem unreachable at %s: %s", self.base_url, exc)
            raise ModemUnreachableError(f"Could not connect to modem at {self.base_url}: {exc}") from exc

        if not resp.content:
            raise ModemUnreachableError(f"Empty status response from modem at {self.base_url}")

        logger.info("Modem connection established (%s)", self.base_url)
        return True

    # ---------------------------------------------------------
    def get_session(self) -> ModemSession:
        url = f"{self.base_url}{SESSION_PATH}"
        try:
            resp = self._http.get(url, headers=self._basic_headers(), timeout=self.timeout)
            resp.raise_for_status()
        except requests.RequestException as exc:
            raise ProtocolError(f"Could not fetch modem session: {exc}") from exc

        return parse_session_info(resp.content)

    # ---------------------------------------------------------
    def send_sms(self, phone, message) -> bool:
        ses = self.get_session()
        logger.debug(
            "Modem credentials obtained (session=%s..., token=%s...)",
            ses.session_id[:5], ses.token[:5],
        )

        headers = self._basic_headers()
        headers.update({
            "Accept-Encoding": "gzip, deflate",
            "Connection": "keep-alive",
            "Content-Type": "application/x-www-form-urlencoded; charset=UTF-8",
            "Cookie": f"{SESSION_PREFIX}{ses.session_id}",
            "Origin": self.base_url,
            "Referer": f"{self.base_url}/html/smsinbox.html",
            "__RequestVerificationToken": ses.token,
        })
        if self.host:
            headers["Host"] = self.host

        payload = build_sms_payload(phone, message, self._clock())

        try:
            resp = self._http.post(
                f"{self.base_url}{SEND_SMS_PATH}",
                data=payload.encode("utf-8"),
                headers=headers,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise DeviceProtocolError(message=f"transport error: {exc}") from exc

        if resp.status_code >= 400:
            raise DeviceProtocolError(code=str(resp.status_code), message="HTTP error from modem")

        result = parse_send_result(resp.content)
        if not result.ok:
            logger.warning(
                "Modem rejected SMS to %s (code=%s, message=%s)",
                phone, result.code, result.message,
            )
            raise DeviceProtocolError(code=result.code, message=result.message)

        logger.info("SMS sent to %s", phone)
        return True
