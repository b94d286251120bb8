# incidence_engine/email_notifier.py

import logging
import os
import smtplib
from email.mime.text import MIMEText

import requests
from jinja2 import Environment, FileSystemLoader

from incidence_engine.errors import EmailDeliveryError

logger = logging.getLogger("incidence_engine.email")

# -------------------------------------------------------------------
# TEMPLATES
# -------------------------------------------------------------------
TEMPLATE_DIR = os.path.join(os.path.dirname(__file__), "templates")
env = Environment(loader=FileSystemLoader(TEMPLATE_DIR), autoescape=False)

SENDGRID_URL = "https://api.sendgrid.com/v3/mail/send"


def render_incidence_body(message, occurred_at):
    return env.get_template("incidence_alert.txt").render(
        message=message,
        occurred_at=occurred_at.strftime("%Y-%m-%d %H:%M:%S"),
    )


class EmailNotifier:
    """
    Plain-text incident mail to the fixed distribution list.
    provider: "sendgrid" (HTTP API) or "smtp".
    """

    def __init__(self, settings, http=None, smtp_factory=None):
        self.settings = settings
        self._http = http or requests
        self._smtp_factory = smtp_factory

    @property
    def recipients(self):
        return list(self.settings.email_recipients)

    def send(self, subject, body):
        to_list = self.recipients
        if not to_list:
            raise EmailDeliveryError("No email recipients configured")
        if not self.settings.email_sender:
            raise EmailDeliveryError("No email sender configured")

        if self.settings.email_provider == "sendgrid":
            self._send_sendgrid(to_list, subject, body)
        else:
            self._send_smtp(to_list, subject, body)

        logger.info("Incident email sent: %s -> %s", subject, to_list)
        return True

    # ---------------------------------------------------------
    def _send_sendgrid(self, to_list, subject, body):
        if not self.settings.sendgrid_api_key:
            raise EmailDeliveryError("SENDGRID_API_KEY is not set")

        data = {
            "personalizations": [{"to": [{"email": e} for e in to_list]}],
            "from": {"email": self.settings.email_sender},
            "subject": subject,
            "content": [{"type": "text/plain", "value": body}],
        }
        try:
            resp = self._http.post(
                SENDGRID_URL,
                json=data,
                headers={
                    "Authorization": f"Bearer {self.settings.sendgrid_api_key}",
                    "Content-Type": "application/json",
                },
                timeout=self.settings.email_timeout,
            )
            resp.raise_for_status()
        except requests.RequestException as exc:
            detail = getattr(getattr(exc, "response", None), "text", "") or ""
            logger.error("SendGrid delivery failed: %s %s", exc, detail)
            raise EmailDeliveryError(f"SendGrid delivery failed: {exc}") from exc

    # ---------------------------------------------------------
    def _connect_smtp(self):
        cfg = self.settings
        if self._smtp_factory:
            return self._smtp_factory(cfg)

        security = (cfg.smtp_security or "None").upper()
        if security == "SSL":
            server = smtplib.SMTP_SSL(cfg.smtp_host, cfg.smtp_port, timeout=cfg.email_timeout)
        else:
            server = smtplib.SMTP(cfg.smtp_host, cfg.smtp_port, timeout=cfg.email_timeout)
            try:
                server.ehlo()
                if security == "TLS":
                    server.starttls()
            except (smtplib.SMTPException, OSError):
                server.close()
                raise
        return server

    def _send_smtp(self, to_list, subject, body):
        cfg = self.settings
        if not cfg.smtp_host:
            raise EmailDeliveryError("SMTP_HOST is not set")

        msg = MIMEText(body, "plain", "utf-8")
        msg["From"] = cfg.email_sender
        msg["To"] = ", ".join(to_list)
        msg["Subject"] = subject

        try:
            server = self._connect_smtp()
            try:
                if cfg.smtp_username and cfg.smtp_password:
                    server.login(cfg.smtp_username, cfg.smtp_password)
                server.sendmail(cfg.email_sender, to_list, msg.as_string())
            finally:
                server.quit()
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("SMTP delivery failed: %s", exc)
            raise EmailDeliveryError(f"SMTP delivery failed: {exc}") from exc
