"""Alert channel implementations.

Each channel delivers a monitor Alert to one sink and raises
AlertDeliveryError when it cannot; the monitor isolates channel failures
from each other.
"""

import json
import logging
import smtplib
import threading
from collections import deque
from email.message import EmailMessage
from typing import Any, Deque, Dict, List, Optional, Sequence

import requests

from dashcache.domain.errors import AlertDeliveryError
from dashcache.domain.interfaces.alert_channel import AlertChannel
from dashcache.domain.models.monitoring import Alert

logger = logging.getLogger(__name__)

ALERT_PREFIX = "[Athlete Dashboard Cache Alert]"
DEFAULT_WEBHOOK_TIMEOUT_SECONDS = 5.0
DEFAULT_SMTP_TIMEOUT_SECONDS = 10.0
MAX_ADMIN_NOTICES = 50


def format_stats(stats: Dict[str, Any]) -> str:
    return json.dumps(stats, indent=2, sort_keys=True, default=str)


class LogAlertChannel(AlertChannel):
    """Writes alerts to the application log."""

    name = "log"

    def __init__(self, alert_logger: Optional[logging.Logger] = None):
        self._logger = alert_logger or logger

    def send(self, alert: Alert) -> None:
        self._logger.warning(f"{ALERT_PREFIX} {alert.alert_type}: {alert.message}")


class WebhookAlertChannel(AlertChannel):
    """Posts alerts to an incoming-webhook URL (Slack-compatible payload)."""

    name = "webhook"

    def __init__(
        self,
        url: str,
        timeout: float = DEFAULT_WEBHOOK_TIMEOUT_SECONDS,
        session: Optional[requests.Session] = None,
    ):
        self.url = url
        self.timeout = timeout
        self._session = session or requests.Session()

    def build_payload(self, alert: Alert) -> Dict[str, str]:
        return {
            "text": (
                f"*Cache Performance Alert*\n\nType: {alert.alert_type}\nMessage: {alert.message}"
                f"\n\nStats:\n```{format_stats(alert.stats)}```"
            )
        }

    def send(self, alert: Alert) -> None:
        if not self.url:
            raise AlertDeliveryError(self.name, "no webhook URL configured")
        try:
            response = self._session.post(self.url, json=self.build_payload(alert), timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            raise AlertDeliveryError(self.name, str(e)) from e
        logger.debug(f"Webhook alert '{alert.alert_type}' delivered (status {response.status_code})")


class AdminNoticeChannel(AlertChannel):
    """Keeps recent alerts for an admin-facing surface to display."""

    name = "admin_notice"

    def __init__(self, max_notices: int = MAX_ADMIN_NOTICES):
        self._notices: Deque[Alert] = deque(maxlen=max_notices)
        self._lock = threading.Lock()

    def send(self, alert: Alert) -> None:
        with self._lock:
            self._notices.append(alert)

    def pending(self) -> List[Alert]:
        with self._lock:
            return list(self._notices)

    def drain(self) -> List[Alert]:
        """Returns and forgets every pending notice."""
        with self._lock:
            notices = list(self._notices)
            self._notices.clear()
        return notices


class EmailAlertChannel(AlertChannel):
    """Mails alerts to a list of recipients over SMTP."""

    name = "email"

    def __init__(
        self,
        recipients: Sequence[str],
        smtp_host: str = "localhost",
        smtp_port: int = 25,
        sender: str = "dashcache@localhost",
        timeout: float = DEFAULT_SMTP_TIMEOUT_SECONDS,
    ):
        self.recipients = list(recipients)
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.sender = sender
        self.timeout = timeout

    def build_message(self, alert: Alert, recipient: str) -> EmailMessage:
        message = EmailMessage()
        message["Subject"] = f"[Athlete Dashboard] Cache Alert: {alert.alert_type}"
        message["From"] = self.sender
        message["To"] = recipient
        message.set_content(
            f"Cache Performance Alert\n\nType: {alert.alert_type}\nMessage: {alert.message}"
            f"\n\nStats:\n{format_stats(alert.stats)}\n"
        )
        return message

    def send(self, alert: Alert) -> None:
        if not self.recipients:
            logger.debug("Email alert channel has no recipients; skipping.")
            return
        try:
            with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=self.timeout) as smtp:
                for recipient in self.recipients:
                    smtp.send_message(self.build_message(alert, recipient))
        except (smtplib.SMTPException, OSError) as e:
            raise AlertDeliveryError(self.name, str(e)) from e
