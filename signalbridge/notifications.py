# signalbridge/notifications.py
"""Operator e-mail alerts for failed trade executions."""

import logging
import os
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Mapping, Optional

logger = logging.getLogger(__name__)


class EmailNotifier:
    """Sends alerts via SMTP. Disabled unless SMTP credentials and ALERT_EMAIL_TO are set."""

    def __init__(self, env: Optional[Mapping[str, str]] = None):
        env = os.environ if env is None else env
        self.smtp_server = env.get("SMTP_SERVER", "smtp.gmail.com")
        self.smtp_port = int(env.get("SMTP_PORT", "587"))
        self.smtp_username = env.get("SMTP_USERNAME", "")
        self.smtp_password = env.get("SMTP_PASSWORD", "")
        self.smtp_from_email = env.get("SMTP_FROM_EMAIL", self.smtp_username)
        self.alert_to = env.get("ALERT_EMAIL_TO", "")
        self.enabled = bool(self.smtp_username and self.smtp_password and self.alert_to)

        if not self.enabled:
            logger.info("Email alerts disabled: SMTP_USERNAME, SMTP_PASSWORD or ALERT_EMAIL_TO not configured")

    def send_alert(self, subject: str, message: str) -> bool:
        """
        Send an operator alert.

        Args:
            subject: Short summary, prefixed with [signalbridge]
            message: Plain text body

        Returns:
            True if the e-mail was handed to the SMTP server, False otherwise
        """
        if not self.enabled:
            logger.debug(f"Alert not e-mailed (SMTP not configured): {subject}")
            return False

        msg = MIMEMultipart("alternative")
        msg["Subject"] = f"[signalbridge] {subject}"
        msg["From"] = self.smtp_from_email
        msg["To"] = self.alert_to
        msg.attach(MIMEText(f"{message}\n\n---\nsignalbridge alert\n", "plain"))

        try:
            with smtplib.SMTP(self.smtp_server, self.smtp_port, timeout=10) as server:
                server.starttls()
                server.login(self.smtp_username, self.smtp_password)
                server.sendmail(self.smtp_from_email, self.alert_to, msg.as_string())
        except smtplib.SMTPAuthenticationError:
            logger.error("SMTP authentication failed. Check SMTP_USERNAME and SMTP_PASSWORD")
            return False
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"SMTP error sending alert '{subject}': {e}")
            return False

        logger.info(f"Alert e-mailed to {self.alert_to}: {subject}")
        return True
