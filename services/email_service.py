"""Minimal Email Service for OTP delivery.

If SMTP environment variables are not configured, falls back to dev mode and
logs the message instead of sending an email.

Env vars:
  SMTP_HOST, SMTP_PORT, SMTP_USER, SMTP_PASS, SMTP_FROM, SMTP_SECURE
"""
import logging
import os
import smtplib
from email.mime.text import MIMEText
from typing import Optional

logger = logging.getLogger(__name__)


class EmailService:
    """Notification gateway: ``send(to, subject, body) -> bool``, no retries."""

    def __init__(self):
        self.host = os.getenv("SMTP_HOST")
        self.port = int(os.getenv("SMTP_PORT", "0") or 0)
        self.user = os.getenv("SMTP_USER")
        self.password = os.getenv("SMTP_PASS")
        self.sender = os.getenv("SMTP_FROM", self.user or "noreply@example.com")
        self.secure = os.getenv("SMTP_SECURE", "false").lower() == "true"

    @property
    def enabled(self) -> bool:
        return all([self.host, self.port, self.user, self.password, self.sender]) and self.port > 0

    def _connect(self, timeout: int) -> smtplib.SMTP:
        if self.secure:
            server = smtplib.SMTP_SSL(self.host, self.port, timeout=timeout)
        else:
            server = smtplib.SMTP(self.host, self.port, timeout=timeout)
        try:
            if not self.secure:
                server.starttls()
            server.login(self.user, self.password)
        except (smtplib.SMTPException, OSError):
            server.close()
            raise
        return server

    def send(self, to_address: str, subject: str, body: str) -> bool:
        """Deliver a plain-text email. Returns False if SMTP delivery failed.

        In dev mode the message is logged and counts as delivered."""
        if not self.enabled:
            logger.info("[EmailService] Dev mode (no SMTP configured). To %s | %s\n%s", to_address, subject, body)
            return True
        try:
            msg = MIMEText(body, "plain")
            msg["Subject"] = subject
            msg["From"] = self.sender
            msg["To"] = to_address
            with self._connect(timeout=15) as server:
                server.send_message(msg)
            logger.info("[EmailService] Sent '%s' email to %s", subject, to_address)
            return True
        except (smtplib.SMTPException, OSError) as e:
            logger.error("[EmailService] Failed sending email to %s: %s", to_address, e)
            return False

    def test_connection(self) -> Optional[str]:
        """Attempt a lightweight SMTP connection to verify credentials."""
        if not self.enabled:
            return "SMTP not fully configured"
        try:
            with self._connect(timeout=10):
                pass
            return "ok"
        except (smtplib.SMTPException, OSError) as e:
            return f"failed: {e}"
