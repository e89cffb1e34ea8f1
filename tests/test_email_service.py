"""Email gateway tests.

The live check only runs when SMTP is configured through the environment:
  SMTP_HOST, SMTP_PORT, SMTP_USER, SMTP_PASS
"""

import os
import smtplib

import pytest

from services.email_service import EmailService

LIVE_ENV_SET = all(os.getenv(k) for k in ["SMTP_HOST", "SMTP_PORT", "SMTP_USER", "SMTP_PASS"])


def test_dev_mode_counts_as_delivered(monkeypatch):
    for var in ("SMTP_HOST", "SMTP_PORT", "SMTP_USER", "SMTP_PASS"):
        monkeypatch.delenv(var, raising=False)
    service = EmailService()
    assert service.enabled is False
    assert service.send("alice@vu.edu.pk", "Your Signup OTP Code", "Your OTP code is 123456.") is True
    assert service.test_connection() == "SMTP not fully configured"


def test_smtp_failure_returns_false(monkeypatch):
    monkeypatch.setenv("SMTP_HOST", "smtp.invalid")
    monkeypatch.setenv("SMTP_PORT", "587")
    monkeypatch.setenv("SMTP_USER", "portal")
    monkeypatch.setenv("SMTP_PASS", "secret")
    service = EmailService()
    assert service.enabled is True

    def refuse(timeout):
        raise smtplib.SMTPConnectError(421, "unavailable")

    monkeypatch.setattr(service, "_connect", refuse)
    assert service.send("alice@vu.edu.pk", "Password Reset OTP", "Your code is 123456.") is False
    assert service.test_connection().startswith("failed")


@pytest.mark.skipif(not LIVE_ENV_SET, reason="Live SMTP credentials not set")
def test_connection_live():
    assert EmailService().test_connection() == "ok"


def test_connection_is_closed_when_login_fails(monkeypatch):
    monkeypatch.setenv("SMTP_HOST", "smtp.example.com")
    monkeypatch.setenv("SMTP_PORT", "587")
    monkeypatch.setenv("SMTP_USER", "portal")
    monkeypatch.setenv("SMTP_PASS", "wrong")
    monkeypatch.delenv("SMTP_SECURE", raising=False)
    opened = []

    class FakeSMTP:
        def __init__(self, host, port, timeout=None):
            self.closed = False
            opened.append(self)

        def starttls(self):
            pass

        def login(self, user, password):
            raise smtplib.SMTPAuthenticationError(535, b"bad credentials")

        def close(self):
            self.closed = True

    monkeypatch.setattr(smtplib, "SMTP", FakeSMTP)
    assert EmailService().send("alice@vu.edu.pk", "Password Reset OTP", "Your code is 123456.") is False
    assert len(opened) == 1
    assert opened[0].closed is True
