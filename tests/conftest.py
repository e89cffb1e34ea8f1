"""Shared fixtures. Environment is pinned here, before main/config are imported."""

import base64
import os
import re
import tempfile

import pytest

os.environ["ENCRYPTION_KEY"] = base64.b64encode(os.urandom(32)).decode()
os.environ["DATA_DIR"] = tempfile.mkdtemp(prefix="portal-test-data-")
os.environ["USE_MONGODB"] = "false"
os.environ["BCRYPT_ROUNDS"] = "4"

from fastapi.testclient import TestClient  # noqa: E402

from services.auth_service import CredentialService  # noqa: E402
from services.cipher import EmailCipher  # noqa: E402
from services.json_storage import JsonRecordStore  # noqa: E402
from services.session_service import SessionService  # noqa: E402

CODE_PATTERN = re.compile(r"\b(\d{6})\b")


class RecordingMailer:
    """Notification gateway double that keeps every message."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent = []

    def send(self, to_address, subject, body):
        self.sent.append({"to": to_address, "subject": subject, "body": body})
        return not self.fail

    def last_code(self, to_address=None):
        for message in reversed(self.sent):
            if to_address is None or message["to"] == to_address:
                return CODE_PATTERN.search(message["body"]).group(1)
        raise AssertionError(f"no OTP sent to {to_address}")


@pytest.fixture
def cipher():
    return EmailCipher(os.urandom(32))


@pytest.fixture
def store(tmp_path, cipher):
    return JsonRecordStore(tmp_path / "data", cipher)


@pytest.fixture
def mailer():
    return RecordingMailer()


@pytest.fixture
def sessions():
    return SessionService("test-secret", expire_minutes=5)


@pytest.fixture
def service(store, mailer, sessions):
    return CredentialService(store, mailer, sessions, allowed_domain="vu.edu.pk", bcrypt_rounds=4)


@pytest.fixture
def client(store, mailer, sessions):
    from main import create_app

    app = create_app(store=store, mailer=mailer, sessions=sessions, run_sweeper=False)
    with TestClient(app) as test_client:
        yield test_client
