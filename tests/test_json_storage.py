import json
from datetime import timedelta

import pytest

from services import json_storage
from services.errors import StorageError
from services.json_storage import OTP_CODES_FILE, PENDING_USERS_FILE, USERS_FILE, JsonRecordStore
from services.models import NewAccount, NewOtpCode, utcnow
from services.storage import AdminSeed


def _account(name):
    return NewAccount(username=name, full_name=name.title(), email=f"{name}@vu.edu.pk", password_hash="hashed")


def test_records_survive_reload(tmp_path, cipher):
    store = JsonRecordStore(tmp_path, cipher)
    user = store.create_user(_account("alice"))
    store.update_user(user.id, is_verified=True)
    store.create_pending_user(_account("bob"))
    store.create_otp_code(NewOtpCode(email="bob@vu.edu.pk", code="123456", expires_at=utcnow() + timedelta(minutes=10)))

    reloaded = JsonRecordStore(tmp_path, cipher)
    assert reloaded.get_user_by_email("alice@vu.edu.pk").is_verified is True
    assert reloaded.get_pending_user_by_email("bob@vu.edu.pk").username == "bob"
    assert reloaded.get_valid_otp_code("bob@vu.edu.pk", "123456") is not None


def test_emails_are_encrypted_on_disk(tmp_path, cipher):
    store = JsonRecordStore(tmp_path, cipher)
    store.create_user(_account("alice"))
    raw = (tmp_path / USERS_FILE).read_text()
    assert "alice@vu.edu.pk" not in raw
    record = json.loads(raw)[0]
    assert record["email_encrypted"] is True
    assert cipher.decrypt(record["email"]) == "alice@vu.edu.pk"


def test_ciphertext_is_stable_across_saves(tmp_path, cipher):
    store = JsonRecordStore(tmp_path, cipher)
    user = store.create_user(_account("alice"))
    before = json.loads((tmp_path / USERS_FILE).read_text())[0]["email"]
    store.update_user(user.id, full_name="Alice Updated")
    after = json.loads((tmp_path / USERS_FILE).read_text())[0]["email"]
    assert before == after


def test_legacy_plaintext_records_load_and_get_encrypted(tmp_path, cipher):
    legacy = [{
        "id": 7,
        "username": "legacy",
        "full_name": "Legacy User",
        "email": "legacy@vu.edu.pk",
        "password_hash": "hashed",
        "role": "student",
        "is_verified": True,
        "created_at": "2024-01-01T00:00:00+00:00",
    }]
    (tmp_path / USERS_FILE).write_text(json.dumps(legacy))

    store = JsonRecordStore(tmp_path, cipher)
    assert store.get_user_by_email("legacy@vu.edu.pk").id == 7
    assert store.create_user(_account("alice")).id == 8

    raw = (tmp_path / USERS_FILE).read_text()
    assert "legacy@vu.edu.pk" not in raw


def test_missing_or_corrupt_files_start_empty(tmp_path, cipher):
    (tmp_path / USERS_FILE).write_text("{not json")
    (tmp_path / PENDING_USERS_FILE).write_text(json.dumps({"unexpected": "shape"}))
    store = JsonRecordStore(tmp_path, cipher)
    assert store.users == []
    assert store.pending_users == []
    assert store.otp_codes == []
    assert not (tmp_path / OTP_CODES_FILE).exists()


def test_mutation_rewrites_only_its_collection(tmp_path, cipher):
    (tmp_path / PENDING_USERS_FILE).write_text("{corrupt")
    store = JsonRecordStore(tmp_path, cipher)
    store.create_user(_account("alice"))
    assert (tmp_path / PENDING_USERS_FILE).read_text() == "{corrupt"


def test_admin_seed_runs_once_across_restarts(tmp_path, cipher):
    seed = AdminSeed(email="admin@vu.edu.pk", username="admin", full_name="Admin User", password_hash="pre-hashed")
    JsonRecordStore(tmp_path, cipher, admin_seed=seed)
    store = JsonRecordStore(tmp_path, cipher, admin_seed=seed)
    admins = [u for u in store.users if u.email == "admin@vu.edu.pk"]
    assert len(admins) == 1
    assert admins[0].role == "admin"
    assert admins[0].is_verified is True
    assert admins[0].password_hash == "pre-hashed"


def test_returned_records_are_copies(tmp_path, cipher):
    store = JsonRecordStore(tmp_path, cipher)
    user = store.create_user(_account("alice"))
    user.is_verified = True
    assert store.get_user(user.id).is_verified is False


def test_undecryptable_record_is_skipped(tmp_path, cipher):
    store = JsonRecordStore(tmp_path, cipher)
    store.create_user(_account("alice"))
    records = json.loads((tmp_path / USERS_FILE).read_text())
    records.append(dict(records[0], id=2, username="damaged", email="zz:zz"))
    (tmp_path / USERS_FILE).write_text(json.dumps(records))

    reloaded = JsonRecordStore(tmp_path, cipher)
    assert [u.username for u in reloaded.users] == ["alice"]


def test_failed_write_leaves_memory_unchanged(tmp_path, cipher, monkeypatch):
    store = JsonRecordStore(tmp_path, cipher)
    user = store.create_user(_account("alice"))
    otp = store.create_otp_code(NewOtpCode(email="alice@vu.edu.pk", code="123456", expires_at=utcnow() + timedelta(minutes=10)))

    def disk_full(src, dst):
        raise OSError("disk full")

    monkeypatch.setattr(json_storage.os, "replace", disk_full)
    with pytest.raises(StorageError):
        store.create_user(_account("ghost"))
    with pytest.raises(StorageError):
        store.update_user(user.id, is_verified=True)
    with pytest.raises(StorageError):
        store.create_pending_user(_account("bob"))
    with pytest.raises(StorageError):
        store.mark_otp_as_used(otp.id)

    assert store.get_user_by_email("ghost@vu.edu.pk") is None
    assert store.get_user(user.id).is_verified is False
    assert store.get_pending_user_by_email("bob@vu.edu.pk") is None
    assert store.get_valid_otp_code("alice@vu.edu.pk", "123456") is not None

    monkeypatch.undo()
    store.create_user(_account("carol"))
    reloaded = JsonRecordStore(tmp_path, cipher)
    assert reloaded.get_user_by_email("ghost@vu.edu.pk") is None
    assert [u.id for u in reloaded.users] == [1, 2]


def test_same_email_is_not_linkable_across_records(tmp_path, cipher):
    store = JsonRecordStore(tmp_path, cipher)
    store.create_pending_user(_account("alice"))
    store.create_otp_code(NewOtpCode(email="alice@vu.edu.pk", code="123456", expires_at=utcnow() + timedelta(minutes=10)))
    store.create_otp_code(NewOtpCode(email="alice@vu.edu.pk", code="654321", expires_at=utcnow() + timedelta(minutes=10)))

    pending = json.loads((tmp_path / PENDING_USERS_FILE).read_text())[0]["email"]
    codes = [r["email"] for r in json.loads((tmp_path / OTP_CODES_FILE).read_text())]
    assert len({pending, *codes}) == 3
