from datetime import timedelta

import mongomock

from services.json_storage import JsonRecordStore
from services.models import NewAccount, NewOtpCode, utcnow
from services.mongo_storage import MongoRecordStore


def _account(name):
    return NewAccount(username=name, full_name=name.title(), email=f"{name}@vu.edu.pk", password_hash="hashed")


def test_unreachable_server_latches_to_fallback(tmp_path, cipher):
    fallback = JsonRecordStore(tmp_path, cipher)
    store = MongoRecordStore(fallback, cipher, uri="mongodb://127.0.0.1:1/", timeout_ms=100)
    assert store.connected is False

    user = store.create_user(_account("alice"))
    assert fallback.get_user(user.id).username == "alice"
    assert store.get_user_by_email("alice@vu.edu.pk").id == user.id
    store.create_otp_code(NewOtpCode(email="alice@vu.edu.pk", code="123456", expires_at=utcnow() + timedelta(minutes=5)))
    assert fallback.get_valid_otp_code("alice@vu.edu.pk", "123456") is not None


def test_documents_store_encrypted_email_and_index(tmp_path, cipher):
    client = mongomock.MongoClient()
    store = MongoRecordStore(JsonRecordStore(tmp_path, cipher), cipher, client=client, database="portal_test")
    assert store.connected is True
    store.create_user(_account("alice"))

    doc = client["portal_test"]["users"].find_one({"id": 1})
    assert doc["email"] != "alice@vu.edu.pk"
    assert doc["email_encrypted"] is True
    assert doc["email_index"] == cipher.blind_index("alice@vu.edu.pk")
    assert cipher.decrypt(doc["email"]) == "alice@vu.edu.pk"


def test_legacy_plaintext_documents_are_found(tmp_path, cipher):
    client = mongomock.MongoClient()
    store = MongoRecordStore(JsonRecordStore(tmp_path, cipher), cipher, client=client, database="portal_test")
    client["portal_test"]["users"].insert_one({
        "id": 4,
        "username": "legacy",
        "full_name": "Legacy User",
        "email": "legacy@vu.edu.pk",
        "password_hash": "hashed",
        "role": "student",
        "is_verified": True,
        "created_at": utcnow().replace(tzinfo=None),
    })
    user = store.get_user_by_email("legacy@vu.edu.pk")
    assert user.id == 4
    assert user.created_at.tzinfo is not None
    assert store.create_user(_account("alice")).id == 5


def test_connected_store_does_not_touch_fallback(tmp_path, cipher):
    fallback = JsonRecordStore(tmp_path, cipher)
    store = MongoRecordStore(fallback, cipher, client=mongomock.MongoClient())
    store.create_user(_account("alice"))
    assert fallback.get_user_by_email("alice@vu.edu.pk") is None
