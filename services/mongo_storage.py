"""MongoDB Record Store - document engine with transparent JSON fallback.

The connection is checked once at construction. If MongoDB cannot be reached
the store latches offline and every call goes to the fallback engine for the
rest of the process lifetime.
"""
import functools
import logging
import threading
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.collection import Collection
from pymongo.errors import DuplicateKeyError, PyMongoError

from services.cipher import EmailCipher
from services.errors import ConflictError, StorageError
from services.models import NewAccount, NewOtpCode, OtpCode, PendingUser, User, utcnow
from services.storage import DUPLICATE_EMAIL, DUPLICATE_USERNAME, RecordStore

logger = logging.getLogger(__name__)


def _with_fallback(method):
    """Route the call to the fallback engine while MongoDB is offline."""
    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        if not self.connected:
            return getattr(self.fallback, method.__name__)(*args, **kwargs)
        try:
            return method(self, *args, **kwargs)
        except PyMongoError as e:
            logger.error("[MongoRecordStore] %s failed: %s", method.__name__, e)
            raise StorageError(f"Storage operation {method.__name__} failed") from e
    return wrapper


def _naive_utc(value: datetime) -> datetime:
    # BSON dates carry no zone; store UTC wall time
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class MongoRecordStore(RecordStore):
    def __init__(
        self,
        fallback: RecordStore,
        cipher: EmailCipher,
        uri: str = "",
        database: str = "student_portal",
        timeout_ms: int = 3000,
        client: Optional[Any] = None,
    ):
        self.fallback = fallback
        self.cipher = cipher
        self.connected = False
        self._lock = threading.Lock()
        try:
            if client is None:
                client = MongoClient(uri, serverSelectionTimeoutMS=timeout_ms)
                client.admin.command("ping")
            self.db = client[database]
            self.users: Collection = self.db["users"]
            self.pending_users: Collection = self.db["pending_users"]
            self.otp_codes: Collection = self.db["otp_codes"]
            self._ensure_indexes()
            self.connected = True
            logger.info("[MongoRecordStore] Connected to MongoDB database '%s'", database)
        except PyMongoError as e:
            logger.warning("[MongoRecordStore] MongoDB unavailable (%s); using fallback storage", e)

    def _ensure_indexes(self):
        self.users.create_index([("id", ASCENDING)], unique=True)
        self.users.create_index([("username", ASCENDING)], unique=True)
        self.users.create_index([("email_index", ASCENDING)], unique=True, sparse=True)
        self.pending_users.create_index([("email_index", ASCENDING)], unique=True, sparse=True)
        self.otp_codes.create_index([("id", ASCENDING)], unique=True)
        self.otp_codes.create_index([("email_index", ASCENDING), ("code", ASCENDING)])

    # --- document mapping ---
    def _email_filter(self, email: str) -> Dict[str, Any]:
        return {"$or": [
            {"email_index": self.cipher.blind_index(email)},
            # documents written before encryption was introduced
            {"email": email, "email_encrypted": {"$ne": True}},
        ]}

    def _to_doc(self, record) -> Dict[str, Any]:
        doc = record.model_dump()
        for key, value in doc.items():
            if isinstance(value, datetime):
                doc[key] = _naive_utc(value)
        email = doc["email"]
        doc["email"] = self.cipher.encrypt(email)
        doc["email_encrypted"] = True
        doc["email_index"] = self.cipher.blind_index(email)
        return doc

    def _from_doc(self, model, doc: Optional[Dict[str, Any]]):
        if doc is None:
            return None
        doc = dict(doc)
        doc.pop("_id", None)
        doc.pop("email_index", None)
        if doc.pop("email_encrypted", None) is True:
            doc["email"] = self.cipher.decrypt(doc["email"])
        return model.model_validate(doc)

    @staticmethod
    def _next_id(collection: Collection) -> int:
        top = collection.find_one(sort=[("id", DESCENDING)])
        return int(top["id"]) + 1 if top else 1

    # --- users ---
    @_with_fallback
    def get_user(self, user_id: int) -> Optional[User]:
        return self._from_doc(User, self.users.find_one({"id": user_id}))

    @_with_fallback
    def get_user_by_username(self, username: str) -> Optional[User]:
        return self._from_doc(User, self.users.find_one({"username": username}))

    @_with_fallback
    def get_user_by_email(self, email: str) -> Optional[User]:
        return self._from_doc(User, self.users.find_one(self._email_filter(email)))

    def _duplicate_user(self, account: NewAccount) -> Optional[ConflictError]:
        if self.users.find_one(self._email_filter(account.email)):
            return ConflictError(DUPLICATE_EMAIL)
        if self.users.find_one({"username": account.username}):
            return ConflictError(DUPLICATE_USERNAME)
        return None

    def _insert_user(self, account: NewAccount, role: str) -> User:
        with self._lock:
            conflict = self._duplicate_user(account)
            if conflict:
                raise conflict
            user = User(id=self._next_id(self.users), role=role, **account.model_dump())
            try:
                self.users.insert_one(self._to_doc(user))
            except DuplicateKeyError:
                # another process inserted the same email or username first
                conflict = self._duplicate_user(account)
                if conflict:
                    raise conflict from None
                raise
        return user

    @_with_fallback
    def create_user(self, account: NewAccount) -> User:
        return self._insert_user(account, "student")

    @_with_fallback
    def create_admin_user(self, account: NewAccount) -> User:
        return self._insert_user(account, "admin")

    @_with_fallback
    def update_user(self, user_id: int, **fields: Any) -> Optional[User]:
        fields.pop("id", None)
        current = self._from_doc(User, self.users.find_one({"id": user_id}))
        if current is None:
            return None
        updated = User.model_validate({**current.model_dump(), **fields})
        self.users.replace_one({"id": user_id}, self._to_doc(updated))
        return updated

    # --- pending users ---
    @_with_fallback
    def create_pending_user(self, account: NewAccount) -> PendingUser:
        with self._lock:
            self.pending_users.delete_many(self._email_filter(account.email))
            pending = PendingUser(id=self._next_id(self.pending_users), **account.model_dump())
            self.pending_users.insert_one(self._to_doc(pending))
        return pending

    @_with_fallback
    def get_pending_user_by_email(self, email: str) -> Optional[PendingUser]:
        return self._from_doc(PendingUser, self.pending_users.find_one(self._email_filter(email)))

    @_with_fallback
    def delete_pending_user(self, email: str) -> None:
        self.pending_users.delete_many(self._email_filter(email))

    # --- otp codes ---
    @_with_fallback
    def create_otp_code(self, otp: NewOtpCode) -> OtpCode:
        with self._lock:
            record = OtpCode(id=self._next_id(self.otp_codes), **otp.model_dump())
            self.otp_codes.insert_one(self._to_doc(record))
        return record

    @_with_fallback
    def get_valid_otp_code(self, email: str, code: str) -> Optional[OtpCode]:
        query = {
            **self._email_filter(email),
            "code": code,
            "is_used": False,
            "expires_at": {"$gt": _naive_utc(utcnow())},
        }
        return self._from_doc(OtpCode, self.otp_codes.find_one(query))

    @_with_fallback
    def check_otp_code_validity(self, email: str, code: str) -> Optional[OtpCode]:
        query = {
            **self._email_filter(email),
            "code": code,
            "expires_at": {"$gt": _naive_utc(utcnow())},
        }
        return self._from_doc(OtpCode, self.otp_codes.find_one(query))

    @_with_fallback
    def mark_otp_as_used(self, otp_id: int) -> None:
        self.otp_codes.update_one({"id": otp_id}, {"$set": {"is_used": True}})

    @_with_fallback
    def cleanup_expired_otps(self) -> int:
        result = self.otp_codes.delete_many({"expires_at": {"$lt": _naive_utc(utcnow())}})
        return result.deleted_count
