"""JSON Record Store - local file engine.

Each collection lives in its own JSON file under ``data_dir`` and is rewritten
in full on every mutation. Emails are encrypted on disk; in memory they are
plaintext so lookups stay simple. A mutation builds the new collection, writes
it, and only then replaces the in-memory list, so a failed write changes
nothing.
"""
import json
import logging
import os
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Type, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as SchemaError

from services.cipher import EmailCipher
from services.errors import CipherError, ConflictError, StorageError
from services.models import NewAccount, NewOtpCode, OtpCode, PendingUser, User, utcnow
from services.storage import DUPLICATE_EMAIL, DUPLICATE_USERNAME, AdminSeed, RecordStore

logger = logging.getLogger(__name__)

USERS_FILE = "users.json"
PENDING_USERS_FILE = "pending_users.json"
OTP_CODES_FILE = "otp_codes.json"

RecordT = TypeVar("RecordT", bound=BaseModel)


class JsonRecordStore(RecordStore):
    def __init__(self, data_dir: Path, cipher: EmailCipher, admin_seed: Optional[AdminSeed] = None):
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.cipher = cipher
        self._lock = threading.RLock()
        # filename -> record id -> (plaintext, ciphertext on disk); reused while the email is unchanged
        self._sealed: Dict[str, Dict[int, Tuple[str, str]]] = {}
        self.users: List[User] = self._load(USERS_FILE, User)
        self.pending_users: List[PendingUser] = self._load(PENDING_USERS_FILE, PendingUser)
        self.otp_codes: List[OtpCode] = self._load(OTP_CODES_FILE, OtpCode)
        if admin_seed is not None:
            self.seed_admin(admin_seed)

    # --- file helpers ---
    def _load(self, filename: str, model: Type[RecordT]) -> List[RecordT]:
        path = self.data_dir / filename
        if not path.exists():
            return []
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("[JsonRecordStore] Failed to load %s: %s; starting empty", filename, e)
            return []
        if not isinstance(data, list):
            logger.warning("[JsonRecordStore] %s is not a list; starting empty", filename)
            return []

        records: List[RecordT] = []
        sealed: Dict[int, Tuple[str, str]] = {}
        for raw in data:
            if not isinstance(raw, dict):
                continue
            try:
                record, ciphertext = self._open_email(raw)
                loaded = model.model_validate(record)
            except (SchemaError, CipherError) as e:
                logger.warning("[JsonRecordStore] Skipping unreadable record in %s: %s", filename, e)
                continue
            if ciphertext is not None:
                sealed[loaded.id] = (loaded.email, ciphertext)
            records.append(loaded)
        self._sealed[filename] = sealed
        return records

    def _open_email(self, raw: Dict[str, Any]) -> Tuple[Dict[str, Any], Optional[str]]:
        record = dict(raw)
        email = record.get("email")
        # legacy layouts: no marker (plaintext) or a ciphertext string kept beside plaintext
        if record.pop("email_encrypted", None) is True and isinstance(email, str):
            record["email"] = self.cipher.decrypt(email)
            return record, email
        return record, None

    def _save(self, filename: str, records: List[Any]):
        previous = self._sealed.get(filename, {})
        sealed: Dict[int, Tuple[str, str]] = {}
        payload = []
        for record in records:
            data = record.model_dump(mode="json")
            cached = previous.get(record.id)
            if cached is not None and cached[0] == record.email:
                ciphertext = cached[1]
            else:
                ciphertext = self.cipher.encrypt(record.email)
            sealed[record.id] = (record.email, ciphertext)
            data["email"] = ciphertext
            data["email_encrypted"] = True
            payload.append(data)

        path = self.data_dir / filename
        tmp_path = path.with_name(path.name + ".tmp")
        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2)
            os.replace(tmp_path, path)
        except OSError as e:
            logger.error("[JsonRecordStore] Failed to save %s: %s", filename, e)
            raise StorageError(f"Failed to save {filename}") from e
        self._sealed[filename] = sealed

    @staticmethod
    def _next_id(records: List[Any]) -> int:
        return max((r.id for r in records), default=0) + 1

    # --- users ---
    def get_user(self, user_id: int) -> Optional[User]:
        user = next((u for u in self.users if u.id == user_id), None)
        return user.model_copy(deep=True) if user else None

    def get_user_by_username(self, username: str) -> Optional[User]:
        user = next((u for u in self.users if u.username == username), None)
        return user.model_copy(deep=True) if user else None

    def get_user_by_email(self, email: str) -> Optional[User]:
        user = next((u for u in self.users if u.email == email), None)
        return user.model_copy(deep=True) if user else None

    def _insert_user(self, account: NewAccount, role: str) -> User:
        with self._lock:
            if any(u.email == account.email for u in self.users):
                raise ConflictError(DUPLICATE_EMAIL)
            if any(u.username == account.username for u in self.users):
                raise ConflictError(DUPLICATE_USERNAME)
            user = User(id=self._next_id(self.users), role=role, **account.model_dump())
            users = self.users + [user]
            self._save(USERS_FILE, users)
            self.users = users
            return user.model_copy(deep=True)

    def create_user(self, account: NewAccount) -> User:
        return self._insert_user(account, "student")

    def create_admin_user(self, account: NewAccount) -> User:
        return self._insert_user(account, "admin")

    def update_user(self, user_id: int, **fields: Any) -> Optional[User]:
        fields.pop("id", None)
        with self._lock:
            for index, user in enumerate(self.users):
                if user.id == user_id:
                    updated = User.model_validate({**user.model_dump(), **fields})
                    users = self.users[:index] + [updated] + self.users[index + 1:]
                    self._save(USERS_FILE, users)
                    self.users = users
                    return updated.model_copy(deep=True)
        return None

    # --- pending users ---
    def create_pending_user(self, account: NewAccount) -> PendingUser:
        with self._lock:
            # a new signup supersedes any earlier one for the same email
            remaining = [p for p in self.pending_users if p.email != account.email]
            pending = PendingUser(id=self._next_id(remaining), **account.model_dump())
            pending_users = remaining + [pending]
            self._save(PENDING_USERS_FILE, pending_users)
            self.pending_users = pending_users
            return pending.model_copy(deep=True)

    def get_pending_user_by_email(self, email: str) -> Optional[PendingUser]:
        pending = next((p for p in self.pending_users if p.email == email), None)
        return pending.model_copy(deep=True) if pending else None

    def delete_pending_user(self, email: str) -> None:
        with self._lock:
            remaining = [p for p in self.pending_users if p.email != email]
            if len(remaining) != len(self.pending_users):
                self._save(PENDING_USERS_FILE, remaining)
                self.pending_users = remaining

    # --- otp codes ---
    def create_otp_code(self, otp: NewOtpCode) -> OtpCode:
        with self._lock:
            record = OtpCode(id=self._next_id(self.otp_codes), **otp.model_dump())
            otp_codes = self.otp_codes + [record]
            self._save(OTP_CODES_FILE, otp_codes)
            self.otp_codes = otp_codes
            return record.model_copy(deep=True)

    def _find_otp(self, email: str, code: str, ignore_used: bool) -> Optional[OtpCode]:
        now = utcnow()
        for otp in self.otp_codes:
            if otp.email == email and otp.code == code and otp.is_live(now, ignore_used=ignore_used):
                return otp.model_copy(deep=True)
        return None

    def get_valid_otp_code(self, email: str, code: str) -> Optional[OtpCode]:
        return self._find_otp(email, code, ignore_used=False)

    def check_otp_code_validity(self, email: str, code: str) -> Optional[OtpCode]:
        return self._find_otp(email, code, ignore_used=True)

    def mark_otp_as_used(self, otp_id: int) -> None:
        with self._lock:
            otp_codes = [
                o.model_copy(update={"is_used": True}) if o.id == otp_id else o
                for o in self.otp_codes
            ]
            if otp_codes != self.otp_codes:
                self._save(OTP_CODES_FILE, otp_codes)
                self.otp_codes = otp_codes

    def cleanup_expired_otps(self) -> int:
        now = utcnow()
        with self._lock:
            remaining = [o for o in self.otp_codes if not o.expires_at < now]
            removed = len(self.otp_codes) - len(remaining)
            if removed:
                self._save(OTP_CODES_FILE, remaining)
                self.otp_codes = remaining
        return removed
