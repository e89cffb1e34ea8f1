"""Record Store - persistence interface for users, pending signups and OTP codes.

``build_record_store`` picks the engine once at startup:
MongoDB with a JSON fallback when configured, otherwise the JSON engine alone.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Optional

from services.cipher import EmailCipher
from services.models import NewAccount, NewOtpCode, OtpCode, PendingUser, User

logger = logging.getLogger(__name__)

DUPLICATE_EMAIL = "User already exists with this email"
DUPLICATE_USERNAME = "Username is already taken"


@dataclass(frozen=True)
class AdminSeed:
    """Bootstrap admin account. ``password_hash`` is stored as-is, never re-hashed."""
    email: str
    username: str
    full_name: str
    password_hash: str


class RecordStore(ABC):
    """Uniform contract implemented by every storage engine."""

    # --- users ---
    @abstractmethod
    def get_user(self, user_id: int) -> Optional[User]: ...

    @abstractmethod
    def get_user_by_username(self, username: str) -> Optional[User]: ...

    @abstractmethod
    def get_user_by_email(self, email: str) -> Optional[User]: ...

    @abstractmethod
    def create_user(self, account: NewAccount) -> User: ...

    @abstractmethod
    def create_admin_user(self, account: NewAccount) -> User: ...

    @abstractmethod
    def update_user(self, user_id: int, **fields: Any) -> Optional[User]: ...

    def update_user_profile(self, user_id: int, degree_program: str, subjects: List[str]) -> Optional[User]:
        return self.update_user(user_id, degree_program=degree_program, subjects=list(subjects))

    # --- pending users ---
    @abstractmethod
    def create_pending_user(self, account: NewAccount) -> PendingUser: ...

    @abstractmethod
    def get_pending_user_by_email(self, email: str) -> Optional[PendingUser]: ...

    @abstractmethod
    def delete_pending_user(self, email: str) -> None: ...

    # --- otp codes ---
    @abstractmethod
    def create_otp_code(self, otp: NewOtpCode) -> OtpCode: ...

    @abstractmethod
    def get_valid_otp_code(self, email: str, code: str) -> Optional[OtpCode]:
        """Return the code row only if it is unused and unexpired."""

    @abstractmethod
    def check_otp_code_validity(self, email: str, code: str) -> Optional[OtpCode]:
        """Like get_valid_otp_code but ignores the used flag (password reset path)."""

    @abstractmethod
    def mark_otp_as_used(self, otp_id: int) -> None: ...

    @abstractmethod
    def cleanup_expired_otps(self) -> int:
        """Delete expired codes and return how many were removed."""

    # --- bootstrap ---
    def seed_admin(self, seed: AdminSeed) -> Optional[User]:
        """Create the bootstrap admin unless a user already owns the seed email."""
        if self.get_user_by_email(seed.email):
            return None
        admin = self.create_admin_user(NewAccount(
            username=seed.username,
            full_name=seed.full_name,
            email=seed.email,
            password_hash=seed.password_hash,
        ))
        logger.info("[RecordStore] Admin user initialized: %s", seed.email)
        return admin


def build_record_store(
    cipher: EmailCipher,
    data_dir: Path,
    use_mongodb: bool = False,
    mongodb_uri: str = "",
    mongodb_database: str = "student_portal",
    mongodb_timeout_ms: int = 3000,
    admin_seed: Optional[AdminSeed] = None,
) -> RecordStore:
    # imported here: the engines import RecordStore from this module
    from services.json_storage import JsonRecordStore
    from services.mongo_storage import MongoRecordStore

    if use_mongodb and mongodb_uri:
        fallback = JsonRecordStore(data_dir, cipher)
        store: RecordStore = MongoRecordStore(
            fallback,
            cipher,
            uri=mongodb_uri,
            database=mongodb_database,
            timeout_ms=mongodb_timeout_ms,
        )
        logger.info("[RecordStore] Using MongoDB storage with JSON fallback")
        if admin_seed is not None:
            store.seed_admin(admin_seed)
    else:
        store = JsonRecordStore(data_dir, cipher, admin_seed=admin_seed)
        logger.info("[RecordStore] Using JSON storage (no MongoDB configured)")
    return store
