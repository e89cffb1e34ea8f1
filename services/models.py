"""
Record schemas for the account lifecycle.

Each model maps to one collection (users, pending_users, otp_codes). Passwords
only ever appear here as hashes.
"""
from datetime import datetime, timezone
from typing import Annotated, Any, Dict, List, Literal, Optional

from pydantic import AfterValidator, BaseModel, Field, model_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes (as returned by pymongo) as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


UtcDatetime = Annotated[datetime, AfterValidator(as_utc)]


class NewAccount(BaseModel):
    """Identity fields shared by signup, pending and admin records."""
    username: str
    full_name: str
    email: str
    password_hash: str


class User(BaseModel):
    id: int = Field(..., ge=1)
    username: str
    full_name: str
    email: str
    password_hash: str
    role: Literal["student", "admin"] = "student"
    is_verified: bool = False
    degree_program: Optional[str] = None
    subjects: Optional[List[str]] = None
    created_at: UtcDatetime = Field(default_factory=utcnow)

    @model_validator(mode="after")
    def _admins_are_verified(self) -> "User":
        if self.role == "admin":
            self.is_verified = True
        return self

    def public(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude={"password_hash"})

    def identity(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "full_name": self.full_name,
        }


class PendingUser(BaseModel):
    id: int = Field(..., ge=1)
    username: str
    full_name: str
    email: str
    password_hash: str
    created_at: UtcDatetime = Field(default_factory=utcnow)


class NewOtpCode(BaseModel):
    email: str
    code: str
    expires_at: UtcDatetime


class OtpCode(BaseModel):
    id: int = Field(..., ge=1)
    email: str
    code: str
    expires_at: UtcDatetime
    is_used: bool = False
    created_at: UtcDatetime = Field(default_factory=utcnow)

    def is_live(self, now: Optional[datetime] = None, ignore_used: bool = False) -> bool:
        now = now or utcnow()
        if not ignore_used and self.is_used:
            return False
        return now < self.expires_at
