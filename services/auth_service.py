"""Auth Service - OTP-driven signup, login and password reset.

States per email: anonymous -> pending (signup) -> verified, and for existing
accounts active -> reset requested -> active. All persistence goes through
the RecordStore passed in at construction.
"""
import logging
from typing import Any, Dict, List, Optional

from passlib.context import CryptContext

from services.errors import (
    AccessDeniedError,
    AuthenticationError,
    ConflictError,
    NotFoundError,
    ValidationError,
    VerificationRequiredError,
)
from services.models import NewAccount, PendingUser
from services.otp_service import OTP_EXP_MINUTES, OTPService
from services.session_service import SessionService
from services.storage import DUPLICATE_EMAIL, DUPLICATE_USERNAME, RecordStore
from utils.validators import (
    has_domain,
    require_email,
    require_institutional_email,
    require_otp,
    require_password,
    require_text,
)

logger = logging.getLogger(__name__)

BCRYPT_MAX_BYTES = 72
INVALID_CREDENTIALS = "Invalid email or password"
INVALID_CODE = "Invalid or expired verification code"


def make_password_context(rounds: int = 10) -> CryptContext:
    # Prefer bcrypt; pbkdf2_sha256 verifies hashes written when the bcrypt backend was unusable
    return CryptContext(schemes=["bcrypt", "pbkdf2_sha256"], deprecated="auto", bcrypt__rounds=rounds)


_fallback_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def _truncate(password: str) -> str:
    # bcrypt only uses the first 72 bytes
    encoded = password.encode("utf-8")
    if len(encoded) > BCRYPT_MAX_BYTES:
        return encoded[:BCRYPT_MAX_BYTES].decode("utf-8", errors="ignore")
    return password


def hash_password(password: str, context: Optional[CryptContext] = None) -> str:
    context = context or make_password_context()
    password = _truncate(password)
    try:
        return context.hash(password)
    except Exception as e:
        logger.warning("[AuthService] Hash error with bcrypt: %s; retrying with pbkdf2_sha256", e)
        return _fallback_context.hash(password)


def verify_password(plain: str, hashed: str, context: Optional[CryptContext] = None) -> bool:
    context = context or make_password_context()
    plain = _truncate(plain)
    try:
        return context.verify(plain, hashed)
    except Exception as e:
        logger.warning("[AuthService] Verify error: %s; attempting pbkdf2_sha256", e)
        # a bcrypt hash cannot be checked without the backend; treat as mismatch
        try:
            return _fallback_context.verify(plain, hashed)
        except Exception:
            return False


class CredentialService:
    def __init__(
        self,
        store: RecordStore,
        mailer,
        sessions: SessionService,
        allowed_domain: str = "vu.edu.pk",
        min_password_length: int = 8,
        otp_expiry_minutes: int = OTP_EXP_MINUTES,
        bcrypt_rounds: int = 10,
        otp_service: Optional[OTPService] = None,
    ):
        self.store = store
        self.sessions = sessions
        self.allowed_domain = allowed_domain.lower()
        self.min_password_length = min_password_length
        self.otp = otp_service or OTPService(store, mailer, expiry_minutes=otp_expiry_minutes)
        self.pwd_context = make_password_context(bcrypt_rounds)

    def hash_password(self, password: str) -> str:
        return hash_password(password, self.pwd_context)

    def verify_password(self, plain: str, hashed: str) -> bool:
        return verify_password(plain, hashed, self.pwd_context)

    # --- signup ---
    def signup(self, username: str, full_name: str, email: str, password: str) -> Dict[str, Any]:
        username = require_text(username, "Username")
        full_name = require_text(full_name, "Full name")
        email = require_institutional_email(email, self.allowed_domain)
        require_password(password, self.min_password_length)

        if self.store.get_user_by_email(email):
            raise ConflictError(DUPLICATE_EMAIL)
        if self.store.get_user_by_username(username):
            raise ConflictError(DUPLICATE_USERNAME)

        pending = self.store.create_pending_user(NewAccount(
            username=username,
            full_name=full_name,
            email=email,
            password_hash=self.hash_password(password),
        ))
        # no rollback if delivery fails: the pending record and code stay for resend
        self.otp.issue(email, "signup", full_name=pending.full_name, username=pending.username)
        logger.info("[AuthService] Signup pending verification for %s", email)
        return {
            "message": "Registration initiated. Please check your email for verification code.",
            "email": email,
        }

    # --- login ---
    def login(self, email: str, password: str) -> Dict[str, Any]:
        email = require_email(email)
        if not password:
            raise ValidationError("Password is required")

        user = self.store.get_user_by_email(email)
        if not user or not self.verify_password(password, user.password_hash):
            raise AuthenticationError(INVALID_CREDENTIALS)

        if user.role != "admin":
            if not has_domain(email, self.allowed_domain):
                raise AccessDeniedError(
                    f"Only students with @{self.allowed_domain} emails can access this portal"
                )
            if not user.is_verified:
                raise VerificationRequiredError(user.email)

        token = self.sessions.establish(user.id)
        logger.info("[AuthService] %s login successful for %s", user.role.capitalize(), user.email)
        return {
            "message": "Admin login successful" if user.role == "admin" else "Login successful",
            "user": user.public(),
            "access_token": token,
            "token_type": "bearer",
        }

    # --- otp verification ---
    def _ensure_available(self, pending: PendingUser):
        if self.store.get_user_by_email(pending.email):
            raise ConflictError(DUPLICATE_EMAIL)
        if self.store.get_user_by_username(pending.username):
            raise ConflictError(DUPLICATE_USERNAME)

    def verify_otp(self, email: str, code: str) -> Dict[str, Any]:
        email = require_email(email)
        code = require_otp(code)

        otp = self.store.get_valid_otp_code(email, code)
        if not otp:
            raise ValidationError(INVALID_CODE)

        pending = self.store.get_pending_user_by_email(email)
        if pending:
            self._ensure_available(pending)
            self.store.mark_otp_as_used(otp.id)
            user = self.store.create_user(NewAccount(
                username=pending.username,
                full_name=pending.full_name,
                email=pending.email,
                password_hash=pending.password_hash,
            ))
            user = self.store.update_user(user.id, is_verified=True) or user
            self.store.delete_pending_user(email)
            logger.info("[AuthService] Registration completed for %s (username: %s)", user.email, user.username)
            return {
                "message": "Email verified and registration completed successfully",
                "user": user.identity(),
            }

        # password reset flow: the code is consumed by reset_password, not here
        user = self.store.get_user_by_email(email)
        if not user:
            raise NotFoundError("User not found")
        return {
            "message": "OTP verified successfully. You can now reset your password.",
            "can_reset_password": True,
            "email": user.email,
        }

    # --- password recovery ---
    def forgot_password(self, email: str) -> Dict[str, Any]:
        email = require_institutional_email(email, self.allowed_domain)
        if not self.store.get_user_by_email(email):
            raise NotFoundError("No account found with this email address")
        self.otp.issue(email, "reset")
        return {"message": "Password reset code sent to your email", "email": email}

    def resend_otp(self, email: str) -> Dict[str, Any]:
        email = require_institutional_email(email, self.allowed_domain)
        if not self.store.get_user_by_email(email) and not self.store.get_pending_user_by_email(email):
            raise NotFoundError("No account found with this email address")
        self.otp.issue(email, "resend")
        return {"message": "New verification code sent to your email", "email": email}

    def reset_password(self, email: str, code: str, new_password: str, confirm_password: str) -> Dict[str, Any]:
        email = require_email(email)
        code = require_otp(code)
        require_password(new_password, self.min_password_length)
        require_password(confirm_password, self.min_password_length)
        if new_password != confirm_password:
            raise ValidationError("Passwords don't match")

        # ignores the used flag: a code checked by verify_otp may be consumed here
        otp = self.store.check_otp_code_validity(email, code)
        if not otp:
            raise ValidationError(INVALID_CODE)

        user = self.store.get_user_by_email(email)
        if not user:
            raise NotFoundError("User not found")

        self.store.update_user(user.id, password_hash=self.hash_password(new_password))
        self.store.mark_otp_as_used(otp.id)
        logger.info("[AuthService] Password reset successful for %s", user.email)
        return {"message": "Password updated successfully. You can now log in with your new password."}

    # --- session-bound operations ---
    def _session_user_id(self, token: Optional[str]) -> int:
        user_id = self.sessions.resolve(token)
        if user_id is None:
            raise AuthenticationError("Not authenticated")
        return user_id

    def get_current_user(self, token: Optional[str]) -> Dict[str, Any]:
        user = self.store.get_user(self._session_user_id(token))
        if not user:
            raise NotFoundError("User not found")
        return user.public()

    def setup_profile(self, token: Optional[str], degree_program: str, subjects: List[str]) -> Dict[str, Any]:
        user_id = self._session_user_id(token)
        degree_program = (degree_program or "").strip()
        subjects = [s.strip() for s in (subjects or []) if isinstance(s, str) and s.strip()]
        if not degree_program or not subjects:
            raise ValidationError("Degree program and at least one subject are required")

        updated = self.store.update_user_profile(user_id, degree_program, subjects)
        if not updated:
            raise NotFoundError("User not found")
        return {"message": "Profile setup completed successfully", "user": updated.public()}

    def logout(self, token: Optional[str]) -> Dict[str, Any]:
        self.sessions.destroy(token)
        return {"message": "Logged out successfully"}
