"""OTP Service - issues email one-time passcodes and sweeps expired ones"""
import asyncio
import logging
import secrets
from datetime import datetime, timedelta
from typing import Dict, Optional, Tuple

from services.errors import NotificationError
from services.models import NewOtpCode, OtpCode, utcnow
from services.storage import RecordStore

logger = logging.getLogger(__name__)

OTP_EXP_MINUTES = 10
CLEANUP_INTERVAL_SECONDS = 300

_random = secrets.SystemRandom()

# purpose -> (subject, body template)
TEMPLATES: Dict[str, Tuple[str, str]] = {
    "signup": (
        "Your Signup OTP Code",
        "Your OTP code is {code}. It expires in {minutes} minutes.\n\n"
        "Full Name: {full_name}\nUsername: {username}",
    ),
    "reset": (
        "Password Reset OTP",
        "Your password reset OTP code is {code}. It expires in {minutes} minutes.",
    ),
    "resend": (
        "Resent OTP Code",
        "Your new OTP code is {code}. It expires in {minutes} minutes.",
    ),
}


def generate_otp() -> str:
    return f"{_random.randint(100000, 999999)}"


class OTPService:
    def __init__(self, store: RecordStore, mailer, expiry_minutes: int = OTP_EXP_MINUTES):
        self.store = store
        self.mailer = mailer
        self.expiry_minutes = expiry_minutes

    def issue(self, email: str, purpose: str, **context: str) -> OtpCode:
        """Persist a fresh code for ``email`` and send it.

        Earlier codes for the same email stay valid until they expire. If
        delivery fails the code is kept and NotificationError is raised.
        """
        subject, template = TEMPLATES[purpose]
        otp = self.store.create_otp_code(NewOtpCode(
            email=email,
            code=generate_otp(),
            expires_at=utcnow() + timedelta(minutes=self.expiry_minutes),
        ))
        body = template.format(code=otp.code, minutes=self.expiry_minutes, **context)
        if not self.mailer.send(email, subject, body):
            raise NotificationError("Failed to send verification email. Please try again.")
        return otp


class OtpSweeper:
    """Background task that deletes expired OTP codes on a fixed interval."""

    def __init__(self, store: RecordStore, interval_seconds: int = CLEANUP_INTERVAL_SECONDS):
        self.store = store
        self.interval_seconds = interval_seconds
        self.running = False
        self._task: Optional[asyncio.Task] = None
        self.stats = {"total_removed": 0, "last_run": None}

    async def start(self):
        if self.running:
            logger.warning("[OtpSweeper] Already running")
            return
        self.running = True
        self._task = asyncio.create_task(self._loop())
        logger.info("[OtpSweeper] Started - interval: %ss", self.interval_seconds)

    async def stop(self):
        self.running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("[OtpSweeper] Stopped")

    async def run_once(self) -> int:
        removed = await asyncio.to_thread(self.store.cleanup_expired_otps)
        self.stats["total_removed"] += removed
        self.stats["last_run"] = datetime.now().isoformat()
        if removed:
            logger.info("[OtpSweeper] Removed %d expired OTP codes", removed)
        return removed

    async def _loop(self):
        while self.running:
            await asyncio.sleep(self.interval_seconds)
            try:
                await self.run_once()
            except Exception:
                logger.exception("[OtpSweeper] Cleanup pass failed")
