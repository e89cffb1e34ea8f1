"""Configuration for the student portal auth backend.

All values can be overridden via environment variables or a .env file.
"""

import os
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

load_dotenv()

ROOT_DIR = Path(__file__).parent.resolve()

# --- Storage ---

# Directory holding users.json, pending_users.json and otp_codes.json
DATA_DIR = Path(os.getenv("DATA_DIR", str(ROOT_DIR / "data")))

# 32-byte key, base64 encoded. Required: emails are encrypted at rest.
ENCRYPTION_KEY: Optional[str] = os.getenv("ENCRYPTION_KEY")

USE_MONGODB: bool = os.getenv("USE_MONGODB", "false").lower() == "true"
MONGODB_URI: str = os.getenv("MONGODB_URI", "")
MONGODB_DATABASE: str = os.getenv("MONGODB_DATABASE", "student_portal")
MONGODB_TIMEOUT_MS: int = int(os.getenv("MONGODB_TIMEOUT_MS", "3000"))

# --- Credential policy ---

ALLOWED_EMAIL_DOMAIN: str = os.getenv("ALLOWED_EMAIL_DOMAIN", "vu.edu.pk")
MIN_PASSWORD_LENGTH = 8
OTP_EXPIRY_MINUTES: int = int(os.getenv("OTP_EXPIRY_MINUTES", "10"))
OTP_CLEANUP_INTERVAL_SECONDS: int = int(os.getenv("OTP_CLEANUP_INTERVAL_SECONDS", "300"))
BCRYPT_ROUNDS: int = int(os.getenv("BCRYPT_ROUNDS", "10"))

# --- Sessions ---

AUTH_SECRET: str = os.getenv("AUTH_SECRET", "dev-insecure-secret-change-me")
ACCESS_TOKEN_EXPIRE_MINUTES: int = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "60"))

# --- Bootstrap admin ---

ADMIN_EMAIL: str = os.getenv("ADMIN_EMAIL", "admin@vu.edu.pk").strip().lower()
ADMIN_USERNAME: str = os.getenv("ADMIN_USERNAME", "admin")
ADMIN_FULL_NAME: str = os.getenv("ADMIN_FULL_NAME", "Admin User")
# Pre-hashed password wins over ADMIN_PASSWORD when both are set
ADMIN_PASSWORD_HASH: Optional[str] = os.getenv("ADMIN_PASSWORD_HASH")
ADMIN_PASSWORD: str = os.getenv("ADMIN_PASSWORD", "ChangeMe@2024")

# --- API server ---

PORT: int = int(os.getenv("PORT", "8000"))

_CORS_ALLOWED_ORIGINS_STR: str = os.getenv(
    "CORS_ALLOWED_ORIGINS",
    "http://localhost:3000,http://localhost:5173,http://localhost:5000",
)
CORS_ALLOWED_ORIGINS: List[str] = [
    origin.strip()
    for origin in _CORS_ALLOWED_ORIGINS_STR.split(",")
    if origin.strip()
]
