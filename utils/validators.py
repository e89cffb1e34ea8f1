"""
Input policy checks shared by the credential flows.

Each check raises ValidationError with the message shown to the client.
"""

import re

from services.errors import ValidationError

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
OTP_PATTERN = re.compile(r"^\d{6}$")


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def has_domain(email: str, domain: str) -> bool:
    return email.endswith("@" + domain.lower())


def require_email(email: str) -> str:
    email = normalize_email(email)
    if not EMAIL_PATTERN.match(email):
        raise ValidationError("Invalid email format")
    return email


def require_institutional_email(email: str, domain: str) -> str:
    email = require_email(email)
    if not has_domain(email, domain):
        raise ValidationError(f"Email must be from @{domain} domain")
    return email


def require_text(value: str, label: str) -> str:
    value = (value or "").strip()
    if not value:
        raise ValidationError(f"{label} is required")
    return value


def require_password(password: str, min_length: int) -> str:
    if not password or len(password) < min_length:
        raise ValidationError(f"Password must be at least {min_length} characters")
    return password


def require_otp(code: str) -> str:
    code = (code or "").strip()
    if not OTP_PATTERN.match(code):
        raise ValidationError("OTP must be 6 digits")
    return code
