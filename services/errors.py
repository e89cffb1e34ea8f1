"""Error taxonomy for the credential subsystem.

Every error carries the HTTP status it maps to so the API layer can turn it
into a response without a lookup table.
"""

from typing import Any, Dict, Optional


class PortalError(Exception):
    """Base exception for all portal errors."""

    status_code = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> Dict[str, Any]:
        return {"message": self.message}


class ValidationError(PortalError):
    """Raised when input is malformed or outside policy."""

    status_code = 400


class ConflictError(PortalError):
    """Raised when a signup collides with an existing email or username."""

    status_code = 400


class NotFoundError(PortalError):
    """Raised when a referenced user or email is unknown."""

    status_code = 404


class AuthenticationError(PortalError):
    """Raised for bad credentials or a missing session."""

    status_code = 401


class AccessDeniedError(AuthenticationError):
    """Raised when valid credentials are not allowed into the portal."""

    status_code = 403


class VerificationRequiredError(AuthenticationError):
    """Raised when a student logs in before verifying their email."""

    status_code = 403

    def __init__(self, email: str):
        super().__init__("Please verify your email before logging in")
        self.email = email

    def to_dict(self) -> Dict[str, Any]:
        return {"message": self.message, "requires_verification": True, "email": self.email}


class InfrastructureError(PortalError):
    """Raised when a backing service (storage, mail, crypto) fails."""

    status_code = 500


class StorageError(InfrastructureError):
    """Raised when a record collection cannot be persisted."""


class NotificationError(InfrastructureError):
    """Raised when an OTP email could not be delivered."""

    status_code = 502


class CipherError(InfrastructureError):
    """Raised when a value cannot be encrypted or decrypted."""


class EncryptionKeyError(CipherError):
    """Raised when ENCRYPTION_KEY is missing or not 32 bytes. Fatal at startup."""
