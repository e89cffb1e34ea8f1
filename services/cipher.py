"""Cipher - encryption of email addresses at rest.

Ciphertext format is ``<iv hex>:<ciphertext hex>`` (AES-256-CBC, PKCS7
padding, fresh 16-byte IV per call). A keyed blind index lets storage engines
look a record up by email without keeping the plaintext.
"""
import base64
import binascii
import hashlib
import hmac
import logging
import os
from typing import Optional

from cryptography.hazmat.primitives import hashes, padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from services.errors import CipherError, EncryptionKeyError

logger = logging.getLogger(__name__)

KEY_LENGTH = 32
IV_LENGTH = 16


class EmailCipher:
    def __init__(self, key: bytes):
        if not isinstance(key, (bytes, bytearray)) or len(key) != KEY_LENGTH:
            raise EncryptionKeyError("ENCRYPTION_KEY must be a 32-byte Base64 string.")
        self._key = bytes(key)
        self._index_key = HKDF(
            algorithm=hashes.SHA256(),
            length=32,
            salt=None,
            info=b"email-blind-index",
        ).derive(self._key)

    @classmethod
    def from_base64(cls, value: Optional[str]) -> "EmailCipher":
        """Build a cipher from the base64 ENCRYPTION_KEY setting.

        Raises EncryptionKeyError when the value is absent, not base64 or
        does not decode to exactly 32 bytes.
        """
        if not value:
            logger.error(
                "[EmailCipher] ENCRYPTION_KEY not set. Generate one with: "
                "python -c \"import os, base64; print(base64.b64encode(os.urandom(32)).decode())\""
            )
            raise EncryptionKeyError("ENCRYPTION_KEY not set in environment.")
        try:
            key = base64.b64decode(value, validate=True)
        except (binascii.Error, ValueError) as e:
            raise EncryptionKeyError("ENCRYPTION_KEY must be a 32-byte Base64 string.") from e
        return cls(key)

    def encrypt(self, plaintext: str) -> str:
        iv = os.urandom(IV_LENGTH)
        padder = padding.PKCS7(algorithms.AES.block_size).padder()
        padded = padder.update(plaintext.encode("utf-8")) + padder.finalize()
        encryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).encryptor()
        encrypted = encryptor.update(padded) + encryptor.finalize()
        return f"{iv.hex()}:{encrypted.hex()}"

    def decrypt(self, token: str) -> str:
        try:
            iv_hex, encrypted_hex = token.split(":", 1)
            iv = bytes.fromhex(iv_hex)
            encrypted = bytes.fromhex(encrypted_hex)
            decryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).decryptor()
            padded = decryptor.update(encrypted) + decryptor.finalize()
            unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
            return (unpadder.update(padded) + unpadder.finalize()).decode("utf-8")
        except (ValueError, UnicodeDecodeError) as e:
            # wrong key or tampered value; never fall back to the raw token
            raise CipherError("Unable to decrypt value; check ENCRYPTION_KEY") from e

    def blind_index(self, value: str) -> str:
        return hmac.new(self._index_key, value.encode("utf-8"), hashlib.sha256).hexdigest()
