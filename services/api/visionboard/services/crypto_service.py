"""Provider token encryption using libsodium (PyNaCl)."""

import base64
import hashlib
import logging

import nacl.secret

from visionboard.config import Settings

logger = logging.getLogger(__name__)

_DEV_KEY_SEED = b"visionboard-dev-only-encryption-key"


class CryptoService:
    """Symmetric encryption using NaCl SecretBox (XSalsa20-Poly1305).

    Canva access and refresh tokens never touch the store in plaintext. The
    API process and Celery workers must share ``ENCRYPTION_KEY``.
    """

    def __init__(self, settings: Settings) -> None:
        key_b64 = settings.encryption_key.get_secret_value()
        if not key_b64:
            # Same key in every process so workers can read what the API wrote
            logger.warning("No encryption key configured; using dev key. DO NOT use in production.")
            self._key = hashlib.sha256(_DEV_KEY_SEED).digest()
        else:
            self._key = base64.b64decode(key_b64)
        self._box = nacl.secret.SecretBox(self._key)

    def encrypt(self, plaintext: str) -> bytes:
        """Encrypt a string and return ciphertext bytes (nonce prepended)."""
        return self._box.encrypt(plaintext.encode("utf-8"))

    def decrypt(self, ciphertext: bytes) -> str:
        """Decrypt ciphertext bytes and return the original string."""
        return self._box.decrypt(ciphertext).decode("utf-8")

    def encrypt_optional(self, plaintext: str | None) -> bytes | None:
        return None if plaintext is None else self.encrypt(plaintext)

    def decrypt_optional(self, ciphertext: bytes | None) -> str | None:
        return None if ciphertext is None else self.decrypt(ciphertext)

    def encrypt_to_text(self, plaintext: str | None) -> str | None:
        """Encrypt into base64 text, for JSON documents."""
        if plaintext is None:
            return None
        return base64.b64encode(self.encrypt(plaintext)).decode("ascii")

    def decrypt_from_text(self, ciphertext_b64: str | None) -> str | None:
        if ciphertext_b64 is None:
            return None
        return self.decrypt(base64.b64decode(ciphertext_b64))


_crypto_service: CryptoService | None = None


def get_crypto_service(settings: Settings) -> CryptoService:
    global _crypto_service
    if _crypto_service is None:
        _crypto_service = CryptoService(settings)
    return _crypto_service
