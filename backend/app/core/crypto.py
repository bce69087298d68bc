from __future__ import annotations

import hashlib
import logging
import os
import re
from dataclasses import dataclass

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from app.core.config import DEFAULT_ENCRYPTION_SECRET, settings

logger = logging.getLogger(__name__)

# AES-256-CBC, key = sha256(ENCRYPTION_SECRET), stored as ivHex:cipherHex.
# Anything else is a legacy plaintext row.
_CIPHERTEXT_RE = re.compile(r"^[0-9a-fA-F]{32}:(?:[0-9a-fA-F]{32})+$")


class DecryptionError(Exception):
    pass


@dataclass(frozen=True)
class EncryptedValue:
    plaintext: str


@dataclass(frozen=True)
class LegacyPlaintext:
    plaintext: str


StoredSecret = EncryptedValue | LegacyPlaintext


def is_ciphertext(value: str) -> bool:
    return bool(_CIPHERTEXT_RE.match(value or ""))


class SecretCipher:
    def __init__(self, secret: str):
        if secret == DEFAULT_ENCRYPTION_SECRET:
            logger.warning("ENCRYPTION_SECRET is the built-in default; stored panel keys are not protected")
        self._key = hashlib.sha256(secret.encode("utf-8")).digest()

    def encrypt(self, text: str) -> str:
        if not text:
            raise ValueError("Cannot encrypt an empty value")
        iv = os.urandom(16)
        padder = padding.PKCS7(algorithms.AES.block_size).padder()
        padded = padder.update(text.encode("utf-8")) + padder.finalize()
        encryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).encryptor()
        encrypted = encryptor.update(padded) + encryptor.finalize()
        return f"{iv.hex()}:{encrypted.hex()}"

    def decrypt(self, stored: str) -> StoredSecret:
        if not is_ciphertext(stored):
            return LegacyPlaintext(stored)

        iv_hex, cipher_hex = stored.split(":", 1)
        try:
            decryptor = Cipher(algorithms.AES(self._key), modes.CBC(bytes.fromhex(iv_hex))).decryptor()
            padded = decryptor.update(bytes.fromhex(cipher_hex)) + decryptor.finalize()
            unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
            raw = unpadder.update(padded) + unpadder.finalize()
            return EncryptedValue(raw.decode("utf-8"))
        except ValueError as e:
            # Wrong secret or corrupted row; UnicodeDecodeError is a ValueError too.
            raise DecryptionError(f"Stored secret could not be decrypted: {e}") from e


_default_cipher: SecretCipher | None = None


def get_cipher() -> SecretCipher:
    global _default_cipher
    if _default_cipher is None:
        _default_cipher = SecretCipher(settings.ENCRYPTION_SECRET)
    return _default_cipher
