"""
Configuration Secret Codec
==========================

Symmetric encryption for sensitive configuration scalars (client secrets,
the session secret) so they can sit on disk in the configuration document.

Format:
    ``ENC:`` + base64(IV || AES-256-CBC(PKCS7(plaintext)))

Key material comes from the ``CONFIG_ENCRYPTION_KEY`` environment variable:
    - a base64 value that decodes to exactly 32 bytes is used as the key
    - anything else is a passphrase stretched with PBKDF2-HMAC-SHA256

When no key is configured both directions are the identity, so a
development setup can run with plaintext secrets.
"""

import base64
import binascii
import logging
import os
from dataclasses import dataclass
from typing import List, Optional

from cryptography.hazmat.primitives import hashes, padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from ..exceptions import DecryptionFailedError

logger = logging.getLogger(__name__)

ENV_KEY_NAME = "CONFIG_ENCRYPTION_KEY"
ENCRYPTION_PREFIX = "ENC:"

IV_SIZE = 16
KEY_SIZE = 32
PBKDF2_ITERATIONS = 10000


# =============================================================================
# Key Derivation
# =============================================================================

@dataclass(frozen=True)
class KeyDerivation:
    """A named salt used to turn the configured key input into an AES key."""

    name: str
    salt: bytes

    def derive(self, key_input: str) -> bytes:
        """
        Derive a 32-byte AES key from the configured key input.

        Args:
            key_input: Raw value of CONFIG_ENCRYPTION_KEY

        Returns:
            32-byte key
        """
        try:
            raw = base64.b64decode(key_input, validate=True)
            if len(raw) == KEY_SIZE:
                return raw
        except (binascii.Error, ValueError):
            pass  # passphrase

        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=KEY_SIZE,
            salt=self.salt,
            iterations=PBKDF2_ITERATIONS,
        )
        return kdf.derive(key_input.encode("utf-8"))


CURRENT_DERIVATION = KeyDerivation("current", b"fwda-forward-auth-salt")
LEGACY_DERIVATION = KeyDerivation("legacy", b"nginx-forward-auth-salt")

# Order matters: new ciphertext is always written with the first entry.
KEY_DERIVATIONS: List[KeyDerivation] = [CURRENT_DERIVATION, LEGACY_DERIVATION]


def get_key_input() -> Optional[str]:
    """Return the configured key input, or None when encryption is disabled."""
    value = os.environ.get(ENV_KEY_NAME)
    return value or None


# =============================================================================
# Encrypt / Decrypt
# =============================================================================

def encrypt(plain_text: str) -> str:
    """
    Encrypt a configuration scalar.

    A fresh IV is generated on every call, so encrypting the same value twice
    yields different output.

    Args:
        plain_text: Value to protect

    Returns:
        ``ENC:``-prefixed ciphertext, or the input unchanged if no key is set
    """
    key_input = get_key_input()
    if key_input is None:
        return plain_text

    return encrypt_with(CURRENT_DERIVATION, plain_text, key_input)


def decrypt(encrypted_text: str) -> str:
    """
    Decrypt a configuration scalar.

    Values without the ``ENC:`` marker are plaintext and returned as is.
    Keyed attempts run in KEY_DERIVATIONS order.

    Args:
        encrypted_text: Value read from the configuration document

    Returns:
        Plaintext value

    Raises:
        DecryptionFailedError: If the payload is malformed or no key works
    """
    key_input = get_key_input()
    if key_input is None:
        return encrypted_text

    if not encrypted_text.startswith(ENCRYPTION_PREFIX):
        return encrypted_text

    try:
        payload = base64.b64decode(encrypted_text[len(ENCRYPTION_PREFIX):], validate=True)
    except (binascii.Error, ValueError) as e:
        raise DecryptionFailedError("Invalid base64 in encrypted data") from e

    if len(payload) <= IV_SIZE:
        raise DecryptionFailedError("Encrypted data is too short")

    iv, cipher_bytes = payload[:IV_SIZE], payload[IV_SIZE:]

    for derivation in KEY_DERIVATIONS:
        key = derivation.derive(key_input)
        try:
            plain = _decrypt_block(key, iv, cipher_bytes)
        except (ValueError, UnicodeDecodeError):
            logger.debug(f"Decryption with {derivation.name} key failed, trying next")
            continue

        if derivation is not CURRENT_DERIVATION:
            logger.info(f"Decrypted configuration value with {derivation.name} key")
        return plain

    raise DecryptionFailedError()


def _decrypt_block(key: bytes, iv: bytes, cipher_bytes: bytes) -> str:
    decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
    padded = decryptor.update(cipher_bytes) + decryptor.finalize()

    unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
    plain = unpadder.update(padded) + unpadder.finalize()
    return plain.decode("utf-8")


def encrypt_with(derivation: KeyDerivation, plain_text: str, key_input: str) -> str:
    """
    Encrypt with an explicit derivation.

    Only useful for producing values in the legacy format (migration tooling
    and tests); normal writes go through encrypt().
    """
    key = derivation.derive(key_input)
    iv = os.urandom(IV_SIZE)

    padder = padding.PKCS7(algorithms.AES.block_size).padder()
    padded = padder.update(plain_text.encode("utf-8")) + padder.finalize()

    encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
    cipher_bytes = encryptor.update(padded) + encryptor.finalize()

    return ENCRYPTION_PREFIX + base64.b64encode(iv + cipher_bytes).decode("ascii")
