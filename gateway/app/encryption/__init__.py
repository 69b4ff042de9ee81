"""
Configuration secret codec.

Exports:
    - encrypt / decrypt: ``ENC:``-prefixed AES-CBC codec keyed by CONFIG_ENCRYPTION_KEY
    - EncryptedString: pydantic-aware wrapper for secret configuration scalars
"""

from .crypto import (
    ENCRYPTION_PREFIX,
    ENV_KEY_NAME,
    KEY_DERIVATIONS,
    decrypt,
    encrypt,
)
from .secret import EncryptedString

__all__ = [
    "ENCRYPTION_PREFIX",
    "ENV_KEY_NAME",
    "KEY_DERIVATIONS",
    "EncryptedString",
    "decrypt",
    "encrypt",
]
