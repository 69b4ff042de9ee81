"""
Data protection for server-side payloads.

A key ring of Fernet master keys (current first) is expanded into
purpose-scoped protectors with HKDF, so a session ticket can never be
unprotected as a pending challenge and vice versa. Every instance sharing a
cache must share the key ring.

Key ring sources, in order:
    1. DATA_PROTECTION_KEY (comma separated)
    2. ``key-ring.txt`` under DP_KEYS_PATH, generated on first start
"""

import base64
import logging
from pathlib import Path
from typing import List

from cryptography.fernet import Fernet, InvalidToken, MultiFernet
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from app.config import Settings
from app.exceptions import ConfigurationError, TicketCorruptionError

logger = logging.getLogger(__name__)

KEY_RING_FILE = "key-ring.txt"

TICKET_PURPOSE = "fwda.session-tickets.v1"
CORRELATION_PURPOSE = "fwda.pending-challenges.v1"


class DataProtector:
    """Encrypts and authenticates payloads for a single purpose."""

    def __init__(self, master_keys: List[bytes], purpose: str):
        if not master_keys:
            raise ConfigurationError("Data protection key ring is empty")

        self.purpose = purpose
        self._fernet = MultiFernet(
            [Fernet(_derive_purpose_key(key, purpose)) for key in master_keys]
        )

    def protect(self, data: bytes) -> bytes:
        return self._fernet.encrypt(data)

    def unprotect(self, token: bytes) -> bytes:
        """
        Raises:
            TicketCorruptionError: If the payload was tampered with, was
                produced for another purpose, or no key in the ring matches
        """
        try:
            return self._fernet.decrypt(token)
        except InvalidToken as e:
            raise TicketCorruptionError() from e


def _derive_purpose_key(master_key: bytes, purpose: str) -> bytes:
    raw = HKDF(
        algorithm=hashes.SHA256(),
        length=32,
        salt=None,
        info=purpose.encode("utf-8"),
    ).derive(master_key)
    return base64.urlsafe_b64encode(raw)


def _decode_key(encoded: str) -> bytes:
    try:
        raw = base64.urlsafe_b64decode(encoded.encode("ascii"))
    except (ValueError, UnicodeEncodeError) as e:
        raise ConfigurationError("Data protection key is not valid base64") from e
    if len(raw) != 32:
        raise ConfigurationError("Data protection key must decode to 32 bytes")
    return raw


def load_key_ring(settings: Settings) -> List[bytes]:
    """
    Resolve the master key ring.

    Raises:
        ConfigurationError: If a configured key is malformed or the key
            ring file cannot be read or created
    """
    if settings.data_protection_keys:
        return [_decode_key(key) for key in settings.data_protection_keys]

    key_file = Path(settings.DP_KEYS_PATH) / KEY_RING_FILE
    try:
        if key_file.exists():
            lines = key_file.read_text(encoding="ascii").split()
            keys = [_decode_key(line) for line in lines if line.strip()]
            if keys:
                logger.info(f"Loaded {len(keys)} data protection key(s) from {key_file}")
                return keys

        key_file.parent.mkdir(parents=True, exist_ok=True)
        new_key = Fernet.generate_key().decode("ascii")
        key_file.write_text(new_key + "\n", encoding="ascii")
        key_file.chmod(0o600)
    except OSError as e:
        raise ConfigurationError(f"Unable to access data protection key ring at {key_file}: {e}") from e

    logger.warning(f"Generated a new data protection key at {key_file}")
    return [_decode_key(new_key)]
