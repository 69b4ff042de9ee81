"""
Encrypted configuration values.

``EncryptedString`` holds a decrypted secret in memory. The value is only
reachable through ``reveal()``; ``str()`` and ``repr()`` are masked so a
secret never ends up in a log line or a traceback by accident.
"""

from typing import Any

from pydantic import GetCoreSchemaHandler
from pydantic_core import core_schema

from .crypto import decrypt, encrypt

_MASK = "********"


class EncryptedString:
    """A secret scalar that is decrypted on load and encrypted on dump."""

    __slots__ = ("_value",)

    def __init__(self, value: str = ""):
        self._value = value

    def reveal(self) -> str:
        """Return the plaintext value."""
        return self._value

    def __bool__(self) -> bool:
        return bool(self._value)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, EncryptedString):
            return self._value == other._value
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self._value)

    def __str__(self) -> str:
        return _MASK if self._value else ""

    def __repr__(self) -> str:
        return f"EncryptedString({_MASK!r})" if self._value else "EncryptedString('')"

    @classmethod
    def from_config(cls, raw: Any) -> "EncryptedString":
        """Build from a configuration scalar, decrypting ``ENC:`` values."""
        if isinstance(raw, EncryptedString):
            return raw
        if raw is None:
            return cls("")
        return cls(decrypt(str(raw)))

    def to_config(self) -> str:
        """Serialize for the configuration document, encrypting when a key is set."""
        return encrypt(self._value)

    @classmethod
    def __get_pydantic_core_schema__(
        cls, source_type: Any, handler: GetCoreSchemaHandler
    ) -> core_schema.CoreSchema:
        return core_schema.no_info_plain_validator_function(
            cls.from_config,
            serialization=core_schema.plain_serializer_function_ser_schema(
                lambda value: value.to_config(),
                when_used="json-unless-none",
            ),
        )
