"""
Server-side session ticket store.

The browser only ever holds an opaque handle (``AuthSession:<32 hex>``). The
ticket it points to is serialized to JSON, protected with the ticket-purpose
DataProtector and written to the distributed cache with a sliding expiry.

A ticket that cannot be unprotected or parsed is treated as absent, so a
corrupted or foreign entry results in "not authenticated". An unreachable
cache is NOT treated as absent: CacheUnavailableError propagates.
"""

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from app.auth.claims import SessionPrincipal
from app.auth.protection import DataProtector
from app.cache import DistributedCache
from app.exceptions import TicketCorruptionError

logger = logging.getLogger(__name__)

HANDLE_PREFIX = "AuthSession:"


class SessionTicket(BaseModel):
    """Principal plus authentication properties."""

    model_config = ConfigDict(frozen=True)

    principal: SessionPrincipal
    scheme: str
    issued_at: datetime
    expires_at: datetime
    items: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def issue(
        cls,
        principal: SessionPrincipal,
        scheme: str,
        lifetime: timedelta,
        items: Optional[Dict[str, Any]] = None,
    ) -> "SessionTicket":
        now = datetime.now(timezone.utc)
        return cls(
            principal=principal,
            scheme=scheme,
            issued_at=now,
            expires_at=now + lifetime,
            items=items or {},
        )

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return now >= self.expires_at

    def renewed(self, lifetime: timedelta) -> "SessionTicket":
        """Copy with the window restarted from now."""
        now = datetime.now(timezone.utc)
        return self.model_copy(update={"issued_at": now, "expires_at": now + lifetime})


def new_handle() -> str:
    return HANDLE_PREFIX + uuid.uuid4().hex


def _short(handle: str) -> str:
    return handle[: len(HANDLE_PREFIX) + 8]


class TicketStore:
    """Persists protected tickets in a DistributedCache keyed by handle."""

    def __init__(self, cache: DistributedCache, protector: DataProtector, expiration: timedelta):
        """
        Args:
            cache: Backing cache (memory or Redis)
            protector: Protector scoped to the ticket purpose
            expiration: Sliding expiration applied to every write
        """
        self._cache = cache
        self._protector = protector
        self._expiration = expiration

    @property
    def expiration(self) -> timedelta:
        return self._expiration

    async def store(self, ticket: SessionTicket) -> str:
        """Persist a new ticket and return its handle."""
        handle = new_handle()
        await self.renew(handle, ticket)
        logger.debug(f"Stored session ticket {_short(handle)}", extra={"portal": ticket.principal.portal})
        return handle

    async def renew(self, handle: str, ticket: SessionTicket) -> None:
        """
        Overwrite the ticket under an existing handle.

        Raises:
            ValueError: If ``handle`` is empty
            CacheUnavailableError: If the cache cannot be reached
        """
        if not handle:
            raise ValueError("handle must not be empty")

        payload = self._protector.protect(ticket.model_dump_json().encode("utf-8"))
        await self._cache.set(handle, payload, int(self._expiration.total_seconds()))

    async def retrieve(self, handle: str) -> Optional[SessionTicket]:
        """
        Load the ticket for ``handle``.

        Returns:
            The ticket, or None when the handle is empty, unknown, expired
            or its payload cannot be read

        Raises:
            CacheUnavailableError: If the cache cannot be reached
        """
        if not handle:
            return None

        payload = await self._cache.get(handle)
        if payload is None:
            return None

        try:
            return SessionTicket.model_validate_json(self._protector.unprotect(payload))
        except (TicketCorruptionError, ValidationError):
            logger.warning(f"Discarding unreadable session ticket {_short(handle)}")
            return None

    async def remove(self, handle: str) -> None:
        if not handle:
            return
        await self._cache.remove(handle)
