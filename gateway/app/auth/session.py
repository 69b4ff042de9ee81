"""
Cookie Session Management Module
================================

Cookie authentication schemes for the gateway. One scheme exists per portal
(``cookie-{portal}``, cookie ``fwda-{portal}``) plus a default scheme
(``cookie``, cookie ``fwda``).

The cookie carries only a ticket handle; the ticket itself lives in the
TicketStore. Expiration is sliding: once more than half of the window has
elapsed, an authenticated request renews the ticket under the same handle
and re-issues the cookie.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from fastapi import Request, Response

from app.auth.claims import SessionPrincipal
from app.auth.tickets import SessionTicket, TicketStore

logger = logging.getLogger(__name__)

DEFAULT_COOKIE_SCHEME = "cookie"
DEFAULT_COOKIE_NAME = "fwda"


def cookie_scheme_name(portal: str) -> str:
    return f"cookie-{portal}"


def cookie_name(portal: str) -> str:
    return f"fwda-{portal}"


# =============================================================================
# Results
# =============================================================================

@dataclass(frozen=True)
class AuthenticateResult:
    """Outcome of reading a session cookie."""

    principal: Optional[SessionPrincipal] = None
    handle: Optional[str] = None
    renewed: bool = False

    @property
    def succeeded(self) -> bool:
        return self.principal is not None

    @classmethod
    def no_result(cls) -> "AuthenticateResult":
        return cls()


# =============================================================================
# Cookie Scheme
# =============================================================================

class CookieScheme:
    """Reads, issues and clears one session cookie backed by the ticket store."""

    def __init__(
        self,
        name: str,
        cookie: str,
        ticket_store: TicketStore,
        domain: Optional[str] = None,
    ):
        """
        Args:
            name: Scheme name (``cookie`` or ``cookie-{portal}``)
            cookie: Cookie name (``fwda`` or ``fwda-{portal}``)
            ticket_store: Shared server-side ticket store
            domain: Cookie domain; host-only when empty
        """
        self.name = name
        self.cookie = cookie
        self.domain = domain or None
        self._tickets = ticket_store

    @property
    def lifetime(self) -> timedelta:
        return self._tickets.expiration

    # -------------------------------------------------------------------------
    # Authenticate
    # -------------------------------------------------------------------------

    async def authenticate(self, request: Request) -> AuthenticateResult:
        """
        Resolve the session behind this scheme's cookie.

        Returns:
            AuthenticateResult with the principal, or an empty result when
            the cookie is missing or its ticket is absent or expired

        Raises:
            CacheUnavailableError: If the ticket store cannot be reached
        """
        handle = request.cookies.get(self.cookie)
        if not handle:
            return AuthenticateResult.no_result()

        ticket = await self._tickets.retrieve(handle)
        if ticket is None:
            logger.debug(f"No session ticket behind {self.cookie} cookie")
            return AuthenticateResult.no_result()

        now = datetime.now(timezone.utc)
        if ticket.is_expired(now):
            await self._tickets.remove(handle)
            logger.debug(f"Session ticket for {self.name} expired")
            return AuthenticateResult.no_result()

        renewed = False
        if self._should_renew(ticket, now):
            await self._tickets.renew(handle, ticket.renewed(self.lifetime))
            renewed = True
            logger.debug(f"Renewed session ticket for {self.name}")

        return AuthenticateResult(principal=ticket.principal, handle=handle, renewed=renewed)

    @staticmethod
    def _should_renew(ticket: SessionTicket, now: datetime) -> bool:
        window = ticket.expires_at - ticket.issued_at
        return (now - ticket.issued_at) > window / 2

    def apply(self, response: Response, result: AuthenticateResult) -> None:
        """Re-issue the cookie on ``response`` if authentication renewed the ticket."""
        if result.renewed and result.handle:
            self.write_cookie(response, result.handle)

    # -------------------------------------------------------------------------
    # Sign In / Sign Out
    # -------------------------------------------------------------------------

    async def issue(self, principal: SessionPrincipal, items: Optional[Dict[str, Any]] = None) -> str:
        """Store a fresh ticket for ``principal`` and return its handle."""
        ticket = SessionTicket.issue(principal, self.name, self.lifetime, items)
        handle = await self._tickets.store(ticket)
        logger.info(
            f"Signed in to {self.name}",
            extra={"portal": principal.portal, "user": principal.display_name},
        )
        return handle

    def write_cookie(self, response: Response, handle: str) -> None:
        response.set_cookie(
            key=self.cookie,
            value=handle,
            max_age=int(self.lifetime.total_seconds()),
            path="/",
            domain=self.domain,
            secure=True,
            httponly=True,
            samesite="lax",
        )

    async def sign_in(
        self,
        response: Response,
        principal: SessionPrincipal,
        items: Optional[Dict[str, Any]] = None,
    ) -> str:
        handle = await self.issue(principal, items)
        self.write_cookie(response, handle)
        return handle

    async def sign_out(self, request: Request, response: Response) -> None:
        """Remove the ticket behind the cookie (if any) and expire the cookie."""
        handle = request.cookies.get(self.cookie)
        if handle:
            await self._tickets.remove(handle)

        response.delete_cookie(
            key=self.cookie,
            path="/",
            domain=self.domain,
            secure=True,
            httponly=True,
            samesite="lax",
        )
        logger.info(f"Signed out of {self.name}")
