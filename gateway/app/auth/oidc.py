"""
OpenID Connect authorization code flow for one portal.

This module implements the OAuth 2.0 / OIDC authorization code flow with
PKCE (S256), state and nonce. Pending challenges are kept server-side,
protected, in the distributed cache under ``Correlation:{state}`` for ten
minutes and are single-use. The browser additionally carries the state in a
correlation cookie named after the challenge, so a callback can only be
completed by the browser that started it and sign-ins started in parallel
tabs each keep their own cookie.

Every failure between leaving for the provider and holding a validated
identity surfaces as RemoteProviderFailure.
"""

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple
from urllib.parse import urlencode

import httpx
from fastapi import Request, Response
from fastapi.responses import RedirectResponse
from jose import JWTError
from pydantic import BaseModel, ConfigDict, ValidationError

from app.auth import hooks
from app.auth.claims import NAME_CLAIM, ROLE_CLAIM, SessionPrincipal
from app.auth.protection import DataProtector
from app.auth.redirect import ForwardedContext
from app.auth.session import CookieScheme
from app.auth.utils import ProviderClient, generate_code_challenge, generate_code_verifier
from app.cache import DistributedCache
from app.exceptions import ProviderUnavailableError, RemoteProviderFailure, TicketCorruptionError

logger = logging.getLogger(__name__)

CORRELATION_PREFIX = "Correlation:"
CORRELATION_TTL_SECONDS = 600


def oidc_scheme_name(portal: str) -> str:
    return f"oidc-{portal}"


CORRELATION_COOKIE_STATE_CHARS = 8


def correlation_cookie_name(portal: str, state: str) -> str:
    """Cookie for one pending challenge: ``fwda-correlation-{portal}.{state prefix}``."""
    return f"fwda-correlation-{portal}.{state[:CORRELATION_COOKIE_STATE_CHARS]}"


# =============================================================================
# Pending Challenges
# =============================================================================

class PendingChallenge(BaseModel):
    """Everything the callback needs to finish a challenge."""

    model_config = ConfigDict(frozen=True)

    state: str
    nonce: str
    code_verifier: str
    redirect_uri: str
    return_url: Optional[str] = None
    portal: str
    created_at: datetime


class CorrelationStore:
    """Single-use, protected storage for pending challenges."""

    def __init__(
        self,
        cache: DistributedCache,
        protector: DataProtector,
        ttl_seconds: int = CORRELATION_TTL_SECONDS,
    ):
        self._cache = cache
        self._protector = protector
        self._ttl = ttl_seconds

    async def save(self, challenge: PendingChallenge) -> None:
        payload = self._protector.protect(challenge.model_dump_json().encode("utf-8"))
        await self._cache.set(CORRELATION_PREFIX + challenge.state, payload, self._ttl)
        logger.debug("Pending challenge stored", extra={"state_prefix": challenge.state[:8]})

    async def take(self, state: str) -> Optional[PendingChallenge]:
        """Retrieve and delete the challenge for ``state``; None if unknown or unreadable."""
        if not state:
            return None

        payload = await self._cache.pop(CORRELATION_PREFIX + state)
        if payload is None:
            logger.debug("Pending challenge not found", extra={"state_prefix": state[:8]})
            return None

        try:
            return PendingChallenge.model_validate_json(self._protector.unprotect(payload))
        except (TicketCorruptionError, ValidationError):
            logger.warning("Discarding unreadable pending challenge", extra={"state_prefix": state[:8]})
            return None


# =============================================================================
# Scheme
# =============================================================================

@dataclass(frozen=True)
class OidcOptions:
    """Resolved registration of one portal's OIDC scheme."""

    portal: str
    scheme_name: str
    authority: str
    metadata_address: str
    require_https_metadata: bool
    client_id: str
    client_secret: str
    scopes: Tuple[str, ...]
    callback_path: str
    sign_in_scheme: str
    response_type: str = "code"
    save_tokens: bool = False
    get_claims_from_userinfo: bool = True
    name_claim_type: str = NAME_CLAIM
    role_claim_type: str = ROLE_CLAIM


@dataclass(frozen=True)
class SignInResult:
    principal: SessionPrincipal
    handle: str
    state: str


class OidcScheme:
    """Challenge and callback handling for ``oidc-{portal}``."""

    def __init__(
        self,
        options: OidcOptions,
        provider: ProviderClient,
        correlations: CorrelationStore,
        sign_in: CookieScheme,
    ):
        self.options = options
        self.name = options.scheme_name
        self._provider = provider
        self._correlations = correlations
        self._sign_in = sign_in

    def correlation_cookie(self, state: str) -> str:
        return correlation_cookie_name(self.options.portal, state)

    # -------------------------------------------------------------------------
    # Challenge
    # -------------------------------------------------------------------------

    async def challenge(self, request: Request, return_url: Optional[str]) -> RedirectResponse:
        """
        Send the browser to the provider's authorization endpoint.

        Raises:
            ProviderUnavailableError: If the discovery document cannot be loaded
            CacheUnavailableError: If the pending challenge cannot be stored
        """
        portal = self.options.portal
        try:
            metadata = await self._provider.get_metadata()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Unable to load provider metadata for portal {portal}: {e}")
            raise ProviderUnavailableError() from e

        context = ForwardedContext.from_request(request)
        default_redirect_uri = str(request.base_url).rstrip("/") + self.options.callback_path
        mutation = hooks.on_redirect_to_provider(
            portal,
            context,
            self.options.callback_path,
            original_redirect_uri=default_redirect_uri,
        )

        # Generate security parameters
        state = secrets.token_urlsafe(32)
        nonce = secrets.token_urlsafe(32)
        code_verifier = generate_code_verifier()

        await self._correlations.save(
            PendingChallenge(
                state=state,
                nonce=nonce,
                code_verifier=code_verifier,
                redirect_uri=mutation.redirect_uri,
                return_url=return_url,
                portal=portal,
                created_at=datetime.now(timezone.utc),
            )
        )

        params = {
            "client_id": self.options.client_id,
            "response_type": self.options.response_type,
            "redirect_uri": mutation.redirect_uri,
            "response_mode": "query",
            "scope": " ".join(self.options.scopes),
            "state": state,
            "nonce": nonce,
            "code_challenge": generate_code_challenge(code_verifier),
            "code_challenge_method": "S256",
        }
        separator = "&" if "?" in metadata.authorization_endpoint else "?"
        authorization_url = f"{metadata.authorization_endpoint}{separator}{urlencode(params)}"

        logger.info(f"Challenging {self.name} for portal {portal}")

        response = RedirectResponse(url=authorization_url, status_code=302)
        response.set_cookie(
            key=self.correlation_cookie(state),
            value=state,
            max_age=CORRELATION_TTL_SECONDS,
            path="/",
            secure=True,
            httponly=True,
            samesite="lax",
        )
        return response

    # -------------------------------------------------------------------------
    # Callback
    # -------------------------------------------------------------------------

    async def handle_callback(self, request: Request) -> SignInResult:
        """
        Complete the round-trip: validate the response, redeem the code,
        minimize the identity and store a session ticket for ``cookie-{portal}``.

        Raises:
            RemoteProviderFailure: On any provider or validation failure
            CacheUnavailableError: If the cache cannot be reached
        """
        portal = self.options.portal
        hooks.on_message_received(portal)

        params = request.query_params
        error = params.get("error")
        if error:
            description = params.get("error_description") or error
            raise RemoteProviderFailure(f"Provider returned an error: {description}")

        code = params.get("code")
        state = params.get("state")
        if not code or not state:
            raise RemoteProviderFailure("Missing required parameters (code or state)")

        expected_state = request.cookies.get(self.correlation_cookie(state))
        if not expected_state or not secrets.compare_digest(state, expected_state):
            raise RemoteProviderFailure("Correlation failed: state does not match this browser")

        challenge = await self._correlations.take(state)
        if challenge is None or challenge.portal != portal:
            raise RemoteProviderFailure("Correlation failed: unknown or expired state")

        try:
            claims = await self._redeem(code, challenge)
        except (httpx.HTTPError, JWTError, ValueError, KeyError) as e:
            raise RemoteProviderFailure(f"Token validation failed: {e}") from e

        mutation = hooks.on_token_validated(
            portal,
            claims,
            {"return_url": challenge.return_url, "portal": portal},
            authentication_type=self.name,
        )
        handle = await self._sign_in.issue(mutation.principal, {"portal": portal})
        return SignInResult(principal=mutation.principal, handle=handle, state=state)

    def complete_sign_in(self, response: Response, result: SignInResult) -> None:
        """Write the session cookie and drop the correlation cookie."""
        self._sign_in.write_cookie(response, result.handle)
        response.delete_cookie(
            key=self.correlation_cookie(result.state),
            path="/",
            secure=True,
            httponly=True,
            samesite="lax",
        )

    async def _redeem(self, code: str, challenge: PendingChallenge) -> Dict[str, Any]:
        tokens = await self._exchange_code_for_tokens(code, challenge)

        id_token = tokens.get("id_token")
        if not id_token:
            raise ValueError("Token response missing id_token")

        claims = await self._provider.verify_id_token(
            id_token,
            client_id=self.options.client_id,
            nonce=challenge.nonce,
        )

        access_token = tokens.get("access_token")
        if self.options.get_claims_from_userinfo and access_token:
            claims = await self._merge_userinfo(claims, access_token)

        return claims

    async def _exchange_code_for_tokens(self, code: str, challenge: PendingChallenge) -> Dict[str, Any]:
        """
        Exchange authorization code for tokens.

        Raises:
            httpx.HTTPError: If token exchange fails
        """
        metadata = await self._provider.get_metadata()

        payload = {
            "client_id": self.options.client_id,
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": challenge.redirect_uri,
            "code_verifier": challenge.code_verifier,
        }

        # Add client secret if available (confidential client)
        if self.options.client_secret:
            payload["client_secret"] = self.options.client_secret

        response = await self._provider.http.post(
            metadata.token_endpoint,
            data=payload,
            headers={"Accept": "application/json"},
            timeout=self._provider.timeout,
        )

        if not response.is_success:
            error_data = (
                response.json()
                if response.headers.get("content-type", "").startswith("application/json")
                else {}
            )
            error_msg = error_data.get("error_description") or error_data.get("error") or "Token exchange failed"
            raise httpx.HTTPError(f"Token exchange failed: {error_msg}")

        return response.json()

    async def _merge_userinfo(self, claims: Dict[str, Any], access_token: str) -> Dict[str, Any]:
        metadata = await self._provider.get_metadata()
        if not metadata.userinfo_endpoint:
            return claims

        response = await self._provider.http.get(
            metadata.userinfo_endpoint,
            headers={"Authorization": f"Bearer {access_token}"},
            timeout=self._provider.timeout,
        )
        response.raise_for_status()
        userinfo = response.json()

        if userinfo.get("sub") != claims.get("sub"):
            raise ValueError("UserInfo subject does not match the id_token subject")

        merged = dict(claims)
        for key, value in userinfo.items():
            merged.setdefault(key, value)
        return merged
