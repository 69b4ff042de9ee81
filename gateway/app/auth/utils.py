"""
Authentication utilities for OIDC discovery and ID token verification.

This module handles:
- Fetching and caching a provider's discovery document and JWKS
- Verifying ID tokens against the provider's signing keys
- PKCE helpers for the authorization code flow

One ProviderClient exists per OIDC scheme, so each portal's provider is
cached independently.
"""

import base64
import hashlib
import logging
import secrets
import time
from typing import Any, Dict, List, Optional

import httpx
from jose import JWTError, jwk, jwt
from pydantic import BaseModel, ConfigDict

logger = logging.getLogger(__name__)

SUPPORTED_ALGORITHMS = ["RS256", "RS384", "RS512", "ES256", "ES384", "ES512"]


# =============================================================================
# PKCE Helper Functions
# =============================================================================

def generate_code_verifier() -> str:
    """
    Generate a cryptographically random code verifier for PKCE.

    Returns:
        Base64-URL-encoded random string (43 characters)
    """
    verifier_bytes = secrets.token_bytes(32)
    return base64.urlsafe_b64encode(verifier_bytes).decode("utf-8").rstrip("=")


def generate_code_challenge(verifier: str) -> str:
    """
    Generate code challenge from verifier using S256 method.

    Args:
        verifier: Code verifier string

    Returns:
        Base64-URL-encoded SHA256 hash of verifier
    """
    digest = hashlib.sha256(verifier.encode("utf-8")).digest()
    return base64.urlsafe_b64encode(digest).decode("utf-8").rstrip("=")


# =============================================================================
# Provider Metadata
# =============================================================================

class ProviderMetadata(BaseModel):
    """Fields of the discovery document the gateway relies on."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    issuer: str
    authorization_endpoint: str
    token_endpoint: str
    jwks_uri: str
    userinfo_endpoint: Optional[str] = None
    end_session_endpoint: Optional[str] = None


class ProviderClient:
    """
    Discovery/JWKS access for one identity provider.

    Results are memoized in process for ``cache_seconds``. A token signed by
    an unknown ``kid`` forces one JWKS refresh in case keys were rotated.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        metadata_address: str,
        require_https_metadata: bool = True,
        cache_seconds: int = 3600,
        timeout: float = 10.0,
    ):
        self._http = http_client
        self.metadata_address = metadata_address
        self.require_https_metadata = require_https_metadata
        self._cache_seconds = cache_seconds
        self._timeout = timeout

        self._metadata: Optional[ProviderMetadata] = None
        self._metadata_time: float = 0.0
        self._jwks: Optional[Dict[str, Any]] = None
        self._jwks_time: float = 0.0

    @property
    def http(self) -> httpx.AsyncClient:
        return self._http

    @property
    def timeout(self) -> float:
        return self._timeout

    def _check_https(self, url: str) -> None:
        if self.require_https_metadata and not url.lower().startswith("https://"):
            raise ValueError(f"HTTPS is required for provider metadata, got: {url}")

    async def get_metadata(self, force_refresh: bool = False) -> ProviderMetadata:
        """
        Fetch the discovery document with caching.

        Raises:
            httpx.HTTPError: If the document is unreachable
            ValueError: If the document is invalid or violates the HTTPS requirement
        """
        current_time = time.time()
        if (
            not force_refresh
            and self._metadata is not None
            and (current_time - self._metadata_time) < self._cache_seconds
        ):
            return self._metadata

        self._check_https(self.metadata_address)

        response = await self._http.get(self.metadata_address, timeout=self._timeout)
        response.raise_for_status()

        try:
            metadata = ProviderMetadata.model_validate(response.json())
        except Exception as e:
            raise ValueError(f"Invalid discovery document at {self.metadata_address}: {e}") from e

        self._metadata = metadata
        self._metadata_time = current_time
        logger.debug(f"Loaded provider metadata for issuer {metadata.issuer}")
        return metadata

    async def fetch_jwks(self, force_refresh: bool = False) -> Dict[str, Any]:
        """
        Fetch JWKS from the provider with caching.

        Raises:
            httpx.HTTPError: If JWKS endpoint is unreachable
            ValueError: If response is invalid
        """
        current_time = time.time()
        if (
            not force_refresh
            and self._jwks is not None
            and (current_time - self._jwks_time) < self._cache_seconds
        ):
            return self._jwks

        metadata = await self.get_metadata()
        self._check_https(metadata.jwks_uri)

        response = await self._http.get(metadata.jwks_uri, timeout=self._timeout)
        response.raise_for_status()

        jwks_data = response.json()
        if "keys" not in jwks_data:
            raise ValueError("Invalid JWKS response: missing 'keys' field")

        self._jwks = jwks_data
        self._jwks_time = current_time
        return jwks_data

    async def verify_id_token(
        self,
        id_token: str,
        client_id: str,
        nonce: Optional[str],
    ) -> Dict[str, Any]:
        """
        Verify and decode an ID token from this provider.

        This function performs comprehensive validation:
        1. Finds the signing key in JWKS (refreshing once on a miss)
        2. Verifies the token signature
        3. Validates iss, aud, exp, nbf, iat
        4. Checks the nonce issued with the challenge

        Raises:
            JWTError: If token is invalid, expired, or signature doesn't match
            httpx.HTTPError: If JWKS endpoint is unreachable
        """
        metadata = await self.get_metadata()

        try:
            header = jwt.get_unverified_header(id_token)
        except JWTError as e:
            raise JWTError(f"Failed to decode token header: {e}")

        algorithm = header.get("alg")
        if algorithm not in SUPPORTED_ALGORITHMS:
            raise JWTError(f"Unsupported token algorithm: {algorithm}")

        jwks = await self.fetch_jwks()
        signing_key = get_signing_key(header, jwks)
        if not signing_key:
            jwks = await self.fetch_jwks(force_refresh=True)
            signing_key = get_signing_key(header, jwks)

            if not signing_key:
                raise JWTError(
                    "Unable to find matching signing key in JWKS. "
                    "Keys may have rotated."
                )

        try:
            public_key = jwk.construct(signing_key, algorithm=algorithm)
        except Exception as e:
            raise JWTError(f"Failed to construct public key from JWK: {e}")

        try:
            claims = jwt.decode(
                id_token,
                public_key.to_pem().decode("utf-8"),
                algorithms=[algorithm],
                audience=client_id,
                issuer=metadata.issuer,
                options={
                    "verify_signature": True,
                    "verify_aud": True,
                    "verify_iat": True,
                    "verify_exp": True,
                    "verify_nbf": True,
                    "verify_iss": True,
                    "verify_sub": True,
                    "verify_jti": False,
                    "verify_at_hash": False,
                    "leeway": 10,  # 10 seconds clock skew tolerance
                },
            )
        except jwt.ExpiredSignatureError:
            raise JWTError("ID token has expired")
        except jwt.JWTClaimsError as e:
            raise JWTError(f"Invalid token claims: {e}")

        if not validate_nonce(claims, nonce):
            raise JWTError("Nonce mismatch")

        return claims


def get_signing_key(header: Dict[str, Any], jwks: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """
    Pick the key from JWKS that matches the token header.

    Tokens without ``kid`` are accepted only when the set holds exactly one
    signing key.
    """
    keys: List[Dict[str, Any]] = [
        key for key in jwks.get("keys", []) if key.get("use", "sig") == "sig"
    ]

    kid = header.get("kid")
    if not kid:
        return keys[0] if len(keys) == 1 else None

    for key in keys:
        if key.get("kid") == kid:
            return key

    return None


def validate_nonce(claims: Dict[str, Any], expected_nonce: Optional[str]) -> bool:
    """
    Validate nonce claim.

    Returns:
        True if nonce matches or neither side has one, False otherwise
    """
    token_nonce = claims.get("nonce")

    if not token_nonce and not expected_nonce:
        return True

    return bool(token_nonce) and token_nonce == expected_nonce
