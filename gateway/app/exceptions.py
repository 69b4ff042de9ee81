"""
Gateway Exceptions
==================

Error taxonomy for the forward-auth gateway.

Every error carries an HTTP status and a machine-readable code so the
exception handlers in ``app.main`` can render a problem response without
leaking internals. Errors that must never reach a client (ticket corruption)
are caught where they are raised.
"""

from typing import Any, Dict, Optional


# =============================================================================
# Base
# =============================================================================

class GatewayError(Exception):
    """Base exception for all gateway errors."""

    title = "Gateway Error"

    def __init__(
        self,
        message: str,
        code: str = "GATEWAY_ERROR",
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)

    def to_problem(self) -> Dict[str, Any]:
        """Convert the error to an RFC 7807 problem document."""
        return {
            "type": "about:blank",
            "title": self.title,
            "status": self.status_code,
            "detail": self.message,
        }


# =============================================================================
# Configuration
# =============================================================================

class ConfigurationError(GatewayError):
    """Raised when the configuration document or a portal's settings are invalid."""

    title = "Configuration Error"

    def __init__(self, message: str = "Invalid configuration", **kwargs):
        super().__init__(
            message=message,
            code="CONFIGURATION_ERROR",
            status_code=500,
            **kwargs,
        )


class DecryptionFailedError(ConfigurationError):
    """Raised when an encrypted configuration scalar cannot be recovered with any known key."""

    title = "Decryption Failed"

    def __init__(self, message: str = "Unable to decrypt value with provided key.", **kwargs):
        super().__init__(message=message, **kwargs)
        self.code = "DECRYPTION_FAILED"


# =============================================================================
# Authentication
# =============================================================================

class PortalNotFoundError(GatewayError):
    """Raised when a request names a portal that is not in the registry."""

    title = "Not Found"

    def __init__(self, portal: str, **kwargs):
        super().__init__(
            message=f"Portal '{portal}' not found",
            code="PORTAL_NOT_FOUND",
            status_code=404,
            **kwargs,
        )
        self.portal = portal


class UnregisteredSchemeError(GatewayError):
    """Raised when a challenge targets an OIDC scheme that was not registered at startup."""

    title = "Unregistered Scheme"

    def __init__(self, scheme: str, **kwargs):
        super().__init__(
            message=(
                f"OIDC authentication scheme '{scheme}' is not registered. "
                "The application may need to be restarted to register new or updated portals."
            ),
            code="UNREGISTERED_SCHEME",
            status_code=500,
            **kwargs,
        )
        self.scheme = scheme


class RemoteProviderFailure(GatewayError):
    """Raised when the identity provider round-trip fails for any reason."""

    title = "Unauthorized"

    def __init__(self, message: str = "Remote authentication failed", **kwargs):
        super().__init__(
            message=message,
            code="REMOTE_PROVIDER_FAILURE",
            status_code=401,
            **kwargs,
        )


class ProviderUnavailableError(GatewayError):
    """Raised when a challenge cannot start because provider metadata is unreachable."""

    title = "Bad Gateway"

    def __init__(self, message: str = "Identity provider metadata could not be loaded", **kwargs):
        super().__init__(
            message=message,
            code="PROVIDER_UNAVAILABLE",
            status_code=502,
            **kwargs,
        )


class TicketCorruptionError(GatewayError):
    """Raised by a protector when a payload cannot be unprotected."""

    def __init__(self, message: str = "Protected payload could not be read", **kwargs):
        super().__init__(
            message=message,
            code="TICKET_CORRUPTION",
            status_code=401,
            **kwargs,
        )


# =============================================================================
# Infrastructure
# =============================================================================

class CacheUnavailableError(GatewayError):
    """Raised when the session cache cannot be reached. Retryable."""

    title = "Service Unavailable"

    def __init__(self, message: str = "Session store temporarily unavailable", **kwargs):
        super().__init__(
            message=message,
            code="CACHE_UNAVAILABLE",
            status_code=503,
            **kwargs,
        )
