"""
OIDC protocol hooks.

Each hook is a plain function called by ``OidcScheme`` at one transition of
the sign-in round-trip. Hooks never touch the request or response directly:
they return a mutation object that the scheme applies.

    on_message_received      -> None (logging only)
    on_redirect_to_provider  -> RedirectMutation
    on_token_validated       -> PrincipalMutation
    on_remote_failure        -> ResponseOverride
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from app.auth.claims import SessionPrincipal, minimize_claims
from app.auth.redirect import ForwardedContext, synthesize_redirect_uri

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RedirectMutation:
    redirect_uri: str


@dataclass(frozen=True)
class PrincipalMutation:
    """Replaces the provider principal entirely."""

    principal: SessionPrincipal


@dataclass(frozen=True)
class ResponseOverride:
    """Final response for the callback request; ``handled`` stops further processing."""

    status_code: int
    handled: bool = True


def on_message_received(portal: str) -> None:
    logger.info(f"Processing provider callback for portal {portal}")


def on_redirect_to_provider(
    portal: str,
    context: ForwardedContext,
    callback_path: str,
    original_redirect_uri: str = "",
) -> RedirectMutation:
    """Rewrite redirect_uri from forwarding headers before leaving for the provider."""
    redirect_uri = synthesize_redirect_uri(context, callback_path)
    logger.info(
        f"Redirecting to provider for portal {portal}: "
        f"original={original_redirect_uri!r} modified={redirect_uri!r}"
    )
    return RedirectMutation(redirect_uri=redirect_uri)


def on_token_validated(
    portal: str,
    claims: Dict[str, Any],
    properties: Dict[str, Any],
    authentication_type: str,
) -> PrincipalMutation:
    """
    Minimize the validated provider identity.

    Args:
        portal: Registry key of the portal
        claims: Validated id_token claims merged with userinfo
        properties: Pending-challenge properties (``return_url``)
        authentication_type: Name of the OIDC scheme
    """
    principal = minimize_claims(
        claims,
        portal=portal,
        return_url=properties.get("return_url"),
        authentication_type=authentication_type,
    )
    logger.info(
        f"Token validated for portal {portal}: signed in {principal.display_name or principal.subject}",
        extra={"roles": sorted(principal.roles)},
    )
    return PrincipalMutation(principal=principal)


def on_remote_failure(portal: str, error: Optional[BaseException]) -> ResponseOverride:
    """Every provider-side failure ends as a bare 401."""
    logger.warning(f"Remote authentication failure for portal {portal}: {error}")
    return ResponseOverride(status_code=401)
