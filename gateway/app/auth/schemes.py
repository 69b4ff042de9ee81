"""
Authentication scheme registration.

Builds every scheme the gateway can use, once, from the portal registry:

    cookie            default cookie scheme, cookie ``fwda``
    cookie-{portal}   per-portal cookie scheme, cookie ``fwda-{portal}``
    oidc-{portal}     per-portal OIDC scheme, only for eligible portals

The result is never mutated. A portal that gains an OIDC section on disk
gets a scheme only after a restart; until then sign-in fails with
UnregisteredSchemeError.
"""

import logging
from typing import Dict, Iterator, Optional, Union

import httpx

from app.auth.oidc import CorrelationStore, OidcOptions, OidcScheme, oidc_scheme_name
from app.auth.session import (
    DEFAULT_COOKIE_NAME,
    DEFAULT_COOKIE_SCHEME,
    CookieScheme,
    cookie_name,
    cookie_scheme_name,
)
from app.auth.tickets import TicketStore
from app.auth.utils import ProviderClient
from app.config import Settings
from app.registry import PortalConfig, PortalRegistry

logger = logging.getLogger(__name__)

Scheme = Union[CookieScheme, OidcScheme]


class SchemeRegistry:
    """Immutable lookup of registered schemes by name."""

    def __init__(self, schemes: Dict[str, Scheme]):
        self._schemes = dict(schemes)

    def get(self, name: str) -> Optional[Scheme]:
        return self._schemes.get(name)

    def has(self, name: str) -> bool:
        return name in self._schemes

    @property
    def default_cookie_scheme(self) -> CookieScheme:
        return self._schemes[DEFAULT_COOKIE_SCHEME]

    def cookie_scheme(self, portal: str) -> Optional[CookieScheme]:
        scheme = self._schemes.get(cookie_scheme_name(portal))
        return scheme if isinstance(scheme, CookieScheme) else None

    def oidc_scheme(self, portal: str) -> Optional[OidcScheme]:
        scheme = self._schemes.get(oidc_scheme_name(portal))
        return scheme if isinstance(scheme, OidcScheme) else None

    def __iter__(self) -> Iterator[str]:
        return iter(self._schemes)

    def __len__(self) -> int:
        return len(self._schemes)


def build_oidc_options(name: str, portal: PortalConfig) -> OidcOptions:
    """
    Resolve a portal's OIDC section into scheme options.

    The issuer is used as the metadata address when it already points at a
    discovery document, otherwise as the authority.
    """
    oidc = portal.oidc
    return OidcOptions(
        portal=name,
        scheme_name=oidc_scheme_name(name),
        authority="" if oidc.uses_metadata_address else oidc.issuer,
        metadata_address=oidc.metadata_address,
        require_https_metadata=oidc.require_https_metadata,
        client_id=oidc.client_id,
        client_secret=oidc.client_secret.reveal(),
        scopes=tuple(oidc.scopes),
        callback_path=f"/callback/{name}",
        sign_in_scheme=cookie_scheme_name(name),
    )


def register_schemes(
    registry: PortalRegistry,
    ticket_store: TicketStore,
    correlation_store: CorrelationStore,
    http_client: httpx.AsyncClient,
    settings: Settings,
) -> SchemeRegistry:
    """Register the default cookie scheme and every portal's schemes."""
    schemes: Dict[str, Scheme] = {
        DEFAULT_COOKIE_SCHEME: CookieScheme(DEFAULT_COOKIE_SCHEME, DEFAULT_COOKIE_NAME, ticket_store),
    }

    for name in registry.names:
        portal = registry.get(name)

        cookie = CookieScheme(
            cookie_scheme_name(name),
            cookie_name(name),
            ticket_store,
            domain=portal.cookie_domain,
        )
        schemes[cookie.name] = cookie

        if not portal.is_oidc_eligible:
            logger.warning(f"Portal {name} has no usable OIDC configuration; sign-in is disabled")
            continue

        options = build_oidc_options(name, portal)
        provider = ProviderClient(
            http_client,
            options.metadata_address,
            require_https_metadata=options.require_https_metadata,
            cache_seconds=settings.JWKS_CACHE_SECONDS,
            timeout=settings.PROVIDER_TIMEOUT_SECONDS,
        )
        schemes[options.scheme_name] = OidcScheme(options, provider, correlation_store, cookie)
        logger.info(
            f"Registered {options.scheme_name} for portal {name}",
            extra={
                "display": portal.display,
                "hostname": portal.hostname,
                "metadata_address": options.metadata_address,
            },
        )

    return SchemeRegistry(schemes)
