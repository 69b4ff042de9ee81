"""
Forward-auth endpoints.

    GET/HEAD /auth/{portal}              forward-auth check (200 or 401, never a redirect)
    GET      /signin/{portal}            start sign-in
    GET      /portals/{portal}/signin    same, for proxies that route under /portals
    GET      /callback/{portal}          provider redirect target
    GET      /signout/{portal}           local sign-out

The registry and scheme registry are read from ``app.state``; both are built
once by ``create_application``.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response, status
from fastapi.responses import JSONResponse, RedirectResponse

from app.auth import hooks
from app.auth.oidc import oidc_scheme_name
from app.auth.redirect import ForwardedContext, build_return_url
from app.auth.schemes import SchemeRegistry
from app.auth.service import is_authenticated
from app.exceptions import (
    ConfigurationError,
    PortalNotFoundError,
    RemoteProviderFailure,
    UnregisteredSchemeError,
)
from app.registry import PortalConfig, PortalRegistry

logger = logging.getLogger(__name__)


# =============================================================================
# Router Setup
# =============================================================================

auth_router = APIRouter(tags=["authentication"])


def get_registry(request: Request) -> PortalRegistry:
    return request.app.state.registry


def get_schemes(request: Request) -> SchemeRegistry:
    return request.app.state.schemes


def _require_portal(registry: PortalRegistry, portal: str) -> PortalConfig:
    portal_config = registry.get(portal)
    if portal_config is None:
        raise PortalNotFoundError(portal)
    return portal_config


# =============================================================================
# Forward-Auth Check
# =============================================================================

@auth_router.api_route("/auth/{portal}", methods=["GET", "HEAD"])
async def check(
    portal: str,
    request: Request,
    registry: PortalRegistry = Depends(get_registry),
    schemes: SchemeRegistry = Depends(get_schemes),
) -> Response:
    """
    Decide whether the caller has a session for ``portal``.

    Returns:
        200 with X-Auth-User / X-Auth-Email / X-Auth-Subject headers, or an
        empty 401. Unknown portals are a 401, not a 404, so the proxy never
        learns which portals exist.
    """
    if registry.get(portal) is None:
        return Response(status_code=status.HTTP_401_UNAUTHORIZED)

    scheme = schemes.cookie_scheme(portal)
    result = await scheme.authenticate(request)

    principal = result.principal
    logger.debug(
        f"Authentication result for portal {portal} using scheme {scheme.name}: "
        f"succeeded={result.succeeded}, principal={principal.display_name if principal else None}"
    )

    if not is_authenticated(principal, portal):
        return Response(status_code=status.HTTP_401_UNAUTHORIZED)

    response = Response(
        status_code=status.HTTP_200_OK,
        headers={
            "X-Auth-User": principal.display_name or "unknown",
            "X-Auth-Email": principal.email or "",
            "X-Auth-Subject": principal.subject or "",
        },
    )
    scheme.apply(response, result)
    return response


# =============================================================================
# Sign In
# =============================================================================

async def _sign_in(
    portal: str,
    request: Request,
    return_url: Optional[str],
    registry: PortalRegistry,
    schemes: SchemeRegistry,
) -> Response:
    portal_config = _require_portal(registry, portal)

    result = await schemes.cookie_scheme(portal).authenticate(request)
    if is_authenticated(result.principal, portal):
        redirect_url = return_url or build_return_url(ForwardedContext.from_request(request))
        return RedirectResponse(url=redirect_url, status_code=status.HTTP_302_FOUND)

    if not portal_config.is_oidc_eligible:
        raise ConfigurationError(
            f"OIDC is not properly configured for portal '{portal}'. "
            "ClientId and Issuer are required."
        )

    oidc = schemes.oidc_scheme(portal)
    if oidc is None:
        raise UnregisteredSchemeError(oidc_scheme_name(portal))

    return await oidc.challenge(
        request,
        return_url or build_return_url(ForwardedContext.from_request(request)),
    )


@auth_router.get("/signin/{portal}")
async def signin(
    portal: str,
    request: Request,
    returnUrl: Optional[str] = Query(None, description="Where to send the user after sign-in"),
    registry: PortalRegistry = Depends(get_registry),
    schemes: SchemeRegistry = Depends(get_schemes),
) -> Response:
    return await _sign_in(portal, request, returnUrl, registry, schemes)


@auth_router.get("/portals/{portal}/signin")
async def portal_signin(
    portal: str,
    request: Request,
    returnUrl: Optional[str] = Query(None, description="Where to send the user after sign-in"),
    registry: PortalRegistry = Depends(get_registry),
    schemes: SchemeRegistry = Depends(get_schemes),
) -> Response:
    return await _sign_in(portal, request, returnUrl, registry, schemes)


# =============================================================================
# Callback
# =============================================================================

@auth_router.get("/callback/{portal}")
async def callback(
    portal: str,
    request: Request,
    registry: PortalRegistry = Depends(get_registry),
    schemes: SchemeRegistry = Depends(get_schemes),
) -> Response:
    """
    Finish sign-in and send the user back to where they started.

    Falls back to ``https://{hostname}/`` when the challenge carried no
    return URL.
    """
    portal_config = _require_portal(registry, portal)

    oidc = schemes.oidc_scheme(portal)
    if oidc is None:
        logger.warning(
            f"Callback for portal {portal} rejected: no registered OIDC scheme "
            f"'{oidc_scheme_name(portal)}', no provider was contacted"
        )
        return Response(status_code=status.HTTP_401_UNAUTHORIZED)

    try:
        result = await oidc.handle_callback(request)
    except RemoteProviderFailure as e:
        override = hooks.on_remote_failure(portal, e)
        return Response(status_code=override.status_code)

    return_url = result.principal.return_url
    if not return_url:
        return_url = f"https://{portal_config.hostname}/"
        logger.warning(f"No returnUrl claim found for portal {portal}, redirecting to default: {return_url}")
    else:
        logger.info(f"Redirecting user for portal {portal} to: {return_url}")

    response = RedirectResponse(url=return_url, status_code=status.HTTP_302_FOUND)
    oidc.complete_sign_in(response, result)
    return response


# =============================================================================
# Sign Out
# =============================================================================

@auth_router.get("/signout/{portal}")
async def signout(
    portal: str,
    request: Request,
    registry: PortalRegistry = Depends(get_registry),
    schemes: SchemeRegistry = Depends(get_schemes),
) -> Response:
    """Clear the portal session and the default session. The provider session is left alone."""
    _require_portal(registry, portal)

    response = JSONResponse(content="Signed out successfully")
    await schemes.cookie_scheme(portal).sign_out(request, response)
    await schemes.default_cookie_scheme.sign_out(request, response)
    return response
