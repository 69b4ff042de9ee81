"""
Forced-failure guard for forward-auth checks.

A reverse proxy treats anything other than 2xx from ``/auth/...`` as "deny"
but may follow or relay a redirect. Any 302/303 produced under the ``/auth``
segment is therefore rewritten into an empty 401 without a Location header.
"""

import logging

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

logger = logging.getLogger(__name__)

REDIRECT_STATUSES = (302, 303)
_DROPPED_HEADERS = (b"location", b"content-length", b"content-type")


def is_auth_check_path(path: str, root_path: str = "") -> bool:
    """
    True for ``/auth`` and anything below it (segment match, case-insensitive).

    ``root_path`` is the mount prefix; ``/gw/auth/x`` under ``/gw`` is an
    auth-check path.
    """
    root_path = root_path.rstrip("/")
    if root_path and path.startswith(root_path):
        path = path[len(root_path):]
    return path.lower().strip("/").split("/")[0] == "auth"


class ForcedFailureGuard(BaseHTTPMiddleware):
    """Rewrites redirects on auth-check paths into bare 401 responses."""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)

        if response.status_code not in REDIRECT_STATUSES:
            return response
        if not is_auth_check_path(request.scope["path"], request.scope.get("root_path", "")):
            return response

        logger.info(
            f"Rewriting {response.status_code} to 401 for auth check",
            extra={"path": request.url.path},
        )

        guarded = Response(status_code=401, content=b"")
        guarded.raw_headers.extend(
            (key, value)
            for key, value in response.raw_headers
            if key.lower() not in _DROPPED_HEADERS
        )
        return guarded
