"""Portal membership check for authenticated sessions."""

import logging
from typing import Optional

from app.auth.claims import SessionPrincipal

logger = logging.getLogger(__name__)


def is_authenticated(principal: Optional[SessionPrincipal], portal: str) -> bool:
    """
    True only when the session is authenticated AND was issued for ``portal``.

    A session from another portal never authenticates this one, even when
    both cookies share a domain.
    """
    if principal is None or not principal.is_authenticated:
        logger.debug(f"User is not authenticated for portal {portal}")
        return False

    if principal.is_valid_for(portal):
        logger.debug(f"User authenticated successfully for portal {portal}")
        return True

    logger.warning(
        f"User authenticated but portal mismatch. Expected: {portal}, Got: {principal.portal}"
    )
    return False
