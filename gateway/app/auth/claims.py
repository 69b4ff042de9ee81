"""
Claims minimization.

The identity provider's principal is replaced by a SessionPrincipal carrying
only what the forward-auth check needs: who the user is, their roles, which
portal the session belongs to, and where to send them after sign-in. Email,
tokens and every other provider claim are discarded.
"""

from typing import Any, Dict, FrozenSet, Iterable, Optional

from pydantic import BaseModel, ConfigDict, Field

NAME_CLAIM = "preferred_username"
ROLE_CLAIM = "roles"

_FALLBACK_NAME_CLAIMS = ("name", "http://schemas.xmlsoap.org/ws/2005/05/identity/claims/name")
_SUBJECT_CLAIMS = (
    "sub",
    "nameidentifier",
    "http://schemas.xmlsoap.org/ws/2005/05/identity/claims/nameidentifier",
)


class SessionPrincipal(BaseModel):
    """Minimized identity stored inside a session ticket."""

    model_config = ConfigDict(frozen=True)

    subject: str = ""
    display_name: str = ""
    roles: FrozenSet[str] = Field(default_factory=frozenset)
    portal: str
    return_url: Optional[str] = None
    authentication_type: str = ""
    email: str = ""

    @property
    def is_authenticated(self) -> bool:
        return bool(self.authentication_type)

    def is_valid_for(self, portal: str) -> bool:
        """A session authenticates a request only for the portal that issued it."""
        return self.is_authenticated and self.portal == portal


def _first(claims: Dict[str, Any], names: Iterable[str]) -> str:
    for name in names:
        value = claims.get(name)
        if isinstance(value, list):
            value = value[0] if value else None
        if value:
            return str(value)
    return ""


def _role_values(raw: Any) -> FrozenSet[str]:
    if raw is None:
        return frozenset()
    if isinstance(raw, str):
        return frozenset([raw]) if raw else frozenset()
    return frozenset(str(role) for role in raw if role)


def minimize_claims(
    claims: Dict[str, Any],
    portal: str,
    return_url: Optional[str],
    authentication_type: str,
) -> SessionPrincipal:
    """
    Build the minimal principal from validated provider claims.

    Args:
        claims: Merged id_token and userinfo claims
        portal: Registry key of the portal being signed in to
        return_url: Post sign-in destination from the pending challenge
        authentication_type: Scheme that issued the principal

    Returns:
        SessionPrincipal with name, subject, roles, portal and return URL only

    Example:
        >>> p = minimize_claims({"sub": "u1", "preferred_username": "alice",
        ...                      "email": "a@x.io", "roles": ["admin"]},
        ...                     "portal1", None, "oidc-portal1")
        >>> p.display_name, p.roles, p.email
        ('alice', frozenset({'admin'}), '')
    """
    return SessionPrincipal(
        subject=_first(claims, _SUBJECT_CLAIMS),
        display_name=_first(claims, (NAME_CLAIM,) + _FALLBACK_NAME_CLAIMS),
        roles=_role_values(claims.get(ROLE_CLAIM)),
        portal=portal,
        return_url=return_url or None,
        authentication_type=authentication_type,
    )
