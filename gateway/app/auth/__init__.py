"""
Authentication package.

Exports:
    - auth_router: forward-auth, sign-in, callback and sign-out endpoints
    - register_schemes / SchemeRegistry: per-portal cookie and OIDC schemes
    - TicketStore: server-side session tickets
"""

from .routes import auth_router
from .schemes import SchemeRegistry, register_schemes
from .tickets import TicketStore

__all__ = ["auth_router", "register_schemes", "SchemeRegistry", "TicketStore"]
