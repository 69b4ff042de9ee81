"""Forward-auth gateway: per-portal OIDC sign-in and session checks for reverse proxies."""

__version__ = "1.0.0"
