"""
Redirect URI reconstruction behind reverse proxies.

The gateway usually sits behind a proxy that terminates TLS and may mount it
under a path prefix, so the URL the browser used is only recoverable from
forwarding headers:

    X-Forwarded-Proto / X-Forwarded-Host / X-Forwarded-Prefix
    Forwarded: for=1.2.3.4;proto=https;host=example.com   (RFC 7239 fallback)

Comma-separated header values contribute their first element only.
"""

from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

from fastapi import Request

DEFAULT_PORTS = {"http": 80, "https": 443}


@dataclass(frozen=True)
class ForwardedContext:
    """Request facts the synthesizer reads. Header names are lowercase."""

    scheme: str
    host: str
    root_path: str = ""
    path: str = "/"
    headers: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_request(cls, request: Request) -> "ForwardedContext":
        return cls(
            scheme=request.url.scheme,
            host=request.headers.get("host") or request.url.netloc,
            root_path=request.scope.get("root_path", ""),
            path=request.url.path,
            headers={k.lower(): v for k, v in request.headers.items()},
        )

    def first(self, name: str) -> Optional[str]:
        """First comma-separated element of a header, or None if blank."""
        raw = self.headers.get(name.lower())
        if not raw:
            return None
        value = raw.split(",")[0].strip()
        return value or None


def parse_forwarded(header: Optional[str]) -> Dict[str, str]:
    """
    Parse the first element of an RFC 7239 ``Forwarded`` header.

    Keys are lowercased, values unquoted; pairs without ``=`` are skipped.

    Example:
        >>> parse_forwarded('for=10.0.0.1;proto=https;host="a.example.com", for=10.0.0.2')
        {'for': '10.0.0.1', 'proto': 'https', 'host': 'a.example.com'}
    """
    if not header:
        return {}

    pairs = {}
    for part in header.split(",")[0].split(";"):
        key, sep, value = part.partition("=")
        key, value = key.strip().lower(), value.strip().strip('"')
        if not sep or not key or not value:
            continue
        pairs[key] = value
    return pairs


def _split_host(host: str) -> Tuple[str, Optional[int]]:
    # [::1]:8443 or example.com:8443
    if host.startswith("["):
        end = host.find("]")
        name, rest = host[: end + 1], host[end + 1:]
        port = rest[1:] if rest.startswith(":") else ""
    else:
        name, _, port = host.partition(":")

    if port.isdigit():
        return name, int(port)
    return name, None


def format_origin(scheme: str, host: str) -> str:
    """``scheme://host[:port]`` with the scheme's default port omitted."""
    scheme = scheme.lower()
    name, port = _split_host(host)
    if port is None or DEFAULT_PORTS.get(scheme) == port:
        return f"{scheme}://{name}"
    return f"{scheme}://{name}:{port}"


def synthesize_redirect_uri(context: ForwardedContext, callback_path: str) -> str:
    """
    Build the absolute callback URI the identity provider should redirect to.

    Args:
        context: Snapshot of the incoming request
        callback_path: Portal callback path, e.g. ``/callback/portal1``

    Returns:
        Absolute URI, e.g. ``https://app.example.com/gw/callback/portal1``
    """
    proto = context.first("x-forwarded-proto")
    host = context.first("x-forwarded-host")
    prefix = context.first("x-forwarded-prefix")

    if not proto or not host:
        forwarded = parse_forwarded(context.headers.get("forwarded"))
        proto = proto or forwarded.get("proto")
        host = host or forwarded.get("host")

    scheme = proto or context.scheme
    host = host or context.host
    base_path = (prefix if prefix else context.root_path).rstrip("/")

    return f"{format_origin(scheme, host)}{base_path}{callback_path}"


def build_return_url(context: ForwardedContext) -> str:
    """
    Reconstruct the URL the user originally asked for.

    Uses X-Forwarded-Proto, X-Forwarded-Host and X-Forwarded-Uri, falling
    back to the request itself.
    """
    scheme = context.first("x-forwarded-proto") or context.scheme
    host = context.first("x-forwarded-host") or context.host
    uri = context.headers.get("x-forwarded-uri") or context.path
    return f"{scheme}://{host}{uri}"
