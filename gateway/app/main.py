"""
FastAPI Gateway Application Factory
===================================

This is the main entry point for the forward-auth gateway that sits beside
a reverse proxy (nginx ``auth_request``, Traefik ``forwardAuth``, ...).

Architecture:
    Browser → Reverse Proxy → (subrequest) Gateway /auth/{portal}
                            → Portal backend, when the gateway says 200

Routers:
    - /auth/{portal}      : forward-auth check
    - /signin/{portal}    : start OIDC sign-in (also /portals/{portal}/signin)
    - /callback/{portal}  : OIDC redirect target
    - /signout/{portal}   : local sign-out
    - /health, /          : system endpoints

Running the Service:
    Development:
        uvicorn app.main:create_application --factory --reload --app-dir gateway

    Production:
        python -m app

Everything (registry, cache, key ring, schemes) is built eagerly by
``create_application``; the lifespan only releases resources. A portal
added to the configuration document needs a restart.
"""

import logging
import sys
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import List, Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app import __version__
from app.auth import auth_router, register_schemes
from app.auth.oidc import CorrelationStore
from app.auth.protection import CORRELATION_PURPOSE, TICKET_PURPOSE, DataProtector, load_key_ring
from app.auth.tickets import TicketStore
from app.cache import DistributedCache, MemoryCache, RedisCache
from app.config import Settings, get_settings, validate_configuration
from app.exceptions import ConfigurationError, GatewayError
from app.middleware import ForcedFailureGuard
from app.models import HealthResponse, ProblemDetails, RootResponse
from app.registry import PortalRegistry

PROBLEM_MEDIA_TYPE = "application/problem+json"


# Configure structured JSON logging
def setup_logging(log_level: str = "INFO") -> None:
    """
    Configure structured logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format='{"timestamp": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", "message": "%(message)s", "module": "%(module)s", "function": "%(funcName)s"}',
        handlers=[logging.StreamHandler(sys.stdout)]
    )


logger = logging.getLogger("gateway.main")


def build_cache(settings: Settings) -> DistributedCache:
    """Redis when REDIS_CONNECTION_STRING is set, otherwise in-process."""
    if settings.uses_redis:
        logger.info(f"Using Redis session cache with prefix {settings.REDIS_INSTANCE_NAME!r}")
        return RedisCache.from_connection_string(
            settings.REDIS_CONNECTION_STRING,
            settings.REDIS_INSTANCE_NAME,
        )

    logger.info("Using in-memory session cache")
    return MemoryCache()


def problem_response(status_code: int, title: str, detail: Optional[str]) -> JSONResponse:
    problem = ProblemDetails(title=title, status=status_code, detail=detail)
    return JSONResponse(
        status_code=status_code,
        content=problem.model_dump(),
        media_type=PROBLEM_MEDIA_TYPE,
    )


# Lifespan context manager for startup/shutdown
@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Startup only logs; every resource already exists. Shutdown closes the
    shared HTTP client and the session cache.
    """
    settings: Settings = app.state.settings
    logger.info(
        "Forward-auth gateway started",
        extra={
            "service": "fwda",
            "version": __version__,
            "environment": settings.ENVIRONMENT,
            "portals": app.state.registry.names,
        }
    )

    yield

    logger.info("Shutting down forward-auth gateway")
    await app.state.http_client.aclose()
    await app.state.cache.close()
    logger.info("Forward-auth gateway shutdown complete")


# Create FastAPI application
def create_application(
    settings: Optional[Settings] = None,
    registry: Optional[PortalRegistry] = None,
    cache: Optional[DistributedCache] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    key_ring: Optional[List[bytes]] = None,
) -> FastAPI:
    """
    Application factory function.

    Every argument is optional and exists so tests can substitute
    collaborators; in production all of them are derived from settings.

    Returns:
        FastAPI: Configured application instance

    Raises:
        ConfigurationError: If settings, the configuration document or the
            data-protection key ring are invalid
        DecryptionFailedError: If an encrypted secret cannot be decrypted
    """
    settings = settings or get_settings()
    setup_logging(settings.LOG_LEVEL)

    status = validate_configuration(settings)
    for warning in status["warnings"]:
        logger.warning(warning)
    if not status["valid"]:
        for error in status["errors"]:
            logger.error(error)
        raise ConfigurationError("; ".join(status["errors"]))

    # Registry and MemoryCache define __len__, so test for None explicitly
    if registry is None:
        registry = PortalRegistry.from_file(settings.CONFIG_PATH)
    for portal in registry:
        logger.info(f"Portal available: {portal.name} ({portal.display}) - {portal.hostname}")

    if cache is None:
        cache = build_cache(settings)
    if key_ring is None:
        key_ring = load_key_ring(settings)
    if http_client is None:
        http_client = httpx.AsyncClient(timeout=settings.PROVIDER_TIMEOUT_SECONDS)

    ticket_store = TicketStore(
        cache,
        DataProtector(key_ring, TICKET_PURPOSE),
        timedelta(minutes=registry.session_timeout_minutes),
    )
    correlation_store = CorrelationStore(cache, DataProtector(key_ring, CORRELATION_PURPOSE))
    schemes = register_schemes(registry, ticket_store, correlation_store, http_client, settings)

    app = FastAPI(
        title="Forward-Auth Gateway",
        description="Per-portal OIDC sign-in and session checks for reverse proxies",
        version=__version__,
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
    )

    app.state.settings = settings
    app.state.registry = registry
    app.state.cache = cache
    app.state.http_client = http_client
    app.state.ticket_store = ticket_store
    app.state.schemes = schemes

    app.add_middleware(ForcedFailureGuard)
    app.include_router(auth_router)

    # Health check endpoint
    @app.get("/health", tags=["System"], response_model=HealthResponse)
    async def health_check() -> HealthResponse:
        return HealthResponse(portals=len(registry), portal_names=registry.names)

    # Root endpoint
    @app.get("/", tags=["System"], response_model=RootResponse)
    async def root() -> RootResponse:
        return RootResponse(version=__version__)

    @app.exception_handler(GatewayError)
    async def gateway_exception_handler(request: Request, exc: GatewayError) -> JSONResponse:
        """Render gateway errors as problem documents."""
        log = logger.error if exc.status_code >= 500 else logger.warning
        log(
            f"{exc.code}: {exc.message}",
            extra={"path": request.url.path, "method": request.method},
        )
        return problem_response(exc.status_code, exc.title, exc.message)

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """
        Global exception handler for unhandled errors.

        The traceback is logged; the client only sees a generic problem.
        """
        logger.error(
            f"Unhandled exception: {str(exc)}",
            extra={
                "path": request.url.path,
                "method": request.method,
                "exception_type": type(exc).__name__
            },
            exc_info=True
        )
        return problem_response(500, "Internal Server Error", "An unexpected error occurred")

    return app
