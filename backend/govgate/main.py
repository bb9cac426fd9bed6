"""
GovGate — FastAPI Application Factory
=====================================

What:  Creates and configures the FastAPI application instance.
Why:   Centralizes middleware registration, collaborator wiring, route mounting,
       and lifecycle management in one place.
How:   Factory pattern: create_app() returns a configured FastAPI instance.
Who:   Called by uvicorn (uvicorn govgate.main:app) and by tests.

Application Architecture:
    ┌──────────────────────────────────────────────────────────┐
    │                       FastAPI App                        │
    │                                                          │
    │  Starlette middleware:                                   │
    │  ┌──────────────┐ ┌──────────┐ ┌──────────────────────┐  │
    │  │ Req context  │→│ Sessions │→│ Pipeline (registry)  │  │
    │  └──────────────┘ └──────────┘ └──────────────────────┘  │
    │                                                          │
    │  Container (shared, one per app):                        │
    │  CsrfGuard · SecurityHeaderPolicy · RateLimiter · Audit  │
    │                                                          │
    │  Routes: /health · /api/auth/* · /api/admin/*            │
    └──────────────────────────────────────────────────────────┘

The registry and container are built per application, never at import time,
so two apps in one process (e.g. in tests) never share counters.
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.middleware.sessions import SessionMiddleware

from govgate import __version__
from govgate.config import Settings, settings as default_settings
from govgate.exceptions import (
    AuthenticationError,
    ConfigurationError,
    GovGateError,
    SessionUnavailableError,
    ValidationError,
)
from govgate.middleware.auth import AdminMiddleware, AuthMiddleware
from govgate.middleware.cors import CorsMiddleware
from govgate.middleware.csrf import CsrfGuard, CsrfMiddleware
from govgate.middleware.pipeline import PipelineMiddleware
from govgate.middleware.rate_limit import RateLimiter, RateLimitMiddleware
from govgate.middleware.registry import MiddlewareRegistry
from govgate.middleware.request_context import RequestContextMiddleware, request_id_var
from govgate.middleware.security_headers import SecurityHeaderPolicy, SecurityHeadersMiddleware
from govgate.routes import admin, auth, health
from govgate.services.audit import AuditLog
from govgate.services.container import Container

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Logging Configuration
# ══════════════════════════════════════════════════════════════════════════

def setup_logging(config: Settings) -> None:
    """
    Configure logging for the entire application.

    When:    Called once during app startup, before anything logs.
    Format:  2024-01-15T12:00:00 [WARNING] govgate.security: [a1b2c3d4] CSRF ...
    """
    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


# ══════════════════════════════════════════════════════════════════════════
# Collaborator Wiring
# ══════════════════════════════════════════════════════════════════════════

def build_container(config: Settings) -> Container:
    """
    Bind the shared guards and every default stage class.

    The registry asks this container for a stage's class first, so stages are
    built with the app's guards instead of private defaults.
    """
    container = Container()
    container.instance(Settings, config)
    container.instance(AuditLog, AuditLog())
    container.instance(CsrfGuard, CsrfGuard(ttl=config.csrf_token_ttl))
    container.instance(RateLimiter, RateLimiter(limits=config.rate_limit_overrides()))

    policy = SecurityHeaderPolicy(
        development=config.is_development,
        trust_proxy_headers=config.trust_proxy_headers,
        api_version=config.api_version,
    )
    origins = config.cors_origins_list
    if len(origins) == 1:
        policy.set_cors_origin(origins[0])
    container.instance(SecurityHeaderPolicy, policy)

    container.bind(
        CsrfMiddleware,
        lambda c: CsrfMiddleware(c.get(CsrfGuard), c.get(AuditLog), config.trust_proxy_headers),
    )
    container.bind(
        SecurityHeadersMiddleware,
        lambda c: SecurityHeadersMiddleware(c.get(SecurityHeaderPolicy)),
    )
    container.bind(
        RateLimitMiddleware,
        lambda c: RateLimitMiddleware(c.get(RateLimiter), c.get(AuditLog), config.trust_proxy_headers),
    )
    container.bind(AuthMiddleware, lambda c: AuthMiddleware(config.api_keys))
    container.bind(AdminMiddleware, lambda c: AdminMiddleware())
    container.bind(CorsMiddleware, lambda c: CorsMiddleware(allow_origins=origins or ["*"]))
    return container


def build_registry(config: Settings, container: Container) -> MiddlewareRegistry:
    registry = MiddlewareRegistry(container=container, strict=config.middleware_strict)
    groups = {group for names in config.route_groups.values() for group in names}
    registry.validate(sorted(groups))
    return registry


# ══════════════════════════════════════════════════════════════════════════
# Application Lifespan
# ══════════════════════════════════════════════════════════════════════════

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    config: Settings = app.state.settings
    setup_logging(config)
    logger.info("=" * 60)
    logger.info("%s %s starting up (env=%s)", config.app_name, __version__, config.app_env)

    try:
        config.validate_required_for_production()
    except ValueError as e:
        logger.error("Configuration error: %s", str(e))
        logger.error("Fix the configuration and restart the server.")

    stats = app.state.registry.stats()
    logger.info(
        "Pipeline: %d stages, %d groups (strict=%s)",
        stats["total_middleware"],
        stats["total_groups"],
        stats["strict"],
    )
    logger.info("=" * 60)

    yield

    logger.info("%s shutting down.", config.app_name)


# ══════════════════════════════════════════════════════════════════════════
# Exception Handlers
# ══════════════════════════════════════════════════════════════════════════

def register_exception_handlers(app: FastAPI) -> None:
    """
    Map exceptions raised by route handlers to the error envelope.

    Stage rejections (403/429/401) never get here: they are responses, not
    exceptions. Exceptions raised inside the pipeline itself surface through
    the catch-all handler only.
    """

    @app.exception_handler(ValidationError)
    async def handle_validation_error(request: Request, exc: ValidationError):
        rid = request_id_var.get("")
        logger.warning("[%s] Validation error: %s", rid, exc.message)
        return JSONResponse(
            status_code=400,
            content={
                "error": "validation_error",
                "message": exc.message,
                "details": exc.context,
                "request_id": rid,
            },
        )

    @app.exception_handler(AuthenticationError)
    async def handle_authentication_error(request: Request, exc: AuthenticationError):
        rid = request_id_var.get("")
        return JSONResponse(
            status_code=401,
            content={"error": "unauthorized", "message": exc.message, "request_id": rid},
        )

    @app.exception_handler(SessionUnavailableError)
    async def handle_session_unavailable(request: Request, exc: SessionUnavailableError):
        rid = request_id_var.get("")
        logger.error("[%s] Session unavailable: %s | Context: %s", rid, exc.message, exc.context)
        return JSONResponse(
            status_code=500,
            content={
                "error": "server_error",
                "message": "An internal error occurred. Please try again later.",
                "request_id": rid,
            },
        )

    @app.exception_handler(ConfigurationError)
    async def handle_configuration_error(request: Request, exc: ConfigurationError):
        rid = request_id_var.get("")
        logger.error("[%s] Configuration error: %s | Context: %s", rid, exc.message, exc.context)
        return JSONResponse(
            status_code=500,
            content={
                "error": "server_error",
                "message": "An internal error occurred. Please try again later.",
                "request_id": rid,
            },
        )

    @app.exception_handler(GovGateError)
    async def handle_govgate_error(request: Request, exc: GovGateError):
        rid = request_id_var.get("")
        logger.error("[%s] %s: %s", rid, type(exc).__name__, exc.message)
        return JSONResponse(
            status_code=500,
            content={"error": "server_error", "message": exc.message, "request_id": rid},
        )

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        rid = request_id_var.get("")
        logger.error("[%s] Unexpected error: %s", rid, str(exc), exc_info=True)
        return JSONResponse(
            status_code=500,
            content={
                "error": "internal_server_error",
                "message": "An unexpected error occurred. Please try again or contact support.",
                "request_id": rid,
            },
        )


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════

def create_app(config: Optional[Settings] = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        config: Settings to use; defaults to the environment-loaded singleton.

    Raises:
        ConfigurationError: in strict mode, when a route group or a group
        member is not registered.
    """
    config = config or default_settings
    container = build_container(config)
    registry = build_registry(config, container)

    app = FastAPI(
        title="GovGate API",
        description="Request pipeline, CSRF protection and rate limiting for platform modules.",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = config
    app.state.container = container
    app.state.registry = registry

    # Middleware executes in REVERSE order of addition (last added = outermost):
    # RequestContext → Session → Pipeline → router
    app.add_middleware(PipelineMiddleware, registry=registry, route_groups=config.route_groups)
    app.add_middleware(
        SessionMiddleware,
        secret_key=config.session_secret_key,
        session_cookie=config.session_cookie,
        max_age=config.session_max_age,
        https_only=config.session_https_only,
        same_site="lax",
    )
    app.add_middleware(RequestContextMiddleware)

    register_exception_handlers(app)

    app.include_router(health.router)
    app.include_router(auth.router)
    app.include_router(admin.router)

    return app


app = create_app()
