"""
GovGate — Route Dependencies
============================

What:  FastAPI dependency functions handing route handlers the shared objects
       built by the application factory.
Why:   Handlers stay free of globals: everything comes from `app.state`, so a
       test can build an app with its own settings and container.

Usage:
    @router.get("/example")
    async def example(limiter: RateLimiter = Depends(get_limiter)):
        ...
"""

from fastapi import Request

from govgate.config import Settings
from govgate.middleware.csrf import CsrfGuard
from govgate.middleware.rate_limit import RateLimiter
from govgate.middleware.registry import MiddlewareRegistry
from govgate.middleware.security_headers import SecurityHeaderPolicy
from govgate.services.container import Container
from govgate.services.session_store import RequestSessionStore


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_container(request: Request) -> Container:
    return request.app.state.container


def get_registry(request: Request) -> MiddlewareRegistry:
    return request.app.state.registry


def get_limiter(request: Request) -> RateLimiter:
    return get_container(request).get(RateLimiter)


def get_header_policy(request: Request) -> SecurityHeaderPolicy:
    return get_container(request).get(SecurityHeaderPolicy)


def get_csrf_guard(request: Request) -> CsrfGuard:
    return get_container(request).get(CsrfGuard)


def get_session(request: Request) -> RequestSessionStore:
    """Raises SessionUnavailableError when SessionMiddleware is not installed."""
    return RequestSessionStore.from_request(request)
