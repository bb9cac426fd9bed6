"""
GovGate — Administrative Routes
===============================

What:  Operator views and controls for the pipeline.
Who:   Callers holding the "admin" role; /api/admin/ runs the api + admin
       groups, so requests are authenticated (session or X-API-Key) before
       reaching these handlers.

Routes:
    GET    /api/admin/rate-limits                   counters and limits
    DELETE /api/admin/rate-limits                   clear every counter
    DELETE /api/admin/rate-limits/{client_key}      clear one client
    PUT    /api/admin/rate-limits/{endpoint_class}  change a limit at runtime
    GET    /api/admin/middleware                    registry contents
    GET    /api/admin/security-headers              header self-assessment
"""

import logging

from fastapi import APIRouter, Depends, Request

from govgate.config import Settings
from govgate.dependencies import get_header_policy, get_limiter, get_registry, get_settings
from govgate.middleware.base import is_https
from govgate.middleware.rate_limit import RateLimiter
from govgate.middleware.registry import MiddlewareRegistry
from govgate.middleware.security_headers import SecurityHeaderPolicy
from govgate.schemas.gateway import (
    ClearResult,
    ErrorResponse,
    MiddlewareStats,
    RateLimitRuleIn,
    RateLimitStats,
    SecurityHeadersReport,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["Admin"])


@router.get("/rate-limits", response_model=RateLimitStats, summary="Rate limiter counters")
async def rate_limit_stats(limiter: RateLimiter = Depends(get_limiter)) -> RateLimitStats:
    return RateLimitStats(**limiter.stats())


@router.delete("/rate-limits", response_model=ClearResult, summary="Clear all counters")
async def clear_all_rate_limits(
    request: Request, limiter: RateLimiter = Depends(get_limiter)
) -> ClearResult:
    active = limiter.stats()["active_limits"]
    cleared = sum(len(clients) for clients in active.values())
    limiter.clear_all()
    logger.warning("Admin %s cleared all rate-limit counters", getattr(request.state, "user_id", None))
    return ClearResult(cleared=cleared)


@router.delete(
    "/rate-limits/{client_key}",
    response_model=ClearResult,
    summary="Clear counters for one client",
)
async def clear_client_rate_limits(
    client_key: str, request: Request, limiter: RateLimiter = Depends(get_limiter)
) -> ClearResult:
    cleared = limiter.clear_client(client_key)
    logger.warning(
        "Admin %s cleared rate-limit counters of %s",
        getattr(request.state, "user_id", None),
        client_key,
    )
    return ClearResult(cleared=cleared)


@router.put(
    "/rate-limits/{endpoint_class}",
    response_model=RateLimitStats,
    responses={400: {"model": ErrorResponse}},
    summary="Change an endpoint class limit",
)
async def set_rate_limit(
    endpoint_class: str,
    rule: RateLimitRuleIn,
    limiter: RateLimiter = Depends(get_limiter),
) -> RateLimitStats:
    # InvalidRateLimitError → 400 via the global handler
    limiter.set_limit(endpoint_class, rule.requests, rule.window)
    return RateLimitStats(**limiter.stats())


@router.get("/middleware", response_model=MiddlewareStats, summary="Registered pipeline stages")
async def middleware_stats(registry: MiddlewareRegistry = Depends(get_registry)) -> MiddlewareStats:
    return MiddlewareStats(**registry.stats(), missing=registry.missing())


@router.get(
    "/security-headers",
    response_model=SecurityHeadersReport,
    summary="Security header self-assessment",
)
async def security_headers_report(
    request: Request,
    policy: SecurityHeaderPolicy = Depends(get_header_policy),
    settings: Settings = Depends(get_settings),
) -> SecurityHeadersReport:
    return SecurityHeadersReport(**policy.report(https=is_https(request, settings.trust_proxy_headers)))
