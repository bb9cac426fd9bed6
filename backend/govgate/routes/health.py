"""
GovGate — Health Check Route
============================

What:  Liveness endpoint for load balancers and container probes.
How:   Reports the version, uptime and how many stages the registry holds. The
       /health prefix maps to no middleware group, so probes are never rate
       limited or CSRF checked.

Status levels:
    - healthy:   registry populated and every group resolvable
    - degraded:  some group names an unregistered stage (permissive mode
                 keeps serving, but the gap is worth an alert)
"""

import logging
import time

from fastapi import APIRouter, Depends

from govgate import __version__
from govgate.dependencies import get_registry
from govgate.middleware.registry import MiddlewareRegistry
from govgate.schemas.gateway import HealthResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])

_start_time = time.time()


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Service health check",
)
async def health_check(registry: MiddlewareRegistry = Depends(get_registry)) -> HealthResponse:
    missing = registry.missing()
    if missing:
        logger.warning("Health check: groups with unregistered middleware: %s", missing)
    return HealthResponse(
        status="degraded" if missing else "healthy",
        version=__version__,
        middleware=len(registry.all()),
        uptime_seconds=round(time.time() - _start_time, 2),
    )
