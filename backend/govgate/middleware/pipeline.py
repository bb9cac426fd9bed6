"""
GovGate — Request Pipeline Middleware
=====================================

What:  The single Starlette middleware that runs the registry's stages.
How:   For each request it picks the middleware groups configured for the
       longest matching path prefix (settings.route_groups), resolves them
       through the registry, and executes the chain with the FastAPI router
       as the terminal handler. A stage that does not call `call_next` ends
       the request there.

    /api/auth/login  → groups web + public
                     → csrf, security_headers, rate_limit, cors, input_sanitizer
                     → route handler
"""

import logging
from typing import Dict, Iterable, List

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from govgate.middleware.registry import MiddlewareRegistry

logger = logging.getLogger(__name__)


class PipelineMiddleware(BaseHTTPMiddleware):
    def __init__(
        self,
        app: ASGIApp,
        registry: MiddlewareRegistry,
        route_groups: Dict[str, Iterable[str]],
    ):
        super().__init__(app)
        self.registry = registry
        self.route_groups = sorted(
            ((prefix, list(groups)) for prefix, groups in route_groups.items()),
            key=lambda item: len(item[0]),
            reverse=True,
        )

    def groups_for(self, path: str) -> List[str]:
        for prefix, groups in self.route_groups:
            if path.startswith(prefix):
                return list(groups)
        return []

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        names = self.registry.resolve_groups(*self.groups_for(request.url.path))
        if not names:
            return await call_next(request)
        return await self.registry.execute(names, request, call_next)
