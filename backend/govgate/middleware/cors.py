"""
GovGate — CORS Stage
====================

What:  Answers CORS preflights and marks responses readable by allowed origins.
Why:   The platform's SPA and partner portals call the API from other origins.
How:   A preflight (OPTIONS + Origin + Access-Control-Request-Method) is
       answered here with 204 and never reaches a handler. Other requests
       continue; an allowed Origin is echoed back with `Vary: Origin` so shared
       caches keep per-origin copies apart.
"""

from typing import Iterable, Optional

from starlette.requests import Request
from starlette.responses import Response

from govgate.middleware.base import CallNext, Middleware

DEFAULT_METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS")
DEFAULT_HEADERS = ("Content-Type", "Authorization", "X-Requested-With", "X-CSRF-Token", "X-API-Key")


class CorsMiddleware(Middleware):
    name = "cors"

    def __init__(
        self,
        allow_origins: Optional[Iterable[str]] = None,
        allow_methods: Iterable[str] = DEFAULT_METHODS,
        allow_headers: Iterable[str] = DEFAULT_HEADERS,
        allow_credentials: bool = True,
        max_age: int = 86400,
    ):
        self.allow_origins = list(allow_origins) if allow_origins is not None else ["*"]
        self.allow_methods = list(allow_methods)
        self.allow_headers = list(allow_headers)
        self.allow_credentials = allow_credentials
        self.max_age = max_age

    def origin_allowed(self, origin: str) -> bool:
        return "*" in self.allow_origins or origin in self.allow_origins

    def _decorate(self, response: Response, origin: str) -> None:
        # Credentials forbid "*", so the origin itself is echoed
        response.headers["Access-Control-Allow-Origin"] = origin
        if self.allow_credentials:
            response.headers["Access-Control-Allow-Credentials"] = "true"
        vary = response.headers.get("Vary")
        if not vary:
            response.headers["Vary"] = "Origin"
        elif "origin" not in vary.lower():
            response.headers["Vary"] = vary + ", Origin"

    async def dispatch(self, request: Request, call_next: CallNext) -> Response:
        origin = request.headers.get("origin")
        if not origin:
            return await call_next(request)

        is_preflight = (
            request.method == "OPTIONS"
            and "access-control-request-method" in request.headers
        )
        if is_preflight:
            if not self.origin_allowed(origin):
                return Response(status_code=403, content="Disallowed CORS origin")
            response = Response(status_code=204)
            self._decorate(response, origin)
            response.headers["Access-Control-Allow-Methods"] = ", ".join(self.allow_methods)
            response.headers["Access-Control-Allow-Headers"] = ", ".join(self.allow_headers)
            response.headers["Access-Control-Max-Age"] = str(self.max_age)
            return response

        response = await call_next(request)
        if self.origin_allowed(origin):
            self._decorate(response, origin)
        return response
