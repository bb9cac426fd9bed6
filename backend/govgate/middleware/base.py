"""
GovGate — Pipeline Stage Interface
==================================

What:  The contract every pipeline stage implements, plus the request helpers
       all stages share (API classification, client IP, error bodies).
Why:   One classification rule and one error shape for every stage: a 403 from
       the CSRF stage and a 429 from the rate-limit stage look alike to clients.
How:   A stage is an object with `async dispatch(request, call_next)`. It either
       returns `await call_next(request)` (continue) or returns its own
       response without calling it (short-circuit).

    Request ──► [csrf] ──► [security_headers] ──► [rate_limit] ──► handler
                  │                                   │
                  └── 403 (stop)                      └── 429 (stop)

Failure bodies:
    API request   → {"error": "...", "message": "..."}
    otherwise     → <h1>{code} {reason}</h1><p>{message}</p>
"""

from abc import ABC, abstractmethod
from html import escape
from http import HTTPStatus
from typing import Any, Awaitable, Callable, Dict, Optional

from starlette.requests import Request
from starlette.responses import HTMLResponse, JSONResponse, Response

CallNext = Callable[[Request], Awaitable[Response]]


class Middleware(ABC):
    """Base class for pipeline stages."""

    name: str = ""

    @abstractmethod
    async def dispatch(self, request: Request, call_next: CallNext) -> Response:
        ...

    async def __call__(self, request: Request, call_next: CallNext) -> Response:
        return await self.dispatch(request, call_next)


def is_api_request(request: Request) -> bool:
    """Path under /api/ or a client that asks for JSON."""
    if request.url.path.startswith("/api/"):
        return True
    return "application/json" in request.headers.get("accept", "")


def is_https(request: Request, trust_proxy_headers: bool = False) -> bool:
    if request.url.scheme == "https":
        return True
    if trust_proxy_headers:
        return request.headers.get("x-forwarded-proto", "").lower() == "https"
    return False


def client_ip(request: Request, trust_proxy_headers: bool = False) -> str:
    """
    Address used to key per-client state.

    Proxy headers are only honoured when the deployment says a trusted proxy
    rewrites them; otherwise any client could pick its own rate-limit bucket.
    """
    if trust_proxy_headers:
        forwarded_for = request.headers.get("x-forwarded-for")
        if forwarded_for:
            return forwarded_for.split(",")[0].strip()
        real_ip = request.headers.get("x-real-ip")
        if real_ip:
            return real_ip.strip()
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def error_response(
    request: Request,
    status_code: int,
    error: str,
    message: str,
    headers: Optional[Dict[str, str]] = None,
    extra: Optional[Dict[str, Any]] = None,
    html_message: Optional[str] = None,
) -> Response:
    """
    Build a rejection in the shape the client expects.

    Never include stack traces or internal identifiers in `message`.
    """
    if is_api_request(request):
        content: Dict[str, Any] = {"error": error, "message": message}
        if extra:
            content.update(extra)
        return JSONResponse(status_code=status_code, content=content, headers=headers)

    reason = HTTPStatus(status_code).phrase
    body = "<h1>{} {}</h1><p>{}</p>".format(
        status_code, reason, escape(html_message or message)
    )
    return HTMLResponse(content=body, status_code=status_code, headers=headers)
