"""
GovGate — Security Headers
==========================

What:  Adds browser security headers to every response the stage wraps.
Why:   Clickjacking, MIME sniffing and mixed-content issues are prevented by
       headers, not code; they have to be present on every page.
How:   `SecurityHeaderPolicy` holds two maps (baseline and API overlay) and
       computes the set for a request. The `SecurityHeadersMiddleware` stage
       calls the next stage FIRST and post-processes the response, so it also
       decorates responses produced by later stages (e.g. a 429).

Per-request rules:
    - /api/ paths get the API overlay (CORS basics, X-API-Version)
    - development context (APP_ENV=development, APP_DEBUG, or plain HTTP)
      widens script-src with localhost:* 127.0.0.1:*
    - plain HTTP never gets Strict-Transport-Security
    - a header the handler already set is never overwritten
    - Cache-Control / Pragma / Expires are left alone on JSON and HTML
      responses, whose handlers own their caching semantics
"""

import logging
import re
from typing import Dict, List, Optional

from starlette.requests import Request
from starlette.responses import Response

from govgate.middleware.base import CallNext, Middleware, is_https

logger = logging.getLogger(__name__)

DEFAULT_CSP = (
    "default-src 'self'; script-src 'self' 'unsafe-inline' 'unsafe-eval'; "
    "style-src 'self' 'unsafe-inline'; img-src 'self' data: https:; "
    "font-src 'self' data:; connect-src 'self';"
)

DEV_SCRIPT_SOURCES = "localhost:* 127.0.0.1:*"

CACHE_HEADERS = ("Cache-Control", "Pragma", "Expires")

CORE_HEADERS = ("X-Frame-Options", "X-Content-Type-Options", "X-XSS-Protection")
ADVANCED_HEADERS = ("Content-Security-Policy", "Strict-Transport-Security", "Referrer-Policy")

_SCRIPT_SRC = re.compile(r"(script-src[^;]*)")


def default_headers() -> Dict[str, str]:
    return {
        "X-Frame-Options": "SAMEORIGIN",
        "X-Content-Type-Options": "nosniff",
        "X-XSS-Protection": "1; mode=block",
        "Referrer-Policy": "strict-origin-when-cross-origin",
        "Content-Security-Policy": DEFAULT_CSP,
        "Strict-Transport-Security": "max-age=31536000; includeSubDomains; preload",
        "Permissions-Policy": (
            "geolocation=(), microphone=(), camera=(), magnetometer=(), "
            "gyroscope=(), speaker=(), fullscreen=(), payment=()"
        ),
        # Empty value scrubs whatever an upstream server would announce
        "X-Powered-By": "",
        "Cache-Control": "no-cache, no-store, must-revalidate",
        "Pragma": "no-cache",
        "Expires": "0",
    }


def default_api_headers(api_version: str = "1.0") -> Dict[str, str]:
    return {
        "Access-Control-Allow-Origin": "*",
        "Access-Control-Allow-Methods": "GET, POST, PUT, DELETE, OPTIONS",
        "Access-Control-Allow-Headers": "Content-Type, Authorization, X-Requested-With, X-CSRF-Token",
        "Access-Control-Max-Age": "86400",
        "X-API-Version": api_version,
    }


def relax_script_src(csp: str) -> str:
    """Append local hosts to the script-src directive, if there is one."""
    if DEV_SCRIPT_SOURCES in csp:
        return csp
    return _SCRIPT_SRC.sub(lambda m: "{} {}".format(m.group(1).rstrip(), DEV_SCRIPT_SOURCES), csp, count=1)


class SecurityHeaderPolicy:
    """
    Header configuration plus the per-request computation.

    Mutated only through the setters below (startup or admin configuration);
    requests never change it.
    """

    def __init__(
        self,
        development: bool = False,
        trust_proxy_headers: bool = False,
        api_version: str = "1.0",
    ):
        self.development = development
        self.trust_proxy_headers = trust_proxy_headers
        self.api_version = api_version
        self.default_headers = default_headers()
        self.api_headers = default_api_headers(api_version)

    # ── Per-request computation ───────────────────────────────────────────

    def headers_for(self, path: str, https: bool) -> Dict[str, str]:
        headers = dict(self.default_headers)

        if path.startswith("/api/"):
            headers.update(self.api_headers)

        if (self.development or not https) and "Content-Security-Policy" in headers:
            headers["Content-Security-Policy"] = relax_script_src(headers["Content-Security-Policy"])

        if not https:
            headers.pop("Strict-Transport-Security", None)

        return headers

    def should_add(self, name: str, response: Response) -> bool:
        if name in CACHE_HEADERS:
            content_type = response.headers.get("content-type", "")
            if "application/json" in content_type or "text/html" in content_type:
                return False
        return name not in response.headers

    def apply(self, request: Request, response: Response) -> None:
        https = is_https(request, self.trust_proxy_headers)
        for name, value in self.headers_for(request.url.path, https).items():
            if self.should_add(name, response):
                response.headers[name] = value

    # ── Configuration ─────────────────────────────────────────────────────

    def set_header(self, name: str, value: str) -> None:
        self.default_headers[name] = value

    def remove_header(self, name: str) -> None:
        self.default_headers.pop(name, None)

    def set_csp(self, policy: str) -> None:
        self.default_headers["Content-Security-Policy"] = policy

    def add_csp_directive(self, directive: str, value: str) -> None:
        current = self.default_headers.get("Content-Security-Policy", "").strip().rstrip(";")
        addition = "{} {}".format(directive, value)
        self.default_headers["Content-Security-Policy"] = (
            "{}; {}".format(current, addition) if current else addition
        )

    def set_cors_origin(self, origin: str) -> None:
        self.api_headers["Access-Control-Allow-Origin"] = origin

    def set_cors_methods(self, methods: List[str]) -> None:
        self.api_headers["Access-Control-Allow-Methods"] = ", ".join(methods)

    def set_cors_headers(self, headers: List[str]) -> None:
        self.api_headers["Access-Control-Allow-Headers"] = ", ".join(headers)

    def all_headers(self) -> Dict[str, str]:
        merged = dict(self.default_headers)
        merged.update(self.api_headers)
        return merged

    def reset_to_defaults(self) -> None:
        self.default_headers = default_headers()
        self.api_headers = default_api_headers(self.api_version)

    # ── Diagnostics ───────────────────────────────────────────────────────

    def security_score(self) -> int:
        """
        0–100 self-assessment for reporting only; never used to gate requests.

        Core and advanced headers are worth 15 points each, the CORS origin and
        API version markers 10 each.
        """
        score = 0
        for header in CORE_HEADERS + ADVANCED_HEADERS:
            if header in self.default_headers:
                score += 15
        if "Access-Control-Allow-Origin" in self.api_headers:
            score += 10
        if "X-API-Version" in self.api_headers:
            score += 10
        return min(score, 100)

    def recommendations(self, https: Optional[bool] = None) -> List[str]:
        recommendations = []
        if "Content-Security-Policy" not in self.default_headers:
            recommendations.append("Enable Content Security Policy (CSP) to prevent XSS attacks")
        if "Strict-Transport-Security" not in self.default_headers and https:
            recommendations.append("Enable HTTP Strict Transport Security (HSTS) for HTTPS")
        if self.api_headers.get("Access-Control-Allow-Origin") == "*":
            recommendations.append("Restrict CORS origin to specific domains in production")
        if not self.default_headers.get("Permissions-Policy"):
            recommendations.append("Implement Permissions Policy to control browser features")
        return recommendations

    def report(self, https: Optional[bool] = None) -> Dict[str, object]:
        return {
            "headers_applied": len(self.all_headers()),
            "csp_enabled": "Content-Security-Policy" in self.default_headers,
            "hsts_enabled": "Strict-Transport-Security" in self.default_headers,
            "cors_enabled": "Access-Control-Allow-Origin" in self.api_headers,
            "security_score": self.security_score(),
            "recommendations": self.recommendations(https),
        }


class SecurityHeadersMiddleware(Middleware):
    """Pipeline stage (priority 90): delegate first, then decorate the response."""

    name = "security_headers"

    def __init__(self, policy: Optional[SecurityHeaderPolicy] = None):
        self.policy = policy or SecurityHeaderPolicy()

    async def dispatch(self, request: Request, call_next: CallNext) -> Response:
        response = await call_next(request)
        self.policy.apply(request, response)
        return response
