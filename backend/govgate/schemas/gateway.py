"""
GovGate — Pydantic Request/Response Schemas
===========================================

What:  The API contract of the gateway's own endpoints (health, CSRF token,
       login, and the administrative views of the pipeline).
Why:   Strict input validation, automatic serialization, and OpenAPI docs.
"""

from typing import Dict, List, Optional

from pydantic import BaseModel, Field


# ══════════════════════════════════════════════════════════════════════════
# Public endpoints
# ══════════════════════════════════════════════════════════════════════════


class HealthResponse(BaseModel):
    status: str = Field(description="Overall service status: healthy, degraded")
    version: str = Field(description="Application version")
    middleware: int = Field(description="Number of registered pipeline stages")
    uptime_seconds: float = Field(description="Seconds since service started")


class CsrfTokenResponse(BaseModel):
    """
    What:  The session's CSRF token plus ready-made HTML snippets.
    Who:   Fetched by SPAs before their first state-changing request; server
           rendered pages can embed `field` in forms and `meta` in <head>.
    """
    token: str = Field(description="64 hex characters, send back as X-CSRF-Token")
    header_name: str = Field(description="Header carrying the token")
    field_name: str = Field(description="Form / query field carrying the token")
    field: str = Field(description="Hidden input element for HTML forms")
    meta: str = Field(description="Meta tag for AJAX clients")
    expires_at: float = Field(description="Unix timestamp after which a new token is issued")


class LoginRequest(BaseModel):
    api_key: str = Field(min_length=1, max_length=256, description="Issued API key")


class LoginResponse(BaseModel):
    authenticated: bool
    user_id: Optional[str] = None
    roles: List[str] = Field(default_factory=list)


class ErrorResponse(BaseModel):
    """Standard error envelope returned by every exception handler."""
    error: str = Field(description="Machine-readable error code")
    message: str = Field(description="Human-readable error description")
    details: Optional[dict] = Field(default=None, description="Additional error context")
    request_id: Optional[str] = Field(default=None, description="Request correlation ID")


# ══════════════════════════════════════════════════════════════════════════
# Admin endpoints
# ══════════════════════════════════════════════════════════════════════════


class RateLimitRuleIn(BaseModel):
    requests: int = Field(description="Max requests per window (must be positive)")
    window: int = Field(description="Window length in seconds (must be positive)")


class RateLimitStats(BaseModel):
    total_clients: int
    limits: Dict[str, Dict[str, int]]
    active_limits: Dict[str, Dict[str, int]]


class ClearResult(BaseModel):
    cleared: int = Field(description="Number of windows removed")


class MiddlewareStats(BaseModel):
    total_middleware: int
    total_groups: int
    middleware_by_priority: Dict[str, int]
    groups: Dict[str, List[str]]
    strict: bool
    missing: Dict[str, List[str]] = Field(default_factory=dict)


class SecurityHeadersReport(BaseModel):
    headers_applied: int
    csp_enabled: bool
    hsts_enabled: bool
    cors_enabled: bool
    security_score: int = Field(ge=0, le=100)
    recommendations: List[str]
