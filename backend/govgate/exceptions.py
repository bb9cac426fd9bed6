"""
GovGate — Custom Exception Hierarchy
====================================

What:  Application-specific exceptions for configuration and collaborator failures.
Why:   Global exception handlers (registered in main.py) map these to structured
       JSON responses with the right status code and without internal details.
How:   Each exception carries a user-safe message and an optional context dict
       that is logged but never returned to the client.

Exception Hierarchy:
    GovGateError (base)
    ├── ConfigurationError           → 500 (deployment problem)
    │   ├── UnknownMiddlewareError   (strict mode: unregistered stage name)
    │   └── UnknownGroupError        (strict mode: undefined group name)
    ├── ValidationError              → 400 Bad Request
    │   └── InvalidRateLimitError
    ├── AuthenticationError          → 401 Unauthorized
    └── SessionUnavailableError      → 500 (session collaborator missing)

Rejections issued by pipeline stages (403 CSRF, 429 rate limit, 401 auth) are
ordinary return values, not exceptions. Exceptions are reserved for things a
stage cannot decide on its own.
"""

from typing import Any, Dict, Optional


class GovGateError(Exception):
    """
    Base exception for all GovGate errors.

    Attributes:
        message:  User-facing error description (safe to return in API response)
        context:  Additional debug info (logged but NOT returned to client)
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class ConfigurationError(GovGateError):
    """Raised when the pipeline configuration cannot be satisfied."""

    def __init__(
        self,
        message: str = "The request pipeline is misconfigured",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class UnknownMiddlewareError(ConfigurationError):
    """
    Raised in strict mode when a group or ad-hoc list names a stage that has no
    registered factory.

    In permissive mode (the default) such names are skipped instead; callers
    that need strictness without strict mode can check `registry.has(name)`.
    """

    def __init__(self, name: str, context: Optional[Dict[str, Any]] = None):
        ctx = context or {}
        ctx["middleware"] = name
        super().__init__(message=f"Middleware '{name}' is not registered", context=ctx)
        self.name = name


class UnknownGroupError(ConfigurationError):
    """Raised in strict mode when a route asks for an undefined middleware group."""

    def __init__(self, group: str, context: Optional[Dict[str, Any]] = None):
        ctx = context or {}
        ctx["group"] = group
        super().__init__(message=f"Middleware group '{group}' is not defined", context=ctx)
        self.group = group


class ValidationError(GovGateError):
    """
    Raised when client input fails validation.

    HTTP:    400 Bad Request
    """

    def __init__(
        self,
        message: str = "Validation failed",
        field: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if field:
            ctx["field"] = field
        super().__init__(message=message, context=ctx)
        self.field = field


class InvalidRateLimitError(ValidationError):
    """Raised when an administrator submits a non-positive limit or window."""

    def __init__(self, endpoint_class: str, requests: int, window: int):
        super().__init__(
            message=(
                f"Invalid rate limit for '{endpoint_class}': "
                f"requests and window must both be positive (got {requests}/{window}s)"
            ),
            context={"endpoint_class": endpoint_class, "requests": requests, "window": window},
        )
        self.endpoint_class = endpoint_class


class AuthenticationError(GovGateError):
    """
    Raised by the login route when presented credentials are not recognised.

    HTTP:    401 Unauthorized
    """

    def __init__(
        self,
        message: str = "Invalid credentials",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class SessionUnavailableError(GovGateError):
    """
    Raised when a stage needs the session collaborator and none is installed.

    Not masked by the pipeline: it propagates to the host framework's generic
    error handler, which answers 500 without details.
    """

    def __init__(
        self,
        message: str = "Session storage is not available",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)
