"""
GovGate — Application Configuration
====================================

What:  Centralized configuration management using Pydantic Settings.
Why:   Type-safe environment variable loading with validation on startup.
       A malformed rate-limit override or log level fails the process at boot,
       not on the first request that needs it.
How:   Pydantic Settings reads from environment variables (or .env file),
       validates types/ranges, and provides a singleton `settings` object.
Who:   Imported by the application factory and by stages that need defaults.
When:  Loaded once at module import time; validated before app starts.

Complex values (rate_limits, api_keys, route_groups) are read as JSON:
    RATE_LIMITS='{"auth": {"requests": 10, "window": 600}}'
    API_KEYS='{"k-123": {"user_id": "42", "roles": ["admin"]}}'
"""

from typing import Dict, List

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings


PLACEHOLDER_SECRET = "change-me-in-production"


class RateLimitRule(BaseModel):
    """Max requests allowed inside a trailing window of `window` seconds."""

    requests: int = Field(ge=1)
    window: int = Field(ge=1)


class ApiKeyGrant(BaseModel):
    """Identity attached to a session or request presenting an API key."""

    user_id: str
    roles: List[str] = Field(default_factory=list)


def default_route_groups() -> Dict[str, List[str]]:
    # Longest matching prefix wins, see PipelineMiddleware.groups_for()
    return {
        "/api/auth/": ["web", "public"],
        "/api/admin/": ["api", "admin"],
        "/api/": ["api"],
        "/health": [],
        "/": ["web"],
    }


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings have sensible defaults for development.
    Production deployments MUST override SESSION_SECRET_KEY.
    """

    # ── Application ───────────────────────────────────────────────────────
    app_name: str = Field(default="GovGate")

    # What: Deployment environment; "development" relaxes the CSP script-src
    app_env: str = Field(default="production")
    app_debug: bool = Field(default=False)

    # Valid: DEBUG, INFO, WARNING, ERROR, CRITICAL
    log_level: str = Field(default="INFO")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Ensures log level is a valid Python logging level name."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper = v.upper()
        if upper not in valid_levels:
            raise ValueError(f"Invalid log_level '{v}'. Must be one of: {valid_levels}")
        return upper

    @field_validator("app_env")
    @classmethod
    def normalize_app_env(cls, v: str) -> str:
        return v.strip().lower()

    # ── Sessions ──────────────────────────────────────────────────────────
    # What: Key used by Starlette's SessionMiddleware to sign the cookie
    session_secret_key: str = Field(default=PLACEHOLDER_SECRET)
    session_cookie: str = Field(default="govgate_session")
    session_max_age: int = Field(default=3600, ge=60, le=86400 * 30)
    session_https_only: bool = Field(default=False)

    # ── CSRF ──────────────────────────────────────────────────────────────
    csrf_token_ttl: int = Field(default=3600, ge=60, le=86400)

    # ── Rate Limiting ─────────────────────────────────────────────────────
    # What: Per endpoint-class overrides merged over the built-in defaults
    # (auth 5/900s, api 1000/3600s, general 100/60s)
    rate_limits: Dict[str, RateLimitRule] = Field(default_factory=dict)

    # What: Honour X-Forwarded-For / X-Real-IP / X-Forwarded-Proto
    # Only enable behind a proxy that overwrites these headers
    trust_proxy_headers: bool = Field(default=False)

    # ── CORS & API ────────────────────────────────────────────────────────
    # Format: Comma-separated origins, "*" allows any
    cors_origins: str = Field(default="*")

    @property
    def cors_origins_list(self) -> List[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    api_version: str = Field(default="1.0")

    # What: API key → identity; used by the login route and the auth stage
    api_keys: Dict[str, ApiKeyGrant] = Field(default_factory=dict)

    # ── Pipeline ──────────────────────────────────────────────────────────
    # What: Fail on unknown middleware names instead of skipping them
    middleware_strict: bool = Field(default=False)

    # What: Path prefix → middleware groups run for that prefix
    route_groups: Dict[str, List[str]] = Field(default_factory=default_route_groups)

    # ── Pydantic Settings Config ──────────────────────────────────────────
    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
    }

    @property
    def is_development(self) -> bool:
        return self.app_env == "development" or self.app_debug

    def rate_limit_overrides(self) -> Dict[str, Dict[str, int]]:
        return {name: rule.model_dump() for name, rule in self.rate_limits.items()}

    def validate_required_for_production(self) -> None:
        """
        What:  Validates that critical settings are configured.
        When:  Called during app startup (lifespan).
        How:   Collects every problem and raises one ValueError listing them.
        """
        errors = []
        if self.app_env == "production" and self.session_secret_key == PLACEHOLDER_SECRET:
            errors.append(
                "SESSION_SECRET_KEY is still the development placeholder. "
                "Generate one with: python -c 'import secrets; print(secrets.token_hex(32))'"
            )
        if not self.route_groups:
            errors.append("ROUTE_GROUPS is empty; no request would run any middleware.")
        if errors:
            raise ValueError(
                "Configuration validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
            )


settings = Settings()
