"""
GovGate — Authentication & Admin Stages
=======================================

What:  `auth` (priority 70) admits authenticated callers; `admin` (priority 60)
       admits callers holding the "admin" role.
How:   A caller is authenticated when its session was logged in (see
       SessionStore.authenticate) or when it presents an X-API-Key listed in
       settings.api_keys. The resolved identity is written to
       `request.state.user_id` / `request.state.roles` for later stages and
       handlers.
"""

import hmac
import logging
from typing import Dict, List, Optional, Tuple

from starlette.requests import Request
from starlette.responses import Response

from govgate.config import ApiKeyGrant
from govgate.middleware.base import CallNext, Middleware, error_response
from govgate.services.session_store import RequestSessionStore

logger = logging.getLogger(__name__)

API_KEY_HEADER = "X-API-Key"


def find_api_key(api_keys: Dict[str, ApiKeyGrant], presented: str) -> Optional[ApiKeyGrant]:
    """Look up a key, comparing each candidate in constant time."""
    match = None
    for key, grant in api_keys.items():
        if hmac.compare_digest(key.encode("utf-8"), presented.encode("utf-8")):
            match = grant
    return match


class AuthMiddleware(Middleware):
    name = "auth"

    def __init__(self, api_keys: Optional[Dict[str, ApiKeyGrant]] = None):
        self.api_keys = api_keys or {}

    def identify(self, request: Request) -> Optional[Tuple[str, List[str]]]:
        presented = request.headers.get(API_KEY_HEADER)
        if presented:
            grant = find_api_key(self.api_keys, presented)
            if grant is not None:
                return grant.user_id, list(grant.roles)
            logger.warning("Unknown API key presented for %s", request.url.path)
            return None

        if "session" in request.scope:
            session = RequestSessionStore.from_request(request)
            if session.is_authenticated():
                return session.user_id(), session.roles()
        return None

    async def dispatch(self, request: Request, call_next: CallNext) -> Response:
        identity = self.identify(request)
        if identity is None:
            return error_response(
                request,
                401,
                error="Unauthorized",
                message="Authentication required",
                headers={"WWW-Authenticate": API_KEY_HEADER},
            )
        request.state.user_id, request.state.roles = identity
        return await call_next(request)


class AdminMiddleware(Middleware):
    """Requires the auth stage (or a handler upstream) to have set roles."""

    name = "admin"
    role = "admin"

    async def dispatch(self, request: Request, call_next: CallNext) -> Response:
        roles = getattr(request.state, "roles", None) or []
        if self.role not in roles:
            logger.warning(
                "Non-admin user %s denied %s",
                getattr(request.state, "user_id", None),
                request.url.path,
            )
            return error_response(
                request,
                403,
                error="Forbidden",
                message="Administrator privileges required",
            )
        return await call_next(request)
