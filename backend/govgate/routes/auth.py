"""
GovGate — Session Authentication Routes
=======================================

What:  CSRF token hand-out, login and logout for browser sessions.
Why:   A browser client needs a token before its first POST, and a logged-in
       session changes the rate-limit key from "IP" to "IP:user".

Routes (all under /api/auth/, which runs the web + public groups):
    GET  /api/auth/csrf-token   issue or return the session token
    POST /api/auth/login        exchange an API key for a logged-in session
    POST /api/auth/logout       drop the session identity
"""

import logging

from fastapi import APIRouter, Depends

from govgate.config import Settings
from govgate.dependencies import get_csrf_guard, get_session, get_settings
from govgate.exceptions import AuthenticationError
from govgate.middleware.auth import find_api_key
from govgate.middleware.csrf import CsrfGuard
from govgate.schemas.gateway import CsrfTokenResponse, ErrorResponse, LoginRequest, LoginResponse
from govgate.services.session_store import RequestSessionStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["Auth"])


@router.get(
    "/csrf-token",
    response_model=CsrfTokenResponse,
    summary="Get the session's CSRF token",
)
async def csrf_token(
    guard: CsrfGuard = Depends(get_csrf_guard),
    session: RequestSessionStore = Depends(get_session),
) -> CsrfTokenResponse:
    token = guard.ensure_token(session)
    record = session.get(CsrfGuard.SESSION_KEY)
    return CsrfTokenResponse(
        token=token,
        header_name=CsrfGuard.HEADER_NAME,
        field_name=CsrfGuard.FIELD_NAME,
        field=guard.token_field(session),
        meta=guard.token_meta(session),
        expires_at=record["expires"],
    )


@router.post(
    "/login",
    response_model=LoginResponse,
    responses={401: {"model": ErrorResponse}},
    summary="Log the session in with an API key",
)
async def login(
    payload: LoginRequest,
    settings: Settings = Depends(get_settings),
    session: RequestSessionStore = Depends(get_session),
) -> LoginResponse:
    grant = find_api_key(settings.api_keys, payload.api_key)
    if grant is None:
        raise AuthenticationError()
    session.authenticate(grant.user_id, grant.roles)
    logger.info("User %s logged in", grant.user_id)
    return LoginResponse(authenticated=True, user_id=grant.user_id, roles=list(grant.roles))


@router.post("/logout", response_model=LoginResponse, summary="Log the session out")
async def logout(session: RequestSessionStore = Depends(get_session)) -> LoginResponse:
    user_id = session.user_id()
    session.logout()
    if user_id:
        logger.info("User %s logged out", user_id)
    return LoginResponse(authenticated=False)
