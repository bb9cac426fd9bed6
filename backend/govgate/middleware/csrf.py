"""
GovGate — CSRF Protection
=========================

What:  Synchronizer-token CSRF protection bound to the client session.
Why:   State-changing requests must prove they originate from a page we served.
       A cross-site form can make the browser send the session cookie, but it
       cannot read the token stored in that session.
How:   `CsrfGuard` holds the decision logic over a SessionStore; the
       `CsrfMiddleware` stage feeds it the request's token candidates and turns
       a rejection into a 403.

Token lifecycle:
    1. First state-changing request (or GET /api/auth/csrf-token) issues a token:
       32 random bytes, hex encoded → 64 characters, valid for 1 hour
    2. The token is stored in the session as {"token": ..., "expires": ...}
    3. Clients send it back as header X-CSRF-Token, form/JSON field _csrf_token,
       or query parameter _csrf_token (checked in that order)
    4. Once `expires` is reached the next state-changing request gets a new one

Concurrency:
    Two tabs of the same session may both see an expired token and both issue
    a replacement. The later write wins; the earlier token simply stops being
    accepted. No lock is taken for this.
"""

import hmac
import json
import logging
import secrets
import time
from dataclasses import dataclass
from html import escape
from typing import Callable, Optional

from starlette.formparsers import MultiPartException
from starlette.requests import Request
from starlette.responses import Response

from govgate.middleware.base import CallNext, Middleware, client_ip, error_response
from govgate.services.audit import AuditLog
from govgate.services.session_store import RequestSessionStore, SessionStore

logger = logging.getLogger(__name__)

FORM_CONTENT_TYPES = ("application/x-www-form-urlencoded", "multipart/form-data")


@dataclass
class CsrfOutcome:
    """Result of one CSRF check; `source` names the transport that matched."""

    passed: bool
    token: Optional[str] = None
    issued: bool = False
    source: Optional[str] = None
    reason: Optional[str] = None


def tokens_match(expected: str, candidate: str) -> bool:
    """Constant-time comparison; non-ASCII candidates are compared as bytes."""
    return hmac.compare_digest(expected.encode("utf-8"), candidate.encode("utf-8"))


class CsrfGuard:
    SESSION_KEY = "_csrf_token"
    HEADER_NAME = "X-CSRF-Token"
    FIELD_NAME = "_csrf_token"
    SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})
    TOKEN_BYTES = 32

    def __init__(self, ttl: int = 3600, clock: Callable[[], float] = time.time):
        self.ttl = ttl
        self._clock = clock

    # ── Token state ───────────────────────────────────────────────────────

    def _record(self, session: SessionStore) -> Optional[dict]:
        record = session.get(self.SESSION_KEY)
        if not isinstance(record, dict) or not record.get("token"):
            return None
        return record

    def has_valid_token(self, session: SessionStore) -> bool:
        """True when a token exists and has not expired; drops expired tokens."""
        record = self._record(session)
        if record is None:
            return False
        expires = record.get("expires")
        if expires is not None and expires <= self._clock():
            session.remove(self.SESSION_KEY)
            return False
        return True

    def issue_token(self, session: SessionStore) -> str:
        token = secrets.token_bytes(self.TOKEN_BYTES).hex()
        session.set(self.SESSION_KEY, {"token": token, "expires": self._clock() + self.ttl})
        logger.debug("Issued new CSRF token")
        return token

    def ensure_token(self, session: SessionStore) -> str:
        if self.has_valid_token(session):
            return self._record(session)["token"]
        return self.issue_token(session)

    def get_token(self, session: SessionStore) -> Optional[str]:
        """Current unexpired token, without issuing one."""
        record = self._record(session)
        if record is None:
            return None
        expires = record.get("expires")
        if expires is not None and expires <= self._clock():
            return None
        return record["token"]

    # ── Checks ────────────────────────────────────────────────────────────

    def validate(self, session: SessionStore, token: Optional[str]) -> bool:
        """Check an arbitrary token string against the session's token."""
        expected = self.get_token(session)
        if not expected or not token:
            return False
        return tokens_match(expected, token)

    def check(
        self,
        method: str,
        session: SessionStore,
        header_token: Optional[str] = None,
        body_token: Optional[str] = None,
        query_token: Optional[str] = None,
    ) -> CsrfOutcome:
        if method.upper() in self.SAFE_METHODS:
            return CsrfOutcome(passed=True, token=self.get_token(session))

        issued = False
        if not self.has_valid_token(session):
            self.issue_token(session)
            issued = True
        expected = self._record(session)["token"]

        candidates = (("header", header_token), ("body", body_token), ("query", query_token))
        for source, candidate in candidates:
            if candidate and tokens_match(expected, candidate):
                return CsrfOutcome(passed=True, token=expected, issued=issued, source=source)

        return CsrfOutcome(
            passed=False,
            token=expected,
            issued=issued,
            reason="Invalid or missing CSRF token",
        )

    # ── Template helpers ──────────────────────────────────────────────────

    def token_field(self, session: SessionStore) -> str:
        token = self.get_token(session)
        if not token:
            return ""
        return '<input type="hidden" name="{}" value="{}">'.format(
            self.FIELD_NAME, escape(token, quote=True)
        )

    def token_meta(self, session: SessionStore) -> str:
        token = self.get_token(session)
        if not token:
            return ""
        return '<meta name="csrf-token" content="{}">'.format(escape(token, quote=True))


class CsrfMiddleware(Middleware):
    """
    Pipeline stage wrapping CsrfGuard (priority 100, runs first).

    On success the token is echoed in X-CSRF-Token together with
    X-CSRF-Token-Available so AJAX clients can pick it up.
    """

    name = "csrf"

    def __init__(
        self,
        guard: Optional[CsrfGuard] = None,
        audit: Optional[AuditLog] = None,
        trust_proxy_headers: bool = False,
    ):
        self.guard = guard or CsrfGuard()
        self.audit = audit or AuditLog()
        self.trust_proxy_headers = trust_proxy_headers

    async def dispatch(self, request: Request, call_next: CallNext) -> Response:
        session = RequestSessionStore.from_request(request)
        method = request.method.upper()

        if method in CsrfGuard.SAFE_METHODS:
            outcome = self.guard.check(method, session)
        else:
            outcome = self.guard.check(
                method,
                session,
                header_token=request.headers.get(CsrfGuard.HEADER_NAME),
                body_token=await self._body_token(request),
                query_token=request.query_params.get(CsrfGuard.FIELD_NAME),
            )

        if not outcome.passed:
            self.audit.log(
                "CSRF validation failed for request: {} from IP: {}".format(
                    request.url.path, client_ip(request, self.trust_proxy_headers)
                )
            )
            return error_response(
                request,
                403,
                error="CSRF token validation failed",
                message=outcome.reason or "Invalid or missing CSRF token",
                html_message="CSRF token validation failed. Please refresh the page and try again.",
            )

        response = await call_next(request)
        if outcome.token:
            response.headers[CsrfGuard.HEADER_NAME] = outcome.token
            response.headers["X-CSRF-Token-Available"] = "true"
        return response

    async def _body_token(self, request: Request) -> Optional[str]:
        """
        Token from a form field or a JSON object body.

        The raw body is read first so Starlette caches it and the downstream
        handler can still read the body after this stage parsed it.
        """
        content_type = request.headers.get("content-type", "")
        body = await request.body()
        if not body:
            return None

        if content_type.startswith(FORM_CONTENT_TYPES):
            try:
                form = await request.form()
            except (MultiPartException, ValueError) as exc:
                logger.debug("Unparseable form body during CSRF check: %s", exc)
                return None
            value = form.get(CsrfGuard.FIELD_NAME)
            return value if isinstance(value, str) else None

        if "application/json" in content_type:
            try:
                payload = json.loads(body)
            except ValueError:
                return None
            if isinstance(payload, dict):
                value = payload.get(CsrfGuard.FIELD_NAME)
                return value if isinstance(value, str) else None
        return None
