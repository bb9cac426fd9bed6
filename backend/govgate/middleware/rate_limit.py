"""
GovGate — Rate Limiting
=======================

What:  Sliding-window request limiter keyed by (endpoint class, client).
Why:   Login forms attract credential stuffing; the API attracts scrapers.
       Each gets its own budget instead of one global number.
How:   Every (endpoint_class, client_key) pair owns an ordered list of request
       timestamps. The count is the number of timestamps strictly newer than
       `now - window`; a request is rejected once that count reaches the limit.

Algorithm: Sliding Window Log
    1. Classify the path: /api/auth/(login|register|reset) → "auth",
       other /api/ → "api", everything else → "general"
    2. Key the client by IP, or "IP:user_id" once the session is logged in
    3. Count in-window timestamps; reject with 429 when count >= limit
    4. Otherwise append `now`, prune what fell out of the window, and cap the
       list at 2 × limit newest entries (memory bound only: an accepted
       request always sees fewer than `limit` in-window entries, so the cap
       never hides one)

Default limits (overridable via RATE_LIMITS at startup, or at runtime via
the admin endpoints):
    auth     5 requests / 900s
    api   1000 requests / 3600s
    general 100 requests / 60s

Thread Safety:
    Each window carries its own lock, so check-and-record for one key is
    atomic while different keys never contend. The map of windows has a
    separate lock held only to look up, create or drop entries. A dropped
    window is marked retired under its own lock; a request that raced the
    drop looks its key up again instead of recording into the orphan.

Scaling Limitation:
    Counters are process-local. Running N workers gives every client N times
    the budget; a fleet-wide limit needs a shared counter store instead.
"""

import logging
import math
import re
import threading
import time
from collections import deque
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Callable, Deque, Dict, Mapping, Optional, Tuple

from starlette.requests import Request
from starlette.responses import Response

from govgate.exceptions import InvalidRateLimitError
from govgate.middleware.base import CallNext, Middleware, client_ip, error_response
from govgate.services.audit import AuditLog

logger = logging.getLogger(__name__)

AUTH_PATH = re.compile(r"^/api/auth/(login|register|reset)")

DEFAULT_LIMITS: Dict[str, Dict[str, int]] = {
    "api": {"requests": 1000, "window": 3600},
    "auth": {"requests": 5, "window": 900},
    "general": {"requests": 100, "window": 60},
}

# Sweep idle windows every N recorded requests
PURGE_EVERY = 1000


def endpoint_class(path: str) -> str:
    if AUTH_PATH.match(path):
        return "auth"
    if path.startswith("/api/"):
        return "api"
    return "general"


@dataclass
class RateDecision:
    allowed: bool
    limit: int
    remaining: int
    reset_at: int
    retry_after: int
    count: int

    def headers(self) -> Dict[str, str]:
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset_at),
        }
        if not self.allowed:
            headers["Retry-After"] = str(self.retry_after)
        return headers


class _Window:
    __slots__ = ("timestamps", "lock", "retired")

    def __init__(self) -> None:
        self.timestamps: Deque[float] = deque()
        self.lock = threading.Lock()
        # Set (under `lock`) once the window is dropped from the map
        self.retired = False


class RateLimiter:
    def __init__(
        self,
        limits: Optional[Mapping[str, Mapping[str, int]]] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._limits: Dict[str, Dict[str, int]] = {
            name: dict(rule) for name, rule in DEFAULT_LIMITS.items()
        }
        for name, rule in (limits or {}).items():
            self.set_limit(name, int(rule["requests"]), int(rule["window"]))
        self._windows: Dict[Tuple[str, str], _Window] = {}
        # "IP:user" key → IP, for keys built by compose_key()
        self._owners: Dict[str, str] = {}
        self._lock = threading.Lock()
        self._clock = clock
        self._recorded = 0

    # ── Limits ────────────────────────────────────────────────────────────

    def limit_for(self, endpoint_class: str) -> Dict[str, int]:
        return self._limits.get(endpoint_class, self._limits["general"])

    def set_limit(self, endpoint_class: str, requests: int, window: int) -> None:
        if requests < 1 or window < 1:
            raise InvalidRateLimitError(endpoint_class, requests, window)
        self._limits[endpoint_class] = {"requests": requests, "window": window}
        logger.info("Rate limit for '%s' set to %d/%ds", endpoint_class, requests, window)

    def limits(self) -> Dict[str, Dict[str, int]]:
        return {name: dict(rule) for name, rule in self._limits.items()}

    # ── Client keys ───────────────────────────────────────────────────────

    def compose_key(self, ip: str, user_id: Optional[object] = None) -> str:
        """
        Client key for an IP, narrowed to a user when one is known.

        IPv6 addresses contain colons, so the owning IP of an "IP:user" key is
        remembered here rather than parsed back out of the key text.
        """
        if user_id is None:
            return ip
        key = "{}:{}".format(ip, user_id)
        with self._lock:
            self._owners[key] = ip
        return key

    # ── Window bookkeeping ────────────────────────────────────────────────

    def _window(self, client_key: str, endpoint_class: str, create: bool) -> Optional[_Window]:
        key = (endpoint_class, client_key)
        with self._lock:
            window = self._windows.get(key)
            if window is None and create:
                window = _Window()
                self._windows[key] = window
            return window

    def _acquire(self, client_key: str, endpoint_class: str) -> _Window:
        """
        Live window for the key, returned with its lock held.

        A window retired between the map lookup and the lock (idle purge,
        admin clear) is skipped and looked up again.
        """
        while True:
            window = self._window(client_key, endpoint_class, create=True)
            window.lock.acquire()
            if not window.retired:
                return window
            window.lock.release()

    def _retire(self, key: Tuple[str, str]) -> None:
        # Caller holds self._lock and the window's lock
        self._windows.pop(key).retired = True

    def _forget_owners(self) -> None:
        # Caller holds self._lock
        live = {client for _, client in self._windows}
        for key in [key for key in self._owners if key not in live]:
            del self._owners[key]

    @staticmethod
    def _prune(window: _Window, window_start: float) -> None:
        timestamps = window.timestamps
        while timestamps and timestamps[0] <= window_start:
            timestamps.popleft()

    def _decide(self, window: Optional[_Window], endpoint_class: str, now: float) -> RateDecision:
        rule = self.limit_for(endpoint_class)
        limit, length = rule["requests"], rule["window"]
        if window is not None:
            self._prune(window, now - length)
            count = len(window.timestamps)
            oldest = window.timestamps[0] if count else None
        else:
            count, oldest = 0, None

        reset_at = int(oldest + length) if oldest is not None else int(now + length)
        return RateDecision(
            allowed=count < limit,
            limit=limit,
            remaining=max(0, limit - count),
            reset_at=reset_at,
            retry_after=max(1, math.ceil(reset_at - now)),
            count=count,
        )

    def _append(self, window: _Window, endpoint_class: str, now: float) -> None:
        rule = self.limit_for(endpoint_class)
        window.timestamps.append(now)
        self._prune(window, now - rule["window"])
        cap = rule["requests"] * 2
        while len(window.timestamps) > cap:
            window.timestamps.popleft()

    # ── Public operations ─────────────────────────────────────────────────

    def check(self, client_key: str, endpoint_class: str, now: Optional[float] = None) -> RateDecision:
        """Decide without recording."""
        now = self._clock() if now is None else now
        window = self._window(client_key, endpoint_class, create=False)
        if window is None:
            return self._decide(None, endpoint_class, now)
        with window.lock:
            return self._decide(window, endpoint_class, now)

    def is_rate_limited(self, client_key: str, endpoint_class: str, now: Optional[float] = None) -> bool:
        return not self.check(client_key, endpoint_class, now).allowed

    def record(self, client_key: str, endpoint_class: str, now: Optional[float] = None) -> None:
        now = self._clock() if now is None else now
        window = self._acquire(client_key, endpoint_class)
        try:
            self._append(window, endpoint_class, now)
        finally:
            window.lock.release()
        self._after_record(now)

    def hit(self, client_key: str, endpoint_class: str, now: Optional[float] = None) -> RateDecision:
        """
        Check and, when allowed, record in one step under the window lock.

        The allow verdict comes from the count before recording; `remaining`
        and `reset_at` are taken after it, so they account for this request.
        """
        now = self._clock() if now is None else now
        window = self._acquire(client_key, endpoint_class)
        try:
            decision = self._decide(window, endpoint_class, now)
            if not decision.allowed:
                return decision
            self._append(window, endpoint_class, now)
            # Taking the last slot leaves count == limit; still admitted
            decision = replace(self._decide(window, endpoint_class, now), allowed=True)
        finally:
            window.lock.release()
        self._after_record(now)
        return decision

    def request_count(self, client_key: str, endpoint_class: str, now: Optional[float] = None) -> int:
        return self.check(client_key, endpoint_class, now).count

    def reset_time(self, client_key: str, endpoint_class: str, now: Optional[float] = None) -> int:
        return self.check(client_key, endpoint_class, now).reset_at

    # ── Administration ────────────────────────────────────────────────────

    def clear_client(self, client_key: str) -> int:
        """Drop every window of a client, including its compose_key() variants."""
        with self._lock:
            doomed = [
                key for key in self._windows
                if key[1] == client_key or self._owners.get(key[1]) == client_key
            ]
            for key in doomed:
                with self._windows[key].lock:
                    self._retire(key)
            for _, client in doomed:
                self._owners.pop(client, None)
        logger.info("Cleared %d rate-limit windows for client %s", len(doomed), client_key)
        return len(doomed)

    def clear_all(self) -> None:
        with self._lock:
            for key in list(self._windows):
                with self._windows[key].lock:
                    self._retire(key)
            self._owners.clear()
        logger.info("Cleared all rate-limit windows")

    def stats(self) -> Dict[str, object]:
        with self._lock:
            items = list(self._windows.items())
        active: Dict[str, Dict[str, int]] = {}
        for (cls, client), window in items:
            with window.lock:
                active.setdefault(cls, {})[client] = len(window.timestamps)
        return {
            "total_clients": len({client for (_, client), _ in items}),
            "limits": self.limits(),
            "active_limits": active,
        }

    def _after_record(self, now: float) -> None:
        with self._lock:
            self._recorded += 1
            due = self._recorded % PURGE_EVERY == 0
        if due:
            self.purge_idle(now)

    def purge_idle(self, now: Optional[float] = None) -> int:
        """Remove windows whose every timestamp has aged out."""
        now = self._clock() if now is None else now
        removed = 0
        with self._lock:
            for key, window in list(self._windows.items()):
                with window.lock:
                    self._prune(window, now - self.limit_for(key[0])["window"])
                    if not window.timestamps:
                        self._retire(key)
                        removed += 1
            if removed:
                self._forget_owners()
        if removed:
            logger.debug("Purged %d idle rate-limit windows", removed)
        return removed


class RateLimitMiddleware(Middleware):
    """
    Pipeline stage (priority 80).

    Rejections carry X-RateLimit-* and Retry-After; accepted requests carry
    X-RateLimit-* so clients can slow down before they hit the wall.
    """

    name = "rate_limit"

    def __init__(
        self,
        limiter: Optional[RateLimiter] = None,
        audit: Optional[AuditLog] = None,
        trust_proxy_headers: bool = False,
    ):
        self.limiter = limiter or RateLimiter()
        self.audit = audit or AuditLog()
        self.trust_proxy_headers = trust_proxy_headers

    def client_key(self, request: Request) -> str:
        ip = client_ip(request, self.trust_proxy_headers)
        user_id = getattr(request.state, "user_id", None)
        if user_id is None and "session" in request.scope and request.session.get("authenticated"):
            user_id = request.session.get("user_id")
        return self.limiter.compose_key(ip, user_id)

    async def dispatch(self, request: Request, call_next: CallNext) -> Response:
        key = self.client_key(request)
        cls = endpoint_class(request.url.path)
        decision = self.limiter.hit(key, cls)

        if not decision.allowed:
            self.audit.log(
                "Rate limit exceeded for client {} on endpoint {} at {}".format(
                    key, cls, datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
                )
            )
            return error_response(
                request,
                429,
                error="Too Many Requests",
                message="Rate limit exceeded. Please try again later.",
                headers=decision.headers(),
                extra={"retry_after": decision.retry_after},
            )

        response = await call_next(request)
        for name, value in decision.headers().items():
            response.headers[name] = value
        return response
