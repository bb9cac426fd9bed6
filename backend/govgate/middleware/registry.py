"""
GovGate — Middleware Registry
=============================

What:  Named registry of pipeline stages with priorities and groups; builds and
       runs the per-request chain.
Why:   Routes ask for groups ("api", "web", "admin", "public") instead of wiring
       stages themselves, and a stage's position is decided by one priority
       number rather than by the order someone happened to list it in.
How:   register(name, factory, priority) stores a factory. At request time the
       requested names are sorted (priority descending, unprioritized names
       last in their original order) and wrapped right-to-left around the
       terminal handler, so each stage receives an explicit `call_next`.

Default stages (higher runs first):
    csrf 100 > security_headers 90 > rate_limit 80 > auth 70 > admin 60
    > cors 50 > json_parser 40 > input_sanitizer 30

Default groups:
    api    = cors, rate_limit, json_parser, input_sanitizer, auth
    web    = csrf, security_headers, input_sanitizer
    admin  = auth, admin, security_headers
    public = cors, rate_limit

Unknown names:
    Permissive mode (default) skips names without a factory so a partially
    configured deployment keeps serving. Strict mode raises
    UnknownMiddlewareError / UnknownGroupError instead; `validate()` runs the
    same check over every group at startup.

Groups are stored as name lists and resolved when a chain is built, so a
priority change applies to every group that already names the stage.
"""

import logging
import threading
from typing import Any, Callable, Dict, Iterable, List, Optional

from starlette.requests import Request
from starlette.responses import Response

from govgate.exceptions import UnknownGroupError, UnknownMiddlewareError
from govgate.middleware.auth import AdminMiddleware, AuthMiddleware
from govgate.middleware.base import CallNext
from govgate.middleware.cors import CorsMiddleware
from govgate.middleware.csrf import CsrfMiddleware
from govgate.middleware.input_sanitizer import InputSanitizerMiddleware
from govgate.middleware.json_parser import JsonParserMiddleware
from govgate.middleware.rate_limit import RateLimitMiddleware
from govgate.middleware.security_headers import SecurityHeadersMiddleware
from govgate.services.container import Container

logger = logging.getLogger(__name__)

Factory = Callable[[], Any]

DEFAULT_PRIORITY = 50

DEFAULT_STAGES = (
    ("csrf", CsrfMiddleware, 100),
    ("security_headers", SecurityHeadersMiddleware, 90),
    ("rate_limit", RateLimitMiddleware, 80),
    ("auth", AuthMiddleware, 70),
    ("admin", AdminMiddleware, 60),
    ("cors", CorsMiddleware, 50),
    ("json_parser", JsonParserMiddleware, 40),
    ("input_sanitizer", InputSanitizerMiddleware, 30),
)

DEFAULT_GROUPS = {
    "api": ["cors", "rate_limit", "json_parser", "input_sanitizer", "auth"],
    "web": ["csrf", "security_headers", "input_sanitizer"],
    "admin": ["auth", "admin", "security_headers"],
    "public": ["cors", "rate_limit"],
}


def _link(stage: Any, call_next: CallNext) -> CallNext:
    dispatch = getattr(stage, "dispatch", stage)

    async def handler(request: Request) -> Response:
        return await dispatch(request, call_next)

    return handler


class MiddlewareRegistry:
    def __init__(
        self,
        container: Optional[Container] = None,
        strict: bool = False,
        defaults: bool = True,
    ):
        self.container = container
        self.strict = strict
        self._factories: Dict[str, Factory] = {}
        self._priorities: Dict[str, int] = {}
        self._groups: Dict[str, List[str]] = {}
        self._instances: Dict[str, Any] = {}
        # Writers: register/unregister/create_group/clear. Readers copy under it.
        self._lock = threading.RLock()
        if defaults:
            self.register_defaults()

    def register_defaults(self) -> None:
        for name, factory, priority in DEFAULT_STAGES:
            self.register(name, factory, priority)
        for group, names in DEFAULT_GROUPS.items():
            self.create_group(group, names)

    # ── Registration ──────────────────────────────────────────────────────

    def register(
        self, name: str, factory: Factory, priority: Optional[int] = DEFAULT_PRIORITY
    ) -> "MiddlewareRegistry":
        """
        Register (or replace) a stage. `priority=None` registers it without a
        priority, which places it after every prioritized stage.
        """
        with self._lock:
            self._factories[name] = factory
            if priority is None:
                self._priorities.pop(name, None)
            else:
                self._priorities[name] = priority
            self._instances.pop(name, None)
        return self

    def unregister(self, name: str) -> "MiddlewareRegistry":
        with self._lock:
            self._factories.pop(name, None)
            self._priorities.pop(name, None)
            self._instances.pop(name, None)
        return self

    def has(self, name: str) -> bool:
        with self._lock:
            return name in self._factories

    def get(self, name: str) -> Optional[Factory]:
        with self._lock:
            return self._factories.get(name)

    def all(self) -> Dict[str, Factory]:
        with self._lock:
            return dict(self._factories)

    def priority(self, name: str) -> Optional[int]:
        with self._lock:
            return self._priorities.get(name)

    # ── Groups ────────────────────────────────────────────────────────────

    def create_group(self, name: str, names: Iterable[str]) -> "MiddlewareRegistry":
        with self._lock:
            self._groups[name] = list(names)
        return self

    def get_group(self, name: str) -> List[str]:
        with self._lock:
            names = self._groups.get(name)
        if names is None:
            if self.strict:
                raise UnknownGroupError(name)
            return []
        return list(names)

    def groups(self) -> Dict[str, List[str]]:
        with self._lock:
            return {name: list(names) for name, names in self._groups.items()}

    def resolve_groups(self, *groups: str) -> List[str]:
        """Concatenate groups; a name listed twice keeps its first position."""
        names: List[str] = []
        for group in groups:
            for name in self.get_group(group):
                if name not in names:
                    names.append(name)
        return names

    # ── Resolution ────────────────────────────────────────────────────────

    def resolve(self, name: str) -> Optional[Any]:
        """
        Stage instance for `name`, or None when nothing is registered.

        The container builds the stage when it knows the factory (so stages
        get their shared dependencies); otherwise the factory is called with
        no arguments. Instances are reused until the name is re-registered.
        """
        with self._lock:
            if name in self._instances:
                return self._instances[name]
            factory = self._factories.get(name)
            if factory is None:
                return None
            if self.container is not None and self.container.has(factory):
                instance = self.container.get(factory)
            else:
                instance = factory()
            self._instances[name] = instance
            return instance

    def sort_by_priority(self, names: Iterable[str]) -> List[str]:
        with self._lock:
            priorities = dict(self._priorities)
        ordered: List[str] = []
        for name in names:
            if name not in ordered:
                ordered.append(name)
        known = [name for name in ordered if name in priorities]
        unknown = [name for name in ordered if name not in priorities]
        # sorted() is stable: equal priorities keep their listed order
        known = sorted(known, key=lambda name: -priorities[name])
        return known + unknown

    def build(self, names: Iterable[str], endpoint: CallNext) -> CallNext:
        chain = endpoint
        for name in reversed(self.sort_by_priority(names)):
            stage = self.resolve(name)
            if stage is None:
                if self.strict:
                    raise UnknownMiddlewareError(name)
                logger.debug("Skipping unregistered middleware '%s'", name)
                continue
            chain = _link(stage, chain)
        return chain

    async def execute(self, names: Iterable[str], request: Request, endpoint: CallNext) -> Response:
        return await self.build(names, endpoint)(request)

    async def execute_group(self, group: str, request: Request, endpoint: CallNext) -> Response:
        return await self.execute(self.get_group(group), request, endpoint)

    # ── Maintenance ───────────────────────────────────────────────────────

    def missing(self) -> Dict[str, List[str]]:
        """Group → names in that group without a registered factory."""
        with self._lock:
            groups = {name: list(names) for name, names in self._groups.items()}
            factories = set(self._factories)
        report = {}
        for group, names in groups.items():
            absent = [name for name in names if name not in factories]
            if absent:
                report[group] = absent
        return report

    def validate(self, groups: Optional[Iterable[str]] = None) -> Dict[str, List[str]]:
        """
        Check group definitions. Strict mode raises on the first problem;
        permissive mode logs and returns the report.
        """
        if groups is not None:
            for group in groups:
                with self._lock:
                    defined = group in self._groups
                if not defined:
                    if self.strict:
                        raise UnknownGroupError(group)
                    logger.warning("Route references undefined middleware group '%s'", group)
        report = self.missing()
        for group, names in report.items():
            if self.strict:
                raise UnknownMiddlewareError(names[0], context={"group": group})
            logger.warning("Group '%s' names unregistered middleware: %s", group, ", ".join(names))
        return report

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "total_middleware": len(self._factories),
                "total_groups": len(self._groups),
                "middleware_by_priority": dict(self._priorities),
                "groups": {name: list(names) for name, names in self._groups.items()},
                "strict": self.strict,
            }

    def clear(self) -> "MiddlewareRegistry":
        with self._lock:
            self._factories.clear()
            self._priorities.clear()
            self._groups.clear()
            self._instances.clear()
        return self
