"""
GovGate — Dependency Container
==============================

What:  A small registry of factories keyed by class (or any hashable key).
Why:   Stages such as the rate-limit stage need a shared, long-lived RateLimiter
       rather than a fresh one per construction. The MiddlewareRegistry asks the
       container first and only falls back to a no-argument call when the
       container does not know the factory.
How:   `bind(key, factory)` stores a callable receiving the container;
       singletons are built on first `get()` and reused afterwards.

Example:
    container = Container()
    container.instance(RateLimiter, RateLimiter())
    container.bind(RateLimitMiddleware, lambda c: RateLimitMiddleware(c.get(RateLimiter)))
"""

import threading
from typing import Any, Callable, Dict, Hashable


class Container:
    def __init__(self) -> None:
        self._factories: Dict[Hashable, Callable[["Container"], Any]] = {}
        self._singleton: Dict[Hashable, bool] = {}
        self._instances: Dict[Hashable, Any] = {}
        self._lock = threading.RLock()

    def bind(
        self,
        key: Hashable,
        factory: Callable[["Container"], Any],
        singleton: bool = True,
    ) -> "Container":
        with self._lock:
            self._factories[key] = factory
            self._singleton[key] = singleton
            self._instances.pop(key, None)
        return self

    def instance(self, key: Hashable, value: Any) -> "Container":
        """Register an already-built object."""
        with self._lock:
            self._factories.pop(key, None)
            self._instances[key] = value
            self._singleton[key] = True
        return self

    def has(self, key: Hashable) -> bool:
        with self._lock:
            return key in self._instances or key in self._factories

    def get(self, key: Hashable) -> Any:
        with self._lock:
            if key in self._instances:
                return self._instances[key]
            factory = self._factories.get(key)
            if factory is None:
                raise KeyError(f"Nothing bound for {key!r}")
            value = factory(self)
            if self._singleton.get(key, True):
                self._instances[key] = value
            return value
