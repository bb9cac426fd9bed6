"""
GovGate — Session Store Collaborator
====================================

What:  Key-value storage scoped to a single client session.
Why:   The CSRF guard keeps its token record in the session, and the auth and
       rate-limit stages read the authenticated user from it.
How:   `SessionStore` fixes the get/set/remove contract. In the running app the
       values live in Starlette's signed-cookie session (`request.session`);
       `RequestSessionStore` adapts that dict. `MemorySessionStore` backs unit
       tests and callers outside an HTTP request.

Session keys written by this package:
    _csrf_token     {"token": str, "expires": float}
    user_id         authenticated user identifier
    authenticated   True once login succeeded
    user_data       {"roles": [...]}
    login_time      unix timestamp of the login
"""

import time
from abc import ABC, abstractmethod
from typing import Any, Dict, List, MutableMapping, Optional

from starlette.requests import Request

from govgate.exceptions import SessionUnavailableError


class SessionStore(ABC):
    """
    Abstract session contract.

    Failures of the concrete store (storage unreachable, middleware missing)
    propagate to the caller; stages never mask them.
    """

    @abstractmethod
    def get(self, key: str, default: Any = None) -> Any:
        ...

    @abstractmethod
    def set(self, key: str, value: Any) -> None:
        ...

    @abstractmethod
    def remove(self, key: str) -> None:
        ...

    def has(self, key: str) -> bool:
        return self.get(key) is not None

    # ── Authentication helpers ────────────────────────────────────────────

    def authenticate(self, user_id: str, roles: Optional[List[str]] = None) -> None:
        self.set("user_id", user_id)
        self.set("authenticated", True)
        self.set("user_data", {"roles": list(roles or [])})
        self.set("login_time", time.time())

    def logout(self) -> None:
        for key in ("user_id", "authenticated", "user_data", "login_time"):
            self.remove(key)

    def is_authenticated(self) -> bool:
        return self.has("user_id") and bool(self.get("authenticated"))

    def user_id(self) -> Optional[str]:
        if not self.is_authenticated():
            return None
        return str(self.get("user_id"))

    def roles(self) -> List[str]:
        data = self.get("user_data") or {}
        return list(data.get("roles", []))


class MemorySessionStore(SessionStore):
    """Dict-backed session; one instance per simulated client."""

    def __init__(self, data: Optional[Dict[str, Any]] = None):
        self.data: Dict[str, Any] = dict(data or {})

    def get(self, key: str, default: Any = None) -> Any:
        return self.data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self.data[key] = value

    def remove(self, key: str) -> None:
        self.data.pop(key, None)


class RequestSessionStore(SessionStore):
    """
    Adapter over Starlette's `request.session`.

    Values must be JSON-serializable: SessionMiddleware encodes the dict into a
    signed cookie when the response starts.
    """

    def __init__(self, session: MutableMapping[str, Any]):
        self._session = session

    @classmethod
    def from_request(cls, request: Request) -> "RequestSessionStore":
        # request.session asserts when SessionMiddleware is absent
        if "session" not in request.scope:
            raise SessionUnavailableError(
                context={"path": request.url.path, "hint": "install SessionMiddleware"}
            )
        return cls(request.session)

    def get(self, key: str, default: Any = None) -> Any:
        return self._session.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._session[key] = value

    def remove(self, key: str) -> None:
        self._session.pop(key, None)
