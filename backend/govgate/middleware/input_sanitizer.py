"""
GovGate — Input Sanitizer Stage
===============================

What:  Normalizes string input: trims surrounding whitespace and drops ASCII
       control characters (tab and newline are kept).
How:   Rewrites `request.state.json` in place when the JSON parser ran, and
       exposes cleaned query parameters as `request.state.query`. The raw body
       is left untouched; handlers opt in by reading the state attributes.
"""

import re
from typing import Any, Dict

from starlette.requests import Request
from starlette.responses import Response

from govgate.middleware.base import CallNext, Middleware

_CONTROL = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")


def clean(value: Any) -> Any:
    if isinstance(value, str):
        return _CONTROL.sub("", value).strip()
    if isinstance(value, dict):
        return {clean(k): clean(v) for k, v in value.items()}
    if isinstance(value, list):
        return [clean(item) for item in value]
    return value


class InputSanitizerMiddleware(Middleware):
    name = "input_sanitizer"

    async def dispatch(self, request: Request, call_next: CallNext) -> Response:
        payload = getattr(request.state, "json", None)
        if payload is not None:
            request.state.json = clean(payload)
        query: Dict[str, str] = {key: clean(value) for key, value in request.query_params.items()}
        request.state.query = query
        return await call_next(request)
