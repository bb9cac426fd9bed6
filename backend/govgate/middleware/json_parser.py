"""
GovGate — JSON Body Parser Stage
================================

What:  Decodes JSON request bodies once and stores the result on
       `request.state.json` (None when the request has no JSON body).
Why:   Later stages (input sanitizer) and handlers share one decoded payload,
       and malformed JSON is rejected before any handler runs.
"""

import json
import logging

from starlette.requests import Request
from starlette.responses import Response

from govgate.middleware.base import CallNext, Middleware, error_response

logger = logging.getLogger(__name__)

BODY_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})


class JsonParserMiddleware(Middleware):
    name = "json_parser"

    async def dispatch(self, request: Request, call_next: CallNext) -> Response:
        request.state.json = None
        content_type = request.headers.get("content-type", "")
        if request.method in BODY_METHODS and "application/json" in content_type:
            body = await request.body()
            if body.strip():
                try:
                    request.state.json = json.loads(body)
                except ValueError as exc:
                    logger.info("Rejected malformed JSON on %s: %s", request.url.path, exc)
                    return error_response(
                        request,
                        400,
                        error="Bad Request",
                        message="Request body is not valid JSON",
                    )
        return await call_next(request)
