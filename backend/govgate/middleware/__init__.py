# Middleware package init
"""
GovGate — Middleware Package
============================

What:  The request pipeline and its stages.
Why:   Security checks run once, in a fixed priority order, for every route of a
       group, instead of being repeated inside each module's handlers.

Starlette middleware (outermost first):
    RequestContextMiddleware → SessionMiddleware → PipelineMiddleware → router

    RequestContext wraps everything so the access log also records responses
    produced by short-circuiting stages. Sessions must be decoded before the
    pipeline runs: CSRF and auth read them.

Pipeline stages (inside PipelineMiddleware, by priority):
    csrf(100) → security_headers(90) → rate_limit(80) → auth(70) → admin(60)
    → cors(50) → json_parser(40) → input_sanitizer(30) → route handler

    Any stage may return its own response (403, 429, 401, 400, 204) instead of
    calling the next one.
"""
