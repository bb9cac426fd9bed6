"""
GovGate — Request Pipeline Package Initializer
==============================================

What: Marks the `govgate` directory as a Python package.
Why:  Enables module imports like `from govgate.config import settings`.
Who:  Used implicitly by Python's import system and explicitly by pytest and uvicorn.

Architecture Note:
    GovGate sits in front of the platform's module handlers:

    ┌─────────────────────────────────────┐
    │        Routes (API Layer)           │  ← terminal handlers
    ├─────────────────────────────────────┤
    │   Pipeline (MiddlewareRegistry)     │  ← priority-ordered stages
    ├─────────────────────────────────────┤
    │  Guards (CSRF, headers, rate limit) │  ← pure decision objects
    ├─────────────────────────────────────┤
    │  Services (session, audit, DI)      │  ← collaborators
    └─────────────────────────────────────┘

    Guards decide; stages translate decisions into HTTP responses. That keeps
    each guard testable without a running application.
"""

__version__ = "1.0.0"
