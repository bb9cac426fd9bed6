# Routes package init
"""
GovGate — API Routes Package
============================

What:  The gateway's own HTTP endpoints. Module CRUD handlers of the platform
       mount behind the same pipeline and are not part of this package.

Route Inventory:
    - health.py:  GET  /health
    - auth.py:    GET  /api/auth/csrf-token
                  POST /api/auth/login, /api/auth/logout
    - admin.py:   /api/admin/rate-limits, /api/admin/middleware,
                  /api/admin/security-headers

Design Principle:
    Routes stay thin. Security decisions happen in the pipeline before a
    handler runs; handlers only read or adjust the shared guard objects.
"""
