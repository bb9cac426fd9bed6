# Services package init
"""
GovGate — Collaborator Services
===============================

What:  The collaborators the pipeline consumes but does not own.
Why:   Stages talk to these through narrow interfaces, so each one can be
       swapped (cookie sessions → server-side sessions, logging → SIEM) without
       touching stage code.

Service Inventory:
    - SessionStore (abstract): get/set/remove scoped to one client session
      - RequestSessionStore: adapter over Starlette's request.session
      - MemorySessionStore: dict-backed store for non-HTTP callers and tests
    - Container: minimal dependency container used to build stage instances
    - AuditLog: security audit sink (`log(message)`)
"""
