"""
GovGate — Security Audit Sink
=============================

What:  Receives one line per security event (CSRF failure, rate-limit violation).
Why:   Security events are routed to their own logger ("govgate.security") so
       operators can ship them to a separate index or alert on them directly.
How:   Wraps a standard library logger; the request id from the context var is
       prefixed so audit lines correlate with access log lines.
"""

import logging
from typing import List, Optional

from govgate.middleware.request_context import request_id_var


class AuditLog:
    def __init__(self, logger: Optional[logging.Logger] = None):
        self._logger = logger or logging.getLogger("govgate.security")

    def log(self, message: str) -> None:
        rid = request_id_var.get("")
        if rid:
            self._logger.warning("[%s] %s", rid, message)
        else:
            self._logger.warning("%s", message)


class MemoryAuditLog(AuditLog):
    """Audit sink that also keeps the lines, for tests and admin tooling."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        super().__init__(logger)
        self.lines: List[str] = []

    def log(self, message: str) -> None:
        self.lines.append(message)
        super().log(message)
