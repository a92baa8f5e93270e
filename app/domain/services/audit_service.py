# app/domain/services/audit_service.py
"""
Audit trail for filing lifecycle operations.

Every transition, manual resolution and submission attempt is written to
structured logging and kept in a bounded in-memory buffer owned by the
AuditTrail instance (one per state machine, never module-global).
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone

logger = logging.getLogger("audit_service")

_MAX_BUFFER_SIZE = 10000


@dataclass
class AuditEntry:
    """A single audit log entry."""
    timestamp: str
    actor_type: str      # "user" | "ca" | "admin" | "system"
    actor_id: str
    action: str          # "open" | "complete_intake" | "compute" | "submit" | ...
    filing_id: str
    from_status: str | None = None
    to_status: str | None = None
    details: str | None = None

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp,
            "actor_type": self.actor_type,
            "actor_id": self.actor_id,
            "action": self.action,
            "filing_id": self.filing_id,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "details": self.details,
        }


class AuditTrail:
    def __init__(self, max_entries: int = _MAX_BUFFER_SIZE) -> None:
        self._buffer: deque[AuditEntry] = deque(maxlen=max_entries)

    def record(
        self,
        actor_type: str,
        actor_id: str,
        action: str,
        filing_id: str,
        from_status: str | None = None,
        to_status: str | None = None,
        details: str | None = None,
    ) -> AuditEntry:
        """Log a filing event to structured logging and the buffer."""
        entry = AuditEntry(
            timestamp=datetime.now(timezone.utc).isoformat(),
            actor_type=actor_type,
            actor_id=actor_id,
            action=action,
            filing_id=filing_id,
            from_status=from_status,
            to_status=to_status,
            details=details,
        )
        logger.info(
            "AUDIT: %s %s %s filing=%s %s->%s",
            entry.actor_type,
            entry.actor_id,
            entry.action,
            entry.filing_id,
            entry.from_status or "-",
            entry.to_status or "-",
        )
        self._buffer.append(entry)
        return entry

    def recent(
        self,
        limit: int = 50,
        filing_id: str | None = None,
        action: str | None = None,
    ) -> list[dict]:
        """Most recent entries first, optionally filtered."""
        results = [e for e in self._buffer]
        if filing_id:
            results = [e for e in results if e.filing_id == filing_id]
        if action:
            results = [e for e in results if e.action == action]
        results.reverse()
        return [e.to_dict() for e in results[:limit]]
