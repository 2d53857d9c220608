"""
Bounded audit history of retraining, A/B testing, drift and deployment events.

Only the most recent ``limit`` entries are kept (default 100); older entries
fall off the end. Entries are also written to the module logger so they reach
the regular log stream.
"""

import logging
from collections import deque
from typing import Any, Deque, Dict, List, Optional

from leadscore.models.enums import AuditKind
from leadscore.models.schemas import AuditEntry


logger = logging.getLogger(__name__)


class AuditLog:
    def __init__(self, limit: int = 100):
        if limit < 1:
            raise ValueError("Audit history limit must be at least 1")
        self.limit = limit
        self._entries: Deque[AuditEntry] = deque(maxlen=limit)

    def record(
        self,
        kind: AuditKind,
        action: str,
        success: bool,
        message: str = "",
        details: Optional[Dict[str, Any]] = None,
    ) -> AuditEntry:
        entry = AuditEntry(
            kind=kind,
            action=action,
            success=success,
            message=message,
            details=details or {},
        )
        self._entries.append(entry)
        log = logger.info if success else logger.warning
        log(f"[{kind.value}] {action}: {message}")
        return entry

    def list(self, kind: Optional[AuditKind] = None, limit: Optional[int] = None) -> List[AuditEntry]:
        """Newest first, optionally filtered by kind."""
        entries = [e for e in reversed(self._entries) if kind is None or e.kind == kind]
        return entries[:limit] if limit is not None else entries

    def __len__(self) -> int:
        return len(self._entries)
