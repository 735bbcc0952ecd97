"""Security event log."""
import logging
from collections import deque
from datetime import datetime
from typing import Any, Deque, Dict, List, Optional

from pydantic import BaseModel, Field

from frontdesk.core.logging import SECURITY_LOGGER_NAME
from frontdesk.services.call_session.models import utcnow

security_logger = logging.getLogger(SECURITY_LOGGER_NAME)

BLOCKED_CALLER = "blocked_caller"
WEBHOOK_SIGNATURE_REJECTED = "webhook_signature_rejected"
API_KEY_REJECTED = "api_key_rejected"


class SecurityEvent(BaseModel):
    kind: str
    call_id: Optional[str] = None
    detail: Dict[str, Any] = Field(default_factory=dict)
    at: datetime = Field(default_factory=utcnow)


class SecurityLog:
    """Keeps the most recent security events and writes each to the security logger."""

    def __init__(self, max_events: int = 500):
        self._events: Deque[SecurityEvent] = deque(maxlen=max_events)

    def record(self, kind: str, call_id: Optional[str] = None, **detail: Any) -> SecurityEvent:
        event = SecurityEvent(kind=kind, call_id=call_id, detail=detail)
        self._events.append(event)
        security_logger.warning(f"[SECURITY] {kind} - CallId: {call_id or 'n/a'}, Detail: {detail}")
        return event

    def recent(self, limit: int = 100) -> List[SecurityEvent]:
        """Newest first."""
        events = list(self._events)
        events.reverse()
        return events[:limit]

    def count(self, kind: Optional[str] = None) -> int:
        if kind is None:
            return len(self._events)
        return sum(1 for event in self._events if event.kind == kind)
