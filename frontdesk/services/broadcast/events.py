"""Call lifecycle events pushed to observers."""
from enum import Enum
from typing import Any, Dict

from pydantic import BaseModel, Field

WILDCARD = "*"


class EventType(str, Enum):
    """Event types sent over the realtime channel."""

    CALL_START = "call.start"
    TRANSCRIPT = "transcript"
    ASSISTANT = "assistant"
    HANDOFF = "handoff"
    CALL_FORWARDING = "call.forwarding"
    CALL_DECISION = "call.decision"
    CALL_END = "call.end"

    def __str__(self) -> str:
        return self.value


class CallEvent(BaseModel):
    """One event for one call."""

    type: EventType
    call_id: str
    payload: Dict[str, Any] = Field(default_factory=dict)

    def matches(self, call_filter: str) -> bool:
        return call_filter == WILDCARD or call_filter == self.call_id

    def to_message(self) -> Dict[str, Any]:
        """Wire shape: {"type", "callId", **payload}."""
        message = dict(self.payload)
        message["type"] = self.type.value
        message["callId"] = self.call_id
        return message
