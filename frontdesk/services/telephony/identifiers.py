"""Phone number and provider call id validation."""
import re
import time
from typing import Any, Mapping, Optional

PHONE_PATTERN = re.compile(r"^\+[1-9]\d{1,14}$")

# Twilio-style CA-prefixed SIDs and SignalWire/Swireit UUID call ids
CALL_ID_PATTERN = re.compile(
    r"^(CA[0-9a-f]{32}|[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12})$",
    re.IGNORECASE,
)

CALL_ID_FIELDS = ("CallId", "CallID", "CallSid")


def is_valid_phone(value: Any) -> bool:
    return isinstance(value, str) and bool(PHONE_PATTERN.match(value))


def is_valid_call_id(value: Any) -> bool:
    return isinstance(value, str) and bool(CALL_ID_PATTERN.match(value))


def generate_call_id() -> str:
    """Local id for webhooks that carry no provider call id."""
    return f"call-{time.monotonic_ns() // 1_000_000}"


def extract_call_id(params: Mapping[str, Any]) -> Optional[str]:
    """Return the provider call id from webhook params, if any field carries one."""
    for field in CALL_ID_FIELDS:
        value = params.get(field)
        if value:
            return str(value)
    return None
