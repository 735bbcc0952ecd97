"""Screening-complete detection.

The assistant signals that screening is finished by speaking a hold line.
This module is the only place that knows what that line looks like.
"""

HANDOFF_LINE = "Thank you. Please hold for one moment while I check if they are available."

# Spoken to the caller when screening is forced to finish without the assistant's hold line
FALLBACK_HOLD_LINE = "Thank you. Please hold while I notify the owner."

HOLD_INDICATORS = [
    "please hold",
    "hold for one moment",
    "one moment",
]


def is_handoff_reply(text: str) -> bool:
    """Return True when the assistant's reply tells the caller to hold."""
    if not text:
        return False
    lowered = text.lower()
    return any(indicator in lowered for indicator in HOLD_INDICATORS)
