"""Caller menu choice parsing (DTMF digits or free-form speech)."""
import re
from typing import Optional, Union

SCREEN_CHOICE = "1"
FORWARD_CHOICE = "2"

_STRIP_PATTERN = re.compile(r"[^\w\s+]")
_SPACE_PATTERN = re.compile(r"\s+")

# A standalone digit, or a spoken word for it (homophones included)
_SCREEN_PATTERN = re.compile(r"(?:^|\D)1(?:\D|$)|\bone\b")
_FORWARD_PATTERN = re.compile(r"(?:^|\D)2(?:\D|$)|\b(?:two|to|too)\b")


def normalize_input(value: Union[str, int, None]) -> str:
    """Normalize digit or speech input to a comparable lowercase string."""
    if value is None:
        return ""
    text = str(value).strip().casefold()
    text = _STRIP_PATTERN.sub(" ", text)
    return _SPACE_PATTERN.sub(" ", text).strip()


def parse_routing_choice(
    digits: Union[str, int, None] = None, speech: Optional[str] = None
) -> Optional[str]:
    """
    Resolve caller input to a menu choice.

    Digits take precedence whenever they are a valid choice; speech is only
    consulted otherwise.

    Returns:
        "1" (screening), "2" (forward), or None when the input is unresolved
    """
    digit_value = normalize_input(digits)
    if digit_value in (SCREEN_CHOICE, FORWARD_CHOICE):
        return digit_value

    spoken_value = normalize_input(speech)
    if not spoken_value:
        return None
    if _SCREEN_PATTERN.search(spoken_value):
        return SCREEN_CHOICE
    if _FORWARD_PATTERN.search(spoken_value):
        return FORWARD_CHOICE
    return None
