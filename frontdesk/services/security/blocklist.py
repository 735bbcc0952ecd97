"""Server-side caller block list."""
import logging
from typing import Iterable, List, Optional

from frontdesk.core.errors import CallValidationError
from frontdesk.services.telephony.identifiers import is_valid_phone

logger = logging.getLogger(__name__)


def normalize_number(number: Optional[str]) -> str:
    """Strip formatting characters so '+1 (555) 010-0000' matches '+15550100000'."""
    if not number:
        return ""
    cleaned = "".join(ch for ch in number.strip() if ch.isdigit() or ch == "+")
    return cleaned


class BlockList:
    """Numbers whose calls are rejected before the menu."""

    def __init__(self, numbers: Optional[Iterable[str]] = None):
        self._numbers = set()
        for number in numbers or []:
            normalized = normalize_number(number)
            if is_valid_phone(normalized):
                self._numbers.add(normalized)
            else:
                logger.warning(f"[BLOCKLIST] Ignoring invalid seed number: {number!r}")

    def is_blocked(self, number: Optional[str]) -> bool:
        normalized = normalize_number(number)
        return bool(normalized) and normalized in self._numbers

    def add(self, number: str) -> str:
        """
        Block a number.

        Raises:
            CallValidationError: number is not E.164
        """
        normalized = normalize_number(number)
        if not is_valid_phone(normalized):
            raise CallValidationError("A valid E.164 phone number is required")
        self._numbers.add(normalized)
        logger.info(f"[BLOCKLIST] Number blocked: {normalized}")
        return normalized

    def remove(self, number: str) -> bool:
        normalized = normalize_number(number)
        if normalized not in self._numbers:
            return False
        self._numbers.discard(normalized)
        logger.info(f"[BLOCKLIST] Number unblocked: {normalized}")
        return True

    def list_numbers(self) -> List[str]:
        return sorted(self._numbers)

    def __len__(self) -> int:
        return len(self._numbers)
