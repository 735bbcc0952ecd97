"""Telephony provider interface."""
from abc import ABC, abstractmethod
from typing import Any, Mapping, Optional, Tuple

from frontdesk.services.telephony.markup import VoiceResponse


class TelephonyProvider(ABC):
    """Abstract base class for telephony providers."""

    name: str = "provider"
    signature_headers: Tuple[str, ...] = ()

    def __init__(self, api_token: Optional[str] = None):
        self.api_token = api_token

    @property
    @abstractmethod
    def is_configured(self) -> bool:
        """Whether REST credentials are present for outbound/update calls."""
        pass

    def create_voice_markup(self) -> VoiceResponse:
        """Create an empty markup document for this provider."""
        return VoiceResponse()

    @abstractmethod
    def validate_signature(
        self, url: str, params: Optional[Mapping[str, Any]], signature: Optional[str]
    ) -> bool:
        """Check a webhook signature in constant time."""
        pass

    @abstractmethod
    async def create_outbound_call(self, to: str, from_: Optional[str], url: str) -> str:
        """Start an outbound call and return the provider call id."""
        pass

    @abstractmethod
    async def update_call(self, call_id: str, markup: str) -> None:
        """Replace the markup a live call is executing."""
        pass

    def extract_signature(self, headers: Mapping[str, str]) -> Optional[str]:
        """Read the signature from the first provider header present."""
        for header in self.signature_headers:
            value = headers.get(header)
            if value:
                return value
        return None

    async def aclose(self) -> None:
        """Release network resources."""
        pass
