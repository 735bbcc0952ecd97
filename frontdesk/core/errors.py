"""Error taxonomy shared by the services and the API layer."""
from typing import Optional


class FrontDeskError(Exception):
    """Base class for all application errors."""

    def __init__(self, message: str, call_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.call_id = call_id


class ConfigurationError(FrontDeskError):
    """A required secret or integration endpoint is not configured."""


class CallValidationError(FrontDeskError):
    """Malformed call id, phone number or request body."""


class CallNotFoundError(FrontDeskError):
    """No session is known for the call id."""


class InvalidCallStateError(FrontDeskError):
    """The operation is not legal in the session's current phase."""


class UpstreamError(FrontDeskError):
    """An integration (AI backend, telephony provider) failed."""


class AIBridgeError(UpstreamError):
    """The chat/history or completion backend failed."""


class AIBridgeTimeoutError(AIBridgeError):
    """The AI backend did not answer within the configured deadline."""


class TelephonyError(UpstreamError):
    """The telephony provider rejected or failed a request."""
