"""Call session models."""
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CallPhase(str, Enum):
    """Lifecycle phases of a screened call."""

    RINGING = "RINGING"  # Call-start webhook received
    MENU = "MENU"  # Caller chooses screening or forwarding
    SCREENING = "SCREENING"  # Assistant gathers caller intent
    AWAITING_OWNER = "AWAITING_OWNER"  # Caller on hold, owner decides
    CONNECTED = "CONNECTED"
    VOICEMAIL = "VOICEMAIL"
    FORWARDING = "FORWARDING"
    ENDED = "ENDED"

    def __str__(self) -> str:
        return self.value


class Disposition(str, Enum):
    """Terminal outcome of a call."""

    CONNECTED = "CONNECTED"
    VOICEMAIL = "VOICEMAIL"
    FORWARDING = "FORWARDING"
    BLOCKED = "BLOCKED"
    ABANDONED = "ABANDONED"
    ERROR = "ERROR"

    def __str__(self) -> str:
        return self.value


class TranscriptRole(str, Enum):
    CALLER = "caller"
    ASSISTANT = "assistant"


class TranscriptEntry(BaseModel):
    """One utterance. Frozen once created."""

    model_config = ConfigDict(frozen=True)

    role: TranscriptRole
    text: str
    at: datetime = Field(default_factory=utcnow)


class CallSession(BaseModel):
    """State of one phone call from ring to end."""

    call_id: str
    caller_number: Optional[str] = None
    phase: CallPhase = CallPhase.RINGING
    disposition: Optional[Disposition] = None
    transcript: List[TranscriptEntry] = []
    created_at: datetime = Field(default_factory=utcnow)
    last_updated_at: datetime = Field(default_factory=utcnow)
    ended_at: Optional[datetime] = None
    menu_attempts: int = 0
    screening_turns: int = 0
    screening_started_at: Optional[datetime] = None
    hold_iterations: int = 0
    owner_target: Optional[str] = None  # number dialled for connect/forward

    @property
    def is_ended(self) -> bool:
        return self.phase == CallPhase.ENDED

    def add_transcript_entry(self, role: TranscriptRole, text: str) -> TranscriptEntry:
        """Append an utterance."""
        entry = TranscriptEntry(role=role, text=text)
        self.transcript.append(entry)
        return entry

    def get_transcript_text(self) -> str:
        """Get full transcript as text."""
        return "\n".join(f"{entry.role.value}: {entry.text}" for entry in self.transcript)

    def touch(self) -> None:
        self.last_updated_at = utcnow()

    def snapshot(self) -> "CallSession":
        """Deep copy for readers outside the session lock."""
        return self.model_copy(deep=True)


class CallStep(str, Enum):
    """What the provider should do next with the live call."""

    MENU = "menu"  # Speak the routing menu and gather a choice
    REPROMPT_MENU = "reprompt_menu"  # Apologise and return to the menu
    GATHER = "gather"  # Speak and gather a screening utterance
    HOLD = "hold"  # Speak (optional), pause, poll the hold loop
    DIAL = "dial"  # Speak and dial a number
    HANGUP = "hangup"
    REJECT = "reject"
    NONE = "none"  # Empty response, provider keeps its current markup

    def __str__(self) -> str:
        return self.value


class StartResult(BaseModel):
    """Outcome of a call-start webhook."""

    session: CallSession
    created: bool


class TurnResult(BaseModel):
    """Outcome of one webhook turn: a session snapshot plus the next step."""

    session: Optional[CallSession] = None
    step: CallStep
    message: Optional[str] = None
    target: Optional[str] = None
