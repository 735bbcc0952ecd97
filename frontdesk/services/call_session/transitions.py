"""Legal phase transitions for call sessions."""
import logging
from typing import Dict, FrozenSet

from frontdesk.core.errors import InvalidCallStateError
from frontdesk.services.call_session.models import CallPhase, CallSession, Disposition

logger = logging.getLogger(__name__)

LEGAL_TRANSITIONS: Dict[CallPhase, FrozenSet[CallPhase]] = {
    CallPhase.RINGING: frozenset({CallPhase.MENU, CallPhase.ENDED}),
    CallPhase.MENU: frozenset(
        {CallPhase.MENU, CallPhase.SCREENING, CallPhase.FORWARDING, CallPhase.ENDED}
    ),
    CallPhase.SCREENING: frozenset(
        {CallPhase.SCREENING, CallPhase.AWAITING_OWNER, CallPhase.ENDED}
    ),
    CallPhase.AWAITING_OWNER: frozenset(
        {CallPhase.CONNECTED, CallPhase.VOICEMAIL, CallPhase.FORWARDING, CallPhase.ENDED}
    ),
    CallPhase.CONNECTED: frozenset({CallPhase.ENDED}),
    CallPhase.VOICEMAIL: frozenset({CallPhase.ENDED}),
    CallPhase.FORWARDING: frozenset({CallPhase.ENDED}),
    CallPhase.ENDED: frozenset(),
}

OWNER_DECISIONS: Dict[CallPhase, Disposition] = {
    CallPhase.CONNECTED: Disposition.CONNECTED,
    CallPhase.VOICEMAIL: Disposition.VOICEMAIL,
    CallPhase.FORWARDING: Disposition.FORWARDING,
}


def can_transition(current: CallPhase, target: CallPhase) -> bool:
    return target in LEGAL_TRANSITIONS.get(current, frozenset())


class PhaseTransitionHandler:
    """Applies phase changes and disposition assignment to a session."""

    @staticmethod
    def transition(session: CallSession, target: CallPhase) -> None:
        """
        Move the session to a new phase.

        Raises:
            InvalidCallStateError: the move is not in the legal graph
        """
        current = session.phase
        if not can_transition(current, target):
            raise InvalidCallStateError(
                f"Illegal transition {current.value} -> {target.value}", session.call_id
            )
        session.phase = target
        session.touch()
        if current != target:
            logger.info(
                f"[PHASE] {current.value} -> {target.value} - CallId: {session.call_id}"
            )

    @staticmethod
    def apply_owner_decision(session: CallSession, target: CallPhase) -> None:
        """Record the owner's choice. Only legal while the caller is on hold."""
        if session.phase != CallPhase.AWAITING_OWNER or session.disposition is not None:
            raise InvalidCallStateError(
                f"Call is {session.phase.value}, not awaiting an owner decision", session.call_id
            )
        disposition = OWNER_DECISIONS[target]
        PhaseTransitionHandler.transition(session, target)
        session.disposition = disposition

    @staticmethod
    def end(session: CallSession, disposition: Disposition) -> Disposition:
        """
        Move the session to ENDED.

        An owner-decided disposition is kept; otherwise the given one is set.
        Returns the final disposition.
        """
        PhaseTransitionHandler.transition(session, CallPhase.ENDED)
        if session.disposition is None:
            session.disposition = disposition
        session.ended_at = session.last_updated_at
        return session.disposition
