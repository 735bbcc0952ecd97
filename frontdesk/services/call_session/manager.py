"""Call session state machine.

Every mutation of a session happens while holding that call's lock, and
events are published before the lock is released, so observers see one
call's events in mutation order. AI and provider requests run under
``asyncio.wait_for`` deadlines.
"""
import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from frontdesk.core.config import Settings
from frontdesk.core.errors import (
    AIBridgeError,
    AIBridgeTimeoutError,
    CallNotFoundError,
    CallValidationError,
    ConfigurationError,
    InvalidCallStateError,
    TelephonyError,
)
from frontdesk.services.ai.bridge import AIOrchestrationBridge
from frontdesk.services.broadcast.channel import EventBroadcaster
from frontdesk.services.broadcast.events import CallEvent, EventType
from frontdesk.services.call_session.constants import (
    CONFIGURATION_INCOMPLETE,
    CONNECTING,
    FORWARD_UNAVAILABLE_PROMPT,
    HOLD_TIMEOUT_GOODBYE,
    MENU_REPROMPT,
    NO_RESPONSE_GOODBYE,
    REPEAT_PROMPT,
    SCREENING_PROMPT,
    SYSTEM_ERROR,
    VOICEMAIL_PROMPT,
)
from frontdesk.services.call_session.handoff import FALLBACK_HOLD_LINE, is_handoff_reply
from frontdesk.services.call_session.models import (
    CallPhase,
    CallSession,
    CallStep,
    Disposition,
    StartResult,
    TranscriptRole,
    TurnResult,
    utcnow,
)
from frontdesk.services.call_session.transitions import OWNER_DECISIONS, PhaseTransitionHandler
from frontdesk.services.persistence.calls import CallHistoryStore
from frontdesk.services.routing.parser import FORWARD_CHOICE, SCREEN_CHOICE
from frontdesk.services.security.blocklist import BlockList
from frontdesk.services.security.events import BLOCKED_CALLER, SecurityLog
from frontdesk.services.telephony.base import TelephonyProvider
from frontdesk.services.telephony.identifiers import is_valid_phone

logger = logging.getLogger(__name__)

AI_FAILURE_FALLBACK = "fallback"


class CallSessionManager:
    """Owns every live call session and drives it through the screening flow."""

    def __init__(
        self,
        settings: Settings,
        bridge: AIOrchestrationBridge,
        provider: TelephonyProvider,
        broadcaster: EventBroadcaster,
        blocklist: BlockList,
        security_log: SecurityLog,
        history_store: Optional[CallHistoryStore] = None,
    ):
        self.settings = settings
        self.bridge = bridge
        self.provider = provider
        self.broadcaster = broadcaster
        self.blocklist = blocklist
        self.security_log = security_log
        self.history_store = history_store
        self._sessions: Dict[str, CallSession] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._timers: Dict[str, asyncio.Task] = {}

    # Call lifecycle

    async def start_call(self, call_id: str, caller_number: Optional[str] = None) -> StartResult:
        """
        Create the session for a call-start webhook.

        A block-listed caller is ended immediately as BLOCKED without a
        broadcast. A repeated call id leaves the existing session untouched.
        """
        async with self._lock(call_id, create=True):
            existing = self._sessions.get(call_id)
            if existing is not None:
                logger.info(
                    f"[CALL START] Duplicate call-start ignored - CallId: {call_id}, Phase: {existing.phase}"
                )
                return StartResult(session=existing.snapshot(), created=False)

            session = CallSession(call_id=call_id, caller_number=caller_number)
            self._sessions[call_id] = session

            if self.blocklist.is_blocked(caller_number):
                self.security_log.record(BLOCKED_CALLER, call_id, caller=caller_number)
                await self._finish(session, Disposition.BLOCKED, reason="blocked", publish=False)
                return StartResult(session=session.snapshot(), created=True)

            PhaseTransitionHandler.transition(session, CallPhase.MENU)
            self._publish(EventType.CALL_START, session, {"from": caller_number or "Unknown caller"})
            logger.info(f"[CALL START] Session created - CallId: {call_id}, From: {caller_number or 'unknown'}")
            return StartResult(session=session.snapshot(), created=True)

    async def apply_menu_choice(self, call_id: str, choice: Optional[str]) -> TurnResult:
        """Route the caller to screening or forwarding, or re-prompt the menu."""
        async with self._lock(call_id):
            session = self._require(call_id)
            if session.phase != CallPhase.MENU:
                logger.info(f"[ROUTE] Replayed menu choice ignored - CallId: {call_id}, Phase: {session.phase}")
                return self.current_step(session)

            if choice == FORWARD_CHOICE:
                target = self.settings.swireit_forward_number
                if target and is_valid_phone(target):
                    PhaseTransitionHandler.transition(session, CallPhase.FORWARDING)
                    session.owner_target = target
                    self._publish(EventType.CALL_FORWARDING, session, {"to": target})
                    self._arm_forward_timer(call_id)
                    logger.info(f"[ROUTE] Forwarding caller - CallId: {call_id}, To: {target}")
                    return self._turn(session, CallStep.DIAL, CONNECTING, target=target)

                logger.warning(f"[ROUTE] Forwarding requested but not configured - CallId: {call_id}")
                self._enter_screening(session)
                return self._turn(session, CallStep.GATHER, FORWARD_UNAVAILABLE_PROMPT)

            if choice == SCREEN_CHOICE:
                self._enter_screening(session)
                logger.info(f"[ROUTE] Screening caller - CallId: {call_id}")
                return self._turn(session, CallStep.GATHER, SCREENING_PROMPT)

            session.menu_attempts += 1
            if session.menu_attempts >= self.settings.max_menu_attempts:
                logger.info(f"[ROUTE] No menu choice after {session.menu_attempts} attempts - CallId: {call_id}")
                await self._finish(session, Disposition.ABANDONED, reason="no_menu_choice")
                return self._turn(session, CallStep.HANGUP, NO_RESPONSE_GOODBYE)

            PhaseTransitionHandler.transition(session, CallPhase.MENU)
            return self._turn(session, CallStep.REPROMPT_MENU, MENU_REPROMPT)

    async def screen_utterance(
        self, call_id: str, caller: Optional[str], transcript: Optional[str]
    ) -> TurnResult:
        """
        Handle one screening utterance from the caller.

        The AI bridge is called without holding the call lock; the session is
        re-checked once the reply arrives.
        """
        text = (transcript or "").strip()
        async with self._lock(call_id):
            session = self._require(call_id)
            if session.phase != CallPhase.SCREENING:
                return self.current_step(session)
            if caller and not session.caller_number:
                session.caller_number = caller
            session.screening_turns += 1

            if not text:
                logger.info(f"[SCREENING] Empty utterance (turn {session.screening_turns}) - CallId: {call_id}")
                if self._screening_exhausted(session):
                    return self._force_handoff(session)
                session.touch()
                return self._turn(session, CallStep.GATHER, REPEAT_PROMPT)

            session.add_transcript_entry(TranscriptRole.CALLER, text)
            session.touch()
            self._publish(EventType.TRANSCRIPT, session, {"text": text, "from": session.caller_number})
            caller_number = session.caller_number

        reply: Optional[str] = None
        failure: Optional[Exception] = None
        try:
            reply = await asyncio.wait_for(
                self.bridge.propose_reply(call_id, caller_number, text),
                timeout=self.settings.ai_timeout_seconds,
            )
        except asyncio.TimeoutError:
            failure = AIBridgeTimeoutError(
                f"AI reply not received within {self.settings.ai_timeout_seconds}s", call_id
            )
        except (ConfigurationError, AIBridgeError) as e:
            failure = e
        except Exception as e:
            logger.error(
                f"[SCREENING] Unexpected AI bridge error - CallId: {call_id}, "
                f"Error: {type(e).__name__}: {e}",
                exc_info=True,
            )
            failure = AIBridgeError(f"Unexpected AI bridge error: {type(e).__name__}", call_id)

        async with self._lock(call_id):
            session = self._require(call_id)
            if session.phase != CallPhase.SCREENING:
                logger.info(f"[SCREENING] Call moved on during AI request - CallId: {call_id}, Phase: {session.phase}")
                return self.current_step(session)

            if failure is not None:
                logger.error(
                    f"[SCREENING] AI bridge failed - CallId: {call_id}, "
                    f"Error: {type(failure).__name__}: {failure}"
                )
                if isinstance(failure, ConfigurationError):
                    await self._finish(session, Disposition.ERROR, reason="ai_not_configured")
                    return self._turn(session, CallStep.HANGUP, CONFIGURATION_INCOMPLETE)
                if self.settings.ai_failure_mode != AI_FAILURE_FALLBACK:
                    await self._finish(session, Disposition.ERROR, reason="ai_failure")
                    return self._turn(session, CallStep.HANGUP, SYSTEM_ERROR)
                reply = FALLBACK_HOLD_LINE

            reply = (reply or "").strip() or FALLBACK_HOLD_LINE
            session.add_transcript_entry(TranscriptRole.ASSISTANT, reply)
            session.touch()
            self._publish(EventType.ASSISTANT, session, {"text": reply})

            if is_handoff_reply(reply):
                return self._handoff(session, reply)
            if self._screening_exhausted(session):
                return self._force_handoff(session, spoken=reply)
            return self._turn(session, CallStep.GATHER, reply)

    async def hold_tick(self, call_id: str) -> TurnResult:
        """Count one pass through the hold loop."""
        async with self._lock(call_id):
            session = self._require(call_id)
            if session.phase != CallPhase.AWAITING_OWNER:
                if session.is_ended:
                    return self._turn(session, CallStep.HANGUP)
                return self._turn(session, CallStep.NONE)

            session.hold_iterations += 1
            session.touch()
            if session.hold_iterations > self.settings.max_hold_iterations:
                logger.info(
                    f"[HOLD] Owner did not decide after {session.hold_iterations - 1} hold loops - CallId: {call_id}"
                )
                await self._finish(session, Disposition.ABANDONED, reason="hold_timeout")
                return self._turn(session, CallStep.HANGUP, HOLD_TIMEOUT_GOODBYE)
            return self._turn(session, CallStep.HOLD)

    # Owner decisions

    async def connect(self, call_id: str, to: str) -> CallSession:
        return await self._decide(call_id, CallPhase.CONNECTED, to)

    async def send_to_voicemail(self, call_id: str) -> CallSession:
        return await self._decide(call_id, CallPhase.VOICEMAIL)

    async def forward(self, call_id: str, to: str) -> CallSession:
        return await self._decide(call_id, CallPhase.FORWARDING, to)

    async def _decide(self, call_id: str, target: CallPhase, to: Optional[str] = None) -> CallSession:
        """
        Apply an owner decision.

        The provider is told first; if it fails the session is left as it was.

        Raises:
            CallNotFoundError: unknown call id
            InvalidCallStateError: the call is not awaiting a decision
            CallValidationError: destination number is not E.164
            TelephonyError: the provider rejected or timed out
        """
        if target != CallPhase.VOICEMAIL and not is_valid_phone(to):
            raise CallValidationError("A valid E.164 destination number is required", call_id)

        async with self._lock(call_id):
            session = self._require(call_id)
            if session.phase != CallPhase.AWAITING_OWNER or session.disposition is not None:
                raise InvalidCallStateError(
                    f"Call is {session.phase.value}, not awaiting an owner decision", call_id
                )

            markup = self._decision_markup(target, to)
            try:
                await asyncio.wait_for(
                    self.provider.update_call(call_id, markup),
                    timeout=self.settings.telephony_timeout_seconds,
                )
            except asyncio.TimeoutError as e:
                raise TelephonyError("Telephony provider did not answer in time", call_id) from e

            PhaseTransitionHandler.apply_owner_decision(session, target)
            session.owner_target = to
            self._publish(
                EventType.CALL_DECISION,
                session,
                {"decision": session.disposition.value.lower(), "to": to},
            )
            logger.info(f"[OWNER DECISION] {session.disposition} - CallId: {call_id}, To: {to or 'n/a'}")
            return session.snapshot()

    def _decision_markup(self, target: CallPhase, to: Optional[str]) -> str:
        response = self.provider.create_voice_markup()
        if target == CallPhase.VOICEMAIL:
            response.say(VOICEMAIL_PROMPT)
            response.record(max_length=self.settings.voicemail_max_length)
        else:
            response.dial(to)
        return response.to_xml()

    # Ending

    async def end_call(self, call_id: str, reason: str = "hangup") -> CallSession:
        """End a call on hangup or provider status. Ending an ended call is a no-op."""
        async with self._lock(call_id):
            session = self._require(call_id)
            if session.is_ended:
                return session.snapshot()
            disposition = OWNER_DECISIONS.get(session.phase, Disposition.ABANDONED)
            await self._finish(session, disposition, reason=reason)
            return session.snapshot()

    async def expire_stale_sessions(self, now: Optional[datetime] = None) -> int:
        """
        End sessions idle past the session timeout and forget ended sessions
        past the retention window. Returns how many sessions were ended.
        """
        now = now or utcnow()
        expired = 0
        for call_id in list(self._sessions):
            purge = False
            if call_id not in self._sessions:
                continue
            async with self._lock(call_id):
                session = self._sessions.get(call_id)
                if session is None:
                    continue
                if session.is_ended:
                    ended_at = session.ended_at or session.last_updated_at
                    if (now - ended_at).total_seconds() >= self.settings.ended_retention_seconds:
                        self._sessions.pop(call_id, None)
                        purge = True
                elif (now - session.last_updated_at).total_seconds() >= self.settings.session_timeout_seconds:
                    logger.info(f"[SWEEPER] Session timed out in {session.phase} - CallId: {call_id}")
                    disposition = OWNER_DECISIONS.get(session.phase, Disposition.ABANDONED)
                    await self._finish(session, disposition, reason="timeout")
                    expired += 1
            if purge:
                self._locks.pop(call_id, None)
                logger.debug(f"[SWEEPER] Ended session purged - CallId: {call_id}")
        return expired

    async def run_sweeper(self) -> None:
        """Background loop started by the app lifespan."""
        interval = self.settings.sweep_interval_seconds
        while True:
            await asyncio.sleep(interval)
            try:
                await self.expire_stale_sessions()
            except Exception as e:
                logger.error(f"[SWEEPER] Sweep failed - Error: {type(e).__name__}: {e}", exc_info=True)

    async def close(self) -> None:
        timers = list(self._timers.values())
        self._timers.clear()
        for task in timers:
            task.cancel()
        if timers:
            await asyncio.gather(*timers, return_exceptions=True)

    # Reads

    def get_session(self, call_id: str) -> Optional[CallSession]:
        session = self._sessions.get(call_id)
        return session.snapshot() if session else None

    def list_sessions(self, include_ended: bool = False) -> List[CallSession]:
        sessions = [
            session.snapshot()
            for session in self._sessions.values()
            if include_ended or not session.is_ended
        ]
        return sorted(sessions, key=lambda session: session.created_at)

    # Internals

    def _lock(self, call_id: str, create: bool = False) -> asyncio.Lock:
        """
        Return the lock guarding one call.

        Only call-start may create a lock; any other reference to a call id
        without a session raises CallNotFoundError and leaves no lock behind.
        """
        lock = self._locks.get(call_id)
        if lock is None:
            if not create and call_id not in self._sessions:
                raise CallNotFoundError(f"Unknown call {call_id}", call_id)
            lock = asyncio.Lock()
            self._locks[call_id] = lock
        return lock

    def _require(self, call_id: str) -> CallSession:
        session = self._sessions.get(call_id)
        if session is None:
            raise CallNotFoundError(f"Unknown call {call_id}", call_id)
        return session

    def _publish(self, event_type: EventType, session: CallSession, payload: Dict[str, Any]) -> None:
        self.broadcaster.publish(CallEvent(type=event_type, call_id=session.call_id, payload=payload))

    @staticmethod
    def _turn(
        session: CallSession, step: CallStep, message: Optional[str] = None, target: Optional[str] = None
    ) -> TurnResult:
        return TurnResult(session=session.snapshot(), step=step, message=message, target=target)

    def current_step(self, session: CallSession) -> TurnResult:
        """Next step for a session's current phase; used for replayed and duplicate webhooks."""
        if session.disposition == Disposition.BLOCKED:
            return self._turn(session, CallStep.REJECT)
        if session.phase == CallPhase.MENU:
            return self._turn(session, CallStep.MENU)
        if session.phase == CallPhase.SCREENING:
            return self._turn(session, CallStep.GATHER, SCREENING_PROMPT)
        if session.phase == CallPhase.AWAITING_OWNER:
            return self._turn(session, CallStep.HOLD)
        if session.is_ended:
            return self._turn(session, CallStep.HANGUP)
        return self._turn(session, CallStep.NONE)

    def _enter_screening(self, session: CallSession) -> None:
        PhaseTransitionHandler.transition(session, CallPhase.SCREENING)
        session.screening_started_at = session.last_updated_at

    def _screening_exhausted(self, session: CallSession) -> bool:
        if session.screening_turns >= self.settings.max_screening_turns:
            return True
        started = session.screening_started_at or session.created_at
        return (utcnow() - started).total_seconds() >= self.settings.screening_timeout_seconds

    def _handoff(self, session: CallSession, spoken: str) -> TurnResult:
        PhaseTransitionHandler.transition(session, CallPhase.AWAITING_OWNER)
        session.hold_iterations = 0
        self._publish(
            EventType.HANDOFF,
            session,
            {
                "from": session.caller_number,
                "summary": spoken,
                "transcript": [entry.model_dump(mode="json") for entry in session.transcript],
            },
        )
        logger.info(f"[SCREENING] Handoff to owner after {session.screening_turns} turn(s) - CallId: {session.call_id}")
        return self._turn(session, CallStep.HOLD, spoken)

    def _force_handoff(self, session: CallSession, spoken: Optional[str] = None) -> TurnResult:
        session.add_transcript_entry(TranscriptRole.ASSISTANT, FALLBACK_HOLD_LINE)
        self._publish(EventType.ASSISTANT, session, {"text": FALLBACK_HOLD_LINE})
        message = f"{spoken} {FALLBACK_HOLD_LINE}" if spoken else FALLBACK_HOLD_LINE
        return self._handoff(session, message)

    def _arm_forward_timer(self, call_id: str) -> None:
        self._cancel_timer(call_id)
        self._timers[call_id] = asyncio.create_task(self._settle_forward(call_id))

    async def _settle_forward(self, call_id: str) -> None:
        await asyncio.sleep(self.settings.forward_settle_seconds)
        if call_id not in self._sessions:
            return
        async with self._lock(call_id):
            session = self._sessions.get(call_id)
            if session is None or session.is_ended:
                return
            await self._finish(session, Disposition.FORWARDING, reason="forwarded")

    def _cancel_timer(self, call_id: str) -> None:
        task = self._timers.pop(call_id, None)
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()

    async def _finish(
        self, session: CallSession, disposition: Disposition, reason: str, publish: bool = True
    ) -> None:
        """Terminal transition. Caller must hold the session lock."""
        final = PhaseTransitionHandler.end(session, disposition)
        self._cancel_timer(session.call_id)
        if publish:
            self._publish(EventType.CALL_END, session, {"disposition": final.value, "reason": reason})
        logger.info(f"[CALL END] {final} ({reason}) - CallId: {session.call_id}")
        await self._record_history(session)

    async def _record_history(self, session: CallSession) -> None:
        if self.history_store is None:
            return
        try:
            await self.history_store.record(session.snapshot())
        except Exception as e:
            # History is best effort; the call itself has already ended
            logger.error(
                f"[HISTORY] Failed to record call - CallId: {session.call_id}, "
                f"Error: {type(e).__name__}: {e}",
                exc_info=True,
            )
