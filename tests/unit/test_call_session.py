"""Unit tests for the call session state machine."""
import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from frontdesk.core.errors import (
    AIBridgeError,
    CallNotFoundError,
    CallValidationError,
    ConfigurationError,
    InvalidCallStateError,
    TelephonyError,
)
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
)
from frontdesk.services.call_session.handoff import FALLBACK_HOLD_LINE, HANDOFF_LINE, is_handoff_reply
from frontdesk.services.call_session.manager import CallSessionManager
from frontdesk.services.call_session.models import CallPhase, CallSession, CallStep, Disposition
from frontdesk.services.call_session.transitions import PhaseTransitionHandler, can_transition
from frontdesk.services.security.events import BLOCKED_CALLER

from tests.helpers import BLOCKED_NUMBER, CALL_ID, CALLER_NUMBER, FORWARD_NUMBER, OTHER_CALL_ID, OWNER_NUMBER


class Collector:
    def __init__(self):
        self.messages = []

    async def send(self, message):
        self.messages.append(message)

    def types(self):
        return [message["type"] for message in self.messages]


@pytest.fixture
async def events(broadcaster):
    collector = Collector()
    broadcaster.register("test-observer", collector.send)
    return collector


async def reach_screening(manager, call_id=CALL_ID):
    await manager.start_call(call_id, CALLER_NUMBER)
    await manager.apply_menu_choice(call_id, "1")


async def reach_awaiting_owner(manager, call_id=CALL_ID):
    await reach_screening(manager, call_id)
    turn = await manager.screen_utterance(call_id, CALLER_NUMBER, "This is Sam from Acme about the invoice")
    assert turn.session.phase == CallPhase.AWAITING_OWNER
    return turn


class TestHandoffPredicate:
    """Test handoff phrase detection."""

    @pytest.mark.parametrize(
        "reply",
        [HANDOFF_LINE, FALLBACK_HOLD_LINE, "PLEASE HOLD.", "One moment, connecting."],
    )
    def test_hold_lines_are_handoffs(self, reply):
        assert is_handoff_reply(reply)

    @pytest.mark.parametrize("reply", ["", None, "Who is calling, please?", "Can you hold the door?"])
    def test_other_replies_are_not(self, reply):
        assert not is_handoff_reply(reply)


class TestTransitions:
    """Test the legal transition graph."""

    def test_forward_path_is_legal(self):
        assert can_transition(CallPhase.RINGING, CallPhase.MENU)
        assert can_transition(CallPhase.MENU, CallPhase.SCREENING)
        assert can_transition(CallPhase.SCREENING, CallPhase.AWAITING_OWNER)
        assert can_transition(CallPhase.AWAITING_OWNER, CallPhase.CONNECTED)
        assert can_transition(CallPhase.CONNECTED, CallPhase.ENDED)

    def test_no_way_back(self):
        assert not can_transition(CallPhase.AWAITING_OWNER, CallPhase.SCREENING)
        assert not can_transition(CallPhase.AWAITING_OWNER, CallPhase.AWAITING_OWNER)
        assert not can_transition(CallPhase.SCREENING, CallPhase.CONNECTED)
        assert not can_transition(CallPhase.ENDED, CallPhase.MENU)

    def test_illegal_transition_raises(self):
        session = CallSession(call_id=CALL_ID)
        with pytest.raises(InvalidCallStateError):
            PhaseTransitionHandler.transition(session, CallPhase.AWAITING_OWNER)
        assert session.phase == CallPhase.RINGING

    def test_owner_decision_requires_awaiting_owner(self):
        session = CallSession(call_id=CALL_ID, phase=CallPhase.SCREENING)
        with pytest.raises(InvalidCallStateError):
            PhaseTransitionHandler.apply_owner_decision(session, CallPhase.CONNECTED)
        assert session.disposition is None

    def test_end_keeps_owner_disposition(self):
        session = CallSession(call_id=CALL_ID, phase=CallPhase.AWAITING_OWNER)
        PhaseTransitionHandler.apply_owner_decision(session, CallPhase.VOICEMAIL)
        assert PhaseTransitionHandler.end(session, Disposition.ABANDONED) == Disposition.VOICEMAIL
        assert session.ended_at is not None


class TestStartCall:
    """Test call-start handling."""

    async def test_creates_session_in_menu(self, session_manager, broadcaster, events):
        result = await session_manager.start_call(CALL_ID, CALLER_NUMBER)
        await broadcaster.flush()

        assert result.created
        assert result.session.phase == CallPhase.MENU
        assert events.messages == [{"type": "call.start", "callId": CALL_ID, "from": CALLER_NUMBER}]

    async def test_duplicate_start_is_idempotent(self, session_manager, broadcaster, events):
        """A repeated call-start neither creates a session nor re-broadcasts."""
        await session_manager.start_call(CALL_ID, CALLER_NUMBER)
        duplicate = await session_manager.start_call(CALL_ID, CALLER_NUMBER)
        await broadcaster.flush()

        assert not duplicate.created
        assert len(session_manager.list_sessions()) == 1
        assert events.types() == ["call.start"]
        assert session_manager.current_step(duplicate.session).step == CallStep.MENU

    async def test_blocked_caller_short_circuits(self, session_manager, broadcaster, events, security_log, mock_bridge):
        result = await session_manager.start_call(CALL_ID, BLOCKED_NUMBER)
        await session_manager.start_call(CALL_ID, BLOCKED_NUMBER)
        await broadcaster.flush()

        assert result.session.phase == CallPhase.ENDED
        assert result.session.disposition == Disposition.BLOCKED
        assert security_log.count(BLOCKED_CALLER) == 1
        assert events.messages == []
        mock_bridge.propose_reply.assert_not_called()
        assert session_manager.current_step(result.session).step == CallStep.REJECT
        assert session_manager.list_sessions() == []

    async def test_formatted_blocked_number_matches(self, session_manager, security_log):
        result = await session_manager.start_call(CALL_ID, "+1 (555) 010-9999")
        assert result.session.disposition == Disposition.BLOCKED


class TestMenuChoice:
    """Test the routing menu step."""

    async def test_choice_one_starts_screening(self, session_manager):
        await session_manager.start_call(CALL_ID, CALLER_NUMBER)
        turn = await session_manager.apply_menu_choice(CALL_ID, "1")

        assert turn.step == CallStep.GATHER
        assert turn.message == SCREENING_PROMPT
        assert turn.session.phase == CallPhase.SCREENING
        assert turn.session.screening_started_at is not None

    async def test_choice_two_forwards(self, session_manager, broadcaster, events):
        await session_manager.start_call(CALL_ID, CALLER_NUMBER)
        turn = await session_manager.apply_menu_choice(CALL_ID, "2")
        await broadcaster.flush()

        assert turn.step == CallStep.DIAL
        assert turn.message == CONNECTING
        assert turn.target == FORWARD_NUMBER
        assert turn.session.phase == CallPhase.FORWARDING
        assert events.messages[-1] == {"type": "call.forwarding", "callId": CALL_ID, "to": FORWARD_NUMBER}
        await session_manager.close()

    async def test_forward_settle_timer_ends_call(self, session_manager, test_settings, broadcaster, events):
        test_settings.forward_settle_seconds = 0.01
        await session_manager.start_call(CALL_ID, CALLER_NUMBER)
        await session_manager.apply_menu_choice(CALL_ID, "2")
        await asyncio.sleep(0.05)
        await broadcaster.flush()

        session = session_manager.get_session(CALL_ID)
        assert session.phase == CallPhase.ENDED
        assert session.disposition == Disposition.FORWARDING
        assert events.types()[-1] == "call.end"

    async def test_hangup_during_forward_keeps_forwarding(self, session_manager):
        await session_manager.start_call(CALL_ID, CALLER_NUMBER)
        await session_manager.apply_menu_choice(CALL_ID, "2")
        session = await session_manager.end_call(CALL_ID, reason="status:completed")

        assert session.disposition == Disposition.FORWARDING

    async def test_choice_two_without_forward_number_degrades_to_screening(self, session_manager, test_settings):
        test_settings.swireit_forward_number = None
        await session_manager.start_call(CALL_ID, CALLER_NUMBER)
        turn = await session_manager.apply_menu_choice(CALL_ID, "2")

        assert turn.step == CallStep.GATHER
        assert turn.message == FORWARD_UNAVAILABLE_PROMPT
        assert turn.session.phase == CallPhase.SCREENING

    async def test_no_choice_reprompts_then_abandons(self, session_manager):
        await session_manager.start_call(CALL_ID, CALLER_NUMBER)

        first = await session_manager.apply_menu_choice(CALL_ID, None)
        second = await session_manager.apply_menu_choice(CALL_ID, None)
        third = await session_manager.apply_menu_choice(CALL_ID, None)

        assert first.step == second.step == CallStep.REPROMPT_MENU
        assert first.message == MENU_REPROMPT
        assert third.step == CallStep.HANGUP
        assert third.message == NO_RESPONSE_GOODBYE
        assert third.session.disposition == Disposition.ABANDONED

    async def test_replayed_choice_is_ignored(self, session_manager):
        await reach_screening(session_manager)
        turn = await session_manager.apply_menu_choice(CALL_ID, "2")

        assert turn.session.phase == CallPhase.SCREENING
        assert turn.step == CallStep.GATHER

    async def test_unknown_call(self, session_manager):
        with pytest.raises(CallNotFoundError):
            await session_manager.apply_menu_choice(OTHER_CALL_ID, "1")


class TestScreening:
    """Test screening turns and the AI bridge boundary."""

    async def test_handoff_reply_moves_to_awaiting_owner(self, session_manager, broadcaster, events, mock_bridge):
        await reach_screening(session_manager)
        turn = await session_manager.screen_utterance(CALL_ID, CALLER_NUMBER, "Sam from Acme about the invoice")
        await broadcaster.flush()

        assert turn.step == CallStep.HOLD
        assert HANDOFF_LINE in turn.message
        assert turn.session.phase == CallPhase.AWAITING_OWNER
        assert events.types() == ["call.start", "transcript", "assistant", "handoff"]
        assert events.messages[1]["text"] == "Sam from Acme about the invoice"
        mock_bridge.propose_reply.assert_awaited_once_with(
            CALL_ID, CALLER_NUMBER, "Sam from Acme about the invoice"
        )

    async def test_awaiting_owner_entered_once(self, session_manager, mock_bridge):
        await reach_awaiting_owner(session_manager)
        turn = await session_manager.screen_utterance(CALL_ID, CALLER_NUMBER, "Are you still there?")

        assert turn.step == CallStep.HOLD
        assert turn.session.phase == CallPhase.AWAITING_OWNER
        assert mock_bridge.propose_reply.await_count == 1

    async def test_question_reply_reprompts(self, session_manager, mock_bridge):
        mock_bridge.propose_reply.return_value = "Who is calling, please?"
        await reach_screening(session_manager)
        turn = await session_manager.screen_utterance(CALL_ID, CALLER_NUMBER, "Hi there")

        assert turn.step == CallStep.GATHER
        assert turn.message == "Who is calling, please?"
        assert turn.session.phase == CallPhase.SCREENING

    async def test_turn_limit_forces_handoff(self, session_manager, mock_bridge):
        mock_bridge.propose_reply.return_value = "Could you tell me more?"
        await reach_screening(session_manager)

        await session_manager.screen_utterance(CALL_ID, CALLER_NUMBER, "Hi")
        await session_manager.screen_utterance(CALL_ID, CALLER_NUMBER, "It's me")
        turn = await session_manager.screen_utterance(CALL_ID, CALLER_NUMBER, "Just put me through")

        assert turn.step == CallStep.HOLD
        assert turn.message.endswith(FALLBACK_HOLD_LINE)
        assert turn.session.phase == CallPhase.AWAITING_OWNER

    async def test_empty_utterance_reprompts_without_ai(self, session_manager, mock_bridge):
        await reach_screening(session_manager)
        turn = await session_manager.screen_utterance(CALL_ID, CALLER_NUMBER, "   ")

        assert turn.step == CallStep.GATHER
        assert turn.message == REPEAT_PROMPT
        mock_bridge.propose_reply.assert_not_called()

    async def test_empty_reply_uses_fallback_line(self, session_manager, mock_bridge):
        mock_bridge.propose_reply.return_value = ""
        await reach_screening(session_manager)
        turn = await session_manager.screen_utterance(CALL_ID, CALLER_NUMBER, "Hello")

        assert turn.message == FALLBACK_HOLD_LINE
        assert turn.session.phase == CallPhase.AWAITING_OWNER

    async def test_timeout_ends_call_with_error(self, session_manager, test_settings, mock_bridge, broadcaster, events):
        """A bridge that never answers ends the call within the deadline."""
        test_settings.ai_timeout_seconds = 0.05

        async def never_resolves(*args):
            await asyncio.Event().wait()

        mock_bridge.propose_reply = AsyncMock(side_effect=never_resolves)
        await reach_screening(session_manager)
        turn = await asyncio.wait_for(
            session_manager.screen_utterance(CALL_ID, CALLER_NUMBER, "Hello"), timeout=2
        )
        await broadcaster.flush()

        assert turn.step == CallStep.HANGUP
        assert turn.message == SYSTEM_ERROR
        assert turn.session.phase == CallPhase.ENDED
        assert turn.session.disposition == Disposition.ERROR
        assert events.messages[-1] == {
            "type": "call.end", "callId": CALL_ID, "disposition": "ERROR", "reason": "ai_failure"
        }

    async def test_timeout_with_fallback_mode_hands_off(self, session_manager, test_settings, mock_bridge):
        test_settings.ai_timeout_seconds = 0.05
        test_settings.ai_failure_mode = "fallback"

        async def never_resolves(*args):
            await asyncio.Event().wait()

        mock_bridge.propose_reply = AsyncMock(side_effect=never_resolves)
        await reach_screening(session_manager)
        turn = await session_manager.screen_utterance(CALL_ID, CALLER_NUMBER, "Hello")

        assert turn.step == CallStep.HOLD
        assert turn.message == FALLBACK_HOLD_LINE
        assert turn.session.phase == CallPhase.AWAITING_OWNER

    async def test_bridge_error_ends_call(self, session_manager, mock_bridge):
        mock_bridge.propose_reply.side_effect = AIBridgeError("backend down")
        await reach_screening(session_manager)
        turn = await session_manager.screen_utterance(CALL_ID, CALLER_NUMBER, "Hello")

        assert turn.session.disposition == Disposition.ERROR
        assert turn.message == SYSTEM_ERROR

    async def test_unexpected_bridge_error_ends_call(self, session_manager, broadcaster, events, mock_bridge):
        mock_bridge.propose_reply.side_effect = RuntimeError("boom")
        await reach_screening(session_manager)
        turn = await session_manager.screen_utterance(CALL_ID, CALLER_NUMBER, "Hello")
        await broadcaster.flush()

        assert turn.step == CallStep.HANGUP
        assert turn.message == SYSTEM_ERROR
        assert turn.session.phase == CallPhase.ENDED
        assert turn.session.disposition == Disposition.ERROR
        assert session_manager.list_sessions() == []
        assert events.messages[-1]["disposition"] == "ERROR"

    async def test_unconfigured_bridge_ends_call(self, session_manager, mock_bridge):
        mock_bridge.propose_reply.side_effect = ConfigurationError("AI services not configured")
        await reach_screening(session_manager)
        turn = await session_manager.screen_utterance(CALL_ID, CALLER_NUMBER, "Hello")

        assert turn.session.disposition == Disposition.ERROR
        assert turn.message == CONFIGURATION_INCOMPLETE

    async def test_hangup_during_ai_request_wins(self, session_manager, mock_bridge):
        release = asyncio.Event()

        async def slow_reply(*args):
            await release.wait()
            return HANDOFF_LINE

        mock_bridge.propose_reply = AsyncMock(side_effect=slow_reply)
        await reach_screening(session_manager)
        pending = asyncio.create_task(session_manager.screen_utterance(CALL_ID, CALLER_NUMBER, "Hello"))
        await asyncio.sleep(0)
        await session_manager.end_call(CALL_ID)
        release.set()
        turn = await pending

        assert turn.step == CallStep.HANGUP
        assert turn.session.disposition == Disposition.ABANDONED


class TestHoldLoop:
    """Test hold ticks."""

    async def test_hold_ticks_until_limit(self, session_manager):
        await reach_awaiting_owner(session_manager)
        ticks = [await session_manager.hold_tick(CALL_ID) for _ in range(3)]
        final = await session_manager.hold_tick(CALL_ID)

        assert all(tick.step == CallStep.HOLD for tick in ticks)
        assert final.step == CallStep.HANGUP
        assert final.message == HOLD_TIMEOUT_GOODBYE
        assert final.session.disposition == Disposition.ABANDONED

    async def test_tick_after_decision_does_not_continue_loop(self, session_manager):
        await reach_awaiting_owner(session_manager)
        await session_manager.connect(CALL_ID, OWNER_NUMBER)
        turn = await session_manager.hold_tick(CALL_ID)

        assert turn.step == CallStep.NONE


class TestOwnerDecisions:
    """Test connect, voicemail and forward decisions."""

    async def test_connect(self, session_manager, provider_recorder, broadcaster, events):
        await reach_awaiting_owner(session_manager)
        session = await session_manager.connect(CALL_ID, OWNER_NUMBER)
        await broadcaster.flush()

        assert session.phase == CallPhase.CONNECTED
        assert session.disposition == Disposition.CONNECTED
        assert len(provider_recorder.requests) == 1
        assert f"<Dial>{OWNER_NUMBER}</Dial>" in provider_recorder.requests[0].content.decode()
        assert events.messages[-1] == {
            "type": "call.decision", "callId": CALL_ID, "decision": "connected", "to": OWNER_NUMBER
        }

    async def test_voicemail_markup(self, session_manager, provider_recorder):
        await reach_awaiting_owner(session_manager)
        session = await session_manager.send_to_voicemail(CALL_ID)

        assert session.disposition == Disposition.VOICEMAIL
        body = provider_recorder.requests[0].content.decode()
        assert "Please leave a message after the tone." in body
        assert 'maxLength=\\"30\\"' in body

    async def test_forward(self, session_manager):
        await reach_awaiting_owner(session_manager)
        session = await session_manager.forward(CALL_ID, FORWARD_NUMBER)

        assert session.phase == CallPhase.FORWARDING
        assert session.disposition == Disposition.FORWARDING

    async def test_second_decision_is_rejected(self, session_manager):
        """Disposition is set at most once."""
        await reach_awaiting_owner(session_manager)
        await session_manager.connect(CALL_ID, OWNER_NUMBER)

        with pytest.raises(InvalidCallStateError):
            await session_manager.send_to_voicemail(CALL_ID)
        assert session_manager.get_session(CALL_ID).disposition == Disposition.CONNECTED

    async def test_concurrent_decisions_one_wins(self, session_manager, provider_recorder):
        await reach_awaiting_owner(session_manager)
        results = await asyncio.gather(
            session_manager.connect(CALL_ID, OWNER_NUMBER),
            session_manager.send_to_voicemail(CALL_ID),
            return_exceptions=True,
        )

        assert sum(isinstance(result, InvalidCallStateError) for result in results) == 1
        assert sum(isinstance(result, CallSession) for result in results) == 1
        assert len(provider_recorder.requests) == 1

    async def test_decision_before_handoff_is_rejected(self, session_manager, provider_recorder):
        await reach_screening(session_manager)

        with pytest.raises(InvalidCallStateError):
            await session_manager.connect(CALL_ID, OWNER_NUMBER)
        assert provider_recorder.requests == []
        assert session_manager.get_session(CALL_ID).phase == CallPhase.SCREENING

    async def test_provider_failure_leaves_session_untouched(self, session_manager, provider_recorder):
        await reach_awaiting_owner(session_manager)
        provider_recorder.status_code = 500

        with pytest.raises(TelephonyError):
            await session_manager.connect(CALL_ID, OWNER_NUMBER)
        session = session_manager.get_session(CALL_ID)
        assert session.phase == CallPhase.AWAITING_OWNER
        assert session.disposition is None

    async def test_invalid_destination(self, session_manager):
        await reach_awaiting_owner(session_manager)
        with pytest.raises(CallValidationError):
            await session_manager.connect(CALL_ID, "5550100001")

    async def test_unknown_call(self, session_manager):
        with pytest.raises(CallNotFoundError):
            await session_manager.send_to_voicemail(OTHER_CALL_ID)


class TestEndAndExpiry:
    """Test hangup, sweeping and history recording."""

    async def test_end_during_screening_is_abandoned(self, session_manager, broadcaster, events):
        await reach_screening(session_manager)
        first = await session_manager.end_call(CALL_ID)
        second = await session_manager.end_call(CALL_ID)
        await broadcaster.flush()

        assert first.disposition == second.disposition == Disposition.ABANDONED
        assert events.types().count("call.end") == 1

    async def test_end_after_connect_keeps_disposition(self, session_manager):
        await reach_awaiting_owner(session_manager)
        await session_manager.connect(CALL_ID, OWNER_NUMBER)
        session = await session_manager.end_call(CALL_ID, reason="status:completed")

        assert session.phase == CallPhase.ENDED
        assert session.disposition == Disposition.CONNECTED

    async def test_stale_session_expires_then_is_purged(self, session_manager, test_settings):
        await reach_screening(session_manager)
        later = session_manager.get_session(CALL_ID).last_updated_at + timedelta(
            seconds=test_settings.session_timeout_seconds + 1
        )

        assert await session_manager.expire_stale_sessions(later) == 1
        assert session_manager.get_session(CALL_ID).disposition == Disposition.ABANDONED

        much_later = later + timedelta(seconds=test_settings.ended_retention_seconds + 1)
        assert await session_manager.expire_stale_sessions(much_later) == 0
        assert session_manager.get_session(CALL_ID) is None

    async def test_unknown_call_ids_leave_no_locks(self, session_manager):
        for n in range(1000):
            with pytest.raises(CallNotFoundError):
                await session_manager.hold_tick(f"CA{n:032x}")
        with pytest.raises(CallNotFoundError):
            await session_manager.send_to_voicemail(OTHER_CALL_ID)
        with pytest.raises(CallNotFoundError):
            await session_manager.end_call(OTHER_CALL_ID)
        await session_manager.expire_stale_sessions()

        assert session_manager._locks == {}

    async def test_purged_session_releases_its_lock(self, session_manager, test_settings):
        await reach_screening(session_manager)
        await session_manager.end_call(CALL_ID)
        assert CALL_ID in session_manager._locks

        later = session_manager.get_session(CALL_ID).ended_at + timedelta(
            seconds=test_settings.ended_retention_seconds + 1
        )
        await session_manager.expire_stale_sessions(later)

        assert session_manager._locks == {}
        with pytest.raises(CallNotFoundError):
            await session_manager.hold_tick(CALL_ID)

    async def test_fresh_session_is_not_expired(self, session_manager):
        await reach_screening(session_manager)
        assert await session_manager.expire_stale_sessions() == 0
        assert session_manager.get_session(CALL_ID).phase == CallPhase.SCREENING

    async def test_ended_call_is_recorded(
        self, test_settings, mock_bridge, provider, broadcaster, blocklist, security_log, history_store
    ):
        manager = CallSessionManager(
            settings=test_settings,
            bridge=mock_bridge,
            provider=provider,
            broadcaster=broadcaster,
            blocklist=blocklist,
            security_log=security_log,
            history_store=history_store,
        )
        await reach_awaiting_owner(manager)
        await manager.send_to_voicemail(CALL_ID)
        await manager.end_call(CALL_ID)

        record = await history_store.get(CALL_ID)
        assert record.disposition == "VOICEMAIL"
        assert "Sam from Acme" in record.transcript

    async def test_history_failure_does_not_affect_call(
        self, test_settings, mock_bridge, provider, broadcaster, blocklist, security_log
    ):
        failing_store = AsyncMock()
        failing_store.record.side_effect = RuntimeError("database is down")
        manager = CallSessionManager(
            settings=test_settings,
            bridge=mock_bridge,
            provider=provider,
            broadcaster=broadcaster,
            blocklist=blocklist,
            security_log=security_log,
            history_store=failing_store,
        )
        await reach_screening(manager)
        session = await manager.end_call(CALL_ID)

        assert session.phase == CallPhase.ENDED
        failing_store.record.assert_awaited_once()
