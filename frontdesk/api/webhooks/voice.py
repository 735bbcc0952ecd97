"""Telephony voice webhook endpoints."""
import logging
from typing import Awaitable, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import Response

from frontdesk.api.auth import verified_webhook_params
from frontdesk.core.config import Settings
from frontdesk.core.dependencies import get_provider, get_session_manager, get_settings
from frontdesk.core.errors import CallNotFoundError
from frontdesk.services.call_session.constants import (
    MENU_HINTS,
    MENU_PROMPT,
    NO_RESPONSE_GOODBYE,
    SYSTEM_ERROR,
    TERMINAL_CALL_STATUSES,
    UNKNOWN_CALL,
)
from frontdesk.services.call_session.manager import CallSessionManager
from frontdesk.services.call_session.models import CallStep, TurnResult
from frontdesk.services.routing.parser import parse_routing_choice
from frontdesk.services.telephony.base import TelephonyProvider
from frontdesk.services.telephony.identifiers import extract_call_id, generate_call_id, is_valid_call_id
from frontdesk.services.telephony.markup import VoiceResponse

router = APIRouter()
logger = logging.getLogger(__name__)

ROUTE_PATH = "/voice/route"
HANDLE_PATH = "/voice/handle"
HOLD_PATH = "/voice/hold"
START_PATH = "/voice"


def xml_response(markup: VoiceResponse) -> Response:
    return Response(content=markup.to_xml(), media_type="application/xml")


def resolve_call_id(params: Dict[str, str]) -> str:
    """Provider call id from the webhook, or a local one when the provider sent none."""
    call_id = extract_call_id(params)
    if call_id is None:
        return generate_call_id()
    if not is_valid_call_id(call_id):
        raise HTTPException(status_code=400, detail="Invalid call id")
    return call_id


def add_menu(response: VoiceResponse, settings: Settings) -> None:
    forward_number = settings.swireit_forward_number
    forward_message = f" to {forward_number}." if forward_number else "."
    response.gather(
        action=ROUTE_PATH,
        input="speech dtmf",
        hints=MENU_HINTS,
        num_digits=1,
    ).say(f"{MENU_PROMPT}{forward_message}")
    response.say(NO_RESPONSE_GOODBYE)
    response.hangup()


def render_turn(turn: TurnResult, provider: TelephonyProvider, settings: Settings) -> VoiceResponse:
    """Translate the state machine's next step into voice markup."""
    response = provider.create_voice_markup()
    step = turn.step
    if step == CallStep.MENU:
        add_menu(response, settings)
    elif step == CallStep.REPROMPT_MENU:
        response.say(turn.message)
        response.redirect(START_PATH)
    elif step == CallStep.GATHER:
        response.gather(action=HANDLE_PATH, input="speech").say(turn.message)
        response.say(NO_RESPONSE_GOODBYE)
        response.hangup()
    elif step == CallStep.HOLD:
        response.say(turn.message)
        response.pause(settings.hold_pause_seconds)
        response.redirect(HOLD_PATH)
    elif step == CallStep.DIAL:
        response.say(turn.message)
        response.dial(turn.target)
    elif step == CallStep.HANGUP:
        response.say(turn.message)
        response.hangup()
    elif step == CallStep.REJECT:
        response.reject()
    return response


def goodbye(provider: TelephonyProvider, message: str) -> Response:
    response = provider.create_voice_markup()
    response.say(message)
    response.hangup()
    return xml_response(response)


async def run_turn(
    tag: str,
    call_id: str,
    operation: Awaitable[TurnResult],
    provider: TelephonyProvider,
    settings: Settings,
) -> Response:
    """Await a state machine operation and answer the provider with markup, never an error page."""
    try:
        turn = await operation
    except CallNotFoundError:
        logger.warning(f"[{tag}] Webhook for unknown call - CallId: {call_id}")
        return goodbye(provider, UNKNOWN_CALL)
    except Exception as e:
        logger.error(
            f"[{tag}] Error processing webhook - CallId: {call_id}, Error: {type(e).__name__}: {str(e)}",
            exc_info=True,
        )
        return goodbye(provider, SYSTEM_ERROR)

    logger.info(f"[{tag}] Responding with {turn.step} - CallId: {call_id}")
    return xml_response(render_turn(turn, provider, settings))


def _client(request: Request) -> str:
    return request.client.host if request.client else "unknown"


@router.post(START_PATH)
async def handle_incoming_call(
    request: Request,
    params: Dict[str, str] = Depends(verified_webhook_params),
    manager: CallSessionManager = Depends(get_session_manager),
    provider: TelephonyProvider = Depends(get_provider),
    settings: Settings = Depends(get_settings),
):
    """
    Handle an incoming call.

    Creates the session and answers with the routing menu. Block-listed
    callers are rejected.
    """
    call_id = resolve_call_id(params)
    caller: Optional[str] = params.get("From") or None
    logger.info(
        f"[INCOMING CALL] Received incoming call webhook - CallId: {call_id}, "
        f"From: {caller or 'unknown'}, Client: {_client(request)}"
    )

    async def start() -> TurnResult:
        result = await manager.start_call(call_id, caller)
        return manager.current_step(result.session)

    return await run_turn("INCOMING CALL", call_id, start(), provider, settings)


@router.post(ROUTE_PATH)
async def handle_route(
    request: Request,
    params: Dict[str, str] = Depends(verified_webhook_params),
    manager: CallSessionManager = Depends(get_session_manager),
    provider: TelephonyProvider = Depends(get_provider),
    settings: Settings = Depends(get_settings),
):
    """Handle the caller's menu choice (speech or DTMF)."""
    call_id = resolve_call_id(params)
    choice = parse_routing_choice(params.get("Digits"), params.get("SpeechResult"))
    logger.info(f"[ROUTE] Menu choice: {choice or 'none'} - CallId: {call_id}, Client: {_client(request)}")
    return await run_turn("ROUTE", call_id, manager.apply_menu_choice(call_id, choice), provider, settings)


@router.post(HANDLE_PATH)
async def handle_screening(
    request: Request,
    params: Dict[str, str] = Depends(verified_webhook_params),
    manager: CallSessionManager = Depends(get_session_manager),
    provider: TelephonyProvider = Depends(get_provider),
    settings: Settings = Depends(get_settings),
):
    """Handle gathered screening speech."""
    call_id = resolve_call_id(params)
    speech = params.get("SpeechResult") or ""
    logger.info(
        f"[SCREENING] Received speech input - CallId: {call_id}, "
        f"SpeechResult length: {len(speech)}, Client: {_client(request)}"
    )
    if speech:
        logger.debug(f"[SCREENING] Speech text: '{speech[:200]}{'...' if len(speech) > 200 else ''}' - CallId: {call_id}")
    operation = manager.screen_utterance(call_id, params.get("From") or None, speech)
    return await run_turn("SCREENING", call_id, operation, provider, settings)


@router.post(HOLD_PATH)
async def handle_hold(
    request: Request,
    params: Dict[str, str] = Depends(verified_webhook_params),
    manager: CallSessionManager = Depends(get_session_manager),
    provider: TelephonyProvider = Depends(get_provider),
    settings: Settings = Depends(get_settings),
):
    """Keep the caller on hold while the owner decides."""
    call_id = resolve_call_id(params)
    logger.debug(f"[HOLD] Hold tick - CallId: {call_id}")
    return await run_turn("HOLD", call_id, manager.hold_tick(call_id), provider, settings)


@router.post("/voice/status")
async def handle_call_status(
    request: Request,
    params: Dict[str, str] = Depends(verified_webhook_params),
    manager: CallSessionManager = Depends(get_session_manager),
    provider: TelephonyProvider = Depends(get_provider),
):
    """Provider status callback; terminal statuses end the session."""
    call_id = resolve_call_id(params)
    status = (params.get("CallStatus") or "").lower()
    logger.info(f"[CALL STATUS] Status update: {status or 'unknown'} - CallId: {call_id}")

    if status in TERMINAL_CALL_STATUSES:
        try:
            await manager.end_call(call_id, reason=f"status:{status}")
        except CallNotFoundError:
            logger.warning(f"[CALL STATUS] Status for unknown call - CallId: {call_id}")
    return xml_response(provider.create_voice_markup())
