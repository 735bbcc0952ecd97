"""Owner call-control endpoints."""
import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel

from frontdesk.api.auth import require_api_key
from frontdesk.api.requests import parse_body
from frontdesk.core.dependencies import AppServices, get_services
from frontdesk.core.errors import (
    CallNotFoundError,
    CallValidationError,
    ConfigurationError,
    FrontDeskError,
    InvalidCallStateError,
    UpstreamError,
)
from frontdesk.services.call_session.models import CallSession
from frontdesk.services.telephony.identifiers import is_valid_call_id, is_valid_phone

router = APIRouter(prefix="/calls", dependencies=[Depends(require_api_key)])
logger = logging.getLogger(__name__)


class OutboundRequest(BaseModel):
    to: Optional[str] = None


class DecisionRequest(BaseModel):
    callId: Optional[str] = None
    to: Optional[str] = None


def to_http_error(error: FrontDeskError) -> HTTPException:
    """Map service errors to HTTP status codes."""
    if isinstance(error, CallValidationError):
        return HTTPException(status_code=400, detail=error.message)
    if isinstance(error, CallNotFoundError):
        return HTTPException(status_code=404, detail="Call not found")
    if isinstance(error, InvalidCallStateError):
        return HTTPException(status_code=409, detail=error.message)
    if isinstance(error, ConfigurationError):
        return HTTPException(status_code=500, detail=error.message)
    if isinstance(error, UpstreamError):
        return HTTPException(status_code=502, detail="Telephony provider request failed")
    return HTTPException(status_code=500, detail="Internal server error")


def serialize_session(session: CallSession) -> dict:
    return {
        "callId": session.call_id,
        "from": session.caller_number,
        "phase": session.phase.value,
        "disposition": session.disposition.value if session.disposition else None,
        "createdAt": session.created_at.isoformat(),
        "lastUpdatedAt": session.last_updated_at.isoformat(),
        "endedAt": session.ended_at.isoformat() if session.ended_at else None,
        "transcript": [entry.model_dump(mode="json") for entry in session.transcript],
    }


def require_provider(services: AppServices) -> None:
    if not services.provider.is_configured:
        raise HTTPException(status_code=500, detail="Telephony provider not configured")


async def parse_decision(request: Request, services: AppServices, needs_number: bool) -> DecisionRequest:
    require_provider(services)
    body = await parse_body(request, DecisionRequest)
    if not is_valid_call_id(body.callId):
        raise HTTPException(status_code=400, detail="A valid callId is required")
    if needs_number and not is_valid_phone(body.to):
        raise HTTPException(status_code=400, detail="callId and valid E.164 phone are required")
    return body


@router.post("/outbound")
async def start_outbound_call(request: Request, services: AppServices = Depends(get_services)):
    """Place an outbound call that runs the configured markup URL."""
    require_provider(services)
    body = await parse_body(request, OutboundRequest)
    if not body.to:
        raise HTTPException(status_code=400, detail="to is required")
    if not is_valid_phone(body.to):
        raise HTTPException(status_code=400, detail="Invalid destination phone number")
    twiml_url = services.settings.swireit_twiml_url
    if not twiml_url:
        raise HTTPException(status_code=400, detail="Outbound markup URL not configured")

    try:
        call_id = await asyncio.wait_for(
            services.provider.create_outbound_call(body.to, services.settings.swireit_caller_id, twiml_url),
            timeout=services.settings.telephony_timeout_seconds,
        )
    except asyncio.TimeoutError:
        logger.error(f"[OUTBOUND] Provider timed out - To: {body.to}")
        raise HTTPException(status_code=502, detail="Failed to start outbound call")
    except FrontDeskError as e:
        logger.error(f"[OUTBOUND] Failed to start call - To: {body.to}, Error: {type(e).__name__}: {e}")
        raise to_http_error(e)
    logger.info(f"[OUTBOUND] Call started - CallId: {call_id}, To: {body.to}")
    return {"callId": call_id}


@router.post("/answer")
async def answer_call(request: Request, services: AppServices = Depends(get_services)):
    """Connect the held caller to the owner's number."""
    body = await parse_decision(request, services, needs_number=True)
    try:
        await services.manager.connect(body.callId, body.to)
    except FrontDeskError as e:
        logger.warning(f"[OWNER DECISION] Connect failed - CallId: {body.callId}, Error: {type(e).__name__}")
        raise to_http_error(e)
    return {"status": "connected", "callId": body.callId}


@router.post("/voicemail")
async def send_to_voicemail(request: Request, services: AppServices = Depends(get_services)):
    """Send the held caller to voicemail."""
    body = await parse_decision(request, services, needs_number=False)
    try:
        await services.manager.send_to_voicemail(body.callId)
    except FrontDeskError as e:
        logger.warning(f"[OWNER DECISION] Voicemail failed - CallId: {body.callId}, Error: {type(e).__name__}")
        raise to_http_error(e)
    return {"status": "voicemail", "callId": body.callId}


@router.post("/forward")
async def forward_call(request: Request, services: AppServices = Depends(get_services)):
    """Forward the held caller to another number."""
    body = await parse_decision(request, services, needs_number=True)
    try:
        await services.manager.forward(body.callId, body.to)
    except FrontDeskError as e:
        logger.warning(f"[OWNER DECISION] Forward failed - CallId: {body.callId}, Error: {type(e).__name__}")
        raise to_http_error(e)
    return {"status": "forwarded", "callId": body.callId}


@router.get("")
async def list_calls(
    include_ended: bool = Query(False, alias="includeEnded"),
    services: AppServices = Depends(get_services),
):
    """Sessions currently held in memory."""
    return [serialize_session(session) for session in services.manager.list_sessions(include_ended)]


@router.get("/history")
async def call_history(
    limit: int = Query(50, ge=1, le=500),
    services: AppServices = Depends(get_services),
):
    """Ended calls from the history store."""
    if services.history_store is None:
        return []
    records = await services.history_store.list_recent(limit)
    return [
        {
            "callId": record.call_id,
            "from": record.caller_number,
            "disposition": record.disposition,
            "finalPhase": record.final_phase,
            "transcript": record.transcript,
            "startedAt": record.started_at.isoformat() if record.started_at else None,
            "endedAt": record.ended_at.isoformat() if record.ended_at else None,
        }
        for record in records
    ]


@router.get("/{call_id}")
async def get_call(call_id: str, services: AppServices = Depends(get_services)):
    session = services.manager.get_session(call_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Call not found")
    return serialize_session(session)
