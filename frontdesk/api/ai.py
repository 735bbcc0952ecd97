"""AI proxy endpoints for the owner console."""
import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel

from frontdesk.api.auth import require_api_key
from frontdesk.api.requests import parse_body
from frontdesk.core.dependencies import AppServices, get_services
from frontdesk.core.errors import AIBridgeError, AIBridgeTimeoutError, ConfigurationError
from frontdesk.services.ai.aisec import is_valid_prompt
from frontdesk.services.broadcast.events import CallEvent, EventType

router = APIRouter(prefix="/ai", dependencies=[Depends(require_api_key)])
logger = logging.getLogger(__name__)


class ProcessRequest(BaseModel):
    prompt: Any = None
    sessionId: Optional[str] = None
    metadata: Any = None


class OrchestrateRequest(BaseModel):
    transcript: Optional[str] = None
    sessionId: Optional[str] = None


def raise_for_upstream(error: Exception, tag: str, session_id: Optional[str]) -> None:
    """Map integration errors to HTTP status codes."""
    if isinstance(error, ConfigurationError):
        logger.error(f"[{tag}] Not configured - Session: {session_id}")
        raise HTTPException(status_code=500, detail=error.message)
    if isinstance(error, AIBridgeTimeoutError):
        raise HTTPException(status_code=504, detail="Upstream request timed out")
    if isinstance(error, AIBridgeError):
        raise HTTPException(status_code=502, detail=error.message)
    raise error


@router.post("/process")
async def process_prompt(request: Request, services: AppServices = Depends(get_services)):
    """Proxy a prompt to the AISEC API."""
    body = await parse_body(request, ProcessRequest)
    if not is_valid_prompt(body.prompt):
        raise HTTPException(status_code=400, detail="prompt is required")
    if not services.aisec.is_configured:
        raise HTTPException(status_code=500, detail="AISEC API is not configured")
    try:
        return await services.aisec.process(body.prompt, session_id=body.sessionId, metadata=body.metadata)
    except (ConfigurationError, AIBridgeError) as e:
        raise_for_upstream(e, "AISEC", body.sessionId)


@router.post("/orchestrate")
async def orchestrate(request: Request):
    """Relay a text transcript through the chat and completion backends."""
    body = await parse_body(request, OrchestrateRequest)
    services = get_services(request)
    transcript = (body.transcript or "").strip()
    if not transcript:
        raise HTTPException(status_code=400, detail="transcript is required")
    if not services.bridge.is_configured:
        raise HTTPException(status_code=500, detail="AI services not configured")

    try:
        chat_payload, reply = await services.bridge.orchestrate(transcript, session_id=body.sessionId)
    except (ConfigurationError, AIBridgeError) as e:
        raise_for_upstream(e, "ORCHESTRATOR", body.sessionId)

    if body.sessionId:
        services.broadcaster.publish(
            CallEvent(type=EventType.ASSISTANT, call_id=body.sessionId, payload={"text": reply})
        )
    logger.info(f"[ORCHESTRATOR] Reply generated (length: {len(reply)}) - Session: {body.sessionId}")
    return {"chat": chat_payload, "response": reply}
