"""Block list management and security event endpoints."""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel

from frontdesk.api.auth import require_api_key
from frontdesk.api.requests import parse_body
from frontdesk.core.dependencies import AppServices, get_services
from frontdesk.core.errors import CallValidationError

router = APIRouter(dependencies=[Depends(require_api_key)])
logger = logging.getLogger(__name__)


class BlockRequest(BaseModel):
    number: Optional[str] = None


@router.get("/blocklist")
async def list_blocked(services: AppServices = Depends(get_services)):
    return {"numbers": services.blocklist.list_numbers()}


@router.post("/blocklist")
async def block_number(request: Request, services: AppServices = Depends(get_services)):
    body = await parse_body(request, BlockRequest)
    try:
        number = services.blocklist.add(body.number or "")
    except CallValidationError as e:
        raise HTTPException(status_code=400, detail=e.message)
    return {"number": number, "blocked": True}


@router.delete("/blocklist/{number}")
async def unblock_number(number: str, services: AppServices = Depends(get_services)):
    if not services.blocklist.remove(number):
        raise HTTPException(status_code=404, detail="Number is not blocked")
    return {"number": number, "blocked": False}


@router.get("/security/events")
async def security_events(
    limit: int = Query(100, ge=1, le=500),
    services: AppServices = Depends(get_services),
):
    """Most recent security events, newest first."""
    return [event.model_dump(mode="json") for event in services.security_log.recent(limit)]
