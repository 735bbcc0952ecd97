"""Health check and feature visibility endpoints."""
import logging

from fastapi import APIRouter, Depends, Request

from frontdesk.api.auth import require_api_key
from frontdesk.core.dependencies import get_services

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/health")
async def health_check(request: Request):
    """Health check endpoint."""
    logger.debug(
        f"[HEALTH] Health check requested - Client: {request.client.host if request.client else 'unknown'}"
    )
    return {"status": "ok"}


@router.get("/config", dependencies=[Depends(require_api_key)])
async def get_config(request: Request):
    """Which integrations are configured. Never returns secrets."""
    services = get_services(request)
    settings = services.settings
    return {
        "telephony": {
            "provider": services.provider.name,
            "configured": services.provider.is_configured,
            "screeningNumber": settings.swireit_screening_number,
            "forwardNumber": settings.swireit_forward_number,
            "callerId": settings.swireit_caller_id,
            "outboundConfigured": bool(services.provider.is_configured and settings.swireit_twiml_url),
            "validateWebhooks": settings.validate_webhooks,
        },
        "services": {
            "ollama": bool(settings.ollama_api_url),
            "anythingllm": settings.anythingllm_configured,
            "aisec": services.aisec.is_configured,
        },
        "aisecUrlConfigured": bool(settings.aisec_api_url),
        "blockedNumbers": len(services.blocklist),
    }
