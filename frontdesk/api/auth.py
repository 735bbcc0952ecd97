"""API key authentication and webhook signature verification."""
import logging
import secrets
from typing import Dict, Optional

from fastapi import HTTPException, Request, WebSocket
from starlette.datastructures import Headers

from frontdesk.core.config import Settings
from frontdesk.core.dependencies import get_services
from frontdesk.services.security.events import API_KEY_REJECTED, WEBHOOK_SIGNATURE_REJECTED
from frontdesk.services.telephony.base import TelephonyProvider

logger = logging.getLogger(__name__)

API_KEY_HEADER = "x-api-key"
API_KEY_QUERY_PARAM = "apiKey"


def is_valid_api_key(expected: Optional[str], provided: Optional[str]) -> bool:
    """Constant-time comparison of the shared secret."""
    if not expected or not provided:
        return False
    return secrets.compare_digest(expected.encode("utf-8"), provided.encode("utf-8"))


def extract_api_key(headers: Headers) -> Optional[str]:
    """Read the key from X-API-Key or an Authorization: Bearer header."""
    api_key = headers.get(API_KEY_HEADER)
    if api_key:
        return api_key
    authorization = headers.get("authorization", "")
    if authorization.lower().startswith("bearer "):
        return authorization[7:].strip() or None
    return None


async def require_api_key(request: Request) -> bool:
    """Dependency to require the backend API key."""
    services = get_services(request)
    expected = services.settings.backend_api_key
    if not expected:
        logger.error("[AUTH] BACKEND_API_KEY is not configured; refusing control-plane request")
        raise HTTPException(status_code=500, detail="Server configuration error")
    if not is_valid_api_key(expected, extract_api_key(request.headers)):
        services.security_log.record(API_KEY_REJECTED, path=request.url.path)
        raise HTTPException(status_code=401, detail="Unauthorized")
    return True


def is_websocket_authorized(websocket: WebSocket, settings: Settings) -> bool:
    provided = websocket.query_params.get(API_KEY_QUERY_PARAM) or websocket.headers.get(API_KEY_HEADER)
    return is_valid_api_key(settings.backend_api_key, provided)


def get_signed_url(request: Request, settings: Settings) -> str:
    """
    URL the provider signed.

    Behind a proxy the request URL differs from the one the provider called,
    so PUBLIC_URL wins when it is set.
    """
    if settings.public_url:
        url = settings.public_url.rstrip("/") + request.url.path
        if request.url.query:
            url += f"?{request.url.query}"
        return url
    return str(request.url)


async def read_webhook_params(request: Request) -> Dict[str, str]:
    """Flatten a form-encoded or JSON webhook body."""
    content_type = request.headers.get("content-type", "")
    if "application/json" in content_type:
        try:
            body = await request.json()
        except ValueError:
            raise HTTPException(status_code=400, detail="Invalid JSON body")
        if not isinstance(body, dict):
            raise HTTPException(status_code=400, detail="Invalid JSON body")
        return {str(key): "" if value is None else str(value) for key, value in body.items()}
    form = await request.form()
    return {key: str(value) for key, value in form.items()}


async def verified_webhook_params(request: Request) -> Dict[str, str]:
    """
    Dependency for provider webhooks: parse the body and check its signature
    before any handler runs.
    """
    services = get_services(request)
    settings = services.settings
    params = await read_webhook_params(request)
    if not settings.validate_webhooks:
        return params

    provider: TelephonyProvider = services.provider
    if not provider.api_token:
        logger.error("[AUTH] Webhook validation is enabled but no signing token is configured")
        raise HTTPException(status_code=500, detail="Server configuration error")

    signature = provider.extract_signature(request.headers)
    if not provider.validate_signature(get_signed_url(request, settings), params, signature):
        services.security_log.record(
            WEBHOOK_SIGNATURE_REJECTED,
            params.get("CallSid") or params.get("CallId") or params.get("CallID"),
            path=request.url.path,
            client=request.client.host if request.client else "unknown",
        )
        raise HTTPException(status_code=403, detail="Forbidden")
    return params
