"""Swireit telephony provider (JSON REST API, HMAC-SHA256 webhooks)."""
import base64
import hashlib
import hmac
import logging
from typing import Any, Dict, Mapping, Optional
from urllib.parse import quote

import httpx

from frontdesk.core.errors import ConfigurationError, TelephonyError
from frontdesk.services.telephony.base import TelephonyProvider

logger = logging.getLogger(__name__)


def compute_signature(secret: str, url: str, params: Optional[Mapping[str, Any]]) -> str:
    """
    Compute a Swireit webhook signature.

    The signed payload is the full request URL followed by every body
    parameter as key+value, sorted by key. The HMAC-SHA256 digest is
    base64-encoded.
    """
    data = url
    for key in sorted((params or {}).keys()):
        value = params[key]
        data += f"{key}{'' if value is None else value}"
    digest = hmac.new(secret.encode("utf-8"), data.encode("utf-8"), hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


class SwireitProvider(TelephonyProvider):
    """Swireit REST client and webhook validator."""

    name = "swireit"
    signature_headers = ("x-swireit-signature",)

    def __init__(
        self,
        project_id: Optional[str],
        api_token: Optional[str],
        space_url: Optional[str],
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(api_token)
        self.project_id = project_id
        self.base_url = space_url.rstrip("/") if space_url else None
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)

    @property
    def is_configured(self) -> bool:
        return bool(self.project_id and self.api_token and self.base_url)

    def validate_signature(
        self, url: str, params: Optional[Mapping[str, Any]], signature: Optional[str]
    ) -> bool:
        if not self.api_token or not signature or not url:
            return False
        expected = compute_signature(self.api_token, url, params)
        return hmac.compare_digest(expected.encode("utf-8"), signature.encode("utf-8"))

    async def create_outbound_call(self, to: str, from_: Optional[str], url: str) -> str:
        payload = await self._request("/api/calls", {"to": to, "from": from_, "url": url})
        call_id = payload.get("sid") or payload.get("callId") or payload.get("id")
        if not call_id:
            raise TelephonyError("Swireit API response did not include a call id")
        return str(call_id)

    async def update_call(self, call_id: str, markup: str) -> None:
        await self._request(f"/api/calls/{quote(call_id, safe='')}", {"response": markup}, call_id)

    async def _request(
        self, path: str, payload: Dict[str, Any], call_id: Optional[str] = None
    ) -> Dict[str, Any]:
        if not self.base_url:
            raise ConfigurationError("Swireit API URL not configured", call_id)
        headers = {"Content-Type": "application/json"}
        if self.project_id and self.api_token:
            headers["Authorization"] = f"Bearer {self.api_token}"
        try:
            response = await self._client.post(f"{self.base_url}{path}", json=payload, headers=headers)
        except httpx.TimeoutException as e:
            raise TelephonyError(f"Swireit API timeout: {type(e).__name__}", call_id) from e
        except httpx.HTTPError as e:
            raise TelephonyError(f"Swireit API connection failed: {type(e).__name__}", call_id) from e

        if response.status_code >= 400:
            logger.error(
                f"[SWIREIT] API error - Path: {path}, Status: {response.status_code}, "
                f"CallId: {call_id or 'n/a'}"
            )
            raise TelephonyError(f"Swireit API error: {response.status_code}", call_id)
        try:
            return response.json()
        except ValueError:
            return {}

    async def aclose(self) -> None:
        await self._client.aclose()
