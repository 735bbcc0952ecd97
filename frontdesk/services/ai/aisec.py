"""AISEC processing API proxy client."""
import logging
from typing import Any, Dict, Optional

import httpx

from frontdesk.core.errors import AIBridgeError, AIBridgeTimeoutError, ConfigurationError

logger = logging.getLogger(__name__)


def is_valid_prompt(prompt: Any) -> bool:
    return isinstance(prompt, str) and len(prompt.strip()) > 0


class AisecClient:
    """Forwards prompts to the AISEC API with a hard deadline."""

    def __init__(
        self,
        api_url: Optional[str],
        api_key: Optional[str],
        timeout_ms: int,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_url = api_url
        self.api_key = api_key
        self.timeout_ms = timeout_ms
        self._client = httpx.AsyncClient(timeout=timeout_ms / 1000, transport=transport)

    @property
    def is_configured(self) -> bool:
        return bool(self.api_url and self.api_key)

    async def process(
        self, prompt: str, session_id: Optional[str] = None, metadata: Any = None
    ) -> Dict[str, Any]:
        if not self.is_configured:
            raise ConfigurationError("AISEC API is not configured")

        try:
            response = await self._client.post(
                self.api_url,
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
                json={"prompt": prompt, "sessionId": session_id, "metadata": metadata},
            )
        except httpx.TimeoutException as e:
            logger.error(f"[AISEC] Request timed out after {self.timeout_ms}ms - Session: {session_id}")
            raise AIBridgeTimeoutError("AISEC API timeout", session_id) from e
        except httpx.HTTPError as e:
            logger.error(f"[AISEC] Connection failed - Session: {session_id}, Error: {type(e).__name__}")
            raise AIBridgeError("AISEC API connection failed", session_id) from e

        if response.status_code >= 400:
            logger.error(f"[AISEC] Error response - Status: {response.status_code}, Session: {session_id}")
            raise AIBridgeError("AISEC API request failed", session_id)
        try:
            return response.json()
        except ValueError as e:
            logger.error(f"[AISEC] Invalid JSON response - Session: {session_id}")
            raise AIBridgeError("Invalid JSON response from AISEC API", session_id) from e

    async def aclose(self) -> None:
        await self._client.aclose()
