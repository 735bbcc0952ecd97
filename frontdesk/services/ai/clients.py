"""Clients for the chat/history backend and the completion backend."""
import logging
from typing import Any, Dict, Optional

import httpx
from openai import APITimeoutError, AsyncOpenAI, OpenAIError

from frontdesk.core.errors import AIBridgeError, AIBridgeTimeoutError, ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_TIMEOUT_SECONDS = 15.0


class ChatHistoryClient:
    """AnythingLLM workspace chat + history API."""

    def __init__(
        self,
        base_url: Optional[str],
        api_key: Optional[str],
        workspace_slug: Optional[str],
        timeout: float = DEFAULT_HISTORY_TIMEOUT_SECONDS,
        max_retries: int = 1,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/") if base_url else None
        self.api_key = api_key
        self.workspace_slug = workspace_slug
        self.max_retries = max(0, max_retries)
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)

    @property
    def is_configured(self) -> bool:
        return bool(self.base_url and self.api_key and self.workspace_slug)

    def _headers(self) -> Dict[str, str]:
        if not self.api_key:
            raise ConfigurationError("ANYTHINGLLM_API_KEY is required.")
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def _workspace_url(self, suffix: str) -> str:
        if not self.base_url:
            raise ConfigurationError("ANYTHINGLLM_API_URL is required.")
        if not self.workspace_slug:
            raise ConfigurationError("ANYTHINGLLM_WORKSPACE_SLUG is required.")
        return f"{self.base_url}/v1/workspace/{self.workspace_slug}/{suffix}"

    async def send_chat_message(self, message: str, session_id: Optional[str] = None) -> Any:
        """Post a message into the workspace chat for this session."""
        url = self._workspace_url("chat")
        return await self._send("POST", url, json={"message": message, "sessionId": session_id})

    async def fetch_chat_history(self, session_id: Optional[str] = None) -> Any:
        """Fetch prior chats, optionally scoped to one session."""
        url = self._workspace_url("chats")
        params = {"sessionId": session_id} if session_id else None
        return await self._send("GET", url, retries=self.max_retries, params=params)

    async def _send(self, method: str, url: str, retries: int = 0, **kwargs) -> Any:
        """Send one request, retrying transport errors up to `retries` times."""
        headers = self._headers()
        attempt = 0
        while True:
            try:
                response = await self._client.request(method, url, headers=headers, **kwargs)
                break
            except httpx.TimeoutException as e:
                raise AIBridgeTimeoutError(f"AnythingLLM timeout: {type(e).__name__}") from e
            except httpx.TransportError as e:
                if attempt >= retries:
                    raise AIBridgeError(f"AnythingLLM connection failed: {type(e).__name__}") from e
                attempt += 1
                logger.warning(f"[AI BRIDGE] AnythingLLM transport error, retrying ({attempt}/{retries})")

        if response.status_code >= 400:
            raise AIBridgeError(f"AnythingLLM error: {response.status_code}")
        try:
            return response.json()
        except ValueError as e:
            raise AIBridgeError("AnythingLLM returned invalid JSON") from e

    async def aclose(self) -> None:
        await self._client.aclose()


class CompletionClient:
    """Completion backend reached through its OpenAI-compatible API (Ollama /v1)."""

    def __init__(
        self,
        base_url: Optional[str],
        model: str,
        api_key: Optional[str] = None,
        timeout: float = 8.0,
        max_retries: int = 1,
        client: Optional[AsyncOpenAI] = None,
    ):
        self.base_url = base_url.rstrip("/") if base_url else None
        self.model = model
        self.client = client
        if self.client is None and self.base_url:
            self.client = AsyncOpenAI(
                base_url=f"{self.base_url}/v1",
                api_key=api_key or "ollama",
                timeout=timeout,
                max_retries=max_retries,
            )

    @property
    def is_configured(self) -> bool:
        return self.client is not None

    async def complete(self, prompt: str, system: Optional[str] = None) -> str:
        """Return the stripped completion text, or an empty string."""
        if self.client is None:
            raise ConfigurationError("OLLAMA_API_URL is required.")

        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})

        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=0.3,
            )
        except APITimeoutError as e:
            raise AIBridgeTimeoutError("Completion backend timeout") from e
        except OpenAIError as e:
            raise AIBridgeError(f"Completion backend error: {type(e).__name__}") from e

        if not response.choices:
            return ""
        content = response.choices[0].message.content
        return (content or "").strip()

    async def aclose(self) -> None:
        if self.client is not None:
            await self.client.close()
