"""AI orchestration bridge: transcript in, one proposed reply out."""
import logging
from typing import Any, Optional, Tuple

from frontdesk.core.errors import ConfigurationError
from frontdesk.services.ai.clients import ChatHistoryClient, CompletionClient
from frontdesk.services.ai.prompt import get_screening_prompt, get_system_prompt

logger = logging.getLogger(__name__)


class AIOrchestrationBridge:
    """Sends caller speech to the chat/history backend and asks the completion backend for a reply."""

    def __init__(
        self,
        chat_client: ChatHistoryClient,
        completion_client: CompletionClient,
        owner_name: Optional[str] = None,
    ):
        self.chat_client = chat_client
        self.completion_client = completion_client
        self.owner_name = owner_name

    @property
    def is_configured(self) -> bool:
        return self.chat_client.is_configured and self.completion_client.is_configured

    async def propose_reply(self, call_id: str, caller: Optional[str], transcript: str) -> str:
        """
        Produce the assistant's reply for one screening utterance.

        Raises:
            ConfigurationError: a backend is not configured
            AIBridgeError: a backend failed (AIBridgeTimeoutError on deadline)
        """
        if not self.is_configured:
            raise ConfigurationError("AI services not configured", call_id)

        await self.chat_client.send_chat_message(
            f"Caller {caller or 'Unknown caller'}: {transcript}", session_id=call_id
        )
        history = await self.chat_client.fetch_chat_history(session_id=call_id)

        reply = await self.completion_client.complete(
            get_screening_prompt(transcript, history),
            system=get_system_prompt(self.owner_name),
        )
        logger.info(f"[AI BRIDGE] Reply generated (length: {len(reply)}) - CallId: {call_id}")
        return reply

    async def orchestrate(self, transcript: str, session_id: Optional[str] = None) -> Tuple[Any, str]:
        """Relay a free-form transcript; returns the chat payload and the completion."""
        if not self.is_configured:
            raise ConfigurationError("AI services not configured", session_id)
        chat_payload = await self.chat_client.send_chat_message(transcript, session_id=session_id)
        reply = await self.completion_client.complete(transcript)
        return chat_payload, reply

    async def aclose(self) -> None:
        await self.chat_client.aclose()
        await self.completion_client.aclose()
