"""Service wiring and FastAPI dependencies."""
import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncEngine

from frontdesk.core.config import Settings
from frontdesk.db.database import create_engine, create_session_factory
from frontdesk.services.ai.aisec import AisecClient
from frontdesk.services.ai.bridge import AIOrchestrationBridge
from frontdesk.services.ai.clients import ChatHistoryClient, CompletionClient
from frontdesk.services.broadcast.channel import EventBroadcaster
from frontdesk.services.call_session.manager import CallSessionManager
from frontdesk.services.persistence.calls import CallHistoryStore
from frontdesk.services.security.blocklist import BlockList
from frontdesk.services.security.events import SecurityLog
from frontdesk.services.telephony.base import TelephonyProvider
from frontdesk.services.telephony.factory import create_telephony_provider

logger = logging.getLogger(__name__)


@dataclass
class AppServices:
    """Everything the routers need, built once per app."""

    settings: Settings
    provider: TelephonyProvider
    bridge: AIOrchestrationBridge
    aisec: AisecClient
    broadcaster: EventBroadcaster
    blocklist: BlockList
    security_log: SecurityLog
    manager: CallSessionManager
    history_store: Optional[CallHistoryStore] = None
    engine: Optional[AsyncEngine] = None

    async def aclose(self) -> None:
        await self.manager.close()
        await self.broadcaster.close()
        await self.bridge.aclose()
        await self.aisec.aclose()
        await self.provider.aclose()
        if self.engine is not None:
            await self.engine.dispose()


def build_services(settings: Settings) -> AppServices:
    """Composition root."""
    provider = create_telephony_provider(settings)

    chat_client = ChatHistoryClient(
        base_url=settings.anythingllm_api_url,
        api_key=settings.anythingllm_api_key,
        workspace_slug=settings.anythingllm_workspace_slug,
        timeout=settings.ai_history_timeout_seconds,
        max_retries=settings.ai_max_retries,
    )
    completion_client = CompletionClient(
        base_url=settings.ollama_api_url,
        model=settings.ollama_model,
        api_key=settings.ollama_api_key,
        timeout=settings.ai_completion_timeout_seconds,
        max_retries=settings.ai_max_retries,
    )
    bridge = AIOrchestrationBridge(chat_client, completion_client, owner_name=settings.owner_name)
    aisec = AisecClient(settings.aisec_api_url, settings.aisec_api_key, settings.aisec_timeout_ms)

    engine = create_engine(settings.database_url)
    history_store = CallHistoryStore(create_session_factory(engine))

    broadcaster = EventBroadcaster(max_queue=settings.observer_queue_size)
    blocklist = BlockList(settings.blocked_number_list)
    security_log = SecurityLog()
    manager = CallSessionManager(
        settings=settings,
        bridge=bridge,
        provider=provider,
        broadcaster=broadcaster,
        blocklist=blocklist,
        security_log=security_log,
        history_store=history_store,
    )

    if not bridge.is_configured:
        logger.warning(
            "AI services not configured. Set OLLAMA_API_URL, ANYTHINGLLM_API_URL, "
            "ANYTHINGLLM_API_KEY, and ANYTHINGLLM_WORKSPACE_SLUG."
        )

    return AppServices(
        settings=settings,
        provider=provider,
        bridge=bridge,
        aisec=aisec,
        broadcaster=broadcaster,
        blocklist=blocklist,
        security_log=security_log,
        manager=manager,
        history_store=history_store,
        engine=engine,
    )


def get_services(request: Request) -> AppServices:
    return request.app.state.services


def get_settings(request: Request) -> Settings:
    return request.app.state.services.settings


def get_session_manager(request: Request) -> CallSessionManager:
    return request.app.state.services.manager


def get_provider(request: Request) -> TelephonyProvider:
    return request.app.state.services.provider
