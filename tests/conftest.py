"""Shared test fixtures and configuration."""
import os
from unittest.mock import AsyncMock, Mock

import httpx
import pytest
from fastapi.testclient import TestClient

# Set test environment variables before importing app
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("BACKEND_API_KEY", "test-api-key")
os.environ.setdefault("VALIDATE_WEBHOOKS", "false")

from frontdesk.core.config import Settings
from frontdesk.core.dependencies import AppServices
from frontdesk.db.database import create_engine, create_session_factory, init_db
from frontdesk.main import create_app
from frontdesk.services.ai.aisec import AisecClient
from frontdesk.services.broadcast.channel import EventBroadcaster
from frontdesk.services.call_session.handoff import HANDOFF_LINE
from frontdesk.services.call_session.manager import CallSessionManager
from frontdesk.services.persistence.calls import CallHistoryStore
from frontdesk.services.security.blocklist import BlockList
from frontdesk.services.security.events import SecurityLog
from frontdesk.services.telephony.swireit import SwireitProvider

from tests.helpers import (
    BLOCKED_NUMBER,
    FORWARD_NUMBER,
    TEST_API_KEY,
    TEST_SIGNING_TOKEN,
    TEST_SPACE_URL,
    ProviderRecorder,
)

# Test database URL (in-memory SQLite)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture
def test_settings():
    """Override settings for testing."""
    return Settings(
        _env_file=None,
        backend_api_key=TEST_API_KEY,
        telephony_provider="swireit",
        swireit_project_id="test-project",
        swireit_api_token=TEST_SIGNING_TOKEN,
        swireit_space_url=TEST_SPACE_URL,
        swireit_caller_id="+15550100000",
        swireit_forward_number=FORWARD_NUMBER,
        swireit_twiml_url="https://frontdesk.example.com/voice",
        validate_webhooks=False,
        ollama_api_url="http://ollama.test",
        anythingllm_api_url="http://anythingllm.test/api",
        anythingllm_api_key="test-llm-key",
        anythingllm_workspace_slug="frontdesk",
        blocked_numbers=BLOCKED_NUMBER,
        database_url=TEST_DATABASE_URL,
        ai_timeout_seconds=1.0,
        max_menu_attempts=3,
        max_screening_turns=3,
        max_hold_iterations=3,
        forward_settle_seconds=30.0,
    )


@pytest.fixture
def provider_recorder():
    return ProviderRecorder()


@pytest.fixture
def provider(test_settings, provider_recorder):
    return SwireitProvider(
        project_id=test_settings.swireit_project_id,
        api_token=test_settings.swireit_api_token,
        space_url=test_settings.swireit_space_url,
        transport=httpx.MockTransport(provider_recorder),
    )


@pytest.fixture
def mock_bridge():
    """AI bridge stub that hands off on the first turn."""
    bridge = Mock()
    bridge.is_configured = True
    bridge.propose_reply = AsyncMock(return_value=f"Thanks, Sam from Acme. {HANDOFF_LINE}")
    bridge.orchestrate = AsyncMock(return_value=({"textResponse": "ok"}, "Summary of the call."))
    bridge.aclose = AsyncMock()
    return bridge


@pytest.fixture
def broadcaster():
    return EventBroadcaster(max_queue=256)


@pytest.fixture
def security_log():
    return SecurityLog()


@pytest.fixture
def blocklist(test_settings):
    return BlockList(test_settings.blocked_number_list)


@pytest.fixture
def session_manager(test_settings, mock_bridge, provider, broadcaster, blocklist, security_log):
    """State machine without history persistence."""
    return CallSessionManager(
        settings=test_settings,
        bridge=mock_bridge,
        provider=provider,
        broadcaster=broadcaster,
        blocklist=blocklist,
        security_log=security_log,
    )


@pytest.fixture
async def test_db_engine():
    """Create test database engine."""
    engine = create_engine(TEST_DATABASE_URL)
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def history_store(test_db_engine):
    return CallHistoryStore(create_session_factory(test_db_engine))


@pytest.fixture
def test_services(test_settings, mock_bridge, provider, broadcaster, blocklist, security_log):
    aisec = AisecClient(
        test_settings.aisec_api_url, test_settings.aisec_api_key, test_settings.aisec_timeout_ms
    )
    manager = CallSessionManager(
        settings=test_settings,
        bridge=mock_bridge,
        provider=provider,
        broadcaster=broadcaster,
        blocklist=blocklist,
        security_log=security_log,
    )
    return AppServices(
        settings=test_settings,
        provider=provider,
        bridge=mock_bridge,
        aisec=aisec,
        broadcaster=broadcaster,
        blocklist=blocklist,
        security_log=security_log,
        manager=manager,
    )


@pytest.fixture
def test_client(test_settings, test_services):
    """Create FastAPI test client; the lifespan runs for the duration of the test."""
    app = create_app(test_settings, services=test_services)
    with TestClient(app) as client:
        yield client
