"""Application configuration."""
from typing import List, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_AISEC_TIMEOUT_MS = 5000


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Control plane
    backend_api_key: Optional[str] = None
    allowed_origins: str = "http://localhost:3000,http://localhost:3001"

    # Telephony
    telephony_provider: str = "swireit"  # swireit or signalwire
    swireit_project_id: Optional[str] = None
    swireit_api_token: Optional[str] = None
    swireit_space_url: Optional[str] = None
    swireit_caller_id: Optional[str] = None
    swireit_screening_number: Optional[str] = None
    swireit_forward_number: Optional[str] = None
    swireit_twiml_url: Optional[str] = None
    validate_webhooks: bool = True
    public_url: Optional[str] = None
    telephony_timeout_seconds: float = 10.0

    # AI orchestration (completion + chat history backends)
    ollama_api_url: Optional[str] = None
    ollama_model: str = "llama3.1"
    ollama_api_key: Optional[str] = None
    anythingllm_api_url: Optional[str] = None
    anythingllm_api_key: Optional[str] = None
    anythingllm_workspace_slug: Optional[str] = None
    ai_timeout_seconds: float = 20.0  # whole screening turn
    ai_completion_timeout_seconds: float = 8.0
    ai_history_timeout_seconds: float = 15.0
    ai_max_retries: int = 1
    ai_failure_mode: str = "end"  # end or fallback
    owner_name: Optional[str] = None

    # AISEC proxy
    aisec_api_url: Optional[str] = None
    aisec_api_key: Optional[str] = None
    aisec_timeout_ms: int = DEFAULT_AISEC_TIMEOUT_MS

    # Call flow
    blocked_numbers: str = ""
    max_menu_attempts: int = 3
    max_screening_turns: int = 3
    screening_timeout_seconds: float = 120.0
    hold_pause_seconds: int = 60
    max_hold_iterations: int = 10
    forward_settle_seconds: float = 30.0
    voicemail_max_length: int = 30
    session_timeout_seconds: float = 1800.0
    ended_retention_seconds: float = 600.0
    sweep_interval_seconds: float = 30.0
    observer_queue_size: int = 256

    # Database
    database_url: str = "sqlite+aiosqlite:///./frontdesk.db"

    # Server
    host: str = "0.0.0.0"
    port: int = 8080
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("aisec_timeout_ms", mode="before")
    @classmethod
    def normalize_aisec_timeout(cls, value):
        """Fall back to the default timeout for missing, invalid or non-positive values."""
        try:
            parsed = int(value)
        except (TypeError, ValueError):
            return DEFAULT_AISEC_TIMEOUT_MS
        return parsed if parsed > 0 else DEFAULT_AISEC_TIMEOUT_MS

    @property
    def allowed_origin_list(self) -> List[str]:
        return [origin.strip() for origin in self.allowed_origins.split(",") if origin.strip()]

    @property
    def blocked_number_list(self) -> List[str]:
        return [number.strip() for number in self.blocked_numbers.split(",") if number.strip()]

    @property
    def anythingllm_configured(self) -> bool:
        return bool(
            self.anythingllm_api_url and self.anythingllm_api_key and self.anythingllm_workspace_slug
        )


settings = Settings()
