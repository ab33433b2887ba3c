"""
Configuration settings for the lead pipeline agents.
Loads environment variables and provides the settings class.
"""

import asyncio
import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

CURRENT_DIR = Path(__file__).absolute().parent
PROJECT_ROOT = CURRENT_DIR.parent
ENV_FILE_PATH = PROJECT_ROOT / ".env"

# Async settings cache
_settings_cache = None
_settings_lock = asyncio.Lock()


class Settings(BaseSettings):
    """Main settings class for the lead pipeline"""

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE_PATH),
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True,
        extra="allow",
    )

    # OpenAI Configuration
    openai_api_key: Optional[str] = Field(default=None, alias="OPENAI_API_KEY")
    openai_chat_model: str = Field(default="gpt-4o-mini", alias="OPENAI_CHAT_MODEL")
    openai_max_tokens: int = Field(default=2000, alias="OPENAI_MAX_TOKENS")
    openai_temperature: float = Field(default=0.2, alias="OPENAI_TEMPERATURE")

    # Supabase Configuration
    supabase_url: Optional[str] = Field(default=None, alias="SUPABASE_URL")
    supabase_service_key: Optional[str] = Field(default=None, alias="SUPABASE_SERVICE_KEY")

    # LangSmith Configuration
    langsmith_tracing_enabled: bool = Field(default=False, alias="LANGCHAIN_TRACING_V2")
    langsmith_endpoint: str = Field(default="https://api.smith.langchain.com", alias="LANGCHAIN_ENDPOINT")
    langsmith_api_key: Optional[str] = Field(default=None, alias="LANGCHAIN_API_KEY")
    langsmith_project: str = Field(default="lead-pipeline-agents", alias="LANGCHAIN_PROJECT")

    # System Configuration
    environment: str = Field(default="development", alias="ENVIRONMENT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Agent tuning
    agent_max_tool_iterations: int = Field(default=8, alias="AGENT_MAX_TOOL_ITERATIONS")
    partner_search_radius_km: int = Field(default=25, alias="PARTNER_SEARCH_RADIUS_KM")
    partner_offer_max_hours: int = Field(default=12, alias="PARTNER_OFFER_MAX_HOURS")
    product_search_limit: int = Field(default=5, alias="PRODUCT_SEARCH_LIMIT")
    product_search_min_score: float = Field(default=0.35, alias="PRODUCT_SEARCH_MIN_SCORE")
    estimate_max_unit_price: float = Field(default=50000.0, alias="ESTIMATE_MAX_UNIT_PRICE")


async def get_settings() -> Settings:
    """
    Get cached settings instance asynchronously.
    Settings are built in a worker thread so .env parsing never blocks the loop.
    """
    global _settings_cache

    if _settings_cache is not None:
        return _settings_cache

    async with _settings_lock:
        if _settings_cache is not None:
            return _settings_cache
        try:
            _settings_cache = await asyncio.to_thread(Settings)
            return _settings_cache
        except Exception as e:
            raise RuntimeError(f"Failed to initialize settings: {e}") from e


@lru_cache()
def get_settings_sync() -> Settings:
    """
    Get cached settings instance synchronously (for non-async contexts).
    """
    return Settings()


def configure_logging(settings: Optional[Settings] = None) -> None:
    """Configure root logging with the configured level."""
    settings = settings or get_settings_sync()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def setup_langsmith_tracing(settings: Optional[Settings] = None) -> bool:
    """
    Export LangSmith tracing variables if tracing is configured.
    Returns True when tracing was enabled.
    """
    settings = settings or get_settings_sync()
    logger = logging.getLogger(__name__)

    if settings.langsmith_tracing_enabled and settings.langsmith_api_key:
        os.environ["LANGCHAIN_TRACING_V2"] = "true"
        os.environ["LANGCHAIN_ENDPOINT"] = settings.langsmith_endpoint
        os.environ["LANGCHAIN_API_KEY"] = settings.langsmith_api_key
        os.environ["LANGCHAIN_PROJECT"] = settings.langsmith_project
        logger.info(f"[CONFIG] LangSmith tracing enabled for project: {settings.langsmith_project}")
        return True

    logger.info("[CONFIG] LangSmith tracing not configured (API key missing)")
    return False
