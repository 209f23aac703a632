"""
AI provider factory: builds the mock or the real implementation from settings.
"""

import logging
from typing import Optional

from fastapi import Request

from portal.core.config import Settings, settings as default_settings
from portal.services.ai.base import AiProviderBase

logger = logging.getLogger(__name__)


def create_ai_provider(config: Optional[Settings] = None) -> AiProviderBase:
    """
    Build a provider instance. Called once at application start; the
    instance lives on ``app.state`` and is injected, never looked up globally.

    AI_PROVIDER=mock    -> MockAiProvider  (development / tests)
    AI_PROVIDER=openai  -> OpenAiProvider  (OpenAI-compatible HTTP API)
    """
    config = config or default_settings
    mode = str(config.AI_PROVIDER).lower().strip()

    if mode in ("openai", "real"):
        from portal.services.ai.client import OpenAiProvider
        logger.info("AI provider: OpenAI-compatible (%s)", config.OPENAI_BASE_URL)
        return OpenAiProvider(
            api_key=config.OPENAI_API_KEY,
            base_url=config.OPENAI_BASE_URL,
            moderation_model=config.OPENAI_MODERATION_MODEL,
            chat_model=config.OPENAI_CHAT_MODEL,
            timeout=config.AI_TIMEOUT_SECONDS,
        )

    if mode not in ("mock", "true", "1", "yes"):
        logger.warning("Unknown AI_PROVIDER=%r, falling back to mock", config.AI_PROVIDER)
    from portal.services.ai.mock import MockAiProvider
    logger.info("AI provider: mock")
    return MockAiProvider()


def get_ai_provider(request: Request) -> AiProviderBase:
    """FastAPI dependency: the provider built at start-up"""
    return request.app.state.ai_provider
