# AI provider package
from portal.services.ai.base import AiProviderBase, AiModerationResult
from portal.services.ai.factory import create_ai_provider, get_ai_provider

__all__ = ["AiProviderBase", "AiModerationResult", "create_ai_provider", "get_ai_provider"]
