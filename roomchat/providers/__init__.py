from roomchat.providers.base import ProviderClient
from roomchat.providers.gemini import GeminiClient
from roomchat.providers.openai import OpenAIClient

__all__ = ["ProviderClient", "GeminiClient", "OpenAIClient"]
