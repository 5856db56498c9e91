"""Text-generation provider adapters."""

from knowledge_engine.providers.llm.anthropic_provider import AnthropicLLMProvider
from knowledge_engine.providers.llm.ollama_provider import OllamaLLMProvider
from knowledge_engine.providers.llm.openai_provider import OpenAILLMProvider

__all__ = ["AnthropicLLMProvider", "OllamaLLMProvider", "OpenAILLMProvider"]
