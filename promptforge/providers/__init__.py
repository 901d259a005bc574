"""
LLM Provider Abstraction Layer

Unified interface for multiple LLM backends (OpenAI, Anthropic, Groq,
Google Gemini, Ollama). Every provider exposes complete() and stream() for a
(prompt, ModelConfig) pair.

Usage:
    from promptforge.providers import ModelConfig, ProviderFactory, ProviderType

    config = ModelConfig(provider=ProviderType.GROQ, model="llama-3.3-70b-versatile", api_key="...")
    provider = ProviderFactory.create(config.provider)
    text = await provider.complete("Explain AI", config)
"""

from .base import (
    KNOWN_MODELS,
    BaseProvider,
    Message,
    ModelConfig,
    ProviderFactory,
    ProviderPool,
    ProviderType,
    StreamChunk,
    build_messages,
    default_model_config,
    estimate_tokens,
)
from .anthropic_provider import AnthropicProvider
from .google_provider import GoogleProvider
from .ollama_provider import OllamaProvider
from .openai_provider import GroqProvider, OpenAIProvider

__all__ = [
    # Base classes and types
    "BaseProvider",
    "KNOWN_MODELS",
    "Message",
    "ModelConfig",
    "ProviderFactory",
    "ProviderPool",
    "ProviderType",
    "StreamChunk",
    "build_messages",
    "default_model_config",
    "estimate_tokens",
    # Providers
    "AnthropicProvider",
    "GoogleProvider",
    "GroqProvider",
    "OllamaProvider",
    "OpenAIProvider",
]
