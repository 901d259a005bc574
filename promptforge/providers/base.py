"""
Base Provider Abstraction Layer

Defines the interface that all LLM providers must implement and the types
that flow through it. A provider translates a (prompt, ModelConfig) pair
into a vendor request and normalizes the reply into either a single text
completion or a lazy sequence of StreamChunks.

Providers hold no cross-call state: the model, sampling parameters and
credential all arrive with each call inside the ModelConfig.

Usage:
    from promptforge.providers import ModelConfig, ProviderFactory, ProviderType

    config = ModelConfig(provider=ProviderType.OPENAI, model="gpt-4o", api_key="sk-...")
    provider = ProviderFactory.create(config.provider)

    text = await provider.complete("What is 2+2?", config)
    async for chunk in provider.stream("Tell me a story", config):
        print(chunk.text, end="")
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from enum import Enum, auto
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

from utils.exceptions import AuthError, ConfigError

from ..structured import extract_json

logger = logging.getLogger(__name__)

CHARS_PER_TOKEN = 4


class ProviderType(Enum):
    """Supported LLM provider types."""

    OPENAI = auto()
    ANTHROPIC = auto()
    GROQ = auto()
    GOOGLE = auto()
    OLLAMA = auto()

    @property
    def key(self) -> str:
        """Lowercase identifier used in config files and environment lookups."""
        return self.name.lower()

    @classmethod
    def from_name(cls, name: str) -> "ProviderType":
        """Parse a provider identifier ("openai", "Anthropic", "gemini", ...)."""
        normalized = name.strip().upper()
        if normalized == "GEMINI":
            return cls.GOOGLE
        try:
            return cls[normalized]
        except KeyError:
            available = ", ".join(p.key for p in cls)
            raise ConfigError(f"Unknown provider '{name}'. Available: {available}") from None


# Default output limits for the models the comparison UI offers.
KNOWN_MODELS: Dict[ProviderType, Dict[str, int]] = {
    ProviderType.OPENAI: {
        "gpt-4o": 4096,
        "gpt-4o-mini": 4096,
    },
    ProviderType.ANTHROPIC: {
        "claude-3-opus-20240229": 4096,
        "claude-3-5-sonnet-20241022": 8192,
        "claude-3-5-haiku-20241022": 8192,
        "claude-3-haiku-20240307": 4096,
    },
    ProviderType.GROQ: {
        "llama-3.3-70b-versatile": 32768,
        "llama-3.1-8b-instant": 8192,
        "mixtral-8x7b-32768": 32768,
        "gemma2-9b-it": 8192,
        "deepseek-r1-distill-llama-70b": 16384,
    },
    ProviderType.GOOGLE: {
        "gemini-2.5-pro": 8192,
        "gemini-2.5-flash": 8192,
        "gemini-2.0-flash": 8192,
    },
    ProviderType.OLLAMA: {},
}


@dataclass(frozen=True)
class ModelConfig:
    """
    Provider, model and sampling parameters for one request.

    Immutable: use with_system_prompt() or dataclasses.replace() to derive a
    variant. Only the subset of parameters a provider supports is forwarded.
    """

    provider: ProviderType
    model: str
    temperature: float = 0.7
    max_tokens: int = 4096
    top_p: Optional[float] = None
    top_k: Optional[int] = None
    frequency_penalty: Optional[float] = None
    presence_penalty: Optional[float] = None
    stop_sequences: Tuple[str, ...] = ()
    seed: Optional[int] = None
    system_prompt: Optional[str] = None
    api_key: Optional[str] = field(default=None, repr=False)

    def __post_init__(self) -> None:
        # Configs are used as dict keys when grouping judge requests
        object.__setattr__(self, "stop_sequences", tuple(self.stop_sequences))

    @property
    def label(self) -> str:
        """Display label, e.g. "openai/gpt-4o"."""
        return f"{self.provider.key}/{self.model}"

    def with_system_prompt(self, text: str) -> "ModelConfig":
        """Return a copy whose system prompt is `text`, after any existing one."""
        if self.system_prompt:
            text = f"{self.system_prompt}\n\n{text}"
        return replace(self, system_prompt=text)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize without the credential."""
        return {
            "provider": self.provider.key,
            "model": self.model,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "top_p": self.top_p,
            "top_k": self.top_k,
            "frequency_penalty": self.frequency_penalty,
            "presence_penalty": self.presence_penalty,
            "stop_sequences": list(self.stop_sequences),
            "seed": self.seed,
            "system_prompt": self.system_prompt,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ModelConfig":
        """Build from a plain mapping (YAML/JSON). `provider` may be a string."""
        provider = data["provider"]
        if not isinstance(provider, ProviderType):
            provider = ProviderType.from_name(str(provider))
        if not data.get("model"):
            raise ConfigError(f"Model name required for provider '{provider.key}'")
        defaults = default_model_config(provider, data["model"])
        return cls(
            provider=provider,
            model=data["model"],
            temperature=float(data.get("temperature", defaults.temperature)),
            max_tokens=int(data.get("max_tokens", defaults.max_tokens)),
            top_p=data.get("top_p"),
            top_k=data.get("top_k"),
            frequency_penalty=data.get("frequency_penalty"),
            presence_penalty=data.get("presence_penalty"),
            stop_sequences=tuple(data.get("stop_sequences") or ()),
            seed=data.get("seed"),
            system_prompt=data.get("system_prompt") or None,
            api_key=data.get("api_key") or None,
        )


def default_model_config(
    provider: ProviderType, model: str, api_key: Optional[str] = None
) -> ModelConfig:
    """Default settings for a model: temperature 0.7, catalogue max_tokens."""
    return ModelConfig(
        provider=provider,
        model=model,
        temperature=0.7,
        max_tokens=KNOWN_MODELS.get(provider, {}).get(model, 4096),
        api_key=api_key,
    )


@dataclass(frozen=True)
class StreamChunk:
    """
    One incremental fragment of a streamed reply.

    token_delta is the vendor's count for this fragment when known, otherwise
    an estimate. The terminal chunk has is_final=True and carries the
    vendor-reported totals when the vendor reports them.
    """

    text: str = ""
    token_delta: int = 0
    is_final: bool = False
    total_tokens: Optional[int] = None
    prompt_tokens: Optional[int] = None


@dataclass(frozen=True)
class Message:
    """A single message in a conversation."""

    role: str  # "system", "user", "assistant"
    content: str


def estimate_tokens(text: str) -> int:
    """Rough token estimate (~4 characters per token, at least 1 for non-empty text)."""
    if not text:
        return 0
    return max(1, round(len(text) / CHARS_PER_TOKEN))


def build_messages(prompt: str, config: ModelConfig) -> List[Message]:
    """System prompt (if any) followed by the user prompt."""
    messages = []
    if config.system_prompt:
        messages.append(Message(role="system", content=config.system_prompt))
    messages.append(Message(role="user", content=prompt))
    return messages


class BaseProvider(ABC):
    """
    Abstract base class for LLM providers.

    All providers must implement:
    - complete(): Single non-streaming completion
    - stream(): Incremental completion as an async iterator of StreamChunks

    Errors are normalized at this boundary: AuthError for missing or rejected
    credentials, ProviderError for any other vendor or transport failure.
    """

    requires_api_key = True
    supports_json_mode = False

    def __init__(self, timeout: Optional[float] = None):
        """
        Args:
            timeout: Per-request timeout in seconds passed to the vendor SDK.
                     None keeps the SDK default; no timeout is imposed here.
        """
        self.timeout = timeout

    @property
    @abstractmethod
    def provider_type(self) -> ProviderType:
        """Return the provider type enum."""
        ...

    @abstractmethod
    async def complete(
        self,
        prompt: str,
        config: ModelConfig,
        json_response: bool = False,
    ) -> str:
        """
        Generate a full completion for a single prompt.

        Args:
            prompt: The user prompt.
            config: Model and sampling configuration (with credential).
            json_response: Ask the vendor for a JSON reply where supported.

        Returns:
            The completion text.

        Raises:
            AuthError: No credential, or the vendor rejected it.
            ProviderError: Any other vendor or transport failure.
        """
        ...

    @abstractmethod
    def stream(self, prompt: str, config: ModelConfig) -> AsyncIterator[StreamChunk]:
        """
        Stream a completion as incremental chunks.

        The iterator is lazy, finite and not restartable. The last chunk has
        is_final=True. Closing the iterator early releases the connection.
        """
        ...

    async def complete_json(self, prompt: str, config: ModelConfig) -> Any:
        """
        Complete in JSON mode and parse the reply.

        Raises:
            FormatError: If the reply does not contain parseable JSON.
        """
        text = await self.complete(prompt, config, json_response=True)
        return extract_json(text)

    def _require_api_key(self, config: ModelConfig) -> str:
        """Return the credential or raise AuthError before any network call."""
        if self.requires_api_key and not config.api_key:
            raise AuthError(
                f"No API key configured for {config.provider.key}", provider=config.provider.key
            )
        return config.api_key or ""


class ProviderFactory:
    """
    Factory for creating provider instances.

    Usage:
        provider = ProviderFactory.create(ProviderType.ANTHROPIC)
    """

    _registry: Dict[ProviderType, type] = {}

    @classmethod
    def register(cls, provider_type: ProviderType, provider_class: type) -> None:
        """Register a provider class."""
        cls._registry[provider_type] = provider_class

    @classmethod
    def create(cls, provider_type: ProviderType, **kwargs: Any) -> BaseProvider:
        """
        Create a provider instance.

        Args:
            provider_type: Which vendor to talk to.
            **kwargs: Provider-specific arguments (timeout, host, ...).

        Returns:
            Provider instance.

        Raises:
            ConfigError: If the provider is not registered.
        """
        provider_class = cls._registry.get(provider_type)
        if provider_class is None:
            available = ", ".join(p.key for p in cls._registry)
            raise ConfigError(
                f"Unknown provider '{provider_type.key}'. Available: {available}"
            )
        return provider_class(**kwargs)

    @classmethod
    def available_providers(cls) -> List[ProviderType]:
        """List registered provider types."""
        return list(cls._registry.keys())


class ProviderPool:
    """
    Provider instances by type, created through ProviderFactory on first use.

    Providers hold no per-call state, so one instance per type is shared by
    every concurrent unit. Pre-built instances (e.g. test doubles) can be
    supplied up front.
    """

    def __init__(
        self,
        providers: Optional[Dict[ProviderType, BaseProvider]] = None,
        options: Optional[Dict[ProviderType, Dict[str, Any]]] = None,
    ):
        """
        Args:
            providers: Pre-built provider instances by type.
            options: Constructor kwargs for factory-created providers,
                     e.g. {ProviderType.OLLAMA: {"host": "http://gpu-box:11434"}}.
        """
        self._providers: Dict[ProviderType, BaseProvider] = dict(providers or {})
        self._options = dict(options or {})

    def get(self, provider_type: ProviderType) -> BaseProvider:
        if provider_type not in self._providers:
            self._providers[provider_type] = ProviderFactory.create(
                provider_type, **self._options.get(provider_type, {})
            )
        return self._providers[provider_type]
