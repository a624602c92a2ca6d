"""LLM client for OpenAI-compatible providers.

Quiz generation and text extraction both go through this client.

Supported providers:
- lmstudio: LM Studio on localhost
- openai: OpenAI API

The client is synchronous; async callers run it in a worker thread.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Iterator, Literal

import structlog
from openai import OpenAI

from livequiz.config.app_config import ProviderConfig, get_provider_config

logger = structlog.get_logger(__name__)

# =============================================================================
# CONSTANTS
# =============================================================================

Provider = Literal["lmstudio", "openai"]

# Provider capabilities
PROVIDER_CAPABILITIES_DEFAULTS: dict[str, dict[str, bool]] = {
    "lmstudio": {
        "supports_json_object": False,  # no {"type": "json_object"}
    },
    "openai": {
        "supports_json_object": True,
    },
}

# =============================================================================
# DATA CLASSES
# =============================================================================


@dataclass
class LLMConfig:
    """Connection and sampling settings for one provider."""

    provider: str = "openai"
    base_url: str | None = None
    model: str = "gpt-4o-mini"
    temperature: float = 0.7
    max_tokens: int = 8192
    timeout: int = 300
    api_key: str | None = None
    supports_json_object: bool | None = None

    @classmethod
    def from_provider(cls, provider: str, model: str | None = None) -> LLMConfig:
        """Build configuration from the provider section of the app config."""
        pconfig: ProviderConfig | None = get_provider_config(provider)
        if pconfig is None:
            logger.warning("llm.provider_not_configured", provider=provider)
            return cls(provider=provider, model=model or cls.model)

        return cls(
            provider=provider,
            base_url=pconfig.base_url,
            model=model or pconfig.default_model,
            api_key=pconfig.get_api_key(),
        )


@dataclass
class Message:
    """A chat message.

    content is either plain text or a list of content parts (text, file).
    """

    role: Literal["system", "user", "assistant"]
    content: str | list[dict[str, Any]]

    def to_dict(self) -> dict[str, Any]:
        """Wire form for chat.completions."""
        return {"role": self.role, "content": self.content}


@dataclass
class LLMResponse:
    """Completion text plus model, usage and timing."""

    content: str
    model: str
    provider: str
    usage: dict[str, int] = field(default_factory=dict)
    latency_ms: int = 0

    @property
    def total_tokens(self) -> int:
        return self.usage.get("total_tokens", 0)


class LLMError(Exception):
    """Base error for generative service calls."""

    pass


class LLMConnectionError(LLMError):
    """The provider endpoint could not be reached."""

    pass


class LLMResponseError(LLMError):
    """The provider answered with no usable choice."""

    pass


# =============================================================================
# LLM CLIENT
# =============================================================================


class LLMClient:
    """Chat client over the OpenAI-compatible API (LM Studio or OpenAI)."""

    def __init__(self, config: LLMConfig | None = None, openai_client: OpenAI | None = None):
        """Initialize LLM client.

        Args:
            config: LLM configuration (defaults to the openai provider section)
            openai_client: Pre-built OpenAI client (shared with the extraction client)
        """
        self.config = config or LLMConfig.from_provider("openai")

        self._client = openai_client or OpenAI(
            base_url=self.config.base_url,
            api_key=self.config.api_key or "not-needed",
            timeout=self.config.timeout,
        )

        logger.info(
            "llm.client_initialized",
            provider=self.config.provider,
            model=self.config.model,
            base_url=self.config.base_url,
        )

    @property
    def openai(self) -> OpenAI:
        """Underlying OpenAI client."""
        return self._client

    def _supports_json_object(self) -> bool:
        """Whether response_format json_object may be sent to this provider."""
        if self.config.supports_json_object is not None:
            return self.config.supports_json_object

        caps = PROVIDER_CAPABILITIES_DEFAULTS.get(self.config.provider, {})
        return caps.get("supports_json_object", False)

    def _wrap_error(self, e: Exception) -> LLMError:
        error_msg = str(e)
        if "Connection" in error_msg or "connect" in error_msg.lower():
            return LLMConnectionError(
                f"Could not reach {self.config.provider} at {self.config.base_url}: {e}"
            )
        return LLMError(f"LLM call failed: {e}")

    def chat(
        self,
        messages: list[Message],
        temperature: float | None = None,
        max_tokens: int | None = None,
        json_mode: bool = False,
    ) -> LLMResponse:
        """Run one chat completion.

        Args:
            messages: Conversation so far
            temperature: Per-call temperature (config value when None)
            max_tokens: Per-call token cap (config value when None)
            json_mode: Ask for a JSON object where the provider allows it

        Returns:
            LLMResponse

        Raises:
            LLMConnectionError: Endpoint unreachable
            LLMResponseError: No choices in the response
            LLMError: Any other provider failure
        """
        request_kwargs: dict[str, Any] = {
            "model": self.config.model,
            "messages": [m.to_dict() for m in messages],
            "temperature": self.config.temperature if temperature is None else temperature,
            "max_tokens": max_tokens or self.config.max_tokens,
        }

        if json_mode and self._supports_json_object():
            request_kwargs["response_format"] = {"type": "json_object"}

        start_time = time.time()

        try:
            response = self._client.chat.completions.create(**request_kwargs)
        except Exception as e:
            raise self._wrap_error(e) from e

        latency_ms = int((time.time() - start_time) * 1000)

        if not response.choices:
            raise LLMResponseError("Empty response from LLM")

        content = response.choices[0].message.content or ""

        usage = {}
        if response.usage:
            usage = {
                "prompt_tokens": response.usage.prompt_tokens,
                "completion_tokens": response.usage.completion_tokens,
                "total_tokens": response.usage.total_tokens,
            }

        logger.debug(
            "llm.response",
            provider=self.config.provider,
            model=response.model,
            tokens=usage.get("total_tokens", 0),
            latency_ms=latency_ms,
        )

        return LLMResponse(
            content=content,
            model=response.model,
            provider=self.config.provider,
            usage=usage,
            latency_ms=latency_ms,
        )

    def chat_stream(
        self,
        messages: list[Message],
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> Iterator[str]:
        """Stream a completion, yielding non-empty content deltas.

        Failures surface as LLMError; a partially consumed stream is not retried.
        """
        request_kwargs: dict[str, Any] = {
            "model": self.config.model,
            "messages": [m.to_dict() for m in messages],
            "temperature": self.config.temperature if temperature is None else temperature,
            "max_tokens": max_tokens or self.config.max_tokens,
            "stream": True,
        }

        try:
            stream = self._client.chat.completions.create(**request_kwargs)
            for chunk in stream:
                if chunk.choices and chunk.choices[0].delta.content:
                    yield chunk.choices[0].delta.content
        except Exception as e:
            raise self._wrap_error(e) from e

    def complete(self, system_instruction: str, prompt: str) -> str:
        """Single-turn completion returning the raw response text.

        JSON mode is requested where the provider supports it, but the
        returned text is not validated here.
        """
        messages = [
            Message(role="system", content=system_instruction),
            Message(role="user", content=prompt),
        ]
        return self.chat(messages=messages, json_mode=True).content

