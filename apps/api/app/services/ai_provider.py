"""AI Provider abstraction layer.

Transcript analysis runs on OpenAI with Anthropic Claude as the fallback;
both are reached over their REST APIs with a unified interface.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal

import httpx

from app.core.config import settings
from app.services.http_service import request_with_retries

logger = logging.getLogger(__name__)

ANTHROPIC_API_VERSION = "2023-06-01"


@dataclass
class ChatMessage:
    """A single message in a conversation."""

    role: str  # 'system', 'user', 'assistant'
    content: str


@dataclass
class ChatResponse:
    """Response from an AI provider."""

    content: str
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int
    model: str
    provider: str

    @property
    def estimated_cost_usd(self) -> Decimal:
        """Estimate cost based on published per-1M-token pricing (approximate)."""
        pricing = {
            "gpt-4o-mini": {"input": Decimal("0.15"), "output": Decimal("0.60")},
            "gpt-4o": {"input": Decimal("2.50"), "output": Decimal("10.00")},
            "claude-3-5-sonnet-20241022": {"input": Decimal("3.00"), "output": Decimal("15.00")},
            "claude-3-5-haiku-20241022": {"input": Decimal("0.80"), "output": Decimal("4.00")},
        }
        model_pricing = pricing.get(self.model, {"input": Decimal("0"), "output": Decimal("0")})
        million = Decimal("1000000")
        input_cost = Decimal(self.prompt_tokens) / million * model_pricing["input"]
        output_cost = Decimal(self.completion_tokens) / million * model_pricing["output"]
        return input_cost + output_cost


class AIProvider(ABC):
    """Abstract base class for AI providers."""

    name: str

    @abstractmethod
    async def chat(
        self,
        messages: list[ChatMessage],
        model: str | None = None,
        temperature: float = 0.3,
        max_tokens: int = 4000,
        json_mode: bool = False,
    ) -> ChatResponse:
        """Send a chat completion request."""
        pass


class OpenAIProvider(AIProvider):
    """OpenAI chat completions."""

    name = "openai"

    def __init__(
        self,
        api_key: str,
        default_model: str = "gpt-4o-mini",
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key
        self.default_model = default_model
        self.base_url = "https://api.openai.com/v1"
        self.transport = transport

    async def chat(
        self,
        messages: list[ChatMessage],
        model: str | None = None,
        temperature: float = 0.3,
        max_tokens: int = 4000,
        json_mode: bool = False,
    ) -> ChatResponse:
        model = model or self.default_model
        body: dict = {
            "model": model,
            "messages": [{"role": m.role, "content": m.content} for m in messages],
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if json_mode:
            body["response_format"] = {"type": "json_object"}

        async with httpx.AsyncClient(
            timeout=settings.AI_REQUEST_TIMEOUT_SECONDS, transport=self.transport
        ) as client:
            response = await request_with_retries(
                lambda: client.post(
                    f"{self.base_url}/chat/completions",
                    headers={
                        "Authorization": f"Bearer {self.api_key}",
                        "Content-Type": "application/json",
                    },
                    json=body,
                ),
                max_attempts=2,
            )
            response.raise_for_status()
            data = response.json()

        usage = data.get("usage", {})
        return ChatResponse(
            content=data["choices"][0]["message"]["content"],
            prompt_tokens=usage.get("prompt_tokens", 0),
            completion_tokens=usage.get("completion_tokens", 0),
            total_tokens=usage.get("total_tokens", 0),
            model=model,
            provider=self.name,
        )


class AnthropicProvider(AIProvider):
    """Anthropic messages API (Claude)."""

    name = "claude"

    def __init__(
        self,
        api_key: str,
        default_model: str = "claude-3-5-sonnet-20241022",
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key
        self.default_model = default_model
        self.base_url = "https://api.anthropic.com/v1"
        self.transport = transport

    async def chat(
        self,
        messages: list[ChatMessage],
        model: str | None = None,
        temperature: float = 0.3,
        max_tokens: int = 4000,
        json_mode: bool = False,
    ) -> ChatResponse:
        model = model or self.default_model

        # Claude takes the system prompt as a top-level field
        system_parts = [m.content for m in messages if m.role == "system"]
        body: dict = {
            "model": model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": [
                {"role": m.role, "content": m.content}
                for m in messages
                if m.role != "system"
            ],
        }
        if system_parts:
            body["system"] = "\n\n".join(system_parts)

        async with httpx.AsyncClient(
            timeout=settings.AI_REQUEST_TIMEOUT_SECONDS, transport=self.transport
        ) as client:
            response = await request_with_retries(
                lambda: client.post(
                    f"{self.base_url}/messages",
                    headers={
                        "x-api-key": self.api_key,
                        "anthropic-version": ANTHROPIC_API_VERSION,
                        "Content-Type": "application/json",
                    },
                    json=body,
                ),
                max_attempts=2,
            )
            response.raise_for_status()
            data = response.json()

        content = "".join(
            block.get("text", "")
            for block in data.get("content", [])
            if block.get("type") == "text"
        )
        usage = data.get("usage", {})
        prompt_tokens = usage.get("input_tokens", 0)
        completion_tokens = usage.get("output_tokens", 0)
        return ChatResponse(
            content=content,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=prompt_tokens + completion_tokens,
            model=model,
            provider=self.name,
        )


def get_provider(provider_name: str, api_key: str, model: str | None = None) -> AIProvider:
    """Factory function to get the appropriate AI provider."""
    if provider_name == "openai":
        return OpenAIProvider(api_key, default_model=model or settings.OPENAI_MODEL)
    elif provider_name in ("claude", "anthropic"):
        return AnthropicProvider(api_key, default_model=model or settings.ANTHROPIC_MODEL)
    else:
        raise ValueError(f"Unknown provider: {provider_name}")


def get_configured_providers() -> list[AIProvider]:
    """Providers in fallback order, skipping any without an API key."""
    providers: list[AIProvider] = []
    if settings.OPENAI_API_KEY:
        providers.append(get_provider("openai", settings.OPENAI_API_KEY))
    if settings.ANTHROPIC_API_KEY:
        providers.append(get_provider("claude", settings.ANTHROPIC_API_KEY))
    return providers
