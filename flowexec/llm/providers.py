"""
LLM Providers for agent nodes.

Each provider implements one async ``chat`` call over OpenAI-style
messages and reports the model used, token counts, latency and any tool
calls the model asked for, so the engine can record them as node metrics.
``complete`` is the single-prompt shortcut.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
import json
import logging
import time

from openai import AsyncOpenAI

from flowexec.config import settings


logger = logging.getLogger(__name__)


@dataclass
class ToolCall:
    """A function call requested by the model."""
    id: str
    name: str
    arguments: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": json.dumps(self.arguments, default=str)},
        }


@dataclass
class LLMResponse:
    """Standard response from any LLM provider."""
    text: str
    model_id: str
    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None
    latency_ms: Optional[int] = None
    tool_calls: List[ToolCall] = field(default_factory=list)

    @property
    def total_tokens(self) -> Optional[int]:
        if self.input_tokens is None and self.output_tokens is None:
            return None
        return (self.input_tokens or 0) + (self.output_tokens or 0)

    def to_assistant_message(self) -> Dict[str, Any]:
        """The reply as a chat message, tool calls included."""
        message: Dict[str, Any] = {"role": "assistant", "content": self.text or None}
        if self.tool_calls:
            message["tool_calls"] = [call.to_dict() for call in self.tool_calls]
        return message


def prompt_messages(prompt: str, system: Optional[str] = None) -> List[Dict[str, Any]]:
    messages: List[Dict[str, Any]] = []
    if system:
        messages.append({"role": "system", "content": system})
    messages.append({"role": "user", "content": prompt})
    return messages


class LLMProvider(ABC):
    """Abstract base class for LLM providers."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider name (e.g., 'openai', 'echo')."""
        pass

    @abstractmethod
    def is_configured(self) -> bool:
        """Check if the provider can be called."""
        pass

    @abstractmethod
    async def chat(
        self,
        messages: List[Dict[str, Any]],
        model: Optional[str] = None,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        json_output: bool = False,
        tools: Optional[List[Dict[str, Any]]] = None,
    ) -> LLMResponse:
        """
        Send a conversation to the model and get its next reply.

        Args:
            messages: Chat messages (``role`` / ``content``, plus tool fields)
            model: Model id (provider default when omitted)
            max_tokens: Maximum tokens in response
            temperature: Sampling temperature
            json_output: Ask the model for a JSON object
            tools: Function specs the model may call

        Returns:
            LLMResponse with the model's text and requested tool calls
        """
        pass

    async def complete(
        self,
        prompt: str,
        model: Optional[str] = None,
        system: Optional[str] = None,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        json_output: bool = False,
    ) -> LLMResponse:
        """Single-prompt call with optional system instructions."""
        return await self.chat(
            prompt_messages(prompt, system),
            model=model,
            max_tokens=max_tokens,
            temperature=temperature,
            json_output=json_output,
        )


def _parse_arguments(raw: Optional[str], tool_name: str) -> Dict[str, Any]:
    if not raw:
        return {}
    try:
        arguments = json.loads(raw)
    except json.JSONDecodeError as e:
        logger.warning(f"Failed to parse arguments for tool call '{tool_name}': {e}")
        return {}
    return arguments if isinstance(arguments, dict) else {}


class OpenAIProvider(LLMProvider):
    """Provider for OpenAI chat completion models."""

    def __init__(self, api_key: Optional[str] = None, base_url: Optional[str] = None):
        self._api_key = api_key or settings.OPENAI_API_KEY
        self._base_url = base_url or settings.OPENAI_BASE_URL
        self._client: Optional[AsyncOpenAI] = None

    @property
    def name(self) -> str:
        return "openai"

    def is_configured(self) -> bool:
        return bool(self._api_key)

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = AsyncOpenAI(api_key=self._api_key, base_url=self._base_url)
        return self._client

    async def chat(
        self,
        messages: List[Dict[str, Any]],
        model: Optional[str] = None,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        json_output: bool = False,
        tools: Optional[List[Dict[str, Any]]] = None,
    ) -> LLMResponse:
        model = model or settings.DEFAULT_MODEL

        params: Dict[str, Any] = {"model": model, "messages": messages}
        if max_tokens is not None:
            params["max_tokens"] = max_tokens
        if temperature is not None:
            params["temperature"] = temperature
        if json_output:
            params["response_format"] = {"type": "json_object"}
        if tools:
            params["tools"] = tools

        started = time.perf_counter()
        try:
            response = await self.client.chat.completions.create(**params)
        except Exception as e:
            logger.error(f"Error generating OpenAI response with model {model}: {str(e)}")
            raise
        latency_ms = int((time.perf_counter() - started) * 1000)

        message = response.choices[0].message
        usage = response.usage
        return LLMResponse(
            text=(message.content or "").strip(),
            model_id=response.model or model,
            input_tokens=usage.prompt_tokens if usage else None,
            output_tokens=usage.completion_tokens if usage else None,
            latency_ms=latency_ms,
            tool_calls=[
                ToolCall(
                    id=call.id,
                    name=call.function.name,
                    arguments=_parse_arguments(call.function.arguments, call.function.name),
                )
                for call in (message.tool_calls or [])
            ],
        )


class EchoProvider(LLMProvider):
    """Local provider that echoes the prompt; used for development without a key."""

    @property
    def name(self) -> str:
        return "echo"

    def is_configured(self) -> bool:
        return True

    async def chat(
        self,
        messages: List[Dict[str, Any]],
        model: Optional[str] = None,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        json_output: bool = False,
        tools: Optional[List[Dict[str, Any]]] = None,
    ) -> LLMResponse:
        prompt = next((m.get("content") or "" for m in reversed(messages) if m["role"] == "user"), "")
        text = prompt
        if json_output:
            text = json.dumps({"text": prompt})
        words_in = sum(len(str(m.get("content") or "").split()) for m in messages)
        return LLMResponse(
            text=text,
            model_id=model or "echo",
            input_tokens=words_in,
            output_tokens=len(text.split()),
            latency_ms=0,
        )


class LLMRegistry:
    """Providers by name, with a configurable default."""

    def __init__(self, default: Optional[str] = None):
        self._providers: Dict[str, LLMProvider] = {}
        self.default = default or settings.DEFAULT_LLM_PROVIDER

    def register(self, provider: LLMProvider) -> None:
        self._providers[provider.name] = provider
        logger.debug(f"Registered LLM provider: {provider.name}")

    def get(self, name: Optional[str] = None) -> Optional[LLMProvider]:
        """
        Get a provider by name.

        Falls back to ``echo`` when the default provider is requested but
        not configured (no API key), so demo workflows still run locally.
        """
        provider = self._providers.get(name or self.default)
        if provider is None:
            return None
        if name is None and not provider.is_configured():
            logger.warning(
                f"LLM provider '{provider.name}' is not configured, falling back to 'echo'"
            )
            return self._providers.get("echo")
        return provider

    def names(self) -> List[str]:
        return list(self._providers)


def create_default_registry() -> LLMRegistry:
    registry = LLMRegistry()
    registry.register(OpenAIProvider())
    registry.register(EchoProvider())
    return registry


# Global LLM registry instance
llm_registry = create_default_registry()
