"""LLM providers used by agent nodes."""

from flowexec.llm.providers import (
    LLMProvider,
    LLMResponse,
    LLMRegistry,
    OpenAIProvider,
    EchoProvider,
    ToolCall,
    llm_registry,
)

__all__ = [
    "LLMProvider",
    "LLMResponse",
    "LLMRegistry",
    "OpenAIProvider",
    "EchoProvider",
    "ToolCall",
    "llm_registry",
]
