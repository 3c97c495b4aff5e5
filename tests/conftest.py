"""
Shared fixtures: an isolated engine wired to scripted LLM and tool registries.
"""

from typing import Any, Dict, List, Optional
import asyncio

import pytest
import pytest_asyncio

from flowexec.engine.orchestrator import ExecutionEngine
from flowexec.events.publisher import ProgressPublisher
from flowexec.llm.providers import EchoProvider, LLMProvider, LLMRegistry, LLMResponse
from flowexec.nodes import build_executors
from flowexec.storage.memory import ExecutionStorage, WorkflowStorage
from flowexec.tools.registry import ToolRegistry


class ScriptedProvider(LLMProvider):
    """
    LLM provider that replays canned replies and records every call.

    A reply is a string, an exception to raise, or a full LLMResponse
    (used to script tool calls).
    """

    def __init__(self):
        self.replies: List[Any] = []
        self.default_reply = "ok"
        self.calls: List[Dict[str, Any]] = []
        self.requests: List[Dict[str, Any]] = []

    @property
    def name(self) -> str:
        return "scripted"

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
        system = next((m["content"] for m in messages if m["role"] == "system"), None)
        prompt = next(m["content"] for m in messages if m["role"] == "user")
        self.calls.append({"prompt": prompt, "system": system, "model": model, "json": json_output})
        self.requests.append({"messages": list(messages), "tools": tools})

        reply = self.replies.pop(0) if self.replies else self.default_reply
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, LLMResponse):
            return reply
        return LLMResponse(
            text=reply,
            model_id=model or "scripted-1",
            input_tokens=len(prompt.split()),
            output_tokens=len(reply.split()),
            latency_ms=1,
        )


@pytest.fixture
def llm() -> ScriptedProvider:
    return ScriptedProvider()


@pytest.fixture
def llm_registry(llm: ScriptedProvider) -> LLMRegistry:
    registry = LLMRegistry(default="scripted")
    registry.register(llm)
    registry.register(EchoProvider())
    return registry


@pytest.fixture
def tool_calls() -> List[str]:
    """Names of tools in the order they were entered."""
    return []


@pytest.fixture
def tools(tool_calls: List[str]) -> ToolRegistry:
    registry = ToolRegistry()

    @registry.register("double", description="Double a number")
    def double(value: int) -> Dict[str, Any]:
        tool_calls.append("double")
        return {"value": value * 2}

    @registry.register("fail", description="Always raises")
    def fail(reason: str = "boom") -> Dict[str, Any]:
        tool_calls.append("fail")
        raise RuntimeError(reason)

    @registry.register("slow", description="Sleeps before answering")
    async def slow(seconds: float = 10) -> Dict[str, Any]:
        tool_calls.append("slow")
        await asyncio.sleep(seconds)
        return {"slept": seconds}

    return registry


@pytest_asyncio.fixture
async def engine(llm_registry: LLMRegistry, tools: ToolRegistry):
    engine = ExecutionEngine(
        WorkflowStorage(),
        ExecutionStorage(),
        ProgressPublisher(buffer_size=100),
        executors=build_executors(tools=tools, llm=llm_registry),
        max_node_iterations=20,
    )
    yield engine
    await engine.shutdown()
