"""Agent node: an LLM call with a templated prompt, optionally calling tools."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
import json
import logging
import re

from flowexec.config import settings
from flowexec.engine.expressions import render
from flowexec.errors import ExecutorError
from flowexec.llm.providers import LLMProvider, LLMRegistry, LLMResponse, ToolCall, prompt_messages
from flowexec.nodes.base import NodeContext, NodeResult, node_timeout, with_timeout
from flowexec.tools.registry import Tool, ToolRegistry


logger = logging.getLogger(__name__)

_FENCE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)
_JSON_BLOCK = re.compile(r"```(?:json)?\s*([\s\S]*?)```")
_JSON_SPAN = re.compile(r"\{[\s\S]*\}|\[[\s\S]*\]")


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return json.dumps(value, default=str)


def _add(total: Optional[int], value: Optional[int]) -> Optional[int]:
    if value is None:
        return total
    return (total or 0) + value


def parse_json_output(text: str, node_id: str) -> Any:
    """Parse a model response that should be JSON, tolerating code fences."""
    fenced = _FENCE.match(text.strip())
    if fenced:
        text = fenced.group(1)
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise ExecutorError(
            f"Model response is not valid JSON: {e}",
            node_id=node_id,
            code="INVALID_JSON",
        )


def parse_structured_output(text: str, node_id: str) -> Any:
    """
    Best-effort JSON extraction for nodes with an ``outputSchema``.

    Tries the whole reply, then a fenced block, then the outermost braces
    or brackets. A reply with no parseable JSON is kept as raw text.
    """
    if not text:
        return None

    stripped = text.strip()
    if stripped.startswith(("{", "[")):
        candidate = stripped
    else:
        block = _JSON_BLOCK.search(text)
        span = _JSON_SPAN.search(text)
        if block:
            candidate = block.group(1).strip()
        elif span:
            candidate = span.group(0)
        else:
            logger.warning(f"No JSON in the reply of agent node '{node_id}', keeping raw text")
            return text

    try:
        return json.loads(candidate)
    except json.JSONDecodeError as e:
        logger.warning(f"JSON parse error for agent node '{node_id}': {e}")
        return text


@dataclass
class Transcript:
    """What an agent node's conversation added up to."""
    text: str = ""
    model: Optional[str] = None
    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None
    latency_ms: Optional[int] = None
    rounds: int = 0
    tool_calls: List[Dict[str, Any]] = field(default_factory=list)

    def add(self, response: LLMResponse) -> None:
        self.rounds += 1
        self.text = response.text
        self.model = response.model_id
        self.input_tokens = _add(self.input_tokens, response.input_tokens)
        self.output_tokens = _add(self.output_tokens, response.output_tokens)
        self.latency_ms = _add(self.latency_ms, response.latency_ms)

    @property
    def tokens(self) -> Dict[str, Optional[int]]:
        total = None
        if self.input_tokens is not None or self.output_tokens is not None:
            total = (self.input_tokens or 0) + (self.output_tokens or 0)
        return {"input": self.input_tokens, "output": self.output_tokens, "total": total}


class AgentExecutor:
    """
    Calls an LLM provider and records model, token and timing metrics.

    When the node lists tools, the model may call them: each requested
    call runs and its JSON result goes back to the model, until the model
    answers without tool calls or the round limit is reached. A failing
    tool does not fail the node; the model sees ``{"error": true,
    "message": ...}`` instead.

    Config:
        prompt: templated user prompt (required)
        system: templated system instructions
        provider / model / temperature / maxTokens
        tools: names of registered tools the model may call
        maxToolRounds: model calls allowed per node run (AGENT_MAX_TOOL_ROUNDS)
        outputFormat: ``text`` (default) or ``json``
        outputSchema: parse the reply as JSON where possible, raw text otherwise
        timeout: seconds for the whole conversation (defaults to NODE_TIMEOUT)
    """

    def __init__(self, llm: LLMRegistry, tools: Optional[ToolRegistry] = None):
        self.llm = llm
        self.tools = tools if tools is not None else ToolRegistry()

    async def execute(self, ctx: NodeContext) -> NodeResult:
        config = ctx.config
        node_id = ctx.node.id

        if not config.get("prompt"):
            raise ExecutorError(f"Agent node '{node_id}' has no prompt", node_id=node_id, code="INVALID_CONFIG")

        provider = self.llm.get(config.get("provider"))
        if provider is None:
            raise ExecutorError(
                f"Unknown LLM provider '{config.get('provider')}'",
                node_id=node_id,
                code="UNKNOWN_PROVIDER",
            )
        tools = self._agent_tools(config.get("tools") or [], node_id)

        prompt = _as_text(render(config["prompt"], ctx.bindings))
        system = _as_text(render(config.get("system"), ctx.bindings)) or None
        json_output = config.get("outputFormat") == "json"

        logger.debug(f"Agent node '{node_id}' calling provider '{provider.name}' with tools {list(tools)}")
        transcript = await with_timeout(
            self._converse(provider, prompt_messages(prompt, system), tools, config, json_output, node_id),
            node_timeout(ctx),
            node_id,
        )

        output: Any = transcript.text
        if json_output:
            output = parse_json_output(transcript.text, node_id)
        elif config.get("outputSchema"):
            output = parse_structured_output(transcript.text, node_id)

        metrics: Dict[str, Any] = {"durationMs": transcript.latency_ms}
        if tools:
            metrics["rounds"] = transcript.rounds
            metrics["toolCalls"] = transcript.tool_calls

        return NodeResult(
            output=output,
            model=transcript.model,
            tokens=transcript.tokens,
            metrics=metrics,
        )

    def _agent_tools(self, names: Any, node_id: str) -> Dict[str, Tool]:
        if isinstance(names, str):
            names = [names]
        tools: Dict[str, Tool] = {}
        for name in names:
            tool = self.tools.get(name)
            if tool is None:
                raise ExecutorError(f"Tool '{name}' not found", node_id=node_id, code="UNKNOWN_TOOL")
            tools[name] = tool
        return tools

    async def _converse(
        self,
        provider: LLMProvider,
        messages: List[Dict[str, Any]],
        tools: Dict[str, Tool],
        config: Dict[str, Any],
        json_output: bool,
        node_id: str,
    ) -> Transcript:
        specs = [tool.to_function_schema() for tool in tools.values()] or None
        max_rounds = int(config.get("maxToolRounds") or settings.AGENT_MAX_TOOL_ROUNDS)
        transcript = Transcript()

        while True:
            response = await provider.chat(
                messages,
                model=config.get("model"),
                max_tokens=config.get("maxTokens"),
                temperature=config.get("temperature"),
                json_output=json_output,
                tools=specs,
            )
            transcript.add(response)
            if not response.tool_calls:
                return transcript
            if transcript.rounds >= max_rounds:
                logger.warning(
                    f"Agent node '{node_id}' reached {max_rounds} tool rounds, keeping the last reply"
                )
                return transcript

            messages.append(response.to_assistant_message())
            for call in response.tool_calls:
                messages.append(await self._call_tool(call, tools, transcript, node_id))

    async def _call_tool(
        self,
        call: ToolCall,
        tools: Dict[str, Tool],
        transcript: Transcript,
        node_id: str,
    ) -> Dict[str, Any]:
        record: Dict[str, Any] = {"name": call.name, "arguments": call.arguments}
        tool = tools.get(call.name)
        try:
            if tool is None:
                raise LookupError(f"Tool '{call.name}' is not available to this agent")
            result = await tool.invoke(**call.arguments)
        except Exception as e:
            logger.warning(f"Tool call '{call.name}' from agent node '{node_id}' failed: {e}")
            record["error"] = str(e)
            content = json.dumps({"error": True, "message": str(e)})
        else:
            record["output"] = result
            content = json.dumps(result, default=str)

        transcript.tool_calls.append(record)
        return {"role": "tool", "tool_call_id": call.id, "content": content}
