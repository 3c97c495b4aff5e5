"""
Tests for the node executors.
"""

from typing import Any, Dict, Optional
import json

import pytest

from flowexec.engine.definition import NodeDefinition, NodeType
from flowexec.engine.state import Checkpoint
from flowexec.errors import CheckpointResponseError, ExecutorError, ExpressionError
from flowexec.llm.providers import EchoProvider, LLMResponse, ToolCall
from flowexec.nodes import build_executors
from flowexec.nodes.agent import parse_json_output, parse_structured_output
from flowexec.nodes.base import NodeContext, NodePause, NodeResult
from flowexec.nodes.human import HumanExecutor, normalize_options


def make_ctx(
    node_type: str,
    config: Optional[Dict[str, Any]] = None,
    bindings: Optional[Dict[str, Any]] = None,
    input_variables: Optional[Dict[str, Any]] = None,
) -> NodeContext:
    node = NodeDefinition(id="n1", type=node_type, config=config or {})
    return NodeContext(
        execution_id="exec",
        workflow_id="wf",
        version=1,
        node=node,
        iteration=1,
        bindings={"input": input_variables or {}, "nodes": {}, "context": {}, **(bindings or {})},
        input_variables=input_variables or {},
    )


@pytest.fixture
def executors(tools, llm_registry):
    return build_executors(tools=tools, llm=llm_registry)


# ============================================================
# Start / End
# ============================================================

class TestStartExecutor:
    """Tests for the start node."""

    @pytest.mark.asyncio
    async def test_copies_inputs(self, executors):
        result = await executors[NodeType.START].execute(make_ctx("start", input_variables={"a": 1}))
        assert result.state_updates == {"a": 1}

    @pytest.mark.asyncio
    async def test_defaults_and_required(self, executors):
        ctx = make_ctx(
            "start",
            {"requiredInputs": ["topic"], "defaults": {"rounds": 3}},
            input_variables={"topic": "graphs"},
        )
        result = await executors[NodeType.START].execute(ctx)
        assert result.state_updates == {"rounds": 3, "topic": "graphs"}

    @pytest.mark.asyncio
    async def test_missing_required_input(self, executors):
        with pytest.raises(ExecutorError) as exc_info:
            await executors[NodeType.START].execute(make_ctx("start", {"requiredInputs": ["topic"]}))
        assert exc_info.value.code == "MISSING_INPUT"

    @pytest.mark.asyncio
    async def test_input_mapping(self, executors):
        ctx = make_ctx(
            "start",
            {"inputMapping": {"subject": "$.topic", "greeting": "Hi ${name}", "fixed": 7}},
            input_variables={"topic": "graphs", "name": "Sam"},
        )
        result = await executors[NodeType.START].execute(ctx)
        assert result.state_updates == {"subject": "graphs", "greeting": "Hi Sam", "fixed": 7}


class TestEndExecutor:
    """Tests for the end node."""

    @pytest.mark.asyncio
    async def test_outputs_all_variables_by_default(self, executors):
        ctx = make_ctx("end", {"excludeFields": ["secret"]}, bindings={"a": 1, "secret": "x"})
        result = await executors[NodeType.END].execute(ctx)
        assert result.output == {"a": 1}
        assert result.terminal_status is None

    @pytest.mark.asyncio
    async def test_output_mapping_and_status(self, executors):
        ctx = make_ctx(
            "end",
            {"outputMapping": {"title": "$.doc.title"}, "status": "approved"},
            bindings={"doc": {"title": "T"}},
        )
        result = await executors[NodeType.END].execute(ctx)
        assert result.output == {"title": "T"}
        assert result.to_record()["status"] == "approved"

    @pytest.mark.asyncio
    async def test_unknown_status_is_ignored(self, executors):
        result = await executors[NodeType.END].execute(make_ctx("end", {"status": "paused"}))
        assert result.terminal_status is None


# ============================================================
# Agent
# ============================================================

class TestAgentExecutor:
    """Tests for the agent node."""

    @pytest.mark.asyncio
    async def test_renders_prompt_and_records_metrics(self, executors, llm):
        llm.replies = ["a short answer"]
        ctx = make_ctx(
            "agent",
            {"prompt": "About ${topic}", "system": "Be brief", "model": "m-1"},
            bindings={"topic": "queues"},
        )

        result = await executors[NodeType.AGENT].execute(ctx)

        assert result.output == "a short answer"
        assert result.model == "m-1"
        assert result.tokens == {"input": 2, "output": 3, "total": 5}
        assert result.metrics == {"durationMs": 1}
        assert llm.calls == [{"prompt": "About queues", "system": "Be brief", "model": "m-1", "json": False}]

    @pytest.mark.asyncio
    async def test_json_output(self, executors, llm):
        llm.replies = ['```json\n{"score": 8}\n```']
        ctx = make_ctx("agent", {"prompt": "Rate it", "outputFormat": "json"})

        result = await executors[NodeType.AGENT].execute(ctx)

        assert result.output == {"score": 8}
        assert llm.calls[0]["json"] is True

    @pytest.mark.asyncio
    async def test_missing_prompt(self, executors):
        with pytest.raises(ExecutorError) as exc_info:
            await executors[NodeType.AGENT].execute(make_ctx("agent", {}))
        assert exc_info.value.code == "INVALID_CONFIG"

    @pytest.mark.asyncio
    async def test_unknown_provider(self, executors):
        with pytest.raises(ExecutorError) as exc_info:
            await executors[NodeType.AGENT].execute(make_ctx("agent", {"prompt": "x", "provider": "nope"}))
        assert exc_info.value.code == "UNKNOWN_PROVIDER"

    @pytest.mark.asyncio
    async def test_echo_provider(self, executors):
        result = await executors[NodeType.AGENT].execute(make_ctx("agent", {"prompt": "ping", "provider": "echo"}))
        assert result.output == "ping"
        assert result.model == "echo"

    @pytest.mark.asyncio
    async def test_echo_provider_complete(self):
        response = await EchoProvider().complete("ping", system="Be brief")
        assert response.text == "ping"
        assert response.input_tokens == 3
        assert response.tool_calls == []

    def test_parse_json_output_rejects_text(self):
        with pytest.raises(ExecutorError) as exc_info:
            parse_json_output("not json", "n1")
        assert exc_info.value.code == "INVALID_JSON"

    @pytest.mark.parametrize("text,expected", [
        ('{"a": 1}', {"a": 1}),
        ("Here you go:\n```json\n[1, 2]\n```", [1, 2]),
        ('Result: {"ok": true} as requested', {"ok": True}),
        ("no structure at all", "no structure at all"),
        ("{broken", "{broken"),
        ("", None),
    ])
    def test_parse_structured_output(self, text, expected):
        assert parse_structured_output(text, "n1") == expected

    @pytest.mark.asyncio
    async def test_output_schema_extracts_json(self, executors, llm):
        llm.replies = ['Sure! {"score": 3}']
        ctx = make_ctx("agent", {"prompt": "Rate it", "outputSchema": {"type": "object"}})

        result = await executors[NodeType.AGENT].execute(ctx)

        assert result.output == {"score": 3}
        assert llm.calls[0]["json"] is False


# ============================================================
# Agent tool calling
# ============================================================

def tool_request(*calls: ToolCall) -> LLMResponse:
    return LLMResponse(text="", model_id="scripted-1", input_tokens=4, output_tokens=2, latency_ms=1, tool_calls=list(calls))


class TestAgentToolCalling:
    """Tests for agents that call registered tools."""

    @pytest.mark.asyncio
    async def test_tool_result_goes_back_to_the_model(self, executors, llm, tool_calls):
        llm.replies = [
            tool_request(ToolCall(id="call-1", name="double", arguments={"value": 21})),
            "The answer is 42",
        ]
        ctx = make_ctx("agent", {"prompt": "Double 21", "tools": ["double"]})

        result = await executors[NodeType.AGENT].execute(ctx)

        assert result.output == "The answer is 42"
        assert tool_calls == ["double"]
        assert result.tokens == {"input": 6, "output": 6, "total": 12}
        assert result.metrics == {
            "durationMs": 2,
            "rounds": 2,
            "toolCalls": [{"name": "double", "arguments": {"value": 21}, "output": {"value": 42}}],
        }

        spec = llm.requests[0]["tools"][0]["function"]
        assert spec["name"] == "double"
        assert spec["parameters"]["properties"] == {"value": {"type": "integer"}}
        assert spec["parameters"]["required"] == ["value"]

        follow_up = llm.requests[1]["messages"]
        assert follow_up[-2]["role"] == "assistant"
        assert follow_up[-2]["tool_calls"][0]["id"] == "call-1"
        assert follow_up[-1] == {"role": "tool", "tool_call_id": "call-1", "content": '{"value": 42}'}

    @pytest.mark.asyncio
    async def test_tool_failure_is_reported_to_the_model(self, executors, llm):
        llm.replies = [
            tool_request(ToolCall(id="call-1", name="fail", arguments={"reason": "nope"})),
            "I could not do it",
        ]
        ctx = make_ctx("agent", {"prompt": "Try", "tools": ["fail"]})

        result = await executors[NodeType.AGENT].execute(ctx)

        assert result.output == "I could not do it"
        assert json.loads(llm.requests[1]["messages"][-1]["content"]) == {"error": True, "message": "nope"}
        assert result.metrics["toolCalls"][0]["error"] == "nope"

    @pytest.mark.asyncio
    async def test_call_to_tool_outside_the_node_list(self, executors, llm, tool_calls):
        llm.replies = [tool_request(ToolCall(id="call-1", name="slow", arguments={})), "done"]
        ctx = make_ctx("agent", {"prompt": "Go", "tools": ["double"]})

        result = await executors[NodeType.AGENT].execute(ctx)

        assert result.output == "done"
        assert tool_calls == []
        reply = json.loads(llm.requests[1]["messages"][-1]["content"])
        assert reply["error"] is True
        assert "not available" in reply["message"]

    @pytest.mark.asyncio
    async def test_unknown_configured_tool(self, executors, llm):
        ctx = make_ctx("agent", {"prompt": "Go", "tools": ["missing"]})

        with pytest.raises(ExecutorError) as exc_info:
            await executors[NodeType.AGENT].execute(ctx)

        assert exc_info.value.code == "UNKNOWN_TOOL"
        assert llm.calls == []

    @pytest.mark.asyncio
    async def test_tool_rounds_are_bounded(self, executors, llm, tool_calls):
        request = tool_request(ToolCall(id="call-1", name="double", arguments={"value": 1}))
        llm.replies = [request, request, "never reached"]
        ctx = make_ctx("agent", {"prompt": "Loop", "tools": ["double"], "maxToolRounds": 2})

        result = await executors[NodeType.AGENT].execute(ctx)

        assert len(llm.calls) == 2
        assert tool_calls == ["double"]
        assert result.metrics["rounds"] == 2
        assert result.output == ""

    @pytest.mark.asyncio
    async def test_without_tools_no_specs_are_sent(self, executors, llm):
        await executors[NodeType.AGENT].execute(make_ctx("agent", {"prompt": "Hi"}))
        assert llm.requests[0]["tools"] is None


# ============================================================
# Tool
# ============================================================

class TestToolExecutor:
    """Tests for the tool node."""

    @pytest.mark.asyncio
    async def test_sync_tool_with_templated_parameters(self, executors):
        ctx = make_ctx("tool", {"tool": "double", "parameters": {"value": "$.n"}}, bindings={"n": 21})
        result = await executors[NodeType.TOOL].execute(ctx)
        assert result.output == {"value": 42}
        assert result.metrics["tool"] == "double"

    @pytest.mark.asyncio
    async def test_unknown_tool(self, executors):
        with pytest.raises(ExecutorError) as exc_info:
            await executors[NodeType.TOOL].execute(make_ctx("tool", {"tool": "missing"}))
        assert exc_info.value.code == "UNKNOWN_TOOL"

    @pytest.mark.asyncio
    async def test_tool_exception_becomes_node_error(self, executors):
        with pytest.raises(ExecutorError) as exc_info:
            await executors[NodeType.TOOL].execute(make_ctx("tool", {"tool": "fail", "parameters": {"reason": "nope"}}))
        assert exc_info.value.code == "TOOL_ERROR"
        assert "nope" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_bad_parameters(self, executors):
        with pytest.raises(ExecutorError) as exc_info:
            await executors[NodeType.TOOL].execute(make_ctx("tool", {"tool": "double", "parameters": {"wrong": 1}}))
        assert exc_info.value.code == "TOOL_ERROR"

    @pytest.mark.asyncio
    async def test_timeout(self, executors):
        ctx = make_ctx("tool", {"tool": "slow", "parameters": {"seconds": 5}, "timeout": 0.05})
        with pytest.raises(ExecutorError) as exc_info:
            await executors[NodeType.TOOL].execute(ctx)
        assert exc_info.value.code == "TIMEOUT"


# ============================================================
# Decision
# ============================================================

class TestDecisionExecutor:
    """Tests for the decision node."""

    @pytest.mark.asyncio
    async def test_expression_mode(self, executors):
        ctx = make_ctx("decision", {"expression": "score >= 7 && !empty(notes)"}, bindings={"score": 8, "notes": ["x"]})
        result = await executors[NodeType.DECISION].execute(ctx)
        assert result.branch == "true"

    @pytest.mark.asyncio
    async def test_expression_with_label_result(self, executors):
        ctx = make_ctx("decision", {"expression": "'high' if score > 5 else 'low'"}, bindings={"score": 2})
        result = await executors[NodeType.DECISION].execute(ctx)
        assert result.branch == "low"

    @pytest.mark.asyncio
    async def test_switch_mode(self, executors):
        config = {
            "variable": "review.score",
            "cases": [
                {"greaterThanOrEqual": 8, "branch": "accept"},
                {"in": [5, 6, 7], "branch": "revise"},
            ],
            "defaultBranch": "reject",
        }
        decide = executors[NodeType.DECISION].execute

        assert (await decide(make_ctx("decision", config, bindings={"review": {"score": 9}}))).branch == "accept"
        assert (await decide(make_ctx("decision", config, bindings={"review": {"score": 6}}))).branch == "revise"
        result = await decide(make_ctx("decision", config, bindings={"review": {"score": 1}}))
        assert result.branch == "reject"
        assert result.output["matched"] is False

    @pytest.mark.asyncio
    async def test_switch_string_operators(self, executors):
        config = {
            "variable": "title",
            "conditions": [
                {"matches": "^Draft", "branch": "draft"},
                {"contains": "final", "branch": "final"},
            ],
        }
        result = await executors[NodeType.DECISION].execute(make_ctx("decision", config, bindings={"title": "the final cut"}))
        assert result.branch == "final"

    @pytest.mark.asyncio
    async def test_invalid_expression(self, executors):
        with pytest.raises(ExpressionError) as exc_info:
            await executors[NodeType.DECISION].execute(make_ctx("decision", {"expression": "score >"}))
        assert exc_info.value.node_id == "n1"


# ============================================================
# Human
# ============================================================

class TestHumanExecutor:
    """Tests for the human checkpoint node."""

    @pytest.mark.asyncio
    async def test_execute_pauses(self, executors):
        ctx = make_ctx(
            "human",
            {
                "message": "Review ${title}",
                "options": [{"value": "ok", "label": "OK"}, "no"],
                "showData": ["title"],
                "defaultBranch": "no",
            },
            bindings={"title": "Doc"},
        )

        pause = await executors[NodeType.HUMAN].execute(ctx)

        assert isinstance(pause, NodePause)
        assert pause.message == "Review Doc"
        assert [o["value"] for o in pause.options] == ["ok", "no"]
        assert pause.display_data == {"title": "Doc"}
        assert pause.timeout is None
        assert pause.default_branch == "no"

    def test_normalize_options(self):
        assert normalize_options(["a", {"branch": "b", "label": "Bee"}]) == [
            {"value": "a", "label": "a"},
            {"value": "b", "label": "Bee"},
        ]

    def test_resolve(self):
        checkpoint = Checkpoint(
            id="cp",
            node_id="n1",
            node_name="n1",
            iteration=1,
            options=[{"value": "approve", "label": "Approve"}],
            input_schema={"required": ["comment"]},
        )
        human = HumanExecutor()

        with pytest.raises(CheckpointResponseError):
            human.resolve(checkpoint, "")
        with pytest.raises(CheckpointResponseError):
            human.resolve(checkpoint, "deny", {"comment": "x"})
        with pytest.raises(CheckpointResponseError):
            human.resolve(checkpoint, "approve", {})

        result = human.resolve(checkpoint, "approve", {"comment": "ship it"})
        assert isinstance(result, NodeResult)
        assert result.branch == "approve"
        assert result.output["data"] == {"comment": "ship it"}


# ============================================================
# Transform
# ============================================================

class TestTransformExecutor:
    """Tests for the transform node."""

    @pytest.mark.asyncio
    async def test_operations(self, executors):
        operations = [
            {"set": "summary.title", "value": "${name}!"},
            {"copy": "items", "to": "backup"},
            {"increment": "count", "by": 2},
            {"push": "name", "to": "items"},
            {"merge": "extra", "into": "summary"},
            {"lengthOf": "items", "to": "size"},
            {"arrayGet": "items", "index": "last", "to": "lastItem"},
            {"condition": "size > 2", "then": "big", "else": "small", "to": "kind"},
            {"expression": "count * 10", "to": "scaled"},
        ]
        bindings = {"name": "x", "items": ["a", "b"], "count": 1, "extra": {"k": 1}}
        ctx = make_ctx("transform", {"operations": operations}, bindings=bindings)

        result = await executors[NodeType.TRANSFORM].execute(ctx)

        assert result.state_updates == {
            "summary": {"title": "x!", "k": 1},
            "backup": ["a", "b"],
            "count": 3,
            "items": ["a", "b", "x"],
            "size": 3,
            "lastItem": "x",
            "kind": "big",
            "scaled": 30,
        }
        assert ctx.bindings["items"] == ["a", "b"]

    @pytest.mark.asyncio
    async def test_unknown_operation(self, executors):
        with pytest.raises(ExpressionError):
            await executors[NodeType.TRANSFORM].execute(make_ctx("transform", {"operations": [{"frobnicate": "x"}]}))

    @pytest.mark.asyncio
    async def test_increment_non_numeric(self, executors):
        ctx = make_ctx("transform", {"operations": [{"increment": "name"}]}, bindings={"name": "x"})
        with pytest.raises(ExpressionError):
            await executors[NodeType.TRANSFORM].execute(ctx)
