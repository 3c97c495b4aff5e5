"""
Node executors, one per node type.

``build_executors`` returns the fixed dispatch table the engine uses:
node type to executor instance.
"""

from typing import Dict, Optional

from flowexec.engine.definition import NodeType
from flowexec.llm.providers import LLMRegistry, llm_registry
from flowexec.nodes.agent import AgentExecutor
from flowexec.nodes.base import NodeContext, NodeExecutor, NodePause, NodeResult
from flowexec.nodes.decision import DecisionExecutor
from flowexec.nodes.end import EndExecutor
from flowexec.nodes.human import HumanExecutor
from flowexec.nodes.start import StartExecutor
from flowexec.nodes.tool import ToolExecutor
from flowexec.nodes.transform import TransformExecutor
from flowexec.tools.registry import ToolRegistry, tool_registry


def build_executors(
    tools: Optional[ToolRegistry] = None,
    llm: Optional[LLMRegistry] = None,
) -> Dict[NodeType, NodeExecutor]:
    tools = tools if tools is not None else tool_registry
    return {
        NodeType.START: StartExecutor(),
        NodeType.END: EndExecutor(),
        NodeType.AGENT: AgentExecutor(llm if llm is not None else llm_registry, tools),
        NodeType.TOOL: ToolExecutor(tools),
        NodeType.DECISION: DecisionExecutor(),
        NodeType.HUMAN: HumanExecutor(),
        NodeType.TRANSFORM: TransformExecutor(),
    }


__all__ = [
    "build_executors",
    "NodeContext",
    "NodeExecutor",
    "NodePause",
    "NodeResult",
    "HumanExecutor",
]
