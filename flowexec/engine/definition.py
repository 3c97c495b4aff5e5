"""
Workflow Definition for the Execution Engine.

A definition is the immutable node graph an execution runs: typed nodes,
each carrying its own outgoing edges. Edges may carry a branch label
(``condition``) and may be marked as loop back-edges. The engine never
mutates a definition; it only reads routing and reachability from it.
"""

from typing import Any, Dict, List, Optional, Set
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr

from flowexec.errors import DefinitionError


# Reserved branch labels
ERROR_BRANCH = "error"
DEFAULT_BRANCH = "default"


class NodeType(str, Enum):
    """Types of nodes in a workflow."""
    START = "start"
    END = "end"
    AGENT = "agent"
    TOOL = "tool"
    DECISION = "decision"
    HUMAN = "human"
    TRANSFORM = "transform"


class Edge(BaseModel):
    """An outgoing edge of a node."""

    model_config = ConfigDict(frozen=True)

    to: str = Field(..., description="Target node id")
    condition: Optional[str] = Field(
        None, description="Branch label; 'error' marks a failure edge"
    )
    loop: bool = Field(False, description="Marks a back-edge re-entering an earlier node")


class NodeDefinition(BaseModel):
    """A node in the workflow graph."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    type: NodeType
    name: str = ""
    config: Dict[str, Any] = Field(default_factory=dict)
    edges: List[Edge] = Field(default_factory=list)

    @property
    def label(self) -> str:
        return self.name or self.id

    @property
    def continue_on_error(self) -> bool:
        return bool(self.config.get("continueOnError", False))

    @property
    def output_variable(self) -> Optional[str]:
        return self.config.get("outputVariable")


class WorkflowDefinition(BaseModel):
    """
    An immutable workflow graph, identified by id and version.

    Reachability through forward (non-loop) edges and the set of nodes
    lying on a loop are computed once at construction; they drive frontier
    readiness and iteration-qualified result keys.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    version: int = Field(1, ge=1)
    name: str = ""
    description: str = ""
    nodes: List[NodeDefinition] = Field(default_factory=list)

    _index: Dict[str, NodeDefinition] = PrivateAttr(default_factory=dict)
    _forward: Dict[str, Set[str]] = PrivateAttr(default_factory=dict)
    _loop_bodies: Set[str] = PrivateAttr(default_factory=set)

    def model_post_init(self, __context: Any) -> None:
        self._index = {}
        for node in self.nodes:
            self._index.setdefault(node.id, node)
        self._forward = {
            node_id: self._walk(node_id, follow_loops=False) for node_id in self._index
        }
        self._loop_bodies = self._find_loop_bodies()

    # ------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------

    def get_node(self, node_id: str) -> Optional[NodeDefinition]:
        return self._index.get(node_id)

    @property
    def start_node(self) -> Optional[NodeDefinition]:
        starts = [n for n in self.nodes if n.type == NodeType.START]
        return starts[0] if len(starts) == 1 else None

    def reaches(self, source: str, target: str) -> bool:
        """True if target is reachable from source without taking a back-edge."""
        return target in self._forward.get(source, set())

    def is_loop_body(self, node_id: str) -> bool:
        """True if the node sits on a cycle closed by a back-edge."""
        return node_id in self._loop_bodies

    # ------------------------------------------------------------
    # Routing
    # ------------------------------------------------------------

    def route(self, node: NodeDefinition, branch: Optional[str] = None) -> List[Edge]:
        """
        Select the edges to follow after a node completed.

        With a branch, edges labelled with it win; otherwise default and
        unlabelled edges are taken. Without a branch every unlabelled edge
        is followed (fan-out).
        """
        if branch is not None:
            matched = [e for e in node.edges if e.condition == str(branch)]
            if matched:
                return matched
        return [e for e in node.edges if e.condition in (None, DEFAULT_BRANCH)]

    def failure_route(self, node: NodeDefinition) -> List[Edge]:
        """Edges followed when a node fails with continueOnError set."""
        failure_edges = [e for e in node.edges if e.condition == ERROR_BRANCH]
        if failure_edges:
            return failure_edges
        return [e for e in node.edges if e.condition in (None, DEFAULT_BRANCH)]

    # ------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------

    def validate_graph(self) -> List[str]:
        """
        Validate the graph structure.

        Returns:
            List of validation errors (empty if valid)
        """
        errors = []

        if not self.nodes:
            errors.append("Workflow must have at least one node")
            return errors

        seen: Set[str] = set()
        for node in self.nodes:
            if node.id in seen:
                errors.append(f"Duplicate node id '{node.id}'")
            seen.add(node.id)

        starts = [n.id for n in self.nodes if n.type == NodeType.START]
        ends = [n.id for n in self.nodes if n.type == NodeType.END]
        if len(starts) != 1:
            errors.append(f"Workflow must have exactly one start node (found {len(starts)})")
        if not ends:
            errors.append("Workflow must have at least one end node")

        for node in self.nodes:
            if node.type == NodeType.END and node.edges:
                errors.append(f"End node '{node.id}' must not have outgoing edges")
            if node.type != NodeType.END and not node.edges:
                errors.append(f"Node '{node.id}' has no outgoing edges")
            for edge in node.edges:
                if edge.to not in self._index:
                    errors.append(f"Edge '{node.id}' -> '{edge.to}' targets an unknown node")
                elif edge.loop and edge.to != node.id and not self.reaches(edge.to, node.id):
                    errors.append(
                        f"Back-edge '{node.id}' -> '{edge.to}' does not close a loop"
                    )

        cyclic = self._find_unmarked_cycles()
        if cyclic:
            errors.append(
                f"Cycle without a loop-back edge marker involving nodes: {sorted(cyclic)}"
            )

        if len(starts) == 1:
            start = starts[0]
            reachable = self._walk(start, follow_loops=True) | {start}
            orphans = [n.id for n in self.nodes if n.id not in reachable]
            if orphans:
                errors.append(f"Nodes not reachable from the start node: {orphans}")
            if ends and not any(end in reachable for end in ends):
                errors.append("No end node is reachable from the start node")

        return errors

    def ensure_valid(self) -> "WorkflowDefinition":
        """Raise DefinitionError if the graph is malformed."""
        problems = self.validate_graph()
        if problems:
            raise DefinitionError(problems, workflow_id=self.id)
        return self

    # ------------------------------------------------------------
    # Graph walks
    # ------------------------------------------------------------

    def _successors(self, node_id: str, follow_loops: bool = True) -> List[str]:
        node = self._index.get(node_id)
        if node is None:
            return []
        return [
            e.to for e in node.edges
            if e.to in self._index and (follow_loops or not e.loop)
        ]

    def _walk(self, source: str, follow_loops: bool) -> Set[str]:
        """All nodes reachable from source (source itself only via a cycle)."""
        seen: Set[str] = set()
        to_visit = list(self._successors(source, follow_loops))

        while to_visit:
            node_id = to_visit.pop()
            if node_id in seen:
                continue
            seen.add(node_id)
            to_visit.extend(self._successors(node_id, follow_loops))

        return seen

    def _find_unmarked_cycles(self) -> Set[str]:
        """Kahn's algorithm over forward edges; leftovers sit on a cycle."""
        in_degree = {node_id: 0 for node_id in self._index}
        for node_id in self._index:
            for target in self._successors(node_id, follow_loops=False):
                in_degree[target] += 1

        queue = [node_id for node_id, degree in in_degree.items() if degree == 0]
        processed: Set[str] = set()

        while queue:
            node_id = queue.pop(0)
            processed.add(node_id)
            for target in self._successors(node_id, follow_loops=False):
                in_degree[target] -= 1
                if in_degree[target] == 0:
                    queue.append(target)

        return set(self._index) - processed

    def _find_loop_bodies(self) -> Set[str]:
        bodies: Set[str] = set()
        for node in self.nodes:
            for edge in node.edges:
                if not edge.loop or edge.to not in self._index:
                    continue
                bodies.update({node.id, edge.to})
                for candidate in self._forward.get(edge.to, set()):
                    if node.id in self._forward.get(candidate, set()):
                        bodies.add(candidate)
        return bodies

    # ------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the definition to a plain dictionary."""
        return self.model_dump(mode="json")

    def to_mermaid(self) -> str:
        """Generate a Mermaid diagram of the graph."""
        lines = ["graph TD"]

        for node in self.nodes:
            label = node.label.replace('"', "'")
            if node.type == NodeType.START:
                lines.append(f'    {node.id}(["{label}"])')
            elif node.type == NodeType.END:
                lines.append(f'    {node.id}((("{label}")))')
            elif node.type == NodeType.DECISION:
                lines.append(f'    {node.id}{{"{label}"}}')
            elif node.type == NodeType.HUMAN:
                lines.append(f'    {node.id}[/"{label}"/]')
            else:
                lines.append(f'    {node.id}["{label}"]')

        for node in self.nodes:
            for edge in node.edges:
                arrow = "-.->" if edge.loop else "-->"
                if edge.condition:
                    lines.append(f"    {node.id} {arrow}|{edge.condition}| {edge.to}")
                else:
                    lines.append(f"    {node.id} {arrow} {edge.to}")

        return "\n".join(lines)

    def __repr__(self) -> str:
        return (
            f"WorkflowDefinition(id='{self.id}', version={self.version}, "
            f"nodes={[n.id for n in self.nodes]})"
        )
