"""
Graph View over a Workflow Definition.

WorkflowGraph indexes a definition's nodes and edges for the engine:
node lookup, outgoing edges, the start node and default status, plus
structural validation and a Mermaid rendering for the editor.
"""

from typing import Dict, List, Optional, Set

from visaflow.engine.models import (
    NodeType,
    WorkflowDefinition,
    WorkflowEdge,
    WorkflowNode,
    WorkflowStatus,
)


class WorkflowGraph:
    """
    Read-only index of a workflow definition.

    The definition itself is never mutated by the engine; edits go
    through the editing collaborator and produce a new definition.

    Usage:
        graph = WorkflowGraph(definition)
        start = graph.start_node
        for edge in graph.outgoing(start.id):
            ...
    """

    def __init__(self, definition: WorkflowDefinition):
        self.definition = definition
        self._nodes: Dict[str, WorkflowNode] = {n.id: n for n in definition.nodes}
        self._edges: Dict[str, WorkflowEdge] = {e.id: e for e in definition.edges}
        self._outgoing: Dict[str, List[WorkflowEdge]] = {}
        for edge in definition.edges:
            self._outgoing.setdefault(edge.source, []).append(edge)

    @property
    def nodes(self) -> List[WorkflowNode]:
        return self.definition.nodes

    @property
    def start_node(self) -> Optional[WorkflowNode]:
        """The first node of type start, if any."""
        for node in self.definition.nodes:
            if node.type == NodeType.START:
                return node
        return None

    @property
    def default_status(self) -> Optional[WorkflowStatus]:
        """The status flagged as default, or the first one declared."""
        for status in self.definition.statuses:
            if status.is_default:
                return status
        return self.definition.statuses[0] if self.definition.statuses else None

    def get_node(self, node_id: str) -> Optional[WorkflowNode]:
        return self._nodes.get(node_id)

    def get_edge(self, edge_id: str) -> Optional[WorkflowEdge]:
        return self._edges.get(edge_id)

    def get_status(self, status_id: Optional[str]) -> Optional[WorkflowStatus]:
        if not status_id:
            return None
        for status in self.definition.statuses:
            if status.id == status_id:
                return status
        return None

    def outgoing(self, node_id: str) -> List[WorkflowEdge]:
        """Outgoing edges of a node, in definition order."""
        return list(self._outgoing.get(node_id, []))

    def validate(self) -> List[str]:
        """
        Validate the graph structure.

        This is a report for the editor; the engine only enforces the
        start node and status requirements at runtime.

        Returns:
            List of validation errors (empty if valid)
        """
        errors = []

        starts = [n for n in self.definition.nodes if n.type == NodeType.START]
        if not starts:
            errors.append("Workflow must have a start node")
        elif len(starts) > 1:
            errors.append(
                f"Workflow has {len(starts)} start nodes, only '{starts[0].id}' is used"
            )

        if not self.definition.statuses:
            errors.append("Workflow must define at least one status")

        for edge in self.definition.edges:
            if edge.source not in self._nodes:
                errors.append(f"Edge '{edge.id}' has unknown source '{edge.source}'")
            if edge.target not in self._nodes:
                errors.append(f"Edge '{edge.id}' has unknown target '{edge.target}'")

        for node in self.definition.nodes:
            if node.type == NodeType.STATUS and node.data.status_id:
                if self.get_status(node.data.status_id) is None:
                    errors.append(
                        f"Status node '{node.id}' references unknown status "
                        f"'{node.data.status_id}'"
                    )

        # Check for orphan nodes (not reachable from start)
        if starts:
            reachable = self._get_reachable_nodes(starts[0].id)
            orphans = sorted(set(self._nodes) - reachable)
            if orphans:
                errors.append(f"Orphan nodes (not reachable): {orphans}")

        for node in self.definition.nodes:
            if node.type != NodeType.END and not self._outgoing.get(node.id):
                errors.append(f"Node '{node.id}' ({node.type.value}) is a dead end")

        return errors

    def _get_reachable_nodes(self, entry: str) -> Set[str]:
        reachable = set()
        to_visit = [entry]

        while to_visit:
            node_id = to_visit.pop()
            if node_id in reachable or node_id not in self._nodes:
                continue
            reachable.add(node_id)
            for edge in self._outgoing.get(node_id, []):
                to_visit.append(edge.target)

        return reachable

    def to_mermaid(self) -> str:
        """Generate a Mermaid diagram of the workflow."""
        lines = ["graph TD"]

        for node in self.definition.nodes:
            label = node.label.replace('"', "'")
            if node.type == NodeType.START:
                lines.append(f'    {node.id}(("{label}"))')
            elif node.type == NodeType.END:
                lines.append(f'    {node.id}((("{label}")))')
            elif node.type == NodeType.DECISION:
                lines.append(f'    {node.id}{{"{label}"}}')
            else:
                lines.append(f'    {node.id}["{label}"]')

        for edge in self.definition.edges:
            if edge.label:
                lines.append(f"    {edge.source} -->|{edge.label}| {edge.target}")
            else:
                lines.append(f"    {edge.source} --> {edge.target}")

        return "\n".join(lines)

    def __repr__(self) -> str:
        return (
            f"WorkflowGraph(name='{self.definition.name}', "
            f"nodes={list(self._nodes.keys())})"
        )
