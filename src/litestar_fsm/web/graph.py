"""Graph visualization utilities for workflow definitions.

This module renders published definitions as MermaidJS state diagrams and as
plain node/edge dictionaries.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from litestar_fsm.core.definition import WorkflowDefinition

__all__ = ["generate_mermaid_graph", "parse_graph_to_dict"]

_UNSAFE = re.compile(r"\W")


def _node_id(name: str) -> str:
    return _UNSAFE.sub("_", name)


def generate_mermaid_graph(definition: WorkflowDefinition, current_state: str | None = None) -> str:
    """Generate a MermaidJS state diagram of a workflow definition.

    Args:
        definition: The definition to visualize.
        current_state: Optional state name to highlight.

    Returns:
        A ``stateDiagram-v2`` definition as a string.

    Example:
        >>> print(generate_mermaid_graph(definition))
        stateDiagram-v2
            [*] --> draft
            draft --> review: submit
            review --> published: approve
            published --> [*]
    """
    lines = ["stateDiagram-v2"]
    lines.append(f"    [*] --> {_node_id(definition.initial_state.name)}")

    for source_id, target_id, name in definition.iter_edges():
        source = _node_id(definition.get_state(source_id).name)
        target = _node_id(definition.get_state(target_id).name)
        lines.append(f"    {source} --> {target}: {name}")

    for state in sorted(definition.states.values(), key=lambda s: s.name):
        if state.is_terminal:
            lines.append(f"    {_node_id(state.name)} --> [*]")

    if current_state is not None:
        lines.append("    classDef current fill:#ffd54f,stroke:#f57f17,stroke-width:3px")
        lines.append(f"    class {_node_id(current_state)} current")

    return "\n".join(lines)


def parse_graph_to_dict(definition: WorkflowDefinition) -> dict[str, Any]:
    """Parse a definition into a dictionary of nodes and edges.

    Args:
        definition: The definition to parse.

    Returns:
        A dictionary containing ``nodes`` and ``edges`` lists.
    """
    nodes = [
        {
            "id": state.name,
            "label": state.name.replace("_", " ").title(),
            "is_initial": state.id == definition.initial_state_id,
            "is_terminal": state.is_terminal,
            "timeout_seconds": state.timeout.total_seconds() if state.timeout else None,
        }
        for state in sorted(definition.states.values(), key=lambda s: s.name)
    ]

    edges = []
    for transition in definition.transitions:
        edge: dict[str, Any] = {
            "name": transition.name,
            "source": definition.get_state(transition.from_state_id).name,
            "target": definition.get_state(transition.to_state_id).name,
        }
        if transition.auto:
            edge["auto"] = True
        if transition.conditions:
            edge["conditions"] = [condition.type for condition in transition.conditions]
        edges.append(edge)

    return {"nodes": nodes, "edges": edges}
