"""Tests for definition graph rendering."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from litestar_fsm.web.graph import generate_mermaid_graph, parse_graph_to_dict

if TYPE_CHECKING:
    from litestar_fsm.core.definition import WorkflowDefinition


@pytest.mark.integration
class TestMermaidGraph:
    async def test_document_graph(self, document: WorkflowDefinition) -> None:
        source = generate_mermaid_graph(document)

        assert source.splitlines() == [
            "stateDiagram-v2",
            "    [*] --> draft",
            "    draft --> review: submit",
            "    review --> published: approve",
            "    published --> [*]",
        ]

    async def test_highlights_current_state(self, document: WorkflowDefinition) -> None:
        source = generate_mermaid_graph(document, current_state="review")

        assert "classDef current" in source
        assert source.endswith("class review current")

    async def test_terminal_states_sorted(self, order: WorkflowDefinition) -> None:
        lines = generate_mermaid_graph(order).splitlines()

        assert lines[-2:] == ["    cancelled --> [*]", "    fulfilled --> [*]"]


@pytest.mark.integration
class TestParseGraph:
    async def test_nodes_and_edges(self, order: WorkflowDefinition) -> None:
        graph = parse_graph_to_dict(order)

        nodes = {node["id"]: node for node in graph["nodes"]}
        assert nodes["new"]["is_initial"]
        assert nodes["awaiting_payment"]["label"] == "Awaiting Payment"
        assert nodes["awaiting_payment"]["timeout_seconds"] == 3600
        assert nodes["fulfilled"]["is_terminal"]

        fulfil = next(edge for edge in graph["edges"] if edge["name"] == "fulfil")
        assert fulfil == {"name": "fulfil", "source": "paid", "target": "fulfilled", "auto": True}

    async def test_condition_types_listed(self, guarded: WorkflowDefinition) -> None:
        graph = parse_graph_to_dict(guarded)

        approve = next(edge for edge in graph["edges"] if edge["name"] == "approve")
        assert approve["conditions"] == ["field"]
        assert "auto" not in approve
