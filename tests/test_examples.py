"""Integration tests for the example application."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
from litestar.testing import AsyncTestClient

from examples.minimal.app import create_app

if TYPE_CHECKING:
    from pathlib import Path

    from litestar import Litestar


@pytest.fixture
def minimal_app(tmp_path: Path) -> Litestar:
    return create_app(f"sqlite+aiosqlite:///{tmp_path / 'example.db'}")


@pytest.mark.integration
class TestMinimalApp:
    """Integration tests for the minimal example app."""

    async def test_health_check(self, minimal_app: Litestar) -> None:
        async with AsyncTestClient(app=minimal_app) as client:
            response = await client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}

    async def test_workflow_published_on_startup(self, minimal_app: Litestar) -> None:
        async with AsyncTestClient(app=minimal_app) as client:
            response = await client.get("/fsm/definitions")

        assert response.status_code == 200
        (definition,) = response.json()
        assert definition["name"] == "document_review"
        review = next(state for state in definition["states"] if state["name"] == "review")
        assert review["timeout_transition"] == "return_to_author"

    async def test_review_flow(self, minimal_app: Litestar) -> None:
        async with AsyncTestClient(app=minimal_app) as client:
            created = await client.post("/fsm/entities", json={"definition_name": "document_review", "owner_id": "alice"})
            entity_id = created.json()["id"]

            submitted = await client.post(f"/documents/{entity_id}/submit")
            assert submitted.json() == {"state": "review", "sequence": 2}

            denied = await client.post(
                f"/fsm/entities/{entity_id}/transitions/approve",
                json={"actor_id": "bob", "context": {"reviewerRole": "author"}},
            )
            assert denied.status_code == 422

            approved = await client.post(
                f"/fsm/entities/{entity_id}/transitions/approve",
                json={"actor_id": "bob", "context": {"reviewerRole": "editor"}},
            )
            assert approved.status_code == 201

            history = await client.get(f"/fsm/entities/{entity_id}/history")

        assert [(r["transition_name"], r["actor_id"]) for r in history.json()] == [
            ("submit", "alice"),
            ("approve", "bob"),
        ]
