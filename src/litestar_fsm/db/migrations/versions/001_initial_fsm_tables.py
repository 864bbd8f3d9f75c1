"""Initial state machine tables.

Revision ID: 001_initial_fsm
Revises:
Create Date: 2026-10-18
"""

from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001_initial_fsm"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

JSONType = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def _audit_columns() -> list[sa.Column]:
    return [
        sa.Column("sa_orm_sentinel", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    """Create initial state machine tables."""
    op.create_table(
        "fsm_definitions",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("initial_state_id", sa.Uuid(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, default=False),
        *_audit_columns(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_fsm_definitions_name", "fsm_definitions", ["name"])
    op.create_index("ix_fsm_definitions_name_version", "fsm_definitions", ["name", "version"], unique=True)
    op.create_index("ix_fsm_definitions_name_active", "fsm_definitions", ["name", "is_active"])

    op.create_table(
        "fsm_states",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("definition_id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("is_initial", sa.Boolean(), nullable=False, default=False),
        sa.Column("is_terminal", sa.Boolean(), nullable=False, default=False),
        sa.Column("timeout_seconds", sa.Float(), nullable=True),
        sa.Column("timeout_transition", sa.String(length=255), nullable=True),
        *_audit_columns(),
        sa.ForeignKeyConstraint(["definition_id"], ["fsm_definitions.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("definition_id", "name", name="uq_fsm_states_definition_name"),
    )
    op.create_index("ix_fsm_states_definition_id", "fsm_states", ["definition_id"])

    op.create_table(
        "fsm_transitions",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("definition_id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("from_state_id", sa.Uuid(), nullable=False),
        sa.Column("to_state_id", sa.Uuid(), nullable=False),
        sa.Column("is_auto", sa.Boolean(), nullable=False, default=False),
        sa.Column("requires_approval", sa.Boolean(), nullable=False, default=False),
        sa.Column("is_retry", sa.Boolean(), nullable=False, default=False),
        sa.Column("position", sa.Integer(), nullable=False, default=0),
        sa.Column("conditions", JSONType, nullable=False),
        *_audit_columns(),
        sa.ForeignKeyConstraint(["definition_id"], ["fsm_definitions.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["from_state_id"], ["fsm_states.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["to_state_id"], ["fsm_states.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("definition_id", "from_state_id", "name", name="uq_fsm_transitions_from_name"),
    )
    op.create_index("ix_fsm_transitions_definition_id", "fsm_transitions", ["definition_id"])
    op.create_index("ix_fsm_transitions_from_state_id", "fsm_transitions", ["from_state_id"])

    op.create_table(
        "fsm_entities",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("definition_id", sa.Uuid(), nullable=False),
        sa.Column("current_state_id", sa.Uuid(), nullable=False),
        sa.Column("previous_state_id", sa.Uuid(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, default=1),
        sa.Column("owner_id", sa.String(length=255), nullable=True),
        sa.Column("state_entered_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("timeout_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("next_sweep_at", sa.DateTime(timezone=True), nullable=True),
        *_audit_columns(),
        sa.ForeignKeyConstraint(["definition_id"], ["fsm_definitions.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["current_state_id"], ["fsm_states.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["previous_state_id"], ["fsm_states.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_fsm_entities_timeout_at", "fsm_entities", ["timeout_at"])
    op.create_index("ix_fsm_entities_next_sweep_at", "fsm_entities", ["next_sweep_at"])
    op.create_index("ix_fsm_entities_current_state_id", "fsm_entities", ["current_state_id"])
    op.create_index("ix_fsm_entities_owner_id", "fsm_entities", ["owner_id"])

    op.create_table(
        "fsm_transition_records",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("entity_id", sa.Uuid(), nullable=False),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("from_state_id", sa.Uuid(), nullable=True),
        sa.Column("to_state_id", sa.Uuid(), nullable=False),
        sa.Column("transition_name", sa.String(length=255), nullable=False),
        sa.Column("actor_id", sa.String(length=255), nullable=False),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("context", JSONType, nullable=False),
        sa.Column("duration_seconds", sa.Float(), nullable=True),
        *_audit_columns(),
        sa.ForeignKeyConstraint(["entity_id"], ["fsm_entities.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("entity_id", "sequence", name="uq_fsm_transition_records_entity_sequence"),
    )
    op.create_index(
        "ix_fsm_transition_records_entity_occurred",
        "fsm_transition_records",
        ["entity_id", "occurred_at"],
    )


def downgrade() -> None:
    """Drop state machine tables."""
    op.drop_table("fsm_transition_records")
    op.drop_table("fsm_entities")
    op.drop_table("fsm_transitions")
    op.drop_table("fsm_states")
    op.drop_table("fsm_definitions")
