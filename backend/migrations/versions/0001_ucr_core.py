"""Universal store and UCR lifecycle tables.

Revision ID: 0001_ucr_core
Revises:
Create Date: 2026-01-05 00:00:00
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

revision: str = "0001_ucr_core"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "core_entities",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("organization_id", sa.String(), nullable=False),
        sa.Column("entity_type", sa.String(), nullable=False),
        sa.Column("entity_name", sa.String(), nullable=False),
        sa.Column("entity_code", sa.String(), nullable=True),
        sa.Column("smart_code", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("metadata_json", sa.String(), nullable=False),
        sa.Column("created_by", sa.String(), nullable=False),
        sa.Column("created_at", sa.String(), nullable=False),
        sa.Column("updated_at", sa.String(), nullable=False),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_core_entities")),
    )
    op.create_index(
        op.f("ix_core_entities_organization_id"), "core_entities", ["organization_id"]
    )
    op.create_index(
        "ix_core_entities_org_type_code",
        "core_entities",
        ["organization_id", "entity_type", "smart_code"],
    )

    op.create_table(
        "core_dynamic_data",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("organization_id", sa.String(), nullable=False),
        sa.Column("entity_id", sa.String(), nullable=False),
        sa.Column("field_name", sa.String(), nullable=False),
        sa.Column("field_value_text", sa.String(), nullable=True),
        sa.Column("updated_at", sa.String(), nullable=False),
        sa.ForeignKeyConstraint(
            ["entity_id"],
            ["core_entities.id"],
            name=op.f("fk_core_dynamic_data_entity_id_core_entities"),
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_core_dynamic_data")),
        sa.UniqueConstraint(
            "entity_id", "field_name", name=op.f("uq_core_dynamic_data_entity_id")
        ),
    )

    op.create_table(
        "universal_transactions",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("organization_id", sa.String(), nullable=False),
        sa.Column("transaction_type", sa.String(), nullable=False),
        sa.Column("smart_code", sa.String(), nullable=False),
        sa.Column("reference_number", sa.String(), nullable=False),
        sa.Column("transaction_date", sa.String(), nullable=False),
        sa.Column("total_amount", sa.Float(), nullable=False),
        sa.Column("metadata_json", sa.String(), nullable=False),
        sa.Column("created_by", sa.String(), nullable=False),
        sa.Column("created_at", sa.String(), nullable=False),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_universal_transactions")),
    )
    op.create_index(
        op.f("ix_universal_transactions_organization_id"),
        "universal_transactions",
        ["organization_id"],
    )

    op.create_table(
        "ucr_deployments",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("organization_id", sa.String(), nullable=False),
        sa.Column("rule_id", sa.String(), nullable=False),
        sa.Column("smart_code", sa.String(), nullable=False),
        sa.Column("scope", sa.String(), nullable=False),
        sa.Column("effective_from", sa.String(), nullable=False),
        sa.Column("effective_to", sa.String(), nullable=True),
        sa.Column("approvals", sa.String(), nullable=False),
        sa.Column("checklist", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("requires_approval", sa.Boolean(), nullable=False),
        sa.Column("transaction_id", sa.String(), nullable=True),
        sa.Column("error", sa.String(), nullable=True),
        sa.Column("created_by", sa.String(), nullable=False),
        sa.Column("created_at", sa.String(), nullable=False),
        sa.Column("completed_at", sa.String(), nullable=True),
        sa.Column("rolled_back_at", sa.String(), nullable=True),
        sa.ForeignKeyConstraint(
            ["rule_id"],
            ["core_entities.id"],
            name=op.f("fk_ucr_deployments_rule_id_core_entities"),
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_ucr_deployments")),
    )
    op.create_index(
        op.f("ix_ucr_deployments_organization_id"), "ucr_deployments", ["organization_id"]
    )
    op.create_index(
        "ix_ucr_deployments_status_from", "ucr_deployments", ["status", "effective_from"]
    )

    op.create_table(
        "ucr_active_rules",
        sa.Column("organization_id", sa.String(), nullable=False),
        sa.Column("smart_code_family", sa.String(), nullable=False),
        sa.Column("rule_id", sa.String(), nullable=False),
        sa.Column("deployment_id", sa.String(), nullable=True),
        sa.Column("lock_version", sa.Integer(), nullable=False),
        sa.Column("updated_at", sa.String(), nullable=False),
        sa.ForeignKeyConstraint(
            ["rule_id"],
            ["core_entities.id"],
            name=op.f("fk_ucr_active_rules_rule_id_core_entities"),
        ),
        sa.PrimaryKeyConstraint(
            "organization_id", "smart_code_family", name=op.f("pk_ucr_active_rules")
        ),
    )

    op.create_table(
        "ucr_audit_events",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("organization_id", sa.String(), nullable=False),
        sa.Column("rule_id", sa.String(), nullable=False),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("actor", sa.String(), nullable=False),
        sa.Column("from_status", sa.String(), nullable=True),
        sa.Column("to_status", sa.String(), nullable=True),
        sa.Column("metadata_json", sa.String(), nullable=False),
        sa.Column("created_at", sa.String(), nullable=False),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_ucr_audit_events")),
    )
    op.create_index(
        "ix_ucr_audit_events_org_rule", "ucr_audit_events", ["organization_id", "rule_id"]
    )


def downgrade() -> None:
    op.drop_index("ix_ucr_audit_events_org_rule", table_name="ucr_audit_events")
    op.drop_table("ucr_audit_events")
    op.drop_table("ucr_active_rules")
    op.drop_index("ix_ucr_deployments_status_from", table_name="ucr_deployments")
    op.drop_index(op.f("ix_ucr_deployments_organization_id"), table_name="ucr_deployments")
    op.drop_table("ucr_deployments")
    op.drop_index(
        op.f("ix_universal_transactions_organization_id"), table_name="universal_transactions"
    )
    op.drop_table("universal_transactions")
    op.drop_table("core_dynamic_data")
    op.drop_index("ix_core_entities_org_type_code", table_name="core_entities")
    op.drop_index(op.f("ix_core_entities_organization_id"), table_name="core_entities")
    op.drop_table("core_entities")
