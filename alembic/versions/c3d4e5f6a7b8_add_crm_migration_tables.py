"""Add CRM migration tables.

Creates migration_runs, external_id_mappings, migration_locks and the
destination tables for imported contacts, properties, leads and claims.

Revision ID: c3d4e5f6a7b8
Revises:
Create Date: 2026-10-19
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "c3d4e5f6a7b8"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

migration_source = postgresql.ENUM("jobnimbus", "acculynx", name="migrationsource", create_type=False)
entity_kind = postgresql.ENUM("contacts", "properties", "leads", "claims", name="entitykind", create_type=False)
migration_run_status = postgresql.ENUM("running", "completed", "aborted", name="migrationrunstatus", create_type=False)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    ]


def _imported_record_columns() -> list[sa.Column]:
    return [
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("org_id", sa.String(64), nullable=False, index=True),
        sa.Column("source", migration_source, nullable=True),
        sa.Column("external_id", sa.String(200), nullable=True),
        sa.Column("source_created_at", sa.String(40), nullable=True),
    ]


def upgrade() -> None:
    bind = op.get_bind()
    for enum_type in (migration_source, entity_kind, migration_run_status):
        enum_type.create(bind, checkfirst=True)

    op.create_table(
        "migration_runs",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("org_id", sa.String(64), nullable=False),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("source", migration_source, nullable=False),
        sa.Column("dry_run", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("status", migration_run_status, nullable=False),
        sa.Column("abort_reason", sa.Text(), nullable=True),
        sa.Column("stats", sa.JSON(), nullable=True),
        sa.Column("errors", sa.JSON(), nullable=True),
        sa.Column("duration_ms", sa.Integer(), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_migration_runs_org_started", "migration_runs", ["org_id", "started_at"])

    op.create_table(
        "external_id_mappings",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("org_id", sa.String(64), nullable=False),
        sa.Column("source", migration_source, nullable=False),
        sa.Column("entity_kind", entity_kind, nullable=False),
        sa.Column("external_id", sa.String(200), nullable=False),
        sa.Column("entity_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("checksum", sa.String(64), nullable=True),
        sa.Column("migration_id", postgresql.UUID(as_uuid=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint(
            "org_id",
            "source",
            "entity_kind",
            "external_id",
            name="uq_external_id_mappings_key",
        ),
    )

    op.create_table(
        "migration_locks",
        sa.Column("org_id", sa.String(64), primary_key=True),
        sa.Column("migration_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("acquired_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )

    op.create_table(
        "contacts",
        *_imported_record_columns(),
        sa.Column("first_name", sa.String(80), nullable=True),
        sa.Column("last_name", sa.String(80), nullable=True),
        sa.Column("company", sa.String(160), nullable=True),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("phone", sa.String(40), nullable=True),
        sa.Column("mobile_phone", sa.String(40), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_contacts_org_email", "contacts", ["org_id", "email"])

    op.create_table(
        "properties",
        *_imported_record_columns(),
        sa.Column("address_line1", sa.String(200), nullable=False),
        sa.Column("address_line2", sa.String(200), nullable=True),
        sa.Column("city", sa.String(120), nullable=True),
        sa.Column("state", sa.String(80), nullable=True),
        sa.Column("postal_code", sa.String(20), nullable=True),
        sa.Column("country", sa.String(80), nullable=True),
        sa.Column("contact_id", postgresql.UUID(as_uuid=True), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        "leads",
        *_imported_record_columns(),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("status", sa.String(40), nullable=False),
        sa.Column("lead_source", sa.String(120), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("contact_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("property_id", postgresql.UUID(as_uuid=True), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        "claims",
        *_imported_record_columns(),
        sa.Column("claim_number", sa.String(80), nullable=False),
        sa.Column("carrier", sa.String(160), nullable=True),
        sa.Column("policy_number", sa.String(80), nullable=True),
        sa.Column("date_of_loss", sa.String(40), nullable=True),
        sa.Column("status", sa.String(40), nullable=False),
        sa.Column("contact_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("property_id", postgresql.UUID(as_uuid=True), nullable=True),
        *_timestamps(),
    )


def downgrade() -> None:
    op.drop_table("claims")
    op.drop_table("leads")
    op.drop_table("properties")
    op.drop_index("ix_contacts_org_email", table_name="contacts")
    op.drop_table("contacts")
    op.drop_table("migration_locks")
    op.drop_table("external_id_mappings")
    op.drop_index("ix_migration_runs_org_started", table_name="migration_runs")
    op.drop_table("migration_runs")
    migration_run_status.drop(op.get_bind(), checkfirst=True)
    entity_kind.drop(op.get_bind(), checkfirst=True)
    migration_source.drop(op.get_bind(), checkfirst=True)
