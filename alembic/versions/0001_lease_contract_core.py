"""lease contract core: parties, contracts, lifecycle events, clause history

Revision ID: 0001_lease_contract_core
Revises:
Create Date: 2026-10-19
"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "0001_lease_contract_core"
down_revision = None
branch_labels = None
depends_on = None

OPEN_CONTRACT_PREDICATE = (
    "status NOT IN ('REVOKED', 'TERMINATED') AND deleted = false AND amended_from_id IS NULL"
)

JSON = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def _signature_columns(role: str) -> list:
    return [
        sa.Column(f"{role}_signature", sa.Text(), nullable=True),
        sa.Column(f"{role}_signed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(f"{role}_signed_ip", sa.String(length=64), nullable=True),
        sa.Column(f"{role}_signed_agent", sa.String(length=512), nullable=True),
        sa.Column(f"{role}_geo_lat", sa.Float(), nullable=True),
        sa.Column(f"{role}_geo_lng", sa.Float(), nullable=True),
        sa.Column(f"{role}_geo_consent", sa.Boolean(), nullable=True),
    ]


def upgrade():
    op.create_table(
        "agencies",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("cnpj", sa.String(length=32), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
    )

    op.create_table(
        "users",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("document", sa.String(length=32), nullable=True),
        sa.Column("role", sa.String(length=32), nullable=False),
        sa.Column("agency_id", sa.BigInteger(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.ForeignKeyConstraint(["agency_id"], ["agencies.id"], ondelete="SET NULL"),
    )

    op.create_table(
        "properties",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(length=255), nullable=True),
        sa.Column("address", sa.String(length=512), nullable=True),
        sa.Column("city", sa.String(length=128), nullable=True),
        sa.Column("owner_id", sa.BigInteger(), nullable=True),
        sa.Column("created_by", sa.BigInteger(), nullable=True),
        sa.Column("agency_id", sa.BigInteger(), nullable=True),
        sa.Column("deleted", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.ForeignKeyConstraint(["owner_id"], ["users.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["created_by"], ["users.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["agency_id"], ["agencies.id"], ondelete="SET NULL"),
    )

    op.create_table(
        "lease_contracts",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("contract_token", sa.String(length=64), nullable=False, unique=True),

        sa.Column("property_id", sa.BigInteger(), nullable=False),
        sa.Column("tenant_id", sa.BigInteger(), nullable=True),
        sa.Column("owner_id", sa.BigInteger(), nullable=True),
        sa.Column("agency_id", sa.BigInteger(), nullable=True),
        sa.Column("witness_name", sa.String(length=255), nullable=True),
        sa.Column("witness_document", sa.String(length=32), nullable=True),
        sa.Column("amended_from_id", sa.BigInteger(), nullable=True),

        sa.Column("contract_type", sa.String(length=32), nullable=True),
        sa.Column("monthly_rent", sa.Numeric(14, 2), nullable=True),
        sa.Column("deposit", sa.Numeric(14, 2), nullable=True),
        sa.Column("due_day", sa.Integer(), nullable=True),
        sa.Column("start_date", sa.Date(), nullable=True),
        sa.Column("end_date", sa.Date(), nullable=True),
        sa.Column("readjustment_index", sa.String(length=16), nullable=True),
        sa.Column("readjustment_month", sa.Integer(), nullable=True),
        sa.Column("late_fee_percent", sa.Numeric(6, 2), nullable=True),
        sa.Column("interest_rate_percent", sa.Numeric(6, 2), nullable=True),
        sa.Column("early_termination_penalty_percent", sa.Numeric(6, 2), nullable=True),
        sa.Column("guarantee_type", sa.String(length=32), nullable=True),
        sa.Column("jurisdiction", sa.String(length=255), nullable=True),
        sa.Column("charges_json", JSON, nullable=True),

        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("creci", sa.String(length=32), nullable=True),

        sa.Column("clauses_json", JSON, nullable=True),
        sa.Column("content_template", sa.Text(), nullable=True),
        sa.Column("content_snapshot", sa.Text(), nullable=True),

        *_signature_columns("tenant"),
        *_signature_columns("owner"),
        *_signature_columns("agency"),
        *_signature_columns("witness"),

        sa.Column("status", sa.String(length=32), nullable=False, server_default=sa.text("'PENDING'")),

        sa.Column("hash_final", sa.String(length=64), nullable=True),
        sa.Column("hash_generated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("hash_generated_ip", sa.String(length=64), nullable=True),
        sa.Column("provisional_pdf_path", sa.String(length=512), nullable=True),
        sa.Column("final_pdf_path", sa.String(length=512), nullable=True),
        sa.Column("final_pdf_sha256", sa.String(length=64), nullable=True),

        sa.Column("deleted", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("deleted_by", sa.String(length=64), nullable=True),

        sa.Column("created_by", sa.String(length=64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),

        sa.ForeignKeyConstraint(["property_id"], ["properties.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["tenant_id"], ["users.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["owner_id"], ["users.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["agency_id"], ["agencies.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["amended_from_id"], ["lease_contracts.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_lease_contract_property_status", "lease_contracts", ["property_id", "status"])
    op.create_index("ix_lease_contract_tenant", "lease_contracts", ["tenant_id"])
    op.create_index("ix_lease_contract_owner", "lease_contracts", ["owner_id"])
    op.create_index("ix_lease_contract_agency", "lease_contracts", ["agency_id"])
    op.create_index(
        "uq_lease_contract_open_property",
        "lease_contracts",
        ["property_id"],
        unique=True,
        postgresql_where=sa.text(OPEN_CONTRACT_PREDICATE),
        sqlite_where=sa.text(OPEN_CONTRACT_PREDICATE),
    )

    op.create_table(
        "contract_lifecycle_events",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("contract_id", sa.BigInteger(), nullable=False),
        sa.Column("seq", sa.Integer(), nullable=False),
        sa.Column("event_type", sa.String(length=64), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("metadata_json", JSON, nullable=False),
        sa.Column("financial_effect_json", JSON, nullable=True),
        sa.Column("created_by", sa.String(length=64), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("prev_hash", sa.String(length=64), nullable=False),
        sa.Column("entry_hash", sa.String(length=64), nullable=False),
        sa.ForeignKeyConstraint(["contract_id"], ["lease_contracts.id"], ondelete="RESTRICT"),
        sa.UniqueConstraint("contract_id", "seq", name="uq_lifecycle_event_seq"),
    )
    op.create_index("ix_lifecycle_event_contract", "contract_lifecycle_events", ["contract_id"])
    op.create_index("ix_lifecycle_event_type", "contract_lifecycle_events", ["contract_id", "event_type"])

    op.create_table(
        "contract_clause_history",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("contract_id", sa.BigInteger(), nullable=False),
        sa.Column("clauses_json", JSON, nullable=True),
        sa.Column("edited_by", sa.String(length=64), nullable=False),
        sa.Column("edited_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("ip", sa.String(length=64), nullable=True),
        sa.Column("user_agent", sa.String(length=512), nullable=True),
        sa.Column("change_note", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(["contract_id"], ["lease_contracts.id"], ondelete="RESTRICT"),
    )
    op.create_index("ix_clause_history_contract", "contract_clause_history", ["contract_id", "edited_at"])

    # Append-only: the database refuses UPDATE/DELETE on lifecycle events (Postgres only)
    if op.get_bind().dialect.name == "postgresql":
        op.execute("""
        CREATE OR REPLACE FUNCTION forbid_lifecycle_event_mutation()
        RETURNS trigger AS $$
        BEGIN
          RAISE EXCEPTION 'contract_lifecycle_events is append-only';
        END;
        $$ LANGUAGE plpgsql;
        """)
        op.execute("""
        CREATE TRIGGER trg_lifecycle_event_append_only
        BEFORE UPDATE OR DELETE ON contract_lifecycle_events
        FOR EACH ROW EXECUTE FUNCTION forbid_lifecycle_event_mutation();
        """)


def downgrade():
    if op.get_bind().dialect.name == "postgresql":
        op.execute("DROP TRIGGER IF EXISTS trg_lifecycle_event_append_only ON contract_lifecycle_events;")
        op.execute("DROP FUNCTION IF EXISTS forbid_lifecycle_event_mutation();")

    op.drop_index("ix_clause_history_contract", table_name="contract_clause_history")
    op.drop_table("contract_clause_history")

    op.drop_index("ix_lifecycle_event_type", table_name="contract_lifecycle_events")
    op.drop_index("ix_lifecycle_event_contract", table_name="contract_lifecycle_events")
    op.drop_table("contract_lifecycle_events")

    op.drop_index("uq_lease_contract_open_property", table_name="lease_contracts")
    op.drop_index("ix_lease_contract_agency", table_name="lease_contracts")
    op.drop_index("ix_lease_contract_owner", table_name="lease_contracts")
    op.drop_index("ix_lease_contract_tenant", table_name="lease_contracts")
    op.drop_index("ix_lease_contract_property_status", table_name="lease_contracts")
    op.drop_table("lease_contracts")

    op.drop_table("properties")
    op.drop_table("users")
    op.drop_table("agencies")
