"""EBR schema with multi-tenancy and RLS.

- tenants, tenant_settings
- users
- recipes, recipe_steps
- batches, batch_steps, pdf_reports
- audit_logs

tenants is not row-level secured: login resolves the tenant by slug before any
tenant context exists. Every other table is isolated on the app.tenant_id GUC.
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "4c1d2e8f9a10"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

TENANT_SCOPED_TABLES = [
    "tenant_settings",
    "users",
    "recipes",
    "recipe_steps",
    "batches",
    "batch_steps",
    "pdf_reports",
    "audit_logs",
]


def _id() -> sa.Column:
    return sa.Column("id", sa.UUID(), primary_key=True, server_default=sa.text("uuid_generate_v4()"))


def _tenant_id() -> sa.Column:
    return sa.Column(
        "tenant_id",
        sa.UUID(),
        nullable=False,
        server_default=sa.text("current_setting('app.tenant_id', true)::uuid"),
    )


def _timestamps() -> list:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    ]


def _tenant_fk(table: str) -> sa.ForeignKeyConstraint:
    return sa.ForeignKeyConstraint(
        ["tenant_id"], ["tenants.id"], ondelete="CASCADE", name=f"fk_{table}_tenant_id_tenants"
    )


def upgrade() -> None:
    # Extensions
    op.execute('CREATE EXTENSION IF NOT EXISTS "uuid-ossp";')

    # Helper function to set tenant in the current transaction
    op.execute(
        """
        CREATE OR REPLACE FUNCTION set_tenant_id(p_tenant_id uuid)
        RETURNS void AS $$
        BEGIN
            PERFORM set_config('app.tenant_id', p_tenant_id::text, true);
        END;
        $$ LANGUAGE plpgsql;
        """
    )

    # Tenants
    op.create_table(
        "tenants",
        _id(),
        sa.Column("slug", sa.Text(), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("slug", name="uq_tenants_slug"),
    )

    op.create_table(
        "tenant_settings",
        _id(),
        _tenant_id(),
        sa.Column("branding", postgresql.JSONB(), nullable=True),
        sa.Column("feature_flags", postgresql.JSONB(), nullable=True),
        sa.Column("compliance", postgresql.JSONB(), nullable=True),
        *_timestamps(),
        _tenant_fk("tenant_settings"),
        sa.UniqueConstraint("tenant_id", name="uq_tenant_settings_tenant_id"),
    )

    # Users
    op.create_table(
        "users",
        _id(),
        _tenant_id(),
        sa.Column("email", sa.Text(), nullable=False),
        sa.Column("full_name", sa.Text(), nullable=False),
        sa.Column("hashed_password", sa.Text(), nullable=False),
        sa.Column("role", sa.Text(), server_default=sa.text("'operator'"), nullable=False),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        *_timestamps(),
        _tenant_fk("users"),
        sa.UniqueConstraint("tenant_id", "email", name="uq_users_tenant_email"),
        sa.CheckConstraint(
            "role IN ('admin', 'batch_manager', 'operator_supervisor', 'operator', 'qa_qc')",
            name="ck_users_role",
        ),
    )
    op.create_index("ix_users_tenant_id", "users", ["tenant_id"])

    # Recipes
    op.create_table(
        "recipes",
        _id(),
        _tenant_id(),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("product_name", sa.Text(), nullable=False),
        sa.Column("version", sa.Text(), server_default=sa.text("'1.0'"), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("created_by", sa.Text(), nullable=True),
        *_timestamps(),
        _tenant_fk("recipes"),
    )
    op.create_index("ix_recipes_tenant_id", "recipes", ["tenant_id"])

    op.create_table(
        "recipe_steps",
        _id(),
        _tenant_id(),
        sa.Column("recipe_id", sa.UUID(), nullable=False),
        sa.Column("step_number", sa.Integer(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("instructions", sa.Text(), nullable=True),
        sa.Column("step_type", sa.Text(), server_default=sa.text("'manual'"), nullable=False),
        sa.Column("expected_value", sa.Numeric(18, 6), nullable=True),
        sa.Column("unit", sa.Text(), nullable=True),
        sa.Column("requires_signature", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("duration_minutes", sa.Integer(), nullable=True),
        *_timestamps(),
        _tenant_fk("recipe_steps"),
        sa.ForeignKeyConstraint(
            ["recipe_id"], ["recipes.id"], ondelete="CASCADE", name="fk_recipe_steps_recipe_id_recipes"
        ),
        sa.UniqueConstraint("recipe_id", "step_number", name="uq_recipe_steps_recipe_step_number"),
    )
    op.create_index("ix_recipe_steps_tenant_id", "recipe_steps", ["tenant_id"])
    op.create_index("ix_recipe_steps_recipe_id", "recipe_steps", ["recipe_id"])

    # Batches
    op.create_table(
        "batches",
        _id(),
        _tenant_id(),
        sa.Column("batch_number", sa.Text(), nullable=False),
        sa.Column("product_name", sa.Text(), nullable=False),
        sa.Column("batch_size", sa.Numeric(18, 6), nullable=True),
        sa.Column("status", sa.Text(), server_default=sa.text("'draft'"), nullable=False),
        sa.Column("recipe_id", sa.UUID(), nullable=True),
        sa.Column("created_by", sa.Text(), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        _tenant_fk("batches"),
        sa.ForeignKeyConstraint(
            ["recipe_id"], ["recipes.id"], ondelete="SET NULL", name="fk_batches_recipe_id_recipes"
        ),
        sa.UniqueConstraint("tenant_id", "batch_number", name="uq_batches_tenant_batch_number"),
        sa.CheckConstraint(
            "status IN ('draft', 'active', 'completed', 'cancelled')", name="ck_batches_status"
        ),
    )
    op.create_index("ix_batches_tenant_id", "batches", ["tenant_id"])
    op.create_index("ix_batches_tenant_created_at", "batches", ["tenant_id", "created_at"])

    op.create_table(
        "batch_steps",
        _id(),
        _tenant_id(),
        sa.Column("batch_id", sa.UUID(), nullable=False),
        sa.Column("step_number", sa.Integer(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("instructions", sa.Text(), nullable=True),
        sa.Column("step_type", sa.Text(), server_default=sa.text("'manual'"), nullable=False),
        sa.Column("expected_value", sa.Numeric(18, 6), nullable=True),
        sa.Column("unit", sa.Text(), nullable=True),
        sa.Column("actual_value", sa.Numeric(18, 6), nullable=True),
        sa.Column("requires_signature", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("signature_data", sa.Text(), nullable=True),
        sa.Column("status", sa.Text(), server_default=sa.text("'pending'"), nullable=False),
        sa.Column("performed_by", sa.Text(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("duration_minutes", sa.Integer(), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        _tenant_fk("batch_steps"),
        sa.ForeignKeyConstraint(
            ["batch_id"], ["batches.id"], ondelete="CASCADE", name="fk_batch_steps_batch_id_batches"
        ),
        sa.UniqueConstraint("batch_id", "step_number", name="uq_batch_steps_batch_step_number"),
    )
    op.create_index("ix_batch_steps_tenant_id", "batch_steps", ["tenant_id"])
    op.create_index("ix_batch_steps_batch_id", "batch_steps", ["batch_id"])

    op.create_table(
        "pdf_reports",
        _id(),
        _tenant_id(),
        sa.Column("batch_id", sa.UUID(), nullable=False),
        sa.Column("file_path", sa.Text(), nullable=False),
        sa.Column("generated_by", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        _tenant_fk("pdf_reports"),
        sa.ForeignKeyConstraint(
            ["batch_id"], ["batches.id"], ondelete="CASCADE", name="fk_pdf_reports_batch_id_batches"
        ),
    )
    op.create_index("ix_pdf_reports_tenant_id", "pdf_reports", ["tenant_id"])
    op.create_index("ix_pdf_reports_batch_id", "pdf_reports", ["batch_id"])

    # Audit Logs
    op.create_table(
        "audit_logs",
        _id(),
        _tenant_id(),
        sa.Column("action", sa.Text(), nullable=False),
        sa.Column("entity_type", sa.Text(), nullable=True),
        sa.Column("entity_id", sa.UUID(), nullable=True),
        sa.Column("batch_id", sa.UUID(), nullable=True),
        sa.Column("step_id", sa.UUID(), nullable=True),
        sa.Column("performed_by", sa.Text(), nullable=True),
        sa.Column("ip_address", sa.Text(), nullable=True),
        sa.Column("details", postgresql.JSONB(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        _tenant_fk("audit_logs"),
        sa.ForeignKeyConstraint(
            ["batch_id"], ["batches.id"], ondelete="SET NULL", name="fk_audit_logs_batch_id_batches"
        ),
        sa.ForeignKeyConstraint(
            ["step_id"], ["batch_steps.id"], ondelete="SET NULL", name="fk_audit_logs_step_id_batch_steps"
        ),
        sa.CheckConstraint(
            "entity_type IS NULL OR entity_type IN ('batch', 'recipe', 'user', 'session')",
            name="ck_audit_logs_entity_type",
        ),
    )
    op.create_index("ix_audit_logs_tenant_id", "audit_logs", ["tenant_id"])
    op.create_index("ix_audit_logs_batch_id", "audit_logs", ["batch_id"])
    op.create_index("ix_audit_logs_tenant_created_at", "audit_logs", ["tenant_id", "created_at"])
    op.create_index("ix_audit_logs_entity", "audit_logs", ["entity_type", "entity_id"])

    # Enable RLS and add policies
    for tbl in TENANT_SCOPED_TABLES:
        op.execute(f"ALTER TABLE {tbl} ENABLE ROW LEVEL SECURITY;")
        op.execute(
            f"""
            CREATE POLICY {tbl}_tenant_isolation ON {tbl}
            USING (tenant_id = current_setting('app.tenant_id', true)::uuid)
            WITH CHECK (tenant_id = current_setting('app.tenant_id', true)::uuid);
            """
        )


def downgrade() -> None:
    # Drop RLS policies
    for tbl in TENANT_SCOPED_TABLES:
        op.execute(f"DROP POLICY IF EXISTS {tbl}_tenant_isolation ON {tbl};")
        op.execute(f"ALTER TABLE {tbl} DISABLE ROW LEVEL SECURITY;")

    # Drop tables in reverse dependency order
    op.drop_table("audit_logs")
    op.drop_table("pdf_reports")
    op.drop_table("batch_steps")
    op.drop_table("batches")
    op.drop_table("recipe_steps")
    op.drop_table("recipes")
    op.drop_table("users")
    op.drop_table("tenant_settings")
    op.drop_table("tenants")

    # Helper function
    op.execute("DROP FUNCTION IF EXISTS set_tenant_id(uuid);")
