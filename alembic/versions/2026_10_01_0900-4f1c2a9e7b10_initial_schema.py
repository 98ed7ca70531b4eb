"""initial_schema

Revision ID: 4f1c2a9e7b10
Revises:
Create Date: 2026-10-01 09:00:00.000000

"""

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision = "4f1c2a9e7b10"
down_revision = None
branch_labels = None
depends_on = None

# SQLAlchemy stores enum member NAMES
tenant_status = sa.Enum(
    "TRIAL", "ACTIVE", "PAST_DUE", "SUSPENDED", "CANCELLED", "EXPIRED", name="tenant_status"
)
subscription_status = sa.Enum(
    "TRIAL", "ACTIVE", "PAST_DUE", "CANCELLED", "EXPIRED", name="subscription_status"
)
plan_interval = sa.Enum("MONTHLY", "QUARTERLY", "YEARLY", name="plan_interval")
payment_status = sa.Enum("SUCCESS", "FAILED", name="payment_status")
invoice_status = sa.Enum("DRAFT", "OPEN", "PAID", "VOID", name="invoice_status")

# Tables carrying tenant_id that get a row-level security policy on PostgreSQL
TENANT_OWNED_TABLES = ("projects", "beneficiaries", "usage_metrics")
TENANT_GUC = "app.current_tenant_id"


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    """Create the tenant directory, RBAC, billing ledger, workspace and usage tables."""

    op.create_table(
        "tenants",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("subdomain", sa.String(100), nullable=True, unique=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("status", tenant_status, nullable=False, server_default="TRIAL"),
        sa.Column("trial_ends_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_tenants_status", "tenants", ["status"])

    # RBAC
    op.create_table(
        "permissions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("resource", sa.String(50), nullable=False),
        sa.Column("action", sa.String(50), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.UniqueConstraint("resource", "action", name="uq_permission_resource_action"),
    )
    op.create_table(
        "roles",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(50), nullable=False, unique=True),
        sa.Column("display_name", sa.String(100), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_system_role", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
    )
    op.create_table(
        "role_permissions",
        sa.Column(
            "role_id",
            sa.String(36),
            sa.ForeignKey("roles.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column(
            "permission_id",
            sa.String(36),
            sa.ForeignKey("permissions.id", ondelete="CASCADE"),
            primary_key=True,
        ),
    )
    op.create_table(
        "users",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("tenant_id", sa.String(36), sa.ForeignKey("tenants.id"), nullable=True),
        sa.Column("role_id", sa.String(36), sa.ForeignKey("roles.id"), nullable=True),
        sa.Column("email", sa.String(255), nullable=False, unique=True),
        sa.Column("first_name", sa.String(100), nullable=True),
        sa.Column("last_name", sa.String(100), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("is_platform_admin", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_users_tenant_id", "users", ["tenant_id"])

    # Billing ledger
    op.create_table(
        "plans",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(50), nullable=False, unique=True),
        sa.Column("display_name", sa.String(100), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("price", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("currency", sa.String(3), nullable=False, server_default="INR"),
        sa.Column("interval", plan_interval, nullable=False, server_default="MONTHLY"),
        sa.Column("trial_days", sa.Integer(), nullable=False, server_default="14"),
        sa.Column("external_plan_ref", sa.String(100), nullable=True),
        sa.Column("max_projects", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_users", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_beneficiaries", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_storage", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("finance_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("compliance_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("api_access", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("custom_branding", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
    )
    op.create_table(
        "subscriptions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("tenant_id", sa.String(36), sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column("plan_id", sa.String(36), sa.ForeignKey("plans.id"), nullable=False),
        sa.Column("status", subscription_status, nullable=False, server_default="TRIAL"),
        sa.Column("external_subscription_ref", sa.String(100), nullable=True, unique=True),
        sa.Column("external_customer_ref", sa.String(100), nullable=True),
        sa.Column("current_period_start", sa.DateTime(timezone=True), nullable=False),
        sa.Column("current_period_end", sa.DateTime(timezone=True), nullable=False),
        sa.Column("canceled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancel_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_subscriptions_tenant_id", "subscriptions", ["tenant_id"])
    op.create_index("ix_subscriptions_status", "subscriptions", ["status"])

    op.create_table(
        "payments",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "subscription_id", sa.String(36), sa.ForeignKey("subscriptions.id"), nullable=False
        ),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("status", payment_status, nullable=False),
        sa.Column("external_payment_ref", sa.String(100), nullable=False, unique=True),
        sa.Column("external_order_ref", sa.String(100), nullable=True),
        sa.Column("payment_method", sa.String(50), nullable=True),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("raw_event", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_payments_subscription_id", "payments", ["subscription_id"])

    op.create_table(
        "invoices",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "subscription_id", sa.String(36), sa.ForeignKey("subscriptions.id"), nullable=False
        ),
        sa.Column(
            "payment_id", sa.String(36), sa.ForeignKey("payments.id"), nullable=True, unique=True
        ),
        sa.Column("invoice_number", sa.String(50), nullable=False, unique=True),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("tax", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("total", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("status", invoice_status, nullable=False),
        sa.Column("billing_period_start", sa.DateTime(timezone=True), nullable=False),
        sa.Column("billing_period_end", sa.DateTime(timezone=True), nullable=False),
        sa.Column("due_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_invoices_subscription_id", "invoices", ["subscription_id"])
    op.create_index("ix_invoices_created_at", "invoices", ["created_at"])

    op.create_table(
        "invoice_sequences",
        sa.Column("period", sa.String(6), primary_key=True),
        sa.Column("last_value", sa.Integer(), nullable=False, server_default="0"),
    )

    # Workspace
    op.create_table(
        "projects",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("tenant_id", sa.String(36), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("start_date", sa.Date(), nullable=True),
        sa.Column("end_date", sa.Date(), nullable=True),
        *_timestamps(),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_projects_tenant_id", "projects", ["tenant_id"])

    op.create_table(
        "beneficiaries",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("tenant_id", sa.String(36), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("project_id", sa.String(36), nullable=True),
        sa.Column("contact", sa.String(255), nullable=True),
        *_timestamps(),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_beneficiaries_tenant_id", "beneficiaries", ["tenant_id"])
    op.create_index("ix_beneficiaries_project_id", "beneficiaries", ["project_id"])

    # Usage
    op.create_table(
        "usage_metrics",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("tenant_id", sa.String(36), nullable=False),
        sa.Column("metric_type", sa.String(50), nullable=False),
        sa.Column("value", sa.BigInteger(), nullable=False),
        sa.Column("recorded_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_usage_metrics_tenant_id", "usage_metrics", ["tenant_id"])
    op.create_index(
        "ix_usage_metrics_tenant_recorded", "usage_metrics", ["tenant_id", "recorded_at"]
    )

    if op.get_bind().dialect.name == "postgresql":
        for table in TENANT_OWNED_TABLES:
            op.execute(f"ALTER TABLE {table} ENABLE ROW LEVEL SECURITY")
            # Sessions without a tenant scope (sweeps, migrations) see every row
            op.execute(
                f"""
                CREATE POLICY {table}_tenant_isolation ON {table}
                USING (
                    coalesce(current_setting('{TENANT_GUC}', true), '') = ''
                    OR tenant_id = current_setting('{TENANT_GUC}', true)
                )
                """
            )


def downgrade() -> None:
    """Drop all tables and enum types."""
    is_postgresql = op.get_bind().dialect.name == "postgresql"
    if is_postgresql:
        for table in TENANT_OWNED_TABLES:
            op.execute(f"DROP POLICY IF EXISTS {table}_tenant_isolation ON {table}")

    for table in (
        "usage_metrics",
        "beneficiaries",
        "projects",
        "invoice_sequences",
        "invoices",
        "payments",
        "subscriptions",
        "plans",
        "users",
        "role_permissions",
        "roles",
        "permissions",
        "tenants",
    ):
        op.drop_table(table)

    if is_postgresql:
        for enum_type in (
            invoice_status,
            payment_status,
            plan_interval,
            subscription_status,
            tenant_status,
        ):
            enum_type.drop(op.get_bind(), checkfirst=True)
