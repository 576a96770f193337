"""create core schema

Revision ID: 0f3c2a9d1b7e
Revises:
Create Date: 2026-10-12 09:14:51.204113

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '0f3c2a9d1b7e'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "customers",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("phone", sa.String(), nullable=False),
        sa.Column("address", sa.String(), nullable=False),
        sa.Column("company", sa.String(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("total_jobs", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("total_revenue", sa.Numeric(14, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )
    op.create_index("ix_customers_id", "customers", ["id"], unique=False)
    op.create_index("ix_customers_email", "customers", ["email"], unique=False)
    op.create_index("ix_customers_phone", "customers", ["phone"], unique=False)

    op.create_table(
        "grouped_items",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("item_name", sa.String(), nullable=False),
        sa.Column("name_key", sa.String(), nullable=False),
        sa.Column("category", sa.String(), nullable=False, server_default="other"),
        sa.Column("unit", sa.String(), nullable=False),
        sa.Column("total_value", sa.Numeric(14, 3), nullable=False, server_default=sa.text("0")),
        sa.Column("average_purchase_price", sa.Numeric(14, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("min_value", sa.Numeric(14, 3), nullable=False, server_default=sa.text("0")),
        sa.Column("last_restocked", sa.DateTime(timezone=True), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.CheckConstraint("total_value >= 0", name="ck_grouped_items_total_nonnegative"),
    )
    op.create_index("ix_grouped_items_id", "grouped_items", ["id"], unique=False)
    op.create_index("ix_grouped_items_name_key", "grouped_items", ["name_key"], unique=True)
    op.create_index("ix_grouped_items_category", "grouped_items", ["category"], unique=False)

    op.create_table(
        "stock_lots",
        sa.Column("lot_id", sa.String(), primary_key=True, nullable=False),
        sa.Column("item_id", sa.Integer(), sa.ForeignKey("grouped_items.id", ondelete="CASCADE"), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("value", sa.Numeric(14, 3), nullable=False),
        sa.Column("purchase_price", sa.Numeric(14, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("supplier", sa.String(), nullable=True),
        sa.Column("brand", sa.String(), nullable=True),
        sa.Column("location", sa.String(), nullable=True),
        sa.Column("batch_number", sa.String(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("purchase_date", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("expiry_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.UniqueConstraint("item_id", "position", name="uq_stock_lots_item_position"),
        sa.CheckConstraint("value >= 0", name="ck_stock_lots_value_nonnegative"),
        sa.CheckConstraint("value > 0 OR is_active = false", name="ck_stock_lots_empty_inactive"),
    )
    op.create_index("ix_stock_lots_item_id", "stock_lots", ["item_id"], unique=False)

    op.create_table(
        "serialized_units",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("serial_number", sa.String(), nullable=False),
        sa.Column("item_name", sa.String(), nullable=False),
        sa.Column("brand", sa.String(), nullable=False),
        sa.Column("model", sa.String(), nullable=False),
        sa.Column("category", sa.String(), nullable=False, server_default="other"),
        sa.Column("purchase_price", sa.Numeric(14, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("sale_price", sa.Numeric(14, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("status", sa.String(), nullable=False, server_default="available"),
        sa.Column("current_job_id", sa.Integer(), nullable=True),
        sa.Column("current_customer_id", sa.Integer(), nullable=True),
        sa.Column("installed_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("supplier", sa.String(), nullable=True),
        sa.Column("purchase_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("warranty_expiry", sa.DateTime(timezone=True), nullable=True),
        sa.Column("location", sa.String(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("version", sa.Integer(), nullable=False),
    )
    op.create_index("ix_serialized_units_id", "serialized_units", ["id"], unique=False)
    op.create_index("ix_serialized_units_serial_number", "serialized_units", ["serial_number"], unique=True)
    op.create_index("ix_serialized_units_status", "serialized_units", ["status"], unique=False)
    op.create_index("ix_serialized_units_current_job_id", "serialized_units", ["current_job_id"], unique=False)

    op.create_table(
        "stock_ledger",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("transaction_type", sa.String(), nullable=False),
        sa.Column("inventory_type", sa.String(), nullable=False),
        sa.Column("item_id", sa.Integer(), nullable=False),
        sa.Column("item_name", sa.String(), nullable=False),
        sa.Column("lot_id", sa.String(), nullable=True),
        sa.Column("serial_number", sa.String(), nullable=True),
        sa.Column("quantity_change", sa.Numeric(14, 3), nullable=False),
        sa.Column("unit_cost", sa.Numeric(14, 2), nullable=False),
        sa.Column("total_value", sa.Numeric(14, 2), nullable=False),
        sa.Column("reference_type", sa.String(), nullable=False),
        sa.Column("reference_id", sa.String(), nullable=True),
        sa.Column("performed_by", sa.String(), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("details", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )
    op.create_index("ix_stock_ledger_id", "stock_ledger", ["id"], unique=False)
    op.create_index("ix_stock_ledger_transaction_type", "stock_ledger", ["transaction_type"], unique=False)
    op.create_index("ix_stock_ledger_lot_id", "stock_ledger", ["lot_id"], unique=False)
    op.create_index("ix_stock_ledger_serial_number", "stock_ledger", ["serial_number"], unique=False)
    op.create_index(
        "ix_stock_ledger_item_created",
        "stock_ledger",
        ["inventory_type", "item_id", "created_at"],
        unique=False,
    )
    op.create_index("ix_stock_ledger_reference", "stock_ledger", ["reference_type", "reference_id"], unique=False)

    op.create_table(
        "jobs",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("job_number", sa.String(), nullable=False),
        sa.Column("customer_id", sa.Integer(), sa.ForeignKey("customers.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("customer_name", sa.String(), nullable=True),
        sa.Column("customer_address", sa.String(), nullable=True),
        sa.Column("customer_phone", sa.String(), nullable=True),
        sa.Column("type", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("assigned_to", sa.String(), nullable=True),
        sa.Column("status", sa.String(), nullable=False, server_default="pending"),
        sa.Column("scheduled_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("labor_hours", sa.Numeric(10, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("labor_rate", sa.Numeric(14, 2), nullable=True),
        sa.Column("labor_cost", sa.Numeric(14, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("labor_overridden", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("labor_overridden_by", sa.String(), nullable=True),
        sa.Column("total_material_cost", sa.Numeric(14, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("total_cost", sa.Numeric(14, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("total_revenue", sa.Numeric(14, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("profit", sa.Numeric(14, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("costing_approved", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("costing_approved_by", sa.String(), nullable=True),
        sa.Column("costing_approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("costing_notes", sa.Text(), nullable=True),
        sa.Column("profit_at_approval", sa.Numeric(14, 2), nullable=True),
        sa.Column("total_cost_at_approval", sa.Numeric(14, 2), nullable=True),
        sa.Column("total_revenue_at_approval", sa.Numeric(14, 2), nullable=True),
        sa.Column("technician_payment_type", sa.String(), nullable=True),
        sa.Column("technician_payment_fixed_amount", sa.Numeric(14, 2), nullable=True),
        sa.Column("technician_payment_percentage", sa.Numeric(6, 2), nullable=True),
        sa.Column("technician_payment_overridden", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("technician_payment_override_amount", sa.Numeric(14, 2), nullable=True),
        sa.Column("technician_payment_overridden_by", sa.String(), nullable=True),
        sa.Column("photo_urls", sa.JSON(), nullable=False),
        sa.Column("document_urls", sa.JSON(), nullable=False),
        sa.Column("technician_notes", sa.Text(), nullable=True),
        sa.Column("admin_notes", sa.Text(), nullable=True),
        sa.Column("created_by", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("version", sa.Integer(), nullable=False),
    )
    op.create_index("ix_jobs_id", "jobs", ["id"], unique=False)
    op.create_index("ix_jobs_job_number", "jobs", ["job_number"], unique=True)
    op.create_index("ix_jobs_customer_id", "jobs", ["customer_id"], unique=False)
    op.create_index("ix_jobs_assigned_to", "jobs", ["assigned_to"], unique=False)
    op.create_index("ix_jobs_status", "jobs", ["status"], unique=False)
    op.create_index("ix_jobs_created_at", "jobs", ["created_at"], unique=False)

    op.create_table(
        "job_materials",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("job_id", sa.Integer(), sa.ForeignKey("jobs.id", ondelete="CASCADE"), nullable=False),
        sa.Column("inventory_type", sa.String(), nullable=False),
        sa.Column("inventory_item_id", sa.Integer(), nullable=False),
        sa.Column("item_name", sa.String(), nullable=False),
        sa.Column("serial_number", sa.String(), nullable=True),
        sa.Column("unit", sa.String(), nullable=False),
        sa.Column("value_used", sa.Numeric(14, 3), nullable=False),
        sa.Column("unit_cost", sa.Numeric(14, 2), nullable=False),
        sa.Column("total_cost", sa.Numeric(14, 2), nullable=False),
        sa.Column("unit_cost_overridden", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("lot_allocations", sa.JSON(), nullable=False),
        sa.Column("added_by", sa.String(), nullable=True),
        sa.Column("added_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )
    op.create_index("ix_job_materials_id", "job_materials", ["id"], unique=False)
    op.create_index("ix_job_materials_job_id", "job_materials", ["job_id"], unique=False)

    op.create_table(
        "job_additional_costs",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("job_id", sa.Integer(), sa.ForeignKey("jobs.id", ondelete="CASCADE"), nullable=False),
        sa.Column("description", sa.String(), nullable=False),
        sa.Column("amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("added_by", sa.String(), nullable=True),
        sa.Column("added_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )
    op.create_index("ix_job_additional_costs_id", "job_additional_costs", ["id"], unique=False)
    op.create_index("ix_job_additional_costs_job_id", "job_additional_costs", ["job_id"], unique=False)

    op.create_table(
        "app_settings",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("default_hourly_rate", sa.Numeric(14, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("hourly_rates_by_job_type", sa.JSON(), nullable=False),
        sa.Column("default_revenue_by_job_type", sa.JSON(), nullable=False),
        sa.Column("technician_payment_type", sa.String(), nullable=False, server_default="hourly"),
        sa.Column("technician_payment_fixed_amount", sa.Numeric(14, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("technician_payment_percentage", sa.Numeric(6, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("allow_negative_profit", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("require_cost_approval", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_by", sa.String(), nullable=True),
    )

    op.create_table(
        "event_outbox",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("scope", sa.String(), nullable=False),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("processed", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("retry_count", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("next_attempt_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("last_error", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )
    op.create_index("ix_event_outbox_scope", "event_outbox", ["scope"], unique=False)
    op.create_index("ix_event_outbox_event_type", "event_outbox", ["event_type"], unique=False)
    op.create_index("ix_event_outbox_due", "event_outbox", ["processed", "next_attempt_at"], unique=False)


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table("event_outbox")
    op.drop_table("app_settings")
    op.drop_table("job_additional_costs")
    op.drop_table("job_materials")
    op.drop_table("jobs")
    op.drop_table("stock_ledger")
    op.drop_table("serialized_units")
    op.drop_table("stock_lots")
    op.drop_table("grouped_items")
    op.drop_table("customers")
