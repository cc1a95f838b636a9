"""create agency crm schema

Revision ID: 202610010001
Revises:
Create Date: 2026-10-01 00:01:00
"""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa


revision: str = "202610010001"
down_revision: str | None = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def _lifecycle() -> list[sa.Column]:
    return [
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("row_version", sa.Integer(), nullable=False, server_default="1"),
    ]


def _money(name: str, nullable: bool = False) -> sa.Column:
    return sa.Column(name, sa.Numeric(18, 2), nullable=nullable, server_default=None if nullable else "0")


def upgrade() -> None:
    op.create_table(
        "crm_team",
        *_lifecycle(),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("manager_id", sa.Uuid(), nullable=True),
        sa.Column("region", sa.String(length=64), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_table(
        "crm_user",
        *_lifecycle(),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("full_name", sa.Text(), nullable=False),
        sa.Column("role", sa.String(length=32), nullable=False, server_default="rep"),
        sa.Column("team_id", sa.Uuid(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.CheckConstraint("role IN ('admin', 'manager', 'rep', 'support', 'marketing')", name="ck_crm_user_role"),
        sa.ForeignKeyConstraint(["team_id"], ["crm_team.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email", name="uq_crm_user_email"),
    )
    op.create_foreign_key(
        "fk_crm_team_manager", "crm_team", "crm_user", ["manager_id"], ["id"], ondelete="SET NULL"
    )

    op.create_table(
        "crm_account",
        *_lifecycle(),
        sa.Column("legal_name", sa.Text(), nullable=False),
        sa.Column("normalized_name", sa.Text(), nullable=False),
        sa.Column("account_type", sa.String(length=32), nullable=False, server_default="prospect"),
        sa.Column("industry", sa.String(length=128), nullable=True),
        sa.Column("size_tier", sa.String(length=16), nullable=True),
        sa.Column("region", sa.String(length=64), nullable=True),
        sa.Column("owner_team_id", sa.Uuid(), nullable=True),
        sa.Column("owner_id", sa.Uuid(), nullable=True),
        sa.Column("parent_account_id", sa.Uuid(), nullable=True),
        sa.Column("tax_id", sa.String(length=64), nullable=True),
        sa.Column("website", sa.Text(), nullable=True),
        sa.Column("phone", sa.String(length=32), nullable=True),
        sa.Column("email", sa.String(length=320), nullable=True),
        sa.Column("billing_address", sa.JSON(), nullable=True),
        sa.Column("shipping_address", sa.JSON(), nullable=True),
        _money("annual_revenue", nullable=True),
        sa.Column("number_of_employees", sa.Integer(), nullable=True),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="SAR"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.ForeignKeyConstraint(["owner_team_id"], ["crm_team.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["parent_account_id"], ["crm_account.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_crm_account_normalized_name", "crm_account", ["normalized_name"], unique=False)
    op.create_index("ix_crm_account_created_at", "crm_account", ["created_at"], unique=False)
    op.create_index("ix_crm_account_parent_account_id", "crm_account", ["parent_account_id"], unique=False)

    op.create_table(
        "crm_contact",
        *_lifecycle(),
        sa.Column("account_id", sa.Uuid(), nullable=True),
        sa.Column("first_name", sa.Text(), nullable=False),
        sa.Column("last_name", sa.Text(), nullable=False),
        sa.Column("primary_email", sa.String(length=320), nullable=True),
        sa.Column("mx_validated", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("phones", sa.JSON(), nullable=False),
        sa.Column("channels", sa.JSON(), nullable=False),
        sa.Column("opt_in_status", sa.String(length=16), nullable=False, server_default="pending"),
        sa.Column("opt_in_source", sa.Text(), nullable=True),
        sa.Column("utm", sa.JSON(), nullable=True),
        sa.Column("job_title", sa.Text(), nullable=True),
        sa.Column("department", sa.Text(), nullable=True),
        sa.Column("owner_id", sa.Uuid(), nullable=True),
        sa.Column("is_primary", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.ForeignKeyConstraint(["account_id"], ["crm_account.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_crm_contact_account_id", "crm_contact", ["account_id"], unique=False)
    op.create_index("ix_crm_contact_primary_email", "crm_contact", ["primary_email"], unique=False)
    op.create_index("ix_crm_contact_created_at", "crm_contact", ["created_at"], unique=False)

    op.create_table(
        "crm_opportunity",
        *_lifecycle(),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("account_id", sa.Uuid(), nullable=False),
        sa.Column("contact_id", sa.Uuid(), nullable=True),
        sa.Column("owner_id", sa.Uuid(), nullable=True),
        sa.Column("stage", sa.String(length=32), nullable=False, server_default="prospecting"),
        _money("amount"),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="SAR"),
        sa.Column("probability", sa.Integer(), nullable=False, server_default="10"),
        sa.Column("forecast_category", sa.String(length=16), nullable=False, server_default="pipeline"),
        sa.Column("lead_source", sa.String(length=32), nullable=True),
        sa.Column("expected_close_date", sa.Date(), nullable=True),
        sa.Column("actual_close_date", sa.Date(), nullable=True),
        sa.Column("stage_entered_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("is_closed", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("is_won", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("loss_reason", sa.Text(), nullable=True),
        sa.Column("next_step", sa.Text(), nullable=True),
        sa.CheckConstraint(
            "(stage = 'closed-won' AND is_closed AND is_won)"
            " OR (stage = 'closed-lost' AND is_closed AND NOT is_won)"
            " OR (stage NOT IN ('closed-won', 'closed-lost') AND NOT is_closed AND NOT is_won)",
            name="ck_crm_opportunity_stage_flags",
        ),
        sa.CheckConstraint("probability BETWEEN 0 AND 100", name="ck_crm_opportunity_probability_range"),
        sa.ForeignKeyConstraint(["account_id"], ["crm_account.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["contact_id"], ["crm_contact.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_crm_opportunity_account_id", "crm_opportunity", ["account_id"], unique=False)
    op.create_index("ix_crm_opportunity_stage", "crm_opportunity", ["stage"], unique=False)
    op.create_index("ix_crm_opportunity_created_at", "crm_opportunity", ["created_at"], unique=False)

    op.create_table(
        "crm_lead",
        *_lifecycle(),
        sa.Column("first_name", sa.Text(), nullable=False),
        sa.Column("last_name", sa.Text(), nullable=False),
        sa.Column("email", sa.String(length=320), nullable=True),
        sa.Column("phone", sa.String(length=32), nullable=True),
        sa.Column("company_name", sa.Text(), nullable=True),
        sa.Column("lead_source", sa.String(length=32), nullable=False, server_default="website"),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="new"),
        sa.Column("rating", sa.String(length=8), nullable=True),
        sa.Column("lead_score", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("fit_score", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("engagement_score", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("probability", sa.Integer(), nullable=False, server_default="0"),
        _money("estimated_value", nullable=True),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="SAR"),
        sa.Column("utm", sa.JSON(), nullable=True),
        sa.Column("unqualified_reason", sa.Text(), nullable=True),
        sa.Column("owner_id", sa.Uuid(), nullable=True),
        sa.Column("converted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("converted_contact_id", sa.Uuid(), nullable=True),
        sa.Column("converted_account_id", sa.Uuid(), nullable=True),
        sa.Column("converted_opportunity_id", sa.Uuid(), nullable=True),
        sa.CheckConstraint(
            "converted_at IS NOT NULL OR (converted_contact_id IS NULL AND converted_account_id IS NULL"
            " AND converted_opportunity_id IS NULL)",
            name="ck_crm_lead_conversion_requires_converted_at",
        ),
        sa.CheckConstraint("probability BETWEEN 0 AND 100", name="ck_crm_lead_probability_range"),
        sa.ForeignKeyConstraint(["converted_contact_id"], ["crm_contact.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["converted_account_id"], ["crm_account.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["converted_opportunity_id"], ["crm_opportunity.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_crm_lead_status", "crm_lead", ["status"], unique=False)
    op.create_index("ix_crm_lead_created_at", "crm_lead", ["created_at"], unique=False)

    op.create_table(
        "crm_ticket",
        *_lifecycle(),
        sa.Column("ticket_number", sa.String(length=32), nullable=False),
        sa.Column("subject", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("account_id", sa.Uuid(), nullable=True),
        sa.Column("contact_id", sa.Uuid(), nullable=True),
        sa.Column("assigned_to", sa.Uuid(), nullable=True),
        sa.Column("priority", sa.String(length=16), nullable=False, server_default="medium"),
        sa.Column("category", sa.String(length=32), nullable=False, server_default="general"),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="open"),
        sa.Column("sla_target", sa.DateTime(timezone=True), nullable=True),
        sa.Column("sla_breached", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("first_response_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("satisfaction", sa.Integer(), nullable=True),
        sa.Column("tags", sa.JSON(), nullable=False),
        sa.CheckConstraint("satisfaction IS NULL OR satisfaction BETWEEN 1 AND 5", name="ck_crm_ticket_satisfaction"),
        sa.ForeignKeyConstraint(["account_id"], ["crm_account.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["contact_id"], ["crm_contact.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("ticket_number", name="uq_crm_ticket_number"),
    )
    op.create_index("ix_crm_ticket_status", "crm_ticket", ["status"], unique=False)
    op.create_index("ix_crm_ticket_created_at", "crm_ticket", ["created_at"], unique=False)

    op.create_table(
        "crm_product",
        *_lifecycle(),
        sa.Column("sku", sa.String(length=64), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("unit_price", sa.Numeric(18, 2), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="SAR"),
        sa.Column("billing_frequency", sa.String(length=16), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("sku", name="uq_crm_product_sku"),
    )

    op.create_table(
        "crm_quote",
        *_lifecycle(),
        sa.Column("quote_number", sa.String(length=32), nullable=False),
        sa.Column("account_id", sa.Uuid(), nullable=False),
        sa.Column("opportunity_id", sa.Uuid(), nullable=True),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="SAR"),
        sa.Column("line_items", sa.JSON(), nullable=False),
        _money("subtotal"),
        _money("discount_total"),
        _money("tax_total"),
        _money("total"),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="draft"),
        sa.Column("valid_until", sa.Date(), nullable=True),
        sa.Column("approved_by", sa.Text(), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["account_id"], ["crm_account.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["opportunity_id"], ["crm_opportunity.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("quote_number", name="uq_crm_quote_number"),
    )

    op.create_table(
        "crm_invoice",
        *_lifecycle(),
        sa.Column("invoice_number", sa.String(length=32), nullable=False),
        sa.Column("account_id", sa.Uuid(), nullable=False),
        sa.Column("quote_id", sa.Uuid(), nullable=True),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="SAR"),
        sa.Column("line_items", sa.JSON(), nullable=False),
        _money("subtotal"),
        _money("discount_total"),
        _money("tax_total"),
        _money("total"),
        _money("amount_paid"),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="draft"),
        sa.Column("issued_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("due_date", sa.Date(), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["account_id"], ["crm_account.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["quote_id"], ["crm_quote.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("invoice_number", name="uq_crm_invoice_number"),
    )

    op.create_table(
        "crm_subscription",
        *_lifecycle(),
        sa.Column("account_id", sa.Uuid(), nullable=False),
        sa.Column("contact_id", sa.Uuid(), nullable=True),
        sa.Column("product_id", sa.Uuid(), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("unit_price", sa.Numeric(18, 2), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="SAR"),
        sa.Column("billing_frequency", sa.String(length=16), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="active"),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("next_renewal_date", sa.Date(), nullable=False),
        sa.Column("auto_renew", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["account_id"], ["crm_account.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["contact_id"], ["crm_contact.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["product_id"], ["crm_product.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "crm_activity",
        *_lifecycle(),
        sa.Column("activity_type", sa.String(length=16), nullable=False),
        sa.Column("subject", sa.Text(), nullable=False),
        sa.Column("body", sa.Text(), nullable=True),
        sa.Column("entity_type", sa.String(length=32), nullable=False),
        sa.Column("entity_id", sa.Uuid(), nullable=False),
        sa.Column("owner_id", sa.Uuid(), nullable=True),
        sa.Column("due_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_crm_activity_entity", "crm_activity", ["entity_type", "entity_id"], unique=False)

    op.create_table(
        "crm_audit_log",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("actor_user_id", sa.Text(), nullable=False),
        sa.Column("entity_type", sa.String(length=32), nullable=False),
        sa.Column("entity_id", sa.String(length=64), nullable=False),
        sa.Column("operation", sa.String(length=32), nullable=False),
        sa.Column("before", sa.JSON(), nullable=True),
        sa.Column("after", sa.JSON(), nullable=True),
        sa.Column("changed_fields", sa.JSON(), nullable=False),
        sa.Column("correlation_id", sa.Text(), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_crm_audit_log_entity", "crm_audit_log", ["entity_type", "entity_id"], unique=False)
    op.create_index("ix_crm_audit_log_occurred_at", "crm_audit_log", ["occurred_at"], unique=False)

    op.create_table(
        "crm_timeline_event",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("entity_type", sa.String(length=32), nullable=False),
        sa.Column("entity_id", sa.String(length=64), nullable=False),
        sa.Column("event_type", sa.String(length=64), nullable=False),
        sa.Column("summary", sa.Text(), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=True),
        sa.Column("actor_user_id", sa.Text(), nullable=False),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_crm_timeline_event_entity",
        "crm_timeline_event",
        ["entity_type", "entity_id", "occurred_at"],
        unique=False,
    )

    op.create_table(
        "crm_tag",
        *_lifecycle(),
        sa.Column("name", sa.String(length=64), nullable=False),
        sa.Column("color", sa.String(length=16), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name", name="uq_crm_tag_name"),
    )
    op.create_table(
        "crm_entity_tag",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("tag_id", sa.Uuid(), nullable=False),
        sa.Column("entity_type", sa.String(length=32), nullable=False),
        sa.Column("entity_id", sa.Uuid(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["tag_id"], ["crm_tag.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tag_id", "entity_type", "entity_id", name="uq_crm_entity_tag_triplet"),
    )
    op.create_index("ix_crm_entity_tag_entity", "crm_entity_tag", ["entity_type", "entity_id"], unique=False)

    op.create_table(
        "crm_custom_field",
        *_lifecycle(),
        sa.Column("entity_type", sa.String(length=32), nullable=False),
        sa.Column("field_key", sa.String(length=64), nullable=False),
        sa.Column("label", sa.Text(), nullable=False),
        sa.Column("data_type", sa.String(length=16), nullable=False),
        sa.Column("is_required", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("allowed_values", sa.JSON(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("entity_type", "field_key", name="uq_crm_custom_field_entity_key"),
    )
    op.create_table(
        "crm_custom_value",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("entity_type", sa.String(length=32), nullable=False),
        sa.Column("entity_id", sa.Uuid(), nullable=False),
        sa.Column("field_key", sa.String(length=64), nullable=False),
        sa.Column("value_text", sa.Text(), nullable=True),
        sa.Column("value_number", sa.Numeric(18, 4), nullable=True),
        sa.Column("value_bool", sa.Boolean(), nullable=True),
        sa.Column("value_date", sa.Date(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("entity_type", "entity_id", "field_key", name="uq_crm_custom_value_entity_field"),
    )

    op.create_table(
        "crm_saved_view",
        *_lifecycle(),
        sa.Column("user_id", sa.Text(), nullable=False),
        sa.Column("endpoint", sa.Text(), nullable=False),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("columns", sa.JSON(), nullable=False),
        sa.Column("sorts", sa.JSON(), nullable=False),
        sa.Column("filters", sa.JSON(), nullable=False),
        sa.Column("page_size", sa.Integer(), nullable=False, server_default="25"),
        sa.Column("search", sa.Text(), nullable=True),
        sa.Column("is_default", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "endpoint", "name", name="uq_crm_saved_view_user_endpoint_name"),
    )
    op.create_index("ix_crm_saved_view_user_endpoint", "crm_saved_view", ["user_id", "endpoint"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_crm_saved_view_user_endpoint", table_name="crm_saved_view")
    op.drop_table("crm_saved_view")
    op.drop_table("crm_custom_value")
    op.drop_table("crm_custom_field")
    op.drop_index("ix_crm_entity_tag_entity", table_name="crm_entity_tag")
    op.drop_table("crm_entity_tag")
    op.drop_table("crm_tag")
    op.drop_index("ix_crm_timeline_event_entity", table_name="crm_timeline_event")
    op.drop_table("crm_timeline_event")
    op.drop_index("ix_crm_audit_log_occurred_at", table_name="crm_audit_log")
    op.drop_index("ix_crm_audit_log_entity", table_name="crm_audit_log")
    op.drop_table("crm_audit_log")
    op.drop_index("ix_crm_activity_entity", table_name="crm_activity")
    op.drop_table("crm_activity")
    op.drop_table("crm_subscription")
    op.drop_table("crm_invoice")
    op.drop_table("crm_quote")
    op.drop_table("crm_product")
    op.drop_index("ix_crm_ticket_created_at", table_name="crm_ticket")
    op.drop_index("ix_crm_ticket_status", table_name="crm_ticket")
    op.drop_table("crm_ticket")
    op.drop_index("ix_crm_lead_created_at", table_name="crm_lead")
    op.drop_index("ix_crm_lead_status", table_name="crm_lead")
    op.drop_table("crm_lead")
    op.drop_index("ix_crm_opportunity_created_at", table_name="crm_opportunity")
    op.drop_index("ix_crm_opportunity_stage", table_name="crm_opportunity")
    op.drop_index("ix_crm_opportunity_account_id", table_name="crm_opportunity")
    op.drop_table("crm_opportunity")
    op.drop_index("ix_crm_contact_created_at", table_name="crm_contact")
    op.drop_index("ix_crm_contact_primary_email", table_name="crm_contact")
    op.drop_index("ix_crm_contact_account_id", table_name="crm_contact")
    op.drop_table("crm_contact")
    op.drop_index("ix_crm_account_parent_account_id", table_name="crm_account")
    op.drop_index("ix_crm_account_created_at", table_name="crm_account")
    op.drop_index("ix_crm_account_normalized_name", table_name="crm_account")
    op.drop_table("crm_account")
    op.drop_constraint("fk_crm_team_manager", "crm_team", type_="foreignkey")
    op.drop_table("crm_user")
    op.drop_table("crm_team")
