"""initial trade-in schema

Revision ID: 0001_tradein
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "0001_tradein"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "device_catalog",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("brand", sa.String(length=100), nullable=False),
        sa.Column("model", sa.String(length=200), nullable=False),
        sa.Column("device_type", sa.String(length=50), nullable=False),
        sa.Column("release_year", sa.Integer(), nullable=False),
        sa.Column("storage_gb", sa.Integer(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_device_catalog_brand", "device_catalog", ["brand"])
    op.create_index("ix_device_catalog_model", "device_catalog", ["model"])

    op.create_table(
        "device_base_prices",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("catalog_entry_id", sa.Integer(), nullable=False),
        sa.Column("price_cents", sa.Integer(), nullable=False),
        sa.Column("as_of", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["catalog_entry_id"], ["device_catalog.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_device_base_prices_catalog_entry_id", "device_base_prices", ["catalog_entry_id"])

    op.create_table(
        "price_adjustment_rules",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("code", sa.String(length=100), nullable=False),
        sa.Column("multiplier", sa.Numeric(5, 4), nullable=False),
        sa.Column("flat_deduction_cents", sa.Integer(), nullable=True),
        sa.Column("applies_to", sa.String(length=100), nullable=False),
        sa.Column("description", sa.String(length=500), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("code"),
    )

    op.create_table(
        "trade_ins",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("public_id", sa.String(length=36), nullable=False),
        sa.Column("owner_id", sa.String(), nullable=False),
        sa.Column("device_brand", sa.String(length=100), nullable=False),
        sa.Column("device_model", sa.String(length=200), nullable=False),
        sa.Column("device_type", sa.String(length=50), nullable=False),
        sa.Column("device_storage_gb", sa.Integer(), nullable=True),
        sa.Column("imei", sa.String(length=20), nullable=True),
        sa.Column("photo_urls", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("proposed_value_cents", sa.Integer(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("ai_vendor", sa.String(length=50), nullable=True),
        sa.Column("ai_version", sa.String(length=50), nullable=True),
        sa.Column("ai_confidence", sa.Numeric(5, 4), nullable=True),
        sa.Column("ai_assessment", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("auto_grade", sa.String(length=1), nullable=True),
        sa.Column("auto_offer_cents", sa.Integer(), nullable=True),
        sa.Column("auto_offer_breakdown", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("approved_grade", sa.String(length=1), nullable=True),
        sa.Column("approved_value_cents", sa.Integer(), nullable=True),
        sa.Column("admin_notes", sa.Text(), nullable=True),
        sa.Column("credit_note_code", sa.String(length=32), nullable=True),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("state_version", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("submitted_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("processing_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("ai_assessed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("offer_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("user_accepted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("admin_approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("credit_issued_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_trade_ins_public_id", "trade_ins", ["public_id"], unique=True)
    op.create_index("ix_trade_ins_owner_id", "trade_ins", ["owner_id"])
    op.create_index("ix_trade_ins_status", "trade_ins", ["status"])

    op.create_table(
        "trade_in_timeline",
        sa.Column("timeline_id", sa.String(), nullable=False),
        sa.Column("trade_in_id", sa.Integer(), nullable=False),
        sa.Column("from_state", sa.String(), nullable=True),
        sa.Column("to_state", sa.String(), nullable=False),
        sa.Column("reason", sa.String(), nullable=False),
        sa.Column("actor", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["trade_in_id"], ["trade_ins.id"]),
        sa.PrimaryKeyConstraint("timeline_id"),
    )
    op.create_index("ix_trade_in_timeline_trade_in_id", "trade_in_timeline", ["trade_in_id"])

    op.create_table(
        "credit_notes",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("code", sa.String(length=32), nullable=False),
        sa.Column("owner_id", sa.String(), nullable=False),
        sa.Column("trade_in_id", sa.Integer(), nullable=True),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("remaining_cents", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("consumed_in_order_id", sa.String(), nullable=True),
        sa.Column("redeemed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("close_reason", sa.String(), nullable=True),
        sa.CheckConstraint("remaining_cents >= 0", name="ck_credit_notes_remaining_non_negative"),
        sa.CheckConstraint("remaining_cents <= amount_cents", name="ck_credit_notes_remaining_le_amount"),
        sa.ForeignKeyConstraint(["trade_in_id"], ["trade_ins.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_credit_notes_code", "credit_notes", ["code"], unique=True)
    op.create_index("ix_credit_notes_owner_id", "credit_notes", ["owner_id"])
    op.create_index("ix_credit_notes_trade_in_id", "credit_notes", ["trade_in_id"])
    op.create_index("ix_credit_notes_status", "credit_notes", ["status"])
    op.create_index("ix_credit_notes_expires_at", "credit_notes", ["expires_at"])

    op.create_table(
        "checkout_sessions",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("owner_id", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("credit_note_code", sa.String(length=32), nullable=True),
        sa.Column("credit_locked_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("order_id", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_checkout_sessions_owner_id", "checkout_sessions", ["owner_id"])
    op.create_index("ix_checkout_sessions_status", "checkout_sessions", ["status"])
    op.create_index("ix_checkout_sessions_expires_at", "checkout_sessions", ["expires_at"])

    op.create_table(
        "credit_note_locks",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("session_id", sa.String(), nullable=False),
        sa.Column("credit_note_code", sa.String(length=32), nullable=False),
        sa.Column("owner_id", sa.String(), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("order_id", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("released_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("consumed_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["session_id"], ["checkout_sessions.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_credit_note_locks_session_id", "credit_note_locks", ["session_id"])
    op.create_index("ix_credit_note_locks_credit_note_code", "credit_note_locks", ["credit_note_code"])
    op.create_index("ix_credit_note_locks_status", "credit_note_locks", ["status"])
    # Hot path for capacity checks.
    op.create_index(
        "ix_credit_note_locks_active",
        "credit_note_locks",
        ["credit_note_code"],
        postgresql_where=sa.text("status = 'LOCKED'"),
    )

    op.create_table(
        "stock_locks",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("session_id", sa.String(), nullable=False),
        sa.Column("product_id", sa.String(), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("released_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["session_id"], ["checkout_sessions.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_stock_locks_session_id", "stock_locks", ["session_id"])
    op.create_index("ix_stock_locks_product_id", "stock_locks", ["product_id"])
    op.create_index("ix_stock_locks_status", "stock_locks", ["status"])

    op.create_table(
        "webhook_events",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("event_id", sa.String(length=200), nullable=False),
        sa.Column("event_type", sa.String(length=100), nullable=False),
        sa.Column("source", sa.String(length=100), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("payload", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("next_retry_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("trade_in_id", sa.Integer(), nullable=True),
        sa.Column("credit_note_id", sa.Integer(), nullable=True),
        sa.Column("order_id", sa.String(), nullable=True),
        sa.Column("received_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_webhook_events_event_id", "webhook_events", ["event_id"], unique=True)
    op.create_index("ix_webhook_events_event_type", "webhook_events", ["event_type"])
    op.create_index("ix_webhook_events_status", "webhook_events", ["status"])
    op.create_index("ix_webhook_events_next_retry_at", "webhook_events", ["next_retry_at"])

    op.create_table(
        "outbox_events",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("aggregate_type", sa.String(), nullable=False),
        sa.Column("aggregate_id", sa.String(), nullable=False),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("topic", sa.String(), nullable=False),
        sa.Column("payload", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_outbox_events_aggregate_id", "outbox_events", ["aggregate_id"])
    op.create_index("ix_outbox_events_event_type", "outbox_events", ["event_type"])
    op.create_index("ix_outbox_events_status", "outbox_events", ["status"])
    op.create_index("ix_outbox_events_status_created_at", "outbox_events", ["status", "created_at"])


def downgrade() -> None:
    op.drop_table("outbox_events")
    op.drop_table("webhook_events")
    op.drop_table("stock_locks")
    op.drop_table("credit_note_locks")
    op.drop_table("checkout_sessions")
    op.drop_table("credit_notes")
    op.drop_table("trade_in_timeline")
    op.drop_table("trade_ins")
    op.drop_table("price_adjustment_rules")
    op.drop_table("device_base_prices")
    op.drop_table("device_catalog")
