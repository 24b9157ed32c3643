"""initial

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-18

"""

from alembic import op
import sqlalchemy as sa

revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None

OPEN_SESSION_FILTER = sa.text("status IN ('awaiting_receipt', 'awaiting_auto_payment')")


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("full_name", sa.String(length=200), nullable=False, server_default=""),
        sa.Column("role", sa.String(length=30), nullable=False),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_role", "users", ["role"])

    op.create_table(
        "customers",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("chat_id", sa.String(length=64), nullable=False),
        sa.Column("full_name", sa.String(length=200), nullable=False, server_default=""),
        sa.Column("phone", sa.String(length=40), nullable=False, server_default=""),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_customers_chat_id", "customers", ["chat_id"], unique=True)

    op.create_table(
        "trips",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("destination", sa.String(length=200), nullable=False, server_default=""),
        sa.Column("unit_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("total_seats", sa.Integer(), nullable=False),
        sa.Column("available_seats", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="active"),
        sa.Column("departure_date", sa.Date(), nullable=True),
        sa.Column("allow_gnpl", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("payment_instructions", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("available_seats >= 0", name="ck_trips_available_seats_nonneg"),
        sa.CheckConstraint("available_seats <= total_seats", name="ck_trips_available_seats_le_total"),
    )
    op.create_index("ix_trips_status", "trips", ["status"])

    op.create_table(
        "discount_vouchers",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("code", sa.String(length=64), nullable=False),
        sa.Column("discount_percent", sa.Numeric(5, 2), nullable=False),
        sa.Column("usage_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("usage_limit", sa.Integer(), nullable=True),
        sa.Column("trip_id", sa.String(length=36), nullable=True),
        sa.Column("valid_from", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_by", sa.String(length=36), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("usage_limit IS NULL OR usage_count <= usage_limit", name="ck_vouchers_usage_within_limit"),
        sa.CheckConstraint("usage_count >= 0", name="ck_vouchers_usage_nonneg"),
    )
    op.create_index("ix_discount_vouchers_code", "discount_vouchers", ["code"], unique=True)

    op.create_table(
        "booking_sessions",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("customer_id", sa.String(length=36), nullable=False),
        sa.Column("trip_id", sa.String(length=36), nullable=False),
        sa.Column("payment_method", sa.String(length=20), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("discount_code", sa.String(length=64), nullable=True),
        sa.Column("discount_percent", sa.Numeric(5, 2), nullable=False, server_default="0"),
        sa.Column("voucher_id", sa.String(length=36), nullable=True),
        sa.Column("base_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("discount_amount", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("final_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("status", sa.String(length=30), nullable=False, server_default="awaiting_receipt"),
        sa.Column("checkout_url", sa.String(length=1024), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_booking_sessions_customer_id", "booking_sessions", ["customer_id"])
    op.create_index("ix_booking_sessions_trip_id", "booking_sessions", ["trip_id"])
    op.create_index("ix_booking_sessions_status", "booking_sessions", ["status"])
    op.create_index(
        "uq_booking_sessions_open_customer", "booking_sessions", ["customer_id"], unique=True,
        postgresql_where=OPEN_SESSION_FILTER, sqlite_where=OPEN_SESSION_FILTER,
    )

    op.create_table(
        "receipts",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("reference_number", sa.String(length=120), nullable=False),
        sa.Column("reference_key", sa.String(length=100), nullable=False),
        sa.Column("customer_id", sa.String(length=36), nullable=True),
        sa.Column("trip_id", sa.String(length=36), nullable=False),
        sa.Column("session_id", sa.String(length=36), nullable=True),
        sa.Column("payment_method", sa.String(length=20), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("base_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("discount_code", sa.String(length=64), nullable=True),
        sa.Column("discount_percent", sa.Numeric(5, 2), nullable=False, server_default="0"),
        sa.Column("discount_amount", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("final_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("amount_paid", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="ETB"),
        sa.Column("attachment_url", sa.String(length=1024), nullable=True),
        sa.Column("attachment_mime", sa.String(length=64), nullable=True),
        sa.Column("attachment_size", sa.Integer(), nullable=True),
        sa.Column("receipt_hash", sa.String(length=64), nullable=True),
        sa.Column("receipt_link", sa.String(length=1024), nullable=True),
        sa.Column("receipt_provider", sa.String(length=40), nullable=True),
        sa.Column("receipt_date", sa.Date(), nullable=True),
        sa.Column("validation_mode", sa.String(length=10), nullable=False, server_default="lenient"),
        sa.Column("validation_score", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("validation_flags", sa.Text(), nullable=False, server_default="[]"),
        sa.Column("approval_status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("approval_notes", sa.Text(), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("decided_by", sa.String(length=36), nullable=True),
        sa.Column("decided_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("sold_by", sa.String(length=36), nullable=True),
        sa.Column("buyer_name", sa.String(length=200), nullable=True),
        sa.Column("buyer_phone", sa.String(length=40), nullable=True),
        sa.Column("gnpl_account_id", sa.String(length=36), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_receipts_reference_number", "receipts", ["reference_number"], unique=True)
    op.create_index("ix_receipts_reference_key", "receipts", ["reference_key"], unique=True)
    op.create_index("ix_receipts_customer_id", "receipts", ["customer_id"])
    op.create_index("ix_receipts_trip_id", "receipts", ["trip_id"])
    op.create_index("ix_receipts_payment_method", "receipts", ["payment_method"])
    op.create_index("ix_receipts_receipt_hash", "receipts", ["receipt_hash"])
    op.create_index("ix_receipts_approval_status", "receipts", ["approval_status"])
    op.create_index("ix_receipts_sold_by", "receipts", ["sold_by"])
    op.create_index("ix_receipts_created_at", "receipts", ["created_at"])

    op.create_table(
        "tickets",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("ticket_number", sa.String(length=40), nullable=False),
        sa.Column("serial_number", sa.String(length=40), nullable=False),
        sa.Column("receipt_id", sa.String(length=36), sa.ForeignKey("receipts.id", ondelete="CASCADE"), nullable=False),
        sa.Column("trip_id", sa.String(length=36), nullable=False),
        sa.Column("customer_id", sa.String(length=36), nullable=True),
        sa.Column("purchase_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("card_url", sa.String(length=1024), nullable=True),
        sa.Column("issued_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("checked_in_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("checked_in_by", sa.String(length=36), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_tickets_ticket_number", "tickets", ["ticket_number"], unique=True)
    op.create_index("ix_tickets_serial_number", "tickets", ["serial_number"], unique=True)
    op.create_index("ix_tickets_receipt_id", "tickets", ["receipt_id"])
    op.create_index("ix_tickets_trip_id", "tickets", ["trip_id"])
    op.create_index("ix_tickets_customer_id", "tickets", ["customer_id"])
    op.create_index("ix_tickets_status", "tickets", ["status"])

    op.create_table(
        "gnpl_accounts",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("customer_id", sa.String(length=36), nullable=False),
        sa.Column("trip_id", sa.String(length=36), nullable=False),
        sa.Column("receipt_id", sa.String(length=36), nullable=True),
        sa.Column("session_id", sa.String(length=36), nullable=True),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("principal_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("principal_paid", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("penalty_accrued", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("penalty_paid", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("penalty_periods_applied", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("penalty_percent", sa.Numeric(5, 2), nullable=False, server_default="0"),
        sa.Column("penalty_period_days", sa.Integer(), nullable=False, server_default="7"),
        sa.Column("due_date", sa.Date(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending_approval"),
        sa.Column("reminder_due_date", sa.Date(), nullable=True),
        sa.Column("reminder_last_sent_on", sa.Date(), nullable=True),
        sa.Column("approved_by", sa.String(length=36), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_gnpl_accounts_customer_id", "gnpl_accounts", ["customer_id"])
    op.create_index("ix_gnpl_accounts_trip_id", "gnpl_accounts", ["trip_id"])
    op.create_index("ix_gnpl_accounts_due_date", "gnpl_accounts", ["due_date"])
    op.create_index("ix_gnpl_accounts_status", "gnpl_accounts", ["status"])

    op.create_table(
        "gnpl_payments",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("account_id", sa.String(length=36), nullable=False),
        sa.Column("customer_id", sa.String(length=36), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("reference", sa.String(length=100), nullable=False),
        sa.Column("receipt_link", sa.String(length=1024), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("principal_component", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("penalty_component", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("decided_by", sa.String(length=36), nullable=True),
        sa.Column("decided_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_gnpl_payments_account_id", "gnpl_payments", ["account_id"])
    op.create_index("ix_gnpl_payments_customer_id", "gnpl_payments", ["customer_id"])
    op.create_index("ix_gnpl_payments_reference", "gnpl_payments", ["reference"], unique=True)
    op.create_index("ix_gnpl_payments_status", "gnpl_payments", ["status"])

    op.create_table(
        "payment_references",
        sa.Column("reference_key", sa.String(length=100), primary_key=True),
        sa.Column("source", sa.String(length=20), nullable=False),
        sa.Column("source_id", sa.String(length=36), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_payment_references_source_id", "payment_references", ["source_id"])

    op.create_table(
        "manual_cash_remittances",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("submitted_by", sa.String(length=36), nullable=False),
        sa.Column("method", sa.String(length=20), nullable=False),
        sa.Column("total_cash_sold", sa.Numeric(12, 2), nullable=False),
        sa.Column("already_remitted", sa.Numeric(12, 2), nullable=False),
        sa.Column("outstanding_before", sa.Numeric(12, 2), nullable=False),
        sa.Column("remitted_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("bank_receipt_url", sa.String(length=1024), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("decided_by", sa.String(length=36), nullable=True),
        sa.Column("decided_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_manual_cash_remittances_submitted_by", "manual_cash_remittances", ["submitted_by"])
    op.create_index("ix_manual_cash_remittances_status", "manual_cash_remittances", ["status"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("actor_user_id", sa.String(length=36), nullable=False),
        sa.Column("action", sa.String(length=80), nullable=False),
        sa.Column("entity_type", sa.String(length=40), nullable=False),
        sa.Column("entity_id", sa.String(length=36), nullable=False),
        sa.Column("details_json", sa.Text(), nullable=False, server_default="{}"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_audit_logs_actor_user_id", "audit_logs", ["actor_user_id"])
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"])
    op.create_index("ix_audit_logs_entity_type", "audit_logs", ["entity_type"])
    op.create_index("ix_audit_logs_entity_id", "audit_logs", ["entity_id"])

    op.create_table(
        "notification_logs",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("customer_id", sa.String(length=36), nullable=False),
        sa.Column("chat_id", sa.String(length=64), nullable=False, server_default=""),
        sa.Column("kind", sa.String(length=60), nullable=False),
        sa.Column("body", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=30), nullable=False, server_default="queued"),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_notification_logs_customer_id", "notification_logs", ["customer_id"])
    op.create_index("ix_notification_logs_kind", "notification_logs", ["kind"])

    op.create_table(
        "settings",
        sa.Column("key", sa.String(length=80), primary_key=True),
        sa.Column("int_value", sa.Integer(), nullable=True),
        sa.Column("str_value", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_by", sa.String(length=36), nullable=True),
    )


def downgrade() -> None:
    for table in (
        "settings", "notification_logs", "audit_logs", "manual_cash_remittances", "payment_references", "gnpl_payments",
        "gnpl_accounts", "tickets", "receipts", "booking_sessions", "discount_vouchers", "trips",
        "customers", "users",
    ):
        op.drop_table(table)
