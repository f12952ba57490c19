"""Create invoicing, webhook and event store tables.

Revision ID: a1c0e5d7b9f2
Revises:
Create Date: 2026-10-19

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "a1c0e5d7b9f2"
down_revision = None
branch_labels = None
depends_on = None

# Enum labels are the Python member names (SQLAlchemy's default).
ENUMS = {
    "serviceproviderstatus": ("active", "inactive"),
    "invoicestatus": ("pending", "paid", "overdue", "cancelled", "archived"),
    "paymentstatus": ("pending", "processing", "completed", "failed", "refunded"),
    "paymenttype": ("full", "partial"),
    "refundstatus": ("pending", "processing", "completed", "failed", "cancelled"),
    "refundtype": ("full", "partial"),
    "webhookeventtype": (
        "invoice_created",
        "invoice_paid",
        "invoice_overdue",
        "invoice_cancelled",
        "payment_completed",
        "payment_failed",
        "refund_completed",
    ),
    "webhookdeliverystatus": ("pending", "retrying", "delivered", "failed"),
    "eventstatus": ("processing", "completed", "failed"),
}


def _enum(name: str):
    return postgresql.ENUM(*ENUMS[name], name=name, create_type=False)


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    ]


def upgrade() -> None:
    bind = op.get_bind()
    for name, labels in ENUMS.items():
        postgresql.ENUM(*labels, name=name).create(bind, checkfirst=True)

    op.create_table(
        "customers",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(160), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("phone", sa.String(40)),
        sa.Column("is_active", sa.Boolean(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("email", name="uq_customers_email"),
    )

    op.create_table(
        "service_providers",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("company_name", sa.String(200), nullable=False),
        sa.Column("email", sa.String(255)),
        sa.Column("website", sa.String(255)),
        sa.Column("description", sa.Text()),
        sa.Column("status", _enum("serviceproviderstatus")),
        sa.Column("is_active", sa.Boolean(), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        "invoices",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("invoice_number", sa.String(40), nullable=False),
        sa.Column(
            "customer_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("customers.id"),
            nullable=False,
        ),
        sa.Column(
            "service_provider_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("service_providers.id"),
            nullable=False,
        ),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("amount", sa.Numeric(12, 2)),
        sa.Column("tax_amount", sa.Numeric(12, 2)),
        sa.Column("total_amount", sa.Numeric(12, 2)),
        sa.Column("status", _enum("invoicestatus")),
        sa.Column("issue_date", sa.Date(), nullable=False),
        sa.Column("due_date", sa.Date(), nullable=False),
        sa.Column("paid_date", sa.DateTime(timezone=True)),
        sa.Column("metadata", sa.JSON()),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("invoice_number", name="uq_invoices_invoice_number"),
    )
    op.create_index("ix_invoices_customer_id", "invoices", ["customer_id"])
    op.create_index("ix_invoices_service_provider_id", "invoices", ["service_provider_id"])
    op.create_index("ix_invoices_status_due_date", "invoices", ["status", "due_date"])

    op.create_table(
        "payments",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("payment_reference", sa.String(40), nullable=False),
        sa.Column(
            "invoice_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("invoices.id"),
            nullable=False,
        ),
        sa.Column(
            "customer_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("customers.id"),
            nullable=False,
        ),
        sa.Column("payment_method_reference", sa.String(120)),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("status", _enum("paymentstatus")),
        sa.Column("payment_type", _enum("paymenttype")),
        sa.Column("gateway", sa.String(60)),
        sa.Column("gateway_transaction_id", sa.String(120)),
        sa.Column("processed_at", sa.DateTime(timezone=True)),
        sa.Column("notes", sa.Text()),
        *_timestamps(),
        sa.UniqueConstraint("payment_reference", name="uq_payments_payment_reference"),
    )
    op.create_index("ix_payments_invoice_status", "payments", ["invoice_id", "status"])

    op.create_table(
        "refunds",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("refund_reference", sa.String(40), nullable=False),
        sa.Column(
            "payment_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("payments.id"),
            nullable=False,
        ),
        sa.Column(
            "invoice_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("invoices.id"),
            nullable=False,
        ),
        sa.Column(
            "customer_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("customers.id"),
            nullable=False,
        ),
        sa.Column("processed_by", sa.String(120)),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("status", _enum("refundstatus")),
        sa.Column("refund_type", _enum("refundtype")),
        sa.Column("reason", sa.String(255)),
        sa.Column("notes", sa.Text()),
        sa.Column("gateway", sa.String(60)),
        sa.Column("gateway_refund_id", sa.String(120)),
        sa.Column("processed_at", sa.DateTime(timezone=True)),
        *_timestamps(),
        sa.UniqueConstraint("refund_reference", name="uq_refunds_refund_reference"),
    )
    op.create_index("ix_refunds_payment_status", "refunds", ["payment_id", "status"])
    op.create_index("ix_refunds_invoice_status", "refunds", ["invoice_id", "status"])

    op.create_table(
        "webhook_subscriptions",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "service_provider_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("service_providers.id"),
            nullable=False,
        ),
        sa.Column("url", sa.String(500), nullable=False),
        sa.Column("secret", sa.String(255)),
        sa.Column("events", sa.JSON(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=True),
        *_timestamps(),
    )
    op.create_index(
        "ix_webhook_subscriptions_service_provider_id",
        "webhook_subscriptions",
        ["service_provider_id"],
    )

    op.create_table(
        "webhook_deliveries",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "subscription_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("webhook_subscriptions.id"),
            nullable=False,
        ),
        sa.Column(
            "service_provider_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("service_providers.id"),
            nullable=False,
        ),
        sa.Column("event_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("event_type", _enum("webhookeventtype"), nullable=False),
        sa.Column("url", sa.String(500), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("status", _enum("webhookdeliverystatus")),
        sa.Column("attempt_count", sa.Integer()),
        sa.Column("last_attempt_at", sa.DateTime(timezone=True)),
        sa.Column("next_retry_at", sa.DateTime(timezone=True)),
        sa.Column("delivered_at", sa.DateTime(timezone=True)),
        sa.Column("response_status", sa.Integer()),
        sa.Column("error", sa.Text()),
        *_timestamps(),
    )
    op.create_index(
        "ix_webhook_deliveries_subscription_id", "webhook_deliveries", ["subscription_id"]
    )
    op.create_index(
        "ix_webhook_deliveries_service_provider_id",
        "webhook_deliveries",
        ["service_provider_id"],
    )
    op.create_index(
        "ix_webhook_deliveries_status_next_retry",
        "webhook_deliveries",
        ["status", "next_retry_at"],
    )

    op.create_table(
        "event_store",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("event_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("event_type", sa.String(100), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("status", _enum("eventstatus")),
        sa.Column("retry_count", sa.Integer()),
        sa.Column("error", sa.Text()),
        sa.Column("failed_handlers", sa.JSON()),
        sa.Column("processed_at", sa.DateTime(timezone=True)),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("actor", sa.String(120)),
        sa.Column("service_provider_id", postgresql.UUID(as_uuid=True)),
        sa.Column("invoice_id", postgresql.UUID(as_uuid=True)),
        sa.Column("payment_id", postgresql.UUID(as_uuid=True)),
        sa.Column("refund_id", postgresql.UUID(as_uuid=True)),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_event_store_event_id", "event_store", ["event_id"], unique=True)
    op.create_index("ix_event_store_event_type", "event_store", ["event_type"])
    op.create_index("ix_event_store_status", "event_store", ["status"])
    op.create_index(
        "ix_event_store_service_provider_id", "event_store", ["service_provider_id"]
    )
    op.create_index("ix_event_store_invoice_id", "event_store", ["invoice_id"])

    op.create_table(
        "document_sequences",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("key", sa.String(80), nullable=False),
        sa.Column("next_value", sa.Integer(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("key", name="uq_document_sequences_key"),
    )


def downgrade() -> None:
    op.drop_table("document_sequences")
    op.drop_table("event_store")
    op.drop_table("webhook_deliveries")
    op.drop_table("webhook_subscriptions")
    op.drop_table("refunds")
    op.drop_table("payments")
    op.drop_table("invoices")
    op.drop_table("service_providers")
    op.drop_table("customers")
    bind = op.get_bind()
    for name in reversed(list(ENUMS)):
        postgresql.ENUM(name=name).drop(bind, checkfirst=True)
