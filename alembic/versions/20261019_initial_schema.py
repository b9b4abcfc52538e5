"""initial splitpay schema"""
from alembic import op
import sqlalchemy as sa

revision = "20261019_initial_schema"
down_revision = None
branch_labels = None
depends_on = None

PAYMENT_GATEWAY = sa.Enum("MERCADOPAGO", "EFI", name="paymentgateway")
PAYMENT_STATUS = sa.Enum(
    "PENDING",
    "AUTHORIZED",
    "IN_PROCESS",
    "IN_MEDIATION",
    "APPROVED",
    "REJECTED",
    "CANCELLED",
    "REFUNDED",
    "CHARGED_BACK",
    name="paymentstatus",
)
RECIPIENT_TYPE = sa.Enum("PLATFORM", "PRODUCER", name="recipienttype")
SPLIT_STATUS = sa.Enum("PENDING", "COMPLETED", "FAILED", name="splitstatus")
PRODUCER_STATUS = sa.Enum("PENDING", "ACTIVE", "SUSPENDED", "INACTIVE", name="producerstatus")
DOCUMENT_TYPE = sa.Enum("CPF", "CNPJ", name="documenttype")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "producers",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("business_name", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("document_type", DOCUMENT_TYPE, nullable=True),
        sa.Column("document_number", sa.String(length=32), nullable=True),
        sa.Column("platform_fee_percentage", sa.Numeric(5, 2), nullable=False),
        sa.Column("status", PRODUCER_STATUS, nullable=False),
        sa.Column("mp_connected", sa.Boolean(), nullable=False),
        sa.Column("mp_user_id", sa.String(length=64), nullable=True),
        sa.Column("efi_connected", sa.Boolean(), nullable=False),
        sa.Column("efi_account_id", sa.String(length=64), nullable=True),
        sa.Column("efi_pix_key", sa.String(length=140), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(
            "platform_fee_percentage >= 0 AND platform_fee_percentage <= 100",
            name="ck_producers_fee_percentage_range",
        ),
    )
    op.create_index("ix_producers_status", "producers", ["status"])

    op.create_table(
        "products",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("producer_id", sa.Integer(), sa.ForeignKey("producers.id"), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("price", sa.Numeric(18, 2), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("price > 0", name="ck_products_positive_price"),
    )
    op.create_index("ix_products_producer_id", "products", ["producer_id"])

    op.create_table(
        "oauth_tokens",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("producer_id", sa.Integer(), sa.ForeignKey("producers.id"), nullable=False, unique=True),
        sa.Column("access_token_encrypted", sa.Text(), nullable=False),
        sa.Column("refresh_token_encrypted", sa.Text(), nullable=True),
        sa.Column("token_type", sa.String(length=32), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("scope", sa.String(length=255), nullable=True),
        sa.Column("mp_user_id", sa.String(length=64), nullable=True),
        sa.Column("is_valid", sa.Boolean(), nullable=False),
        *_timestamps(),
    )

    op.create_table(
        "efi_configs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("producer_id", sa.Integer(), sa.ForeignKey("producers.id"), nullable=False, unique=True),
        sa.Column("account_identifier", sa.String(length=64), nullable=False),
        sa.Column("pix_key", sa.String(length=140), nullable=True),
        sa.Column("pix_key_type", sa.String(length=20), nullable=True),
        sa.Column("is_valid", sa.Boolean(), nullable=False),
        *_timestamps(),
    )

    op.create_table(
        "payments",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("external_reference", sa.String(length=128), nullable=False),
        sa.Column("producer_id", sa.Integer(), sa.ForeignKey("producers.id"), nullable=False),
        sa.Column("product_id", sa.Integer(), sa.ForeignKey("products.id"), nullable=True),
        sa.Column("gateway", PAYMENT_GATEWAY, nullable=False),
        sa.Column("payment_type", sa.String(length=32), nullable=True),
        sa.Column("payment_method", sa.String(length=32), nullable=True),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("total_amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("platform_fee", sa.Numeric(18, 2), nullable=False),
        sa.Column("producer_amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("fee_percentage", sa.Numeric(5, 2), nullable=False),
        sa.Column("status", PAYMENT_STATUS, nullable=False),
        sa.Column("status_detail", sa.String(length=255), nullable=True),
        sa.Column("mp_preference_id", sa.String(length=128), nullable=True),
        sa.Column("mp_payment_id", sa.String(length=64), nullable=True),
        sa.Column("efi_txid", sa.String(length=35), nullable=True, unique=True),
        sa.Column("efi_e2eid", sa.String(length=64), nullable=True),
        sa.Column("payer_email", sa.String(length=255), nullable=True),
        sa.Column("payer_name", sa.String(length=255), nullable=True),
        sa.Column("payer_document", sa.String(length=32), nullable=True),
        sa.Column("installments", sa.Integer(), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("total_amount > 0", name="ck_payments_positive_total"),
        sa.CheckConstraint("platform_fee >= 0", name="ck_payments_non_negative_fee"),
        sa.UniqueConstraint("external_reference", name="uq_payments_external_reference"),
    )
    op.create_index("ix_payments_producer_id", "payments", ["producer_id"])
    op.create_index("ix_payments_status", "payments", ["status"])
    op.create_index("ix_payments_producer_status", "payments", ["producer_id", "status"])
    op.create_index("ix_payments_efi_txid", "payments", ["efi_txid"])
    op.create_index("ix_payments_mp_payment_id", "payments", ["mp_payment_id"])

    op.create_table(
        "payment_splits",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("payment_id", sa.Integer(), sa.ForeignKey("payments.id"), nullable=False),
        sa.Column("recipient_type", RECIPIENT_TYPE, nullable=False),
        sa.Column("recipient_id", sa.String(length=64), nullable=False),
        sa.Column("amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("percentage", sa.Numeric(5, 2), nullable=False),
        sa.Column("status", SPLIT_STATUS, nullable=False),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("payment_id", "recipient_type", name="uq_payment_splits_payment_recipient"),
        sa.CheckConstraint("amount >= 0", name="ck_payment_splits_non_negative_amount"),
    )
    op.create_index("ix_payment_splits_payment_id", "payment_splits", ["payment_id"])

    op.create_table(
        "webhook_events",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("source", sa.String(length=32), nullable=False),
        sa.Column("event_id", sa.String(length=128), nullable=False),
        sa.Column("event_type", sa.String(length=64), nullable=False),
        sa.Column("action", sa.String(length=64), nullable=False),
        sa.Column("data_id", sa.String(length=128), nullable=True),
        sa.Column("raw_payload", sa.JSON(), nullable=False),
        sa.Column("signature_valid", sa.Boolean(), nullable=True),
        sa.Column("processed", sa.Boolean(), nullable=False),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("retry_count", sa.Integer(), nullable=False),
        sa.Column("received_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_webhook_events_source_event_id", "webhook_events", ["source", "event_id"])
    op.create_index("ix_webhook_events_received", "webhook_events", ["received_at"])

    op.create_table(
        "financial_logs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("payment_id", sa.Integer(), sa.ForeignKey("payments.id"), nullable=False),
        sa.Column("producer_id", sa.Integer(), sa.ForeignKey("producers.id"), nullable=True),
        sa.Column("action", sa.String(length=64), nullable=False),
        sa.Column("amount", sa.Numeric(18, 2), nullable=True),
        sa.Column("previous_status", sa.String(length=32), nullable=True),
        sa.Column("new_status", sa.String(length=32), nullable=True),
        sa.Column("details", sa.JSON(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("payment_id", "action", name="uq_financial_logs_payment_action"),
    )
    op.create_index("ix_financial_logs_payment_id", "financial_logs", ["payment_id"])


def downgrade() -> None:
    op.drop_index("ix_financial_logs_payment_id", table_name="financial_logs")
    op.drop_table("financial_logs")
    op.drop_index("ix_webhook_events_received", table_name="webhook_events")
    op.drop_index("ix_webhook_events_source_event_id", table_name="webhook_events")
    op.drop_table("webhook_events")
    op.drop_index("ix_payment_splits_payment_id", table_name="payment_splits")
    op.drop_table("payment_splits")
    for index in (
        "ix_payments_mp_payment_id",
        "ix_payments_efi_txid",
        "ix_payments_producer_status",
        "ix_payments_status",
        "ix_payments_producer_id",
    ):
        op.drop_index(index, table_name="payments")
    op.drop_table("payments")
    op.drop_table("efi_configs")
    op.drop_table("oauth_tokens")
    op.drop_index("ix_products_producer_id", table_name="products")
    op.drop_table("products")
    op.drop_index("ix_producers_status", table_name="producers")
    op.drop_table("producers")
    for enum_type in (
        DOCUMENT_TYPE,
        PRODUCER_STATUS,
        SPLIT_STATUS,
        RECIPIENT_TYPE,
        PAYMENT_STATUS,
        PAYMENT_GATEWAY,
    ):
        enum_type.drop(op.get_bind(), checkfirst=True)
