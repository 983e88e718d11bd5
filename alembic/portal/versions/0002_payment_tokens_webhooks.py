"""add payment tokens, status versioning and webhook inbox

Revision ID: 0002_payment_tokens_webhooks
Revises: 0001_portal
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


revision = "0002_payment_tokens_webhooks"
down_revision = "0001_portal"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.add_column("applications", sa.Column("payment_status", sa.String(), nullable=True))
    op.add_column(
        "applications",
        sa.Column("version", sa.Integer(), nullable=False, server_default=sa.text("0")),
    )
    op.alter_column("applications", "version", server_default=None)
    op.create_index("ix_applications_payment_status", "applications", ["payment_status"])
    op.execute(
        "UPDATE applications SET payment_status = application_details->>'payment_status' "
        "WHERE application_details ? 'payment_status'"
    )

    op.create_table(
        "payment_tokens",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("token", sa.String(length=64), nullable=False),
        sa.Column("application_id", sa.String(), nullable=False),
        sa.Column("payment_type", sa.String(), nullable=False),
        sa.Column("payable_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("generated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("token_used", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("payment_id", sa.String(), nullable=True),
        sa.Column("payment_link_id", sa.String(), nullable=True),
        sa.Column("payment_link_url", sa.String(), nullable=True),
        sa.ForeignKeyConstraint(["application_id"], ["applications.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_payment_tokens_token", "payment_tokens", ["token"], unique=True)
    op.create_index("ix_payment_tokens_application_id", "payment_tokens", ["application_id"])
    op.create_index("ix_payment_tokens_payment_link_id", "payment_tokens", ["payment_link_id"])

    op.create_table(
        "webhook_events",
        sa.Column("event_id", sa.String(), nullable=False),
        sa.Column("event", sa.String(), nullable=False),
        sa.Column("application_id", sa.String(), nullable=True),
        sa.Column("received_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("event_id"),
    )
    op.create_index("ix_webhook_events_application_id", "webhook_events", ["application_id"])

    op.create_table(
        "webhook_dead_letters",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("event_id", sa.String(), nullable=False),
        sa.Column("event", sa.String(), nullable=False),
        sa.Column("reason", sa.String(), nullable=False),
        sa.Column("payload", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("replayed_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_webhook_dead_letters_event_id", "webhook_dead_letters", ["event_id"])


def downgrade() -> None:
    op.drop_index("ix_webhook_dead_letters_event_id", table_name="webhook_dead_letters")
    op.drop_table("webhook_dead_letters")
    op.drop_index("ix_webhook_events_application_id", table_name="webhook_events")
    op.drop_table("webhook_events")
    op.drop_index("ix_payment_tokens_payment_link_id", table_name="payment_tokens")
    op.drop_index("ix_payment_tokens_application_id", table_name="payment_tokens")
    op.drop_index("ix_payment_tokens_token", table_name="payment_tokens")
    op.drop_table("payment_tokens")
    op.drop_index("ix_applications_payment_status", table_name="applications")
    op.drop_column("applications", "version")
    op.drop_column("applications", "payment_status")
