"""initial portal schema

Revision ID: 0001_portal
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "0001_portal"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "applications",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("email", sa.String(), nullable=True),
        sa.Column("student_name", sa.String(), nullable=True),
        sa.Column("name", sa.String(), nullable=True),
        sa.Column("phone", sa.String(), nullable=True),
        sa.Column("selected_course", sa.String(), nullable=True),
        sa.Column("course_fee", sa.Numeric(12, 2), nullable=True),
        sa.Column("discount", sa.Numeric(12, 2), nullable=True),
        sa.Column("total_payable", sa.Numeric(12, 2), nullable=True),
        sa.Column("application_details", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("admin_filled", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("final_fee_payment", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("basic", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("contact", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("account", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_applications_email", "applications", ["email"])


def downgrade() -> None:
    op.drop_index("ix_applications_email", table_name="applications")
    op.drop_table("applications")
