"""create membership tables

Revision ID: 4f1c2a9d7e3b
Revises:
Create Date: 2025-09-02 10:14:37.512301

"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "4f1c2a9d7e3b"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "member_profile",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("full_name", sa.String(), nullable=True),
        sa.Column("role", sa.String(length=20), nullable=False, server_default="member"),
        sa.Column("membership_level", sa.String(length=50), nullable=False, server_default="Full"),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("membership_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("stripe_customer_id", sa.String(), nullable=True),
        sa.Column("stripe_subscription_id", sa.String(), nullable=True),
        sa.Column(
            "cancel_at_period_end", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("modified_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
        sa.CheckConstraint(
            "stripe_subscription_id IS NULL OR stripe_customer_id IS NOT NULL",
            name="ck_member_profile_subscription_has_customer",
        ),
    )
    op.create_index(
        "idx_member_profile_stripe_subscription", "member_profile", ["stripe_subscription_id"]
    )
    op.create_index(
        "idx_member_profile_status_expires",
        "member_profile",
        ["status", "membership_expires_at"],
    )

    op.create_table(
        "payment_record",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("user_id", sa.UUID(), nullable=False),
        sa.Column("method", sa.String(length=20), nullable=False),
        sa.Column("amount", sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("payment_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at_snapshot", sa.DateTime(timezone=True), nullable=True),
        sa.Column("stripe_subscription_id", sa.String(), nullable=True),
        sa.Column("stripe_payment_intent_id", sa.String(), nullable=True),
        sa.Column("recorded_by", sa.UUID(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="completed"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("modified_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["user_id"], ["member_profile.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["recorded_by"], ["member_profile.id"], ondelete="SET NULL"),
        sa.UniqueConstraint(
            "user_id", "stripe_subscription_id", name="uq_payment_record_user_subscription"
        ),
    )
    op.create_index("idx_payment_record_user", "payment_record", ["user_id"])

    op.create_table(
        "app_setting",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("key", sa.String(length=100), nullable=False),
        sa.Column("value", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("modified_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("key"),
    )


def downgrade():
    op.drop_table("app_setting")
    op.drop_index("idx_payment_record_user", table_name="payment_record")
    op.drop_table("payment_record")
    op.drop_index("idx_member_profile_status_expires", table_name="member_profile")
    op.drop_index("idx_member_profile_stripe_subscription", table_name="member_profile")
    op.drop_table("member_profile")
