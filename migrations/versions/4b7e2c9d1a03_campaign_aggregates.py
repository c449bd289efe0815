"""campaigns, donations, payments

Revision ID: 4b7e2c9d1a03
Revises:
Create Date: 2026-10-17 09:12:41.532118
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "4b7e2c9d1a03"
down_revision = None
branch_labels = None
depends_on = None


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------
def _jsonb(sa_json):
    # JSON on SQLite, JSONB on Postgres
    return sa_json.with_variant(postgresql.JSONB(astext_type=sa.Text()), "postgresql")


def upgrade():
    # --- campaigns ---
    op.create_table(
        "campaigns",
        sa.Column("id", sa.String(length=120), primary_key=True, nullable=False),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("goal_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("allow_public_donor_list", sa.Boolean(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("start_at", sa.DateTime(), nullable=True),
        sa.Column("end_at", sa.DateTime(), nullable=True),
        sa.Column("total_donated", sa.Numeric(12, 2), nullable=False),
        sa.Column("donors_count", sa.Integer(), nullable=False),
        sa.Column("last_donors", _jsonb(sa.JSON()), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("donors_count >= 0", name="ck_campaigns_donors_nonneg"),
        sa.CheckConstraint(
            "status IN ('draft', 'active', 'paused', 'closed')",
            name="ck_campaigns_status",
        ),
    )
    with op.batch_alter_table("campaigns") as batch_op:
        batch_op.create_index(batch_op.f("ix_campaigns_status"), ["status"], unique=False)
        batch_op.create_index(batch_op.f("ix_campaigns_end_at"), ["end_at"], unique=False)
        batch_op.create_index(batch_op.f("ix_campaigns_created_at"), ["created_at"], unique=False)
        batch_op.create_index(batch_op.f("ix_campaigns_updated_at"), ["updated_at"], unique=False)
        batch_op.create_index("ix_campaigns_status_end_at", ["status", "end_at"], unique=False)

    # --- donations ---
    op.create_table(
        "donations",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("campaign_id", sa.String(length=120), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("is_anonymous", sa.Boolean(), nullable=False),
        sa.Column("donor_name", sa.String(length=160), nullable=True),
        sa.Column("message", sa.String(length=500), nullable=True),
        sa.Column("method", sa.String(length=16), nullable=False),
        sa.Column("payment_ref", sa.String(length=120), nullable=True),
        sa.Column("confirmed_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("amount >= 0", name="ck_donations_amount_nonneg"),
        sa.CheckConstraint(
            "status IN ('pending', 'confirmed', 'refunded', 'failed')",
            name="ck_donations_status",
        ),
    )
    with op.batch_alter_table("donations") as batch_op:
        batch_op.create_index(batch_op.f("ix_donations_campaign_id"), ["campaign_id"], unique=False)
        batch_op.create_index(batch_op.f("ix_donations_status"), ["status"], unique=False)
        batch_op.create_index(batch_op.f("ix_donations_payment_ref"), ["payment_ref"], unique=False)
        batch_op.create_index(batch_op.f("ix_donations_created_at"), ["created_at"], unique=False)
        batch_op.create_index(batch_op.f("ix_donations_updated_at"), ["updated_at"], unique=False)
        batch_op.create_index("ix_donations_status_campaign", ["status", "campaign_id"], unique=False)

    # --- payments ---
    op.create_table(
        "payments",
        sa.Column("id", sa.String(length=140), primary_key=True, nullable=False),
        sa.Column("provider", sa.String(length=20), nullable=False),
        sa.Column("kind", sa.String(length=20), nullable=False),
        sa.Column("campaign_id", sa.String(length=120), nullable=False),
        sa.Column("campaign_slug", sa.String(length=120), nullable=True),
        sa.Column("payment_intent_id", sa.String(length=120), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("amount_minor", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("status", sa.String(length=60), nullable=False),
        sa.Column("donor", _jsonb(sa.JSON()), nullable=True),
        sa.Column("counted_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
    )
    with op.batch_alter_table("payments") as batch_op:
        batch_op.create_index(batch_op.f("ix_payments_provider"), ["provider"], unique=False)
        batch_op.create_index(batch_op.f("ix_payments_payment_intent_id"), ["payment_intent_id"], unique=False)
        batch_op.create_index(batch_op.f("ix_payments_status"), ["status"], unique=False)
        batch_op.create_index("ix_payments_campaign_status", ["campaign_id", "status"], unique=False)


def downgrade():
    with op.batch_alter_table("payments") as batch_op:
        batch_op.drop_index("ix_payments_campaign_status")
        batch_op.drop_index(batch_op.f("ix_payments_status"))
        batch_op.drop_index(batch_op.f("ix_payments_payment_intent_id"))
        batch_op.drop_index(batch_op.f("ix_payments_provider"))
    op.drop_table("payments")

    with op.batch_alter_table("donations") as batch_op:
        batch_op.drop_index("ix_donations_status_campaign")
        batch_op.drop_index(batch_op.f("ix_donations_updated_at"))
        batch_op.drop_index(batch_op.f("ix_donations_created_at"))
        batch_op.drop_index(batch_op.f("ix_donations_payment_ref"))
        batch_op.drop_index(batch_op.f("ix_donations_status"))
        batch_op.drop_index(batch_op.f("ix_donations_campaign_id"))
    op.drop_table("donations")

    with op.batch_alter_table("campaigns") as batch_op:
        batch_op.drop_index("ix_campaigns_status_end_at")
        batch_op.drop_index(batch_op.f("ix_campaigns_updated_at"))
        batch_op.drop_index(batch_op.f("ix_campaigns_created_at"))
        batch_op.drop_index(batch_op.f("ix_campaigns_end_at"))
        batch_op.drop_index(batch_op.f("ix_campaigns_status"))
    op.drop_table("campaigns")
