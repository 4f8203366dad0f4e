"""Add promocodes

Revision ID: 002_promocodes
Revises: 001_initial
Create Date: 2026-10-19

Promocodes with their activation log, plus the promocode and discount of a
payment.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

from vpnpanel.promocodes.models import PromocodeRewardType


# revision identifiers, used by Alembic.
revision: str = "002_promocodes"
down_revision: Union[str, None] = "001_initial"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create promocode tables and link payments to them."""
    op.create_table(
        "promocodes",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("code", sa.String(32), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("reward_type", sa.Enum(PromocodeRewardType, name="promocoderewardtype"), nullable=False),
        sa.Column("reward_value", sa.Float(), nullable=False),
        sa.Column("plan_id", sa.Integer(), nullable=True),
        sa.Column("max_uses", sa.Integer(), nullable=True),
        sa.Column("used_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_uses_per_user", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("starts_at", sa.DateTime(), nullable=True),
        sa.Column("expires_at", sa.DateTime(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_by", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["plan_id"], ["plans.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["created_by"], ["users.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_promocodes_code", "promocodes", ["code"], unique=True)

    with op.batch_alter_table("payments") as batch:
        batch.add_column(sa.Column("promocode_id", sa.Integer(), nullable=True))
        batch.add_column(sa.Column("discount", sa.Float(), nullable=False, server_default="0"))
        batch.create_foreign_key(
            "fk_payments_promocode_id", "promocodes", ["promocode_id"], ["id"], ondelete="SET NULL"
        )

    op.create_table(
        "promocode_activations",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("promocode_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("payment_id", sa.Integer(), nullable=True),
        sa.Column("subscription_id", sa.Integer(), nullable=True),
        sa.Column("discount_amount", sa.Float(), nullable=False),
        sa.Column("bonus_days", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["promocode_id"], ["promocodes.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["payment_id"], ["payments.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["subscription_id"], ["subscriptions.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_promocode_activations_promocode_id", "promocode_activations", ["promocode_id"])
    op.create_index("ix_promocode_activations_user_id", "promocode_activations", ["user_id"])
    op.create_index("ix_promocode_activations_created_at", "promocode_activations", ["created_at"])


def downgrade() -> None:
    """Drop promocode tables and payment columns."""
    op.drop_table("promocode_activations")
    with op.batch_alter_table("payments") as batch:
        batch.drop_constraint("fk_payments_promocode_id", type_="foreignkey")
        batch.drop_column("discount")
        batch.drop_column("promocode_id")
    op.drop_table("promocodes")
    op.execute("DROP TYPE IF EXISTS promocoderewardtype")
