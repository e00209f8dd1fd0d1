"""Create entitlement_records table.

Revision ID: 2026_10_19_0001
Revises:
Create Date: 2026-10-19

"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "2026_10_19_0001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Create entitlement_records table."""
    op.create_table(
        "entitlement_records",
        sa.Column("user_id", sa.String(255), primary_key=True),
        sa.Column("product", sa.String(255), primary_key=True),
        sa.Column("purchase_token", sa.Text(), nullable=True),
        sa.Column("is_entitlement_active", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("is_acknowledged", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("will_renew", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("is_consumed", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("is_account_hold", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("is_grace_period", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("is_paused", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("is_prepaid", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("sub_already_owned", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("is_local_purchase", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.CheckConstraint("quantity >= 0", name="ck_quantity_non_negative"),
    )
    op.create_index(
        "idx_entitlement_records_purchase_token", "entitlement_records", ["purchase_token"]
    )


def downgrade() -> None:
    """Drop entitlement_records table."""
    op.drop_index("idx_entitlement_records_purchase_token", table_name="entitlement_records")
    op.drop_table("entitlement_records")
