"""Add bill_type and return references to sales

Revision ID: 20261018_sale_returns
Revises: 20261017_initial
Create Date: 2026-10-18
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261018_sale_returns"
down_revision = "20261017_initial"
branch_labels = None
depends_on = None


def upgrade():
    with op.batch_alter_table("sales", schema=None) as batch_op:
        batch_op.add_column(sa.Column("bill_type", sa.String(length=16), nullable=False, server_default="SALE"))
        batch_op.add_column(sa.Column("return_for_bill_no", sa.String(length=32), nullable=True))
        batch_op.add_column(sa.Column("return_reason", sa.Text(), nullable=True))
        batch_op.create_index("ix_sales_site_return_for", ["site_id", "return_for_bill_no"], unique=False)


def downgrade():
    with op.batch_alter_table("sales", schema=None) as batch_op:
        batch_op.drop_index("ix_sales_site_return_for")
        batch_op.drop_column("return_reason")
        batch_op.drop_column("return_for_bill_no")
        batch_op.drop_column("bill_type")
