"""Store selected shapes on queued sale lines

Revision ID: 20261008_item_shapes
Revises: 20261001_local_store
Create Date: 2026-10-08
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261008_item_shapes"
down_revision = "20261001_local_store"
branch_labels = None
depends_on = None


def upgrade():
    with op.batch_alter_table("pending_sale_items", schema=None) as batch_op:
        batch_op.add_column(sa.Column("selected_shapes", sa.JSON(), nullable=True))


def downgrade():
    with op.batch_alter_table("pending_sale_items", schema=None) as batch_op:
        batch_op.drop_column("selected_shapes")
