"""add idempotency unique constraints on order tables

Revision ID: 8e5f2b61c0a7
Revises: 3a1c9e07b2d4
Create Date: 2026-10-02 09:17:33.402118

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '8e5f2b61c0a7'
down_revision: Union[str, Sequence[str], None] = '3a1c9e07b2d4'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# (constraint name, table, columns)
CONSTRAINTS = [
    ("uq_suborder_reference_store", "suborder", "reference, store_id"),
    ("uq_suborder_item_product", "suborderitem", "sub_order_id, product_id"),
    ("mainorder_reference_key", "mainorder", "reference"),
    ("mainorder_order_number_key", "mainorder", "order_number"),
]


def upgrade():
    # idempotent: databases bootstrapped with create_all already carry these
    for name, table, columns in CONSTRAINTS:
        op.execute(
            f"""
            DO $$
            BEGIN
                IF NOT EXISTS (
                    SELECT 1
                    FROM pg_constraint
                    WHERE conname = '{name}'
                    AND conrelid = '{table}'::regclass
                ) THEN
                    ALTER TABLE {table}
                    ADD CONSTRAINT {name} UNIQUE ({columns});
                END IF;
            END;
            $$;
            """
        )

def downgrade():
    for name, table, _ in reversed(CONSTRAINTS):
        op.execute(
            f"""
            DO $$
            BEGIN
                IF EXISTS (
                    SELECT 1
                    FROM pg_constraint
                    WHERE conname = '{name}'
                    AND conrelid = '{table}'::regclass
                ) THEN
                    ALTER TABLE {table}
                    DROP CONSTRAINT {name};
                END IF;
            END;
            $$;
            """
        )
