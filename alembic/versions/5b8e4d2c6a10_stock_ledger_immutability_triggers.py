"""stock_ledger immutability triggers

Revision ID: 5b8e4d2c6a10
Revises: 0f3c2a9d1b7e
Create Date: 2026-10-12 09:31:07.880412

"""
from typing import Sequence, Union

from alembic import op


# revision identifiers, used by Alembic.
revision: str = '5b8e4d2c6a10'
down_revision: Union[str, Sequence[str], None] = '0f3c2a9d1b7e'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.execute(
        """
        CREATE OR REPLACE FUNCTION stock_ledger_block_mutation()
        RETURNS trigger AS $$
        BEGIN
            RAISE EXCEPTION 'stock_ledger is immutable';
        END;
        $$ LANGUAGE plpgsql;

        DROP TRIGGER IF EXISTS trg_stock_ledger_block_update ON stock_ledger;
        CREATE TRIGGER trg_stock_ledger_block_update
        BEFORE UPDATE ON stock_ledger
        FOR EACH ROW
        EXECUTE FUNCTION stock_ledger_block_mutation();

        DROP TRIGGER IF EXISTS trg_stock_ledger_block_delete ON stock_ledger;
        CREATE TRIGGER trg_stock_ledger_block_delete
        BEFORE DELETE ON stock_ledger
        FOR EACH ROW
        EXECUTE FUNCTION stock_ledger_block_mutation();
        """
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.execute(
        """
        DROP TRIGGER IF EXISTS trg_stock_ledger_block_update ON stock_ledger;
        DROP TRIGGER IF EXISTS trg_stock_ledger_block_delete ON stock_ledger;
        DROP FUNCTION IF EXISTS stock_ledger_block_mutation();
        """
    )
