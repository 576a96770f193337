from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, Index, Integer, Numeric, String, Text, event

from cooltrack.database import Base

TRANSACTION_TYPES = ("purchase", "job_usage", "adjustment", "return", "installation", "status_change")
INVENTORY_TYPES = ("serialized", "grouped")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LedgerEntry(Base):
    __tablename__ = "stock_ledger"

    __table_args__ = (
        Index("ix_stock_ledger_item_created", "inventory_type", "item_id", "created_at"),
        Index("ix_stock_ledger_reference", "reference_type", "reference_id"),
    )

    id = Column(Integer, primary_key=True, index=True)

    transaction_type = Column(String, nullable=False, index=True)
    inventory_type = Column(String, nullable=False)

    # Plain references: entries outlive the rows they describe.
    item_id = Column(Integer, nullable=False)
    item_name = Column(String, nullable=False)
    lot_id = Column(String, nullable=True, index=True)
    serial_number = Column(String, nullable=True, index=True)

    quantity_change = Column(Numeric(14, 3), nullable=False)
    unit_cost = Column(Numeric(14, 2), nullable=False)
    total_value = Column(Numeric(14, 2), nullable=False)

    reference_type = Column(String, nullable=False)  # job|manual
    reference_id = Column(String, nullable=True)

    performed_by = Column(String, nullable=False)
    reason = Column(Text, nullable=True)
    details = Column(JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)


class LedgerImmutableError(RuntimeError):
    pass


@event.listens_for(LedgerEntry, "before_update")
def _block_ledger_update(mapper, connection, target):
    raise LedgerImmutableError("stock_ledger is immutable")


@event.listens_for(LedgerEntry, "before_delete")
def _block_ledger_delete(mapper, connection, target):
    raise LedgerImmutableError("stock_ledger is immutable")
