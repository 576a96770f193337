from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from cooltrack.database import Base

UNITS = ("pcs", "meter", "roll", "kg", "liter")
PIECE_UNITS = ("pcs", "kg", "liter")
LINEAR_UNITS = ("meter", "roll")

GROUPED_CATEGORIES = ("copper_tube", "cable", "screw", "bolt", "insulation", "refrigerant", "other")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def name_key(item_name: str) -> str:
    return " ".join(str(item_name).split()).lower()


class GroupedItem(Base):
    __tablename__ = "grouped_items"

    id = Column(Integer, primary_key=True, index=True)

    item_name = Column(String, nullable=False)
    name_key = Column(String, nullable=False, unique=True, index=True)
    category = Column(String, nullable=False, default="other", index=True)
    unit = Column(String, nullable=False)

    total_value = Column(Numeric(14, 3), nullable=False, default=Decimal("0"))
    average_purchase_price = Column(Numeric(14, 2), nullable=False, default=Decimal("0"))
    min_value = Column(Numeric(14, 3), nullable=False, default=Decimal("0"))
    last_restocked = Column(DateTime(timezone=True), nullable=True)

    notes = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    version = Column(Integer, nullable=False)

    lots = relationship(
        "StockLot",
        back_populates="item",
        order_by="StockLot.position",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        CheckConstraint("total_value >= 0", name="ck_grouped_items_total_nonnegative"),
    )

    __mapper_args__ = {"version_id_col": version}

    @property
    def low_stock(self) -> bool:
        return Decimal(self.total_value or 0) <= Decimal(self.min_value or 0)

    @property
    def active_lots(self):
        return [lot for lot in self.lots if lot.is_active]


class StockLot(Base):
    __tablename__ = "stock_lots"

    lot_id = Column(String, primary_key=True)
    item_id = Column(Integer, ForeignKey("grouped_items.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, nullable=False)

    value = Column(Numeric(14, 3), nullable=False)
    purchase_price = Column(Numeric(14, 2), nullable=False, default=Decimal("0"))

    supplier = Column(String, nullable=True)
    brand = Column(String, nullable=True)
    location = Column(String, nullable=True)
    batch_number = Column(String, nullable=True)
    notes = Column(Text, nullable=True)

    purchase_date = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    expiry_date = Column(DateTime(timezone=True), nullable=True)

    is_active = Column(Boolean, nullable=False, default=True)

    item = relationship("GroupedItem", back_populates="lots")

    __table_args__ = (
        UniqueConstraint("item_id", "position", name="uq_stock_lots_item_position"),
        CheckConstraint("value >= 0", name="ck_stock_lots_value_nonnegative"),
        CheckConstraint("value > 0 OR is_active = false", name="ck_stock_lots_empty_inactive"),
    )
