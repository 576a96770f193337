from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class AddStockRequest(BaseModel):
    item_name: str = Field(min_length=1)
    unit: Optional[str] = None
    category: Optional[str] = None
    quantity: Optional[Decimal] = None
    length: Optional[Decimal] = None
    value: Optional[Decimal] = None
    purchase_price: Decimal = Decimal("0")
    supplier: Optional[str] = None
    brand: Optional[str] = None
    location: Optional[str] = None
    batch_number: Optional[str] = None
    notes: Optional[str] = None
    purchase_date: Optional[datetime] = None
    expiry_date: Optional[datetime] = None
    min_value: Optional[Decimal] = None


class UseStockRequest(BaseModel):
    item_name: str
    quantity: Optional[Decimal] = None
    length: Optional[Decimal] = None
    value: Optional[Decimal] = None
    job_id: Optional[int] = None
    reason: Optional[str] = None


class ReturnStockRequest(BaseModel):
    item_name: str
    lot_id: str
    quantity: Optional[Decimal] = None
    length: Optional[Decimal] = None
    value: Optional[Decimal] = None
    reason: Optional[str] = None


class LotPatch(BaseModel):
    quantity: Optional[Decimal] = None
    length: Optional[Decimal] = None
    value: Optional[Decimal] = None
    purchase_price: Optional[Decimal] = None
    supplier: Optional[str] = None
    brand: Optional[str] = None
    location: Optional[str] = None
    batch_number: Optional[str] = None
    notes: Optional[str] = None
    purchase_date: Optional[datetime] = None
    expiry_date: Optional[datetime] = None


class GroupedItemUpdate(BaseModel):
    item_name: Optional[str] = None
    category: Optional[str] = None
    unit: Optional[str] = None
    min_value: Optional[Decimal] = None
    notes: Optional[str] = None
    reason: Optional[str] = None
    lot: Optional[LotPatch] = None


class StockLotResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    lot_id: str
    position: int
    value: Decimal
    purchase_price: Decimal
    supplier: Optional[str]
    brand: Optional[str]
    location: Optional[str]
    batch_number: Optional[str]
    notes: Optional[str]
    purchase_date: datetime
    expiry_date: Optional[datetime]
    is_active: bool


class GroupedItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    item_name: str
    category: str
    unit: str
    total_value: Decimal
    average_purchase_price: Decimal
    min_value: Decimal
    low_stock: bool
    last_restocked: Optional[datetime]
    notes: Optional[str]
    lots: list[StockLotResponse]
    created_at: datetime
    updated_at: datetime


class LotUsageResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    lot_id: str
    amount: Decimal
    unit_cost: Decimal
    cost: Decimal


class StockUsageResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    item: GroupedItemResponse
    used_lots: list[LotUsageResponse]
    total_cost: Decimal
    average_unit_cost: Decimal


class AvailabilityResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    available: bool
    item: Optional[GroupedItemResponse]
    message: Optional[str]


class SerializedUnitCreate(BaseModel):
    serial_number: str = Field(min_length=1)
    item_name: str
    brand: str
    model: str
    category: Optional[str] = None
    status: Optional[str] = None
    purchase_price: Decimal = Decimal("0")
    sale_price: Decimal = Decimal("0")
    supplier: Optional[str] = None
    purchase_date: Optional[datetime] = None
    warranty_expiry: Optional[datetime] = None
    location: Optional[str] = None
    notes: Optional[str] = None


class SerializedUnitUpdate(BaseModel):
    item_name: Optional[str] = None
    brand: Optional[str] = None
    model: Optional[str] = None
    category: Optional[str] = None
    status: Optional[str] = None
    purchase_price: Optional[Decimal] = None
    sale_price: Optional[Decimal] = None
    supplier: Optional[str] = None
    purchase_date: Optional[datetime] = None
    warranty_expiry: Optional[datetime] = None
    location: Optional[str] = None
    notes: Optional[str] = None
    reason: Optional[str] = None


class InstallRequest(BaseModel):
    job_id: int
    customer_id: Optional[int] = None


class UnitReturnRequest(BaseModel):
    reason: str = "Job completed"


class SerializedUnitResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    serial_number: str
    item_name: str
    brand: str
    model: str
    category: str
    purchase_price: Decimal
    sale_price: Decimal
    status: str
    current_job_id: Optional[int]
    current_customer_id: Optional[int]
    installed_date: Optional[datetime]
    supplier: Optional[str]
    purchase_date: Optional[datetime]
    warranty_expiry: Optional[datetime]
    location: Optional[str]
    notes: Optional[str]
    created_at: datetime
    updated_at: datetime


class LedgerEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    transaction_type: str
    inventory_type: str
    item_id: int
    item_name: str
    lot_id: Optional[str]
    serial_number: Optional[str]
    quantity_change: Decimal
    unit_cost: Decimal
    total_value: Decimal
    reference_type: str
    reference_id: Optional[str]
    performed_by: str
    reason: Optional[str]
    details: Optional[dict[str, Any]]
    created_at: datetime


class HistoryEntryResponse(LedgerEntryResponse):
    action: str


class GroupedHistoryResponse(BaseModel):
    item: GroupedItemResponse
    history: list[HistoryEntryResponse]


class SerializedHistoryResponse(BaseModel):
    item: SerializedUnitResponse
    history: list[HistoryEntryResponse]
