from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from cooltrack.core.authorization import Actor, Role, require_role
from cooltrack.deps.auth import require_auth
from cooltrack.deps.services import get_grouped_service, get_serialized_service
from cooltrack.schemas.inventory import (
    AddStockRequest,
    AvailabilityResponse,
    GroupedHistoryResponse,
    GroupedItemResponse,
    GroupedItemUpdate,
    HistoryEntryResponse,
    InstallRequest,
    ReturnStockRequest,
    SerializedHistoryResponse,
    SerializedUnitCreate,
    SerializedUnitResponse,
    SerializedUnitUpdate,
    StockUsageResponse,
    UnitReturnRequest,
    UseStockRequest,
)
from cooltrack.services import ledger_service
from cooltrack.services.grouped_inventory_service import GroupedInventoryService
from cooltrack.services.serialized_inventory_service import SerializedInventoryService

router = APIRouter(prefix="/inventory", tags=["Inventory"])


def _history(entries) -> list[HistoryEntryResponse]:
    return [HistoryEntryResponse(**ledger_service.serialize_entry(e)) for e in entries]


# ---------- Grouped ----------

@router.get("/grouped", response_model=List[GroupedItemResponse])
def list_grouped_items(
    category: Optional[str] = Query(default=None),
    low_stock: Optional[bool] = Query(default=None),
    _actor: Actor = Depends(require_auth),
    service: GroupedInventoryService = Depends(get_grouped_service),
):
    return service.list_items(category=category, low_stock=low_stock)


@router.get("/grouped/low-stock", response_model=List[GroupedItemResponse])
def low_stock_items(
    _actor: Actor = Depends(require_auth),
    service: GroupedInventoryService = Depends(get_grouped_service),
):
    return service.get_low_stock_items()


@router.get("/grouped/availability", response_model=AvailabilityResponse)
def check_availability(
    item_name: str = Query(..., min_length=1),
    required: Decimal = Query(...),
    _actor: Actor = Depends(require_auth),
    service: GroupedInventoryService = Depends(get_grouped_service),
):
    return service.check_availability(item_name, required)


@router.get("/grouped/history", response_model=GroupedHistoryResponse)
def grouped_history(
    item_name: str = Query(..., min_length=1),
    limit: int = Query(default=50, ge=1, le=500),
    _actor: Actor = Depends(require_auth),
    service: GroupedInventoryService = Depends(get_grouped_service),
):
    item, entries = service.item_history(item_name, limit=limit)
    return {"item": item, "history": _history(entries)}


@router.get("/grouped/{item_id}", response_model=GroupedItemResponse)
def get_grouped_item(
    item_id: int,
    _actor: Actor = Depends(require_auth),
    service: GroupedInventoryService = Depends(get_grouped_service),
):
    return service.get_item(item_id)


@router.post("/grouped/stock", response_model=GroupedItemResponse, status_code=201)
def add_stock(
    payload: AddStockRequest,
    actor: Actor = Depends(require_role(Role.ADMIN)),
    service: GroupedInventoryService = Depends(get_grouped_service),
):
    lot_data = payload.model_dump(exclude_none=True, exclude={"item_name"})
    return service.add_stock(payload.item_name, lot_data, actor.id)


@router.post("/grouped/use", response_model=StockUsageResponse)
def use_stock(
    payload: UseStockRequest,
    actor: Actor = Depends(require_auth),
    service: GroupedInventoryService = Depends(get_grouped_service),
):
    usage = payload.model_dump(exclude_none=True, exclude={"item_name", "job_id"})
    return service.use_stock(payload.item_name, usage, payload.job_id, actor.id)


@router.post("/grouped/return", response_model=GroupedItemResponse)
def return_stock(
    payload: ReturnStockRequest,
    actor: Actor = Depends(require_auth),
    service: GroupedInventoryService = Depends(get_grouped_service),
):
    return_data = payload.model_dump(exclude_none=True, exclude={"item_name", "lot_id"})
    return service.return_stock(payload.item_name, return_data, payload.lot_id, actor.id)


@router.patch("/grouped/{item_id}", response_model=GroupedItemResponse)
def update_grouped_item(
    item_id: int,
    payload: GroupedItemUpdate,
    actor: Actor = Depends(require_role(Role.ADMIN)),
    service: GroupedInventoryService = Depends(get_grouped_service),
):
    return service.update_item(item_id, payload.model_dump(exclude_none=True), actor.id)


@router.delete("/grouped/{item_id}", status_code=204)
def delete_grouped_item(
    item_id: int,
    _actor: Actor = Depends(require_role(Role.ADMIN)),
    service: GroupedInventoryService = Depends(get_grouped_service),
):
    service.delete_item(item_id)


# ---------- Serialized ----------

@router.get("/serialized", response_model=List[SerializedUnitResponse])
def list_serialized_units(
    status: Optional[str] = Query(default=None),
    category: Optional[str] = Query(default=None),
    _actor: Actor = Depends(require_auth),
    service: SerializedInventoryService = Depends(get_serialized_service),
):
    return service.list_items(status=status, category=category)


@router.get("/serialized/{serial_number}", response_model=SerializedUnitResponse)
def get_serialized_unit(
    serial_number: str,
    _actor: Actor = Depends(require_auth),
    service: SerializedInventoryService = Depends(get_serialized_service),
):
    return service.get_by_serial(serial_number)


@router.get("/serialized/{serial_number}/history", response_model=SerializedHistoryResponse)
def serialized_history(
    serial_number: str,
    limit: int = Query(default=50, ge=1, le=500),
    _actor: Actor = Depends(require_auth),
    service: SerializedInventoryService = Depends(get_serialized_service),
):
    unit, entries = service.item_history(serial_number, limit=limit)
    return {"item": unit, "history": _history(entries)}


@router.post("/serialized", response_model=SerializedUnitResponse, status_code=201)
def add_serialized_unit(
    payload: SerializedUnitCreate,
    actor: Actor = Depends(require_role(Role.ADMIN)),
    service: SerializedInventoryService = Depends(get_serialized_service),
):
    return service.add_item(payload.model_dump(exclude_none=True), actor.id)


@router.post("/serialized/{serial_number}/install", response_model=SerializedUnitResponse)
def install_serialized_unit(
    serial_number: str,
    payload: InstallRequest,
    actor: Actor = Depends(require_auth),
    service: SerializedInventoryService = Depends(get_serialized_service),
):
    return service.install_item(serial_number, payload.job_id, payload.customer_id, actor.id)


@router.post("/serialized/{serial_number}/return", response_model=SerializedUnitResponse)
def return_serialized_unit(
    serial_number: str,
    payload: UnitReturnRequest,
    actor: Actor = Depends(require_auth),
    service: SerializedInventoryService = Depends(get_serialized_service),
):
    return service.return_item(serial_number, actor.id, payload.reason)


@router.patch("/serialized/{unit_id}", response_model=SerializedUnitResponse)
def update_serialized_unit(
    unit_id: int,
    payload: SerializedUnitUpdate,
    actor: Actor = Depends(require_role(Role.ADMIN)),
    service: SerializedInventoryService = Depends(get_serialized_service),
):
    return service.update_item(unit_id, payload.model_dump(exclude_none=True), actor.id)


@router.delete("/serialized/{unit_id}", status_code=204)
def delete_serialized_unit(
    unit_id: int,
    _actor: Actor = Depends(require_role(Role.ADMIN)),
    service: SerializedInventoryService = Depends(get_serialized_service),
):
    service.delete_item(unit_id)
