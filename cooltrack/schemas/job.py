from datetime import datetime
from decimal import Decimal
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class JobCreate(BaseModel):
    customer_id: int
    type: str
    description: Optional[str] = None
    assigned_to: Optional[str] = None
    scheduled_date: Optional[datetime] = None
    labor_hours: Optional[Decimal] = None
    total_revenue: Optional[Decimal] = None
    technician_notes: Optional[str] = None
    admin_notes: Optional[str] = None


class MaterialLine(BaseModel):
    inventory_type: Literal["serialized", "grouped"]
    serial_number: Optional[str] = None
    item_name: Optional[str] = None
    quantity: Optional[Decimal] = None
    length_used: Optional[Decimal] = None
    value_used: Optional[Decimal] = None


class AddMaterialsRequest(BaseModel):
    materials: list[MaterialLine] = Field(min_length=1)


class MaterialEdit(BaseModel):
    unit_cost: Optional[Decimal] = None
    quantity: Optional[Decimal] = None
    length_used: Optional[Decimal] = None
    value_used: Optional[Decimal] = None


class LaborUpdate(BaseModel):
    hours: Decimal


class RevenueUpdate(BaseModel):
    base_revenue: Decimal


class LaborRateUpdate(BaseModel):
    rate_per_hour: Optional[Decimal] = None
    override_total_cost: Optional[Decimal] = None
    remove_override: bool = False


class TechnicianPaymentUpdate(BaseModel):
    calculation_type: Optional[str] = None
    fixed_amount: Optional[Decimal] = None
    percentage: Optional[Decimal] = None
    override_amount: Optional[Decimal] = None
    remove_override: bool = False


class ApproveCostingRequest(BaseModel):
    notes: Optional[str] = None


class StatusUpdate(BaseModel):
    status: str
    technician_notes: Optional[str] = None
    admin_notes: Optional[str] = None


class AdditionalCostCreate(BaseModel):
    description: str
    amount: Decimal


class FileUpload(BaseModel):
    kind: Literal["photo", "document"]
    filename: str
    content_type: Optional[str] = None
    content_base64: str


class AttachFilesRequest(BaseModel):
    files: list[FileUpload] = Field(min_length=1)


class JobMaterialResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    inventory_type: str
    inventory_item_id: int
    item_name: str
    serial_number: Optional[str]
    unit: str
    value_used: Decimal
    unit_cost: Decimal
    total_cost: Decimal
    unit_cost_overridden: bool
    lot_allocations: list[dict[str, Any]]
    added_by: Optional[str]
    added_at: datetime


class JobAdditionalCostResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    description: str
    amount: Decimal
    added_by: Optional[str]
    added_at: datetime


class CostingApprovalResponse(BaseModel):
    is_approved: bool
    approved_by: Optional[str]
    approved_at: Optional[datetime]
    notes: Optional[str]
    profit_at_approval: Optional[Decimal]
    total_cost_at_approval: Optional[Decimal]
    total_revenue_at_approval: Optional[Decimal]


class JobResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    job_number: str
    customer_id: int
    customer_name: Optional[str]
    customer_address: Optional[str]
    customer_phone: Optional[str]
    type: str
    description: Optional[str]
    assigned_to: Optional[str]
    status: str
    scheduled_date: Optional[datetime]
    started_at: Optional[datetime]
    completed_at: Optional[datetime]
    paid_at: Optional[datetime]
    labor_hours: Decimal
    labor_rate: Optional[Decimal]
    labor_cost: Decimal
    labor_overridden: bool
    total_material_cost: Decimal
    total_cost: Decimal
    total_revenue: Decimal
    profit: Decimal
    costing_approval: CostingApprovalResponse
    technician_payment_type: Optional[str]
    technician_payment_fixed_amount: Optional[Decimal]
    technician_payment_percentage: Optional[Decimal]
    technician_payment_overridden: bool
    technician_payment_override_amount: Optional[Decimal]
    materials: list[JobMaterialResponse]
    additional_costs: list[JobAdditionalCostResponse]
    photo_urls: list[str]
    document_urls: list[str]
    technician_notes: Optional[str]
    admin_notes: Optional[str]
    created_by: Optional[str]
    created_at: datetime
    updated_at: datetime
