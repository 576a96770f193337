import base64
import binascii
from typing import Any, List, Optional

from fastapi import APIRouter, Depends, Query

from cooltrack.core.authorization import Actor
from cooltrack.core.errors import ValidationError
from cooltrack.deps.auth import require_auth
from cooltrack.deps.services import get_file_storage, get_job_service
from cooltrack.schemas.job import (
    AddMaterialsRequest,
    AdditionalCostCreate,
    ApproveCostingRequest,
    AttachFilesRequest,
    JobCreate,
    JobResponse,
    LaborRateUpdate,
    LaborUpdate,
    MaterialEdit,
    RevenueUpdate,
    StatusUpdate,
    TechnicianPaymentUpdate,
)
from cooltrack.services.file_storage import FileStorage
from cooltrack.services.job_service import JobService

router = APIRouter(prefix="/jobs", tags=["Jobs"])


@router.post("", response_model=JobResponse, status_code=201)
def create_job(
    payload: JobCreate,
    actor: Actor = Depends(require_auth),
    service: JobService = Depends(get_job_service),
):
    return service.create_job(payload.model_dump(exclude_none=True), actor)


@router.get("", response_model=List[JobResponse])
def list_jobs(
    status: Optional[str] = Query(default=None),
    assigned_to: Optional[str] = Query(default=None),
    customer_id: Optional[int] = Query(default=None),
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    actor: Actor = Depends(require_auth),
    service: JobService = Depends(get_job_service),
):
    return service.list_jobs(
        actor,
        status=status,
        assigned_to=assigned_to,
        customer_id=customer_id,
        limit=limit,
        offset=offset,
    )


@router.get("/{job_id}", response_model=JobResponse)
def get_job(
    job_id: int,
    actor: Actor = Depends(require_auth),
    service: JobService = Depends(get_job_service),
):
    return service.get_job(job_id, actor)


@router.get("/{job_id}/costs")
def cost_breakdown(
    job_id: int,
    actor: Actor = Depends(require_auth),
    service: JobService = Depends(get_job_service),
) -> dict[str, Any]:
    return service.cost_breakdown(job_id, actor)


@router.post("/{job_id}/status", response_model=JobResponse)
def update_status(
    job_id: int,
    payload: StatusUpdate,
    actor: Actor = Depends(require_auth),
    service: JobService = Depends(get_job_service),
):
    extra = payload.model_dump(exclude_none=True, exclude={"status"})
    return service.update_status(job_id, payload.status, actor, extra)


# ---------- Materials ----------

@router.post("/{job_id}/materials", response_model=JobResponse)
def add_materials(
    job_id: int,
    payload: AddMaterialsRequest,
    actor: Actor = Depends(require_auth),
    service: JobService = Depends(get_job_service),
):
    lines = [line.model_dump(exclude_none=True) for line in payload.materials]
    return service.add_materials(job_id, lines, actor)


@router.patch("/{job_id}/materials/{index}", response_model=JobResponse)
def edit_material(
    job_id: int,
    index: int,
    payload: MaterialEdit,
    actor: Actor = Depends(require_auth),
    service: JobService = Depends(get_job_service),
):
    return service.edit_material(job_id, index, payload.model_dump(exclude_none=True), actor)


@router.delete("/{job_id}/materials/{index}", response_model=JobResponse)
def remove_material(
    job_id: int,
    index: int,
    actor: Actor = Depends(require_auth),
    service: JobService = Depends(get_job_service),
):
    return service.remove_material(job_id, index, actor)


# ---------- Costing ----------

@router.put("/{job_id}/labor", response_model=JobResponse)
def update_labor(
    job_id: int,
    payload: LaborUpdate,
    actor: Actor = Depends(require_auth),
    service: JobService = Depends(get_job_service),
):
    return service.update_labor(job_id, payload.model_dump(), actor)


@router.put("/{job_id}/revenue", response_model=JobResponse)
def update_revenue(
    job_id: int,
    payload: RevenueUpdate,
    actor: Actor = Depends(require_auth),
    service: JobService = Depends(get_job_service),
):
    return service.update_revenue(job_id, payload.model_dump(), actor)


@router.put("/{job_id}/labor-rate", response_model=JobResponse)
def update_labor_rate(
    job_id: int,
    payload: LaborRateUpdate,
    actor: Actor = Depends(require_auth),
    service: JobService = Depends(get_job_service),
):
    return service.update_labor_rate(job_id, payload.model_dump(exclude_none=True), actor)


@router.put("/{job_id}/technician-payment", response_model=JobResponse)
def update_technician_payment(
    job_id: int,
    payload: TechnicianPaymentUpdate,
    actor: Actor = Depends(require_auth),
    service: JobService = Depends(get_job_service),
):
    return service.update_technician_payment(job_id, payload.model_dump(exclude_none=True), actor)


@router.post("/{job_id}/approve-costing", response_model=JobResponse)
def approve_costing(
    job_id: int,
    payload: ApproveCostingRequest,
    actor: Actor = Depends(require_auth),
    service: JobService = Depends(get_job_service),
):
    return service.approve_costing(job_id, payload.notes, actor)


@router.post("/{job_id}/additional-costs", response_model=JobResponse)
def add_additional_cost(
    job_id: int,
    payload: AdditionalCostCreate,
    actor: Actor = Depends(require_auth),
    service: JobService = Depends(get_job_service),
):
    return service.add_additional_cost(job_id, payload.model_dump(), actor)


@router.delete("/{job_id}/additional-costs/{index}", response_model=JobResponse)
def remove_additional_cost(
    job_id: int,
    index: int,
    actor: Actor = Depends(require_auth),
    service: JobService = Depends(get_job_service),
):
    return service.remove_additional_cost(job_id, index, actor)


# ---------- Files ----------

@router.post("/{job_id}/files")
def attach_files(
    job_id: int,
    payload: AttachFilesRequest,
    actor: Actor = Depends(require_auth),
    service: JobService = Depends(get_job_service),
    storage: FileStorage = Depends(get_file_storage),
) -> dict[str, list[str]]:
    files = []
    for upload in payload.files:
        try:
            content = base64.b64decode(upload.content_base64, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ValidationError(f"Invalid base64 content for {upload.filename}") from exc
        files.append(
            {
                "kind": upload.kind,
                "filename": upload.filename,
                "content": content,
                "content_type": upload.content_type,
            }
        )
    return service.attach_files(job_id, files, actor, storage)
