from typing import List, Literal

from fastapi import APIRouter, Depends, Query

from cooltrack.core.authorization import Actor, Role, require_role
from cooltrack.database import unit_of_work
from cooltrack.schemas.inventory import LedgerEntryResponse
from cooltrack.services import ledger_service

router = APIRouter(prefix="/ledger", tags=["Ledger"])


@router.get("/items/{inventory_type}/{item_id}", response_model=List[LedgerEntryResponse])
def entries_for_item(
    inventory_type: Literal["grouped", "serialized"],
    item_id: int,
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    _actor: Actor = Depends(require_role(Role.ADMIN)),
):
    with unit_of_work() as db:
        return ledger_service.entries_for_item(
            db, inventory_type=inventory_type, item_id=item_id, limit=limit, offset=offset
        )


@router.get("/jobs/{job_id}", response_model=List[LedgerEntryResponse])
def entries_for_job(job_id: int, _actor: Actor = Depends(require_role(Role.ADMIN))):
    with unit_of_work() as db:
        return ledger_service.entries_for_reference(db, reference_type="job", reference_id=job_id)
