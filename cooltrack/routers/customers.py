from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from cooltrack.core.authorization import Actor, Role, require_role
from cooltrack.deps.auth import require_auth
from cooltrack.schemas.customer import CustomerCreate, CustomerResponse, CustomerUpdate
from cooltrack.services import customer_service

router = APIRouter(prefix="/customers", tags=["Customers"])


@router.get("", response_model=List[CustomerResponse])
def list_customers(
    search: Optional[str] = Query(default=None),
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    _actor: Actor = Depends(require_auth),
):
    return customer_service.list_customers(search=search, limit=limit, offset=offset)


@router.get("/{customer_id}", response_model=CustomerResponse)
def get_customer(customer_id: int, _actor: Actor = Depends(require_auth)):
    return customer_service.get_customer(customer_id)


@router.post("", response_model=CustomerResponse, status_code=201)
def create_customer(payload: CustomerCreate, _actor: Actor = Depends(require_role(Role.ADMIN))):
    return customer_service.create_customer(payload.model_dump())


@router.patch("/{customer_id}", response_model=CustomerResponse)
def update_customer(
    customer_id: int,
    payload: CustomerUpdate,
    _actor: Actor = Depends(require_role(Role.ADMIN)),
):
    return customer_service.update_customer(customer_id, payload.model_dump(exclude_none=True))


@router.delete("/{customer_id}", status_code=204)
def delete_customer(customer_id: int, _actor: Actor = Depends(require_role(Role.ADMIN))):
    customer_service.delete_customer(customer_id)
