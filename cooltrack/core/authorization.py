from dataclasses import dataclass
from enum import Enum

from fastapi import Depends, HTTPException, Request

from cooltrack.deps.auth import require_auth


class Role(Enum):
    ADMIN = "admin"
    TECHNICIAN = "technician"


@dataclass(frozen=True)
class Actor:
    id: str
    role: Role

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN


def parse_role(value) -> Role:
    try:
        return Role(str(value).lower())
    except ValueError as exc:
        raise ValueError(f"Invalid role: {value}") from exc


def require_role(role: Role):
    def dependency(request: Request, actor: Actor = Depends(require_auth)):
        rank = {
            Role.TECHNICIAN: 1,
            Role.ADMIN: 2,
        }

        if rank[actor.role] < rank[role]:
            raise HTTPException(status_code=403, detail="Insufficient role")

        request.state.role = actor.role.value
        return actor

    return dependency


LOCKED_JOB_STATUSES = frozenset({"completed", "paid"})


class JobPolicy:
    """Capability checks shared by every job operation."""

    def is_assigned(self, actor: Actor, job) -> bool:
        return job.assigned_to is not None and str(job.assigned_to) == str(actor.id)

    def can_create_job(self, actor: Actor) -> bool:
        return actor.is_admin

    def can_view_job(self, actor: Actor, job) -> bool:
        return actor.is_admin or self.is_assigned(actor, job)

    def can_edit_job(self, actor: Actor, job) -> bool:
        return actor.is_admin or self.is_assigned(actor, job)

    def can_update_labor(self, actor: Actor, job) -> bool:
        return self.is_assigned(actor, job)

    def can_manage_costing(self, actor: Actor) -> bool:
        return actor.is_admin

    def can_approve_costing(self, actor: Actor) -> bool:
        return actor.is_admin

    def is_costing_locked(self, job) -> bool:
        return job.status in LOCKED_JOB_STATUSES


job_policy = JobPolicy()
