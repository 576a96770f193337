from fastapi import APIRouter, Depends

from cooltrack.core.authorization import Actor, Role, require_role
from cooltrack.database import unit_of_work
from cooltrack.deps.auth import require_auth
from cooltrack.schemas.settings import SettingsResponse, SettingsUpdate
from cooltrack.services import settings_service

router = APIRouter(prefix="/settings", tags=["Settings"])


@router.get("", response_model=SettingsResponse)
def read_settings(_actor: Actor = Depends(require_auth)):
    with unit_of_work() as db:
        row = settings_service.get_settings(db)
    return row


@router.patch("", response_model=SettingsResponse)
def update_settings(payload: SettingsUpdate, actor: Actor = Depends(require_role(Role.ADMIN))):
    return settings_service.update_settings(payload.model_dump(exclude_none=True), actor.id)
