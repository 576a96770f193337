from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from cooltrack.core.config import get_env_name
from cooltrack.services.auth_service import create_access_token

router = APIRouter(prefix="/auth", tags=["auth"])


class TokenRequest(BaseModel):
    user_id: str
    role: str


@router.post("/token")
def issue_token(payload: TokenRequest):
    if get_env_name() not in {"dev", "local", "test"}:
        raise HTTPException(status_code=404, detail="Not Found")
    try:
        token = create_access_token(user_id=str(payload.user_id), role=payload.role)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    return {
        "access_token": token,
        "token_type": "bearer",
    }
