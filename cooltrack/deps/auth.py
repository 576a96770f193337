from fastapi import HTTPException, Request

from cooltrack.services.auth_service import verify_token


def _parse_bearer_token(request: Request) -> str:
    auth_header = request.headers.get("Authorization")
    if not auth_header:
        raise HTTPException(status_code=401, detail="Missing Authorization header")

    parts = auth_header.split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer" or not parts[1].strip():
        raise HTTPException(status_code=401, detail="Invalid Authorization header")

    return parts[1].strip()


def require_auth(request: Request):
    from cooltrack.core.authorization import Actor, parse_role

    token = _parse_bearer_token(request)

    try:
        claims = verify_token(token)
    except ValueError as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc

    try:
        role = parse_role(claims.get("role"))
    except ValueError as exc:
        raise HTTPException(status_code=403, detail="Invalid role claim") from exc

    actor = Actor(id=str(claims.get("sub")), role=role)

    request.state.user_id = actor.id
    request.state.role = actor.role.value

    return actor
