from dataclasses import dataclass

from jose import JWTError, jwt
from starlette.requests import Request

from agency_crm.context import set_actor_user_id
from agency_crm.core.config import get_settings


@dataclass
class AuthUser:
    sub: str
    roles: list[str]
    team_id: str | None = None


async def get_current_user(request: Request) -> AuthUser:
    auth_header = request.headers.get("authorization", "")
    token = auth_header.replace("Bearer ", "") if auth_header.startswith("Bearer ") else ""

    if not token:
        return AuthUser(sub="anonymous", roles=["guest"])

    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return AuthUser(sub="anonymous", roles=["guest"])

    subject = str(payload.get("sub", "anonymous"))
    roles = payload.get("roles", ["rep"])
    if not isinstance(roles, list):
        roles = ["rep"]
    team_id = payload.get("team_id")
    set_actor_user_id(subject)
    context = getattr(request.state, "context", None)
    if context is not None:
        context.user_id = subject
    return AuthUser(sub=subject, roles=[str(role) for role in roles], team_id=str(team_id) if team_id else None)


def issue_token(sub: str, roles: list[str], team_id: str | None = None) -> str:
    settings = get_settings()
    claims: dict[str, object] = {"sub": sub, "roles": roles}
    if team_id:
        claims["team_id"] = team_id
    return jwt.encode(claims, settings.jwt_secret, algorithm=settings.jwt_algorithm)
