import enum
from dataclasses import dataclass
from datetime import datetime, timezone

from fastapi import Depends, Header, HTTPException, status
from jose import jwt
from jose.exceptions import JWTError

from .config import JWT_ALGORITHM, JWT_SECRET
from .errors import ForbiddenError


class Role(str, enum.Enum):
    USER = "user"
    AGENT = "agent"
    ADMIN = "admin"


@dataclass(frozen=True)
class Principal:
    user_id: str
    role: Role
    email: str | None = None
    first_name: str | None = None
    last_name: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    @property
    def is_staff(self) -> bool:
        return self.role in (Role.ADMIN, Role.AGENT)


def verify_access_token(token: str, secret: str = JWT_SECRET) -> Principal:
    try:
        payload = jwt.decode(token, secret, algorithms=[JWT_ALGORITHM])
    except JWTError:
        raise ValueError("INVALID_TOKEN")

    now = datetime.now(timezone.utc).timestamp()
    exp = payload.get("exp")
    if exp is None or now > float(exp):
        raise ValueError("EXPIRED")

    # Required claims
    for k in ["sub", "role"]:
        if k not in payload:
            raise ValueError("INVALID_TOKEN")
    try:
        role = Role(payload["role"])
    except ValueError:
        raise ValueError("INVALID_ROLE")

    return Principal(
        user_id=str(payload["sub"]),
        role=role,
        email=payload.get("email"),
        first_name=payload.get("first_name"),
        last_name=payload.get("last_name"),
    )


def mint_access_token(claims: dict, secret: str = JWT_SECRET) -> str:
    return jwt.encode(claims, secret, algorithm=JWT_ALGORITHM)


async def get_current_principal(authorization: str | None = Header(default=None)) -> Principal:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing bearer token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        return verify_access_token(authorization.split(" ", 1)[1].strip())
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e),
            headers={"WWW-Authenticate": "Bearer"},
        )


def require_roles(*roles: Role):
    allowed = set(roles)

    async def dependency(principal: Principal = Depends(get_current_principal)) -> Principal:
        if principal.role not in allowed:
            raise ForbiddenError("Insufficient role for this operation")
        return principal

    return dependency
