from dataclasses import dataclass, field
from typing import Optional

import jwt
from fastapi import Depends, Header
from sqlalchemy.orm import Session

from core.db import get_db
from core.errors import Unauthorized
from models.user import User
from security import jwt as jwt_utils


@dataclass(frozen=True)
class Principal:
    """Authenticated caller as described by a verified access token."""

    id: int
    role: str
    store_roles: tuple[tuple[int, str], ...] = field(default_factory=tuple)

    @classmethod
    def from_claims(cls, payload: dict) -> "Principal":
        store_roles = tuple(
            (int(entry["store_id"]), entry["role"]) for entry in payload.get("store_roles", [])
        )
        return cls(id=int(payload["sub"]), role=payload.get("role", "customer"), store_roles=store_roles)


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization or not authorization.lower().startswith("bearer "):
        return None
    return authorization.split(" ", 1)[1].strip()


def get_current_principal(
    authorization: Optional[str] = Header(default=None, alias="Authorization"),
) -> Principal:
    token = _bearer_token(authorization)
    if not token:
        raise Unauthorized("Not authenticated")
    try:
        return Principal.from_claims(jwt_utils.decode_access(token))
    except (jwt.PyJWTError, KeyError, ValueError, TypeError):
        raise Unauthorized("Invalid token")


def get_optional_principal(
    authorization: Optional[str] = Header(default=None, alias="Authorization"),
) -> Optional[Principal]:
    """Like get_current_principal, but anonymous callers get None."""
    if not _bearer_token(authorization):
        return None
    return get_current_principal(authorization)


def get_current_user(
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
) -> User:
    user = db.get(User, principal.id)
    if not user:
        raise Unauthorized("User not found")
    return user
