"""Store context resolution and store-scoped authorization.

Every tenant-scoped endpoint depends on ``get_current_store`` (which store is
this about, and is it live?) and, for mutations, on ``require_store_roles``
(may this caller act on that store?).
"""
import enum
import json
import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from core.db import get_by_id, get_db
from core.errors import BadRequest, Forbidden, NotFound
from models.store import Store
from models.user import User
from security.principal import Principal, get_current_principal

logger = logging.getLogger(__name__)

STORE_ID_FIELD = "store_id"


# --- Store context -----------------------------------------------------------

async def _store_id_from_body(request: Request) -> Optional[str]:
    content_type = request.headers.get("content-type", "")
    if content_type.startswith(("multipart/form-data", "application/x-www-form-urlencoded")):
        form = await request.form()
        value = form.get(STORE_ID_FIELD)
        return value if isinstance(value, str) else None
    if content_type.startswith("application/json"):
        try:
            body = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            return None
        if isinstance(body, dict) and body.get(STORE_ID_FIELD) is not None:
            return str(body[STORE_ID_FIELD])
    return None


async def resolve_store_id(request: Request) -> Optional[str]:
    """Pick the store identifier: body first, then path, then query string."""
    from_body = await _store_id_from_body(request)
    if from_body:
        return from_body
    from_path = request.path_params.get(STORE_ID_FIELD)
    if from_path:
        return str(from_path)
    return request.query_params.get(STORE_ID_FIELD) or None


def load_store(db: Session, store_id: Optional[str], require_active: bool = True) -> Store:
    if not store_id:
        raise BadRequest("Store ID is required")
    try:
        pk = int(store_id)
    except (TypeError, ValueError):
        raise NotFound("Store not found")
    store = get_by_id(db, Store, pk)
    if not store:
        raise NotFound("Store not found")
    if require_active and not store.is_active:
        raise Forbidden("Store is currently inactive")
    return store


async def get_current_store(request: Request, db: Session = Depends(get_db)) -> Store:
    """FastAPI dependency returning the active Store this request targets."""
    return load_store(db, await resolve_store_id(request))


async def get_managed_store(request: Request, db: Session = Depends(get_db)) -> Store:
    """Same as get_current_store but inactive stores resolve too (reactivation)."""
    return load_store(db, await resolve_store_id(request), require_active=False)


# --- Authorization -----------------------------------------------------------

class DenyReason(str, enum.Enum):
    NO_STORE_ACCESS = "NoStoreAccess"
    INSUFFICIENT_STORE_ROLE = "InsufficientStoreRole"


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: Optional[DenyReason] = None
    store_role: Optional[str] = None

    @classmethod
    def allow(cls, store_role: Optional[str] = None) -> "Decision":
        return cls(True, None, store_role)

    @classmethod
    def deny(cls, reason: DenyReason, store_role: Optional[str] = None) -> "Decision":
        return cls(False, reason, store_role)


def role_in_store(store_roles: Iterable[tuple[int, str]], store_id: int) -> Optional[str]:
    for sid, role in store_roles:
        if sid == store_id:
            return role
    return None


def _superadmin_rule(global_role, store_role, allowed):
    if global_role == "superadmin":
        return Decision.allow(store_role)
    return None


def _admin_rule(global_role, store_role, allowed):
    if global_role == "admin":
        return Decision.allow(store_role)
    return None


def _store_role_rule(global_role, store_role, allowed):
    if store_role is None:
        return Decision.deny(DenyReason.NO_STORE_ACCESS)
    if store_role in allowed:
        return Decision.allow(store_role)
    return Decision.deny(DenyReason.INSUFFICIENT_STORE_ROLE, store_role)


# First rule that returns a decision wins
_RULES = (_superadmin_rule, _admin_rule, _store_role_rule)


def authorize(
    global_role: str,
    store_roles: Iterable[tuple[int, str]],
    store_id: int,
    allowed_store_roles: Iterable[str],
) -> Decision:
    store_role = role_in_store(store_roles, store_id)
    allowed = frozenset(allowed_store_roles)
    for rule in _RULES:
        decision = rule(global_role, store_role, allowed)
        if decision is not None:
            return decision
    return Decision.deny(DenyReason.NO_STORE_ACCESS)


def authorize_self_or_staff(
    global_role: str,
    store_roles: Iterable[tuple[int, str]],
    store_id: int,
    principal_id: int,
    target_user_id: int,
) -> Decision:
    """Allow store staff of any rank, privileged users, or the target user."""
    store_role = role_in_store(store_roles, store_id)
    if global_role in ("superadmin", "admin"):
        return Decision.allow(store_role)
    if store_role is not None:
        return Decision.allow(store_role)
    if principal_id == target_user_id:
        return Decision.allow()
    return Decision.deny(DenyReason.NO_STORE_ACCESS)


_DENY_MESSAGES = {
    DenyReason.NO_STORE_ACCESS: "You do not have access to this store",
    DenyReason.INSUFFICIENT_STORE_ROLE: "You do not have the required permissions for this store",
}


def ensure_allowed(decision: Decision, principal_id: int, store_id: Optional[int] = None) -> Decision:
    if not decision.allowed:
        logger.info("Denied user %s on store %s: %s", principal_id, store_id, decision.reason.value)
        raise Forbidden(_DENY_MESSAGES[decision.reason], error=decision.reason.value)
    return decision


@dataclass
class StoreAccess:
    store: Store
    user: User
    store_role: Optional[str]


def _live_user(db: Session, principal: Principal) -> User:
    # Store roles are checked against the stored user, not the token claims
    user = db.get(User, principal.id)
    if not user:
        raise NotFound("User not found")
    return user


def _store_access_dependency(store_dependency, roles: tuple[str, ...]):
    def _check_role(
        store: Store = Depends(store_dependency),
        principal: Principal = Depends(get_current_principal),
        db: Session = Depends(get_db),
    ) -> StoreAccess:
        user = _live_user(db, principal)
        decision = ensure_allowed(authorize(user.role, user.store_roles(db), store.id, roles), user.id, store.id)
        return StoreAccess(store=store, user=user, store_role=decision.store_role)
    return _check_role


def require_store_roles(*roles: str):
    """Dependency requiring one of ``roles`` in the current (active) store."""
    return _store_access_dependency(get_current_store, roles)


def require_managed_store_roles(*roles: str):
    """Dependency requiring one of ``roles`` in the store being managed (may be inactive)."""
    return _store_access_dependency(get_managed_store, roles)

