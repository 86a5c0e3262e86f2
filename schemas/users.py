from pydantic import BaseModel
from typing import List, Optional


class StoreRoleOut(BaseModel):
    store_id: int
    role: str


class AddressOut(BaseModel):
    id: int
    name: str
    line1: str
    line2: Optional[str] = None
    city: str
    state: Optional[str] = None
    country: str
    postal_code: str

    class Config:
        from_attributes = True


class UserOut(BaseModel):
    id: int
    name: str
    email: str
    phone: Optional[str] = None
    role: str
    store_roles: List[StoreRoleOut] = []
    addresses: List[AddressOut] = []
    current_store_role: Optional[str] = None


def user_out(db, user, store_id: Optional[int] = None) -> UserOut:
    """Serialize a user together with its live store roles."""
    roles = user.store_roles(db)
    current = next((role for sid, role in roles if sid == store_id), None) if store_id is not None else None
    return UserOut(
        id=user.id,
        name=user.name,
        email=user.email,
        phone=user.phone,
        role=user.role,
        store_roles=[StoreRoleOut(store_id=sid, role=role) for sid, role in roles],
        addresses=[AddressOut.model_validate(a) for a in user.addresses],
        current_store_role=current,
    )
