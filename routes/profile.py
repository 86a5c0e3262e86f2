from typing import Optional

from fastapi import APIRouter, Depends, Header
from sqlalchemy.orm import Session

from core.db import commit_or_conflict, get_db
from core.errors import Conflict, NotFound
from core.tenancy import authorize, ensure_allowed
from models.user import STORE_ROLES, Address, User
from schemas.common import Envelope
from schemas.profile import AddressCreate, ProfileUpdate
from schemas.users import UserOut, user_out
from security.principal import get_current_user

router = APIRouter(prefix="/profile", tags=["profile"])


def _store_header(x_store_id: Optional[str]) -> Optional[int]:
    # A header that is not an id cannot match any store role
    try:
        return int(x_store_id) if x_store_id else None
    except ValueError:
        return None


@router.get("", response_model=Envelope[UserOut])
def get_profile(
    x_store_id: Optional[str] = Header(default=None, alias="X-Store-Id"),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Current user; ``current_store_role`` is filled when X-Store-Id is sent."""
    return {"message": "User data retrieved", "data": user_out(db, current_user, _store_header(x_store_id))}


@router.patch("", response_model=Envelope[UserOut])
def update_profile(
    data: ProfileUpdate,
    x_store_id: Optional[str] = Header(default=None, alias="X-Store-Id"),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    store_id = _store_header(x_store_id)
    if x_store_id:
        decision = authorize(current_user.role, current_user.store_roles(db), store_id, STORE_ROLES)
        ensure_allowed(decision, current_user.id, store_id)

    if data.email and data.email.lower() != current_user.email:
        email = data.email.lower()
        taken = db.query(User.id).filter(User.email == email, User.id != current_user.id).first()
        if taken:
            raise Conflict("Email already in use")
        current_user.email = email
    if data.phone and data.phone != current_user.phone:
        taken = db.query(User.id).filter(User.phone == data.phone, User.id != current_user.id).first()
        if taken:
            raise Conflict("Phone number already in use")
        current_user.phone = data.phone
    if data.name:
        current_user.name = data.name.strip()

    commit_or_conflict(db, "Email or phone number already in use")
    db.refresh(current_user)
    return {"message": "Profile updated successfully", "data": user_out(db, current_user, store_id)}


@router.post("/addresses", response_model=Envelope[UserOut], status_code=201)
def add_address(
    data: AddressCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    current_user.addresses.append(Address(**data.model_dump()))
    db.commit()
    db.refresh(current_user)
    return {"message": "Address added successfully", "data": user_out(db, current_user)}


@router.delete("/addresses/{address_id}", response_model=Envelope[UserOut])
def delete_address(
    address_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    address = next((a for a in current_user.addresses if a.id == address_id), None)
    if address is None:
        raise NotFound("Address not found")
    current_user.addresses.remove(address)
    db.commit()
    db.refresh(current_user)
    return {"message": "Address deleted successfully", "data": user_out(db, current_user)}
