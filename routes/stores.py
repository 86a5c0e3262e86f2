from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
from sqlalchemy.orm import Session

from core.config import settings
from core.db import get_by_id, get_db
from core.errors import NotFound
from core.tenancy import (
    StoreAccess,
    authorize_self_or_staff,
    ensure_allowed,
    get_current_store,
    require_managed_store_roles,
    require_store_roles,
    role_in_store,
)
from models.store import Store
from models.user import User
from routes.uploads import read_upload
from schemas.common import DeletionReportOut, Envelope, MessageOut, Page, parse_form, total_pages
from schemas.store import StaffMemberOut, StaffRoleRequest, StoreCreate, StoreOut, StoreUpdate
from security.principal import Principal, get_current_principal, get_current_user, get_optional_principal
from services.assets import AssetLifecycleManager, get_asset_manager
from services.staff import StaffRoleRegistry
from services.stores import StoreService

router = APIRouter(prefix="/stores", tags=["stores"])


def get_store_service(
    db: Session = Depends(get_db), assets: AssetLifecycleManager = Depends(get_asset_manager)
) -> StoreService:
    return StoreService(db, assets)


def _sees_inactive(db: Session, principal: Optional[Principal]) -> bool:
    if principal is None:
        return False
    user = db.get(User, principal.id)
    return bool(user and user.is_privileged)


def _member(user: User, role: Optional[str]) -> StaffMemberOut:
    return StaffMemberOut(id=user.id, name=user.name, email=user.email, phone=user.phone, store_role=role)


@router.get("", response_model=Envelope[Page[StoreOut]])
def list_stores(
    search: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    principal: Optional[Principal] = Depends(get_optional_principal),
    db: Session = Depends(get_db),
    service: StoreService = Depends(get_store_service),
):
    items, total = service.list(
        search=search.strip() if search else None,
        page=page,
        limit=limit,
        include_inactive=_sees_inactive(db, principal),
    )
    return {
        "message": "Stores retrieved successfully",
        "data": {
            "items": items,
            "current_page": page,
            "total_pages": total_pages(total, limit),
            "total_items": total,
        },
    }


@router.get("/{store_id}", response_model=Envelope[StoreOut])
def get_store(
    store_id: int,
    principal: Optional[Principal] = Depends(get_optional_principal),
    db: Session = Depends(get_db),
    service: StoreService = Depends(get_store_service),
):
    store = service.get(store_id, include_inactive=_sees_inactive(db, principal))
    return {"message": "Store retrieved successfully", "data": store}


@router.post("", response_model=Envelope[StoreOut], status_code=201)
async def create_store(
    name: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    address: Optional[str] = Form(None),
    contact: Optional[str] = Form(None),
    store_settings: Optional[str] = Form(None, alias="settings"),
    logo: Optional[UploadFile] = File(None),
    banner: Optional[UploadFile] = File(None),
    user: User = Depends(get_current_user),
    service: StoreService = Depends(get_store_service),
):
    data = parse_form(
        StoreCreate,
        name=name,
        description=description,
        address=address,
        contact=contact,
        settings=store_settings,
    )
    store = service.create(user, data, await read_upload(logo), await read_upload(banner))
    return {"message": "Store created successfully", "data": store}


@router.put("/{store_id}", response_model=Envelope[StoreOut])
async def update_store(
    name: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    address: Optional[str] = Form(None),
    contact: Optional[str] = Form(None),
    store_settings: Optional[str] = Form(None, alias="settings"),
    is_active: Optional[str] = Form(None),
    logo: Optional[UploadFile] = File(None),
    banner: Optional[UploadFile] = File(None),
    access: StoreAccess = Depends(require_managed_store_roles("store_admin")),
    service: StoreService = Depends(get_store_service),
):
    data = parse_form(
        StoreUpdate,
        name=name,
        description=description,
        address=address,
        contact=contact,
        settings=store_settings,
        is_active=is_active,
    )
    store = service.update(access.store, data, await read_upload(logo), await read_upload(banner))
    return {"message": "Store updated successfully", "data": store}


@router.delete("/{store_id}", response_model=Envelope[DeletionReportOut])
def delete_store(
    access: StoreAccess = Depends(require_managed_store_roles("store_admin")),
    service: StoreService = Depends(get_store_service),
):
    report = service.delete(access.store)
    return {
        "message": "Store deleted successfully",
        "data": {"succeeded": report.succeeded, "failed": report.failed},
    }


# --- Staff -------------------------------------------------------------------

@router.get("/{store_id}/staff", response_model=Envelope[List[StaffMemberOut]])
def list_staff(
    access: StoreAccess = Depends(require_store_roles("store_admin", "store_manager")),
    db: Session = Depends(get_db),
):
    members = StaffRoleRegistry(db).staff(access.store.id)
    return {"message": "Staff retrieved successfully", "data": [_member(u, role) for u, role in members]}


@router.post("/{store_id}/staff", response_model=Envelope[StaffMemberOut])
def set_staff_role(
    data: StaffRoleRequest,
    access: StoreAccess = Depends(require_store_roles("store_admin")),
    db: Session = Depends(get_db),
):
    user = get_by_id(db, User, data.user_id)
    if not user:
        raise NotFound("User not found")
    StaffRoleRegistry(db).set_role(access.store.id, user, data.role)
    db.commit()
    return {"message": "Store role assigned successfully", "data": _member(user, data.role)}


@router.delete("/{store_id}/staff/{user_id}", response_model=MessageOut)
def remove_staff_role(
    user_id: int,
    access: StoreAccess = Depends(require_store_roles("store_admin")),
    db: Session = Depends(get_db),
):
    user = get_by_id(db, User, user_id)
    if not user:
        raise NotFound("User not found")
    StaffRoleRegistry(db).remove_role(access.store.id, user)
    db.commit()
    return {"message": "Store role removed successfully"}


@router.get("/{store_id}/staff/{user_id}", response_model=Envelope[StaffMemberOut])
def get_staff_member(
    user_id: int,
    store: Store = Depends(get_current_store),
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    caller = db.get(User, principal.id)
    if not caller:
        raise NotFound("User not found")
    decision = authorize_self_or_staff(caller.role, caller.store_roles(db), store.id, caller.id, user_id)
    ensure_allowed(decision, caller.id, store.id)

    target = get_by_id(db, User, user_id)
    if not target:
        raise NotFound("User not found")
    role = role_in_store(target.store_roles(db), store.id)
    return {"message": "User retrieved successfully", "data": _member(target, role)}
