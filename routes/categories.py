from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
from sqlalchemy.orm import Session

from core.config import settings
from core.db import get_db
from core.tenancy import StoreAccess, get_current_store, require_store_roles
from models.store import Store
from routes.uploads import read_upload
from schemas.category import CategoryCreate, CategoryOut, CategoryUpdate
from schemas.common import DeletionReportOut, Envelope, Page, parse_form, total_pages
from services.assets import AssetLifecycleManager, get_asset_manager
from services.catalog import CategoryRepository

router = APIRouter(prefix="/categories", tags=["categories"])


def get_category_repository(
    db: Session = Depends(get_db), assets: AssetLifecycleManager = Depends(get_asset_manager)
) -> CategoryRepository:
    return CategoryRepository(db, assets)


@router.get("", response_model=Envelope[Page[CategoryOut]])
def list_categories(
    page: int = Query(1, ge=1),
    limit: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    store: Store = Depends(get_current_store),
    repo: CategoryRepository = Depends(get_category_repository),
):
    items, total = repo.list(store, page=page, limit=limit)
    return {
        "message": "Categories retrieved successfully",
        "data": {
            "items": items,
            "current_page": page,
            "total_pages": total_pages(total, limit),
            "total_items": total,
        },
    }


@router.get("/{category_id}", response_model=Envelope[CategoryOut])
def get_category(
    category_id: int,
    store: Store = Depends(get_current_store),
    repo: CategoryRepository = Depends(get_category_repository),
):
    return {"message": "Category retrieved successfully", "data": repo.get(store, category_id)}


@router.get("/{category_id}/subcategories", response_model=Envelope[List[CategoryOut]])
def list_subcategories(
    category_id: int,
    store: Store = Depends(get_current_store),
    repo: CategoryRepository = Depends(get_category_repository),
):
    return {"message": "Subcategories retrieved successfully", "data": repo.subcategories(store, category_id)}


@router.post("", response_model=Envelope[CategoryOut], status_code=201)
async def create_category(
    name: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    is_subcategory: Optional[str] = Form(None),
    parent_category_id: Optional[str] = Form(None),
    image: Optional[UploadFile] = File(None),
    access: StoreAccess = Depends(require_store_roles("store_admin", "store_manager")),
    repo: CategoryRepository = Depends(get_category_repository),
):
    data = parse_form(
        CategoryCreate,
        name=name,
        description=description,
        is_subcategory=is_subcategory,
        parent_category_id=parent_category_id,
    )
    category = repo.create(access.store, data, await read_upload(image))
    return {"message": "Category created successfully", "data": category}


@router.put("/{category_id}", response_model=Envelope[CategoryOut])
async def update_category(
    category_id: int,
    name: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    is_subcategory: Optional[str] = Form(None),
    parent_category_id: Optional[str] = Form(None),
    image: Optional[UploadFile] = File(None),
    access: StoreAccess = Depends(require_store_roles("store_admin", "store_manager")),
    repo: CategoryRepository = Depends(get_category_repository),
):
    data = parse_form(
        CategoryUpdate,
        name=name,
        description=description,
        is_subcategory=is_subcategory,
        parent_category_id=parent_category_id,
    )
    category = repo.update(access.store, category_id, data, await read_upload(image))
    return {"message": "Category updated successfully", "data": repo.get(access.store, category.id)}


@router.delete("/{category_id}", response_model=Envelope[DeletionReportOut])
def delete_category(
    category_id: int,
    access: StoreAccess = Depends(require_store_roles("store_admin")),
    repo: CategoryRepository = Depends(get_category_repository),
):
    report = repo.delete(access.store, category_id)
    return {
        "message": "Category deleted successfully",
        "data": {"succeeded": report.succeeded, "failed": report.failed},
    }
