from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
from sqlalchemy.orm import Session

from core.config import settings
from core.db import get_db
from core.errors import ValidationFailed
from core.tenancy import StoreAccess, get_current_store, require_store_roles
from models.store import Store
from routes.uploads import read_uploads
from schemas.common import DeletionReportOut, Envelope, Page, parse_form, total_pages
from schemas.product import DeleteImageRequest, ProductCreate, ProductOut, ProductUpdate
from services.assets import AssetLifecycleManager, get_asset_manager
from services.catalog import ProductRepository

router = APIRouter(prefix="/products", tags=["products"])


def get_product_repository(
    db: Session = Depends(get_db), assets: AssetLifecycleManager = Depends(get_asset_manager)
) -> ProductRepository:
    return ProductRepository(db, assets)


def _csv(value: Optional[str]) -> List[str]:
    return [part.strip() for part in (value or "").split(",") if part.strip()]


def _csv_ints(value: Optional[str]) -> List[int]:
    try:
        return [int(part) for part in _csv(value)]
    except ValueError:
        raise ValidationFailed("categories must be a comma separated list of ids")


@router.get("", response_model=Envelope[Page[ProductOut]])
def list_products(
    categories: Optional[str] = Query(None, description="Comma separated category ids"),
    colors: Optional[str] = Query(None, description="Comma separated color names"),
    sizes: Optional[str] = Query(None, description="Comma separated size names"),
    search: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    store: Store = Depends(get_current_store),
    repo: ProductRepository = Depends(get_product_repository),
):
    items, total = repo.list(
        store,
        categories=_csv_ints(categories),
        colors=_csv(colors),
        sizes=_csv(sizes),
        search=search.strip() if search else None,
        page=page,
        limit=limit,
    )
    return {
        "message": "Products retrieved successfully",
        "data": {
            "items": items,
            "current_page": page,
            "total_pages": total_pages(total, limit),
            "total_items": total,
        },
    }


@router.get("/{product_id}", response_model=Envelope[ProductOut])
def get_product(
    product_id: int,
    store: Store = Depends(get_current_store),
    repo: ProductRepository = Depends(get_product_repository),
):
    return {"message": "Product retrieved successfully", "data": repo.get(store, product_id)}


@router.post("", response_model=Envelope[ProductOut], status_code=201)
async def create_product(
    name: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    price: Optional[str] = Form(None),
    featured: Optional[str] = Form(None),
    categories: Optional[str] = Form(None),
    colors: Optional[str] = Form(None),
    images: Optional[List[UploadFile]] = File(None),
    access: StoreAccess = Depends(require_store_roles("store_admin", "store_manager")),
    repo: ProductRepository = Depends(get_product_repository),
):
    data = parse_form(
        ProductCreate,
        name=name,
        description=description,
        price=price,
        featured=featured,
        categories=categories,
        colors=colors,
    )
    product = repo.create(access.store, data, await read_uploads(images))
    return {"message": "Product created successfully", "data": product}


@router.put("/{product_id}", response_model=Envelope[ProductOut])
async def update_product(
    product_id: int,
    name: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    price: Optional[str] = Form(None),
    featured: Optional[str] = Form(None),
    categories: Optional[str] = Form(None),
    colors: Optional[str] = Form(None),
    images: Optional[List[UploadFile]] = File(None),
    access: StoreAccess = Depends(require_store_roles("store_admin", "store_manager")),
    repo: ProductRepository = Depends(get_product_repository),
):
    data = parse_form(
        ProductUpdate,
        name=name,
        description=description,
        price=price,
        featured=featured,
        categories=categories,
        colors=colors,
    )
    product = repo.update(access.store, product_id, data, await read_uploads(images))
    return {"message": "Product updated successfully", "data": product}


@router.delete("/{product_id}", response_model=Envelope[DeletionReportOut])
def delete_product(
    product_id: int,
    access: StoreAccess = Depends(require_store_roles("store_admin")),
    repo: ProductRepository = Depends(get_product_repository),
):
    report = repo.delete(access.store, product_id)
    return {
        "message": "Product deleted successfully",
        "data": {"succeeded": report.succeeded, "failed": report.failed},
    }


@router.delete("/{product_id}/images", response_model=Envelope[ProductOut])
def delete_product_image(
    product_id: int,
    data: DeleteImageRequest,
    access: StoreAccess = Depends(require_store_roles("store_admin", "store_manager")),
    repo: ProductRepository = Depends(get_product_repository),
):
    product = repo.delete_image(access.store, product_id, data.image)
    return {"message": "Image deleted successfully", "data": product}
