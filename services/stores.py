import logging
import re
from datetime import datetime
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from core.db import commit_or_conflict, get_by_id
from core.errors import Conflict, NotFound, ValidationFailed
from models.category import Category
from models.product import Product
from models.store import DEFAULT_STORE_SETTINGS, Store
from models.user import User
from schemas.store import StoreCreate, StoreUpdate
from services.assets import (
    STORE_BANNER,
    STORE_LOGO,
    AssetLifecycleManager,
    AssetPair,
    DeletionReport,
    Upload,
    pair_or_none,
    validate_upload,
)
from services.staff import StaffRoleRegistry

logger = logging.getLogger(__name__)

_NON_ALNUM = re.compile(r"[^a-z0-9]")
_DASHES = re.compile(r"-+")


def slugify(name: str) -> str:
    """Lowercase, every non-alphanumeric character to '-', runs collapsed, ends trimmed."""
    slug = _NON_ALNUM.sub("-", name.lower())
    return _DASHES.sub("-", slug).strip("-")


class StoreService:
    def __init__(self, db: Session, assets: AssetLifecycleManager):
        self.db = db
        self.assets = assets

    def _name_taken(self, name: str, slug: str, exclude_id: Optional[int] = None) -> bool:
        query = self.db.query(Store.id).filter(
            (func.lower(Store.name) == name.lower()) | (Store.slug == slug)
        )
        if exclude_id is not None:
            query = query.filter(Store.id != exclude_id)
        return query.first() is not None

    def _slug_for(self, name: str) -> str:
        slug = slugify(name)
        if not slug:
            raise ValidationFailed("Store name must contain letters or digits")
        return slug

    def _store_images(self, logo: Optional[Upload], banner: Optional[Upload]):
        for upload in (logo, banner):
            if upload:
                validate_upload(upload)
        logo_pair = self.assets.store(logo, "stores/logos", STORE_LOGO) if logo else None
        try:
            banner_pair = self.assets.store(banner, "stores/banners", STORE_BANNER) if banner else None
        except Exception:
            self.assets.delete(logo_pair)
            raise
        return logo_pair, banner_pair

    def _commit(self, stored: List[Optional[AssetPair]]) -> None:
        try:
            commit_or_conflict(self.db, "Store name already exists")
        except Conflict:
            self.assets.delete_many(stored)
            raise

    def list(
        self,
        search: Optional[str] = None,
        page: int = 1,
        limit: int = 10,
        include_inactive: bool = False,
    ) -> tuple[List[Store], int]:
        query = self.db.query(Store)
        if not include_inactive:
            query = query.filter(Store.is_active.is_(True))
        if search:
            query = query.filter(
                Store.name.icontains(search, autoescape=True)
                | Store.address["city"].as_string().icontains(search, autoescape=True)
                | Store.address["state"].as_string().icontains(search, autoescape=True)
            )
        total = query.count()
        items = (
            query.order_by(Store.created_at.desc(), Store.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return items, total

    def get(self, store_id: int, include_inactive: bool = False) -> Store:
        store = get_by_id(self.db, Store, store_id)
        if not store or (not store.is_active and not include_inactive):
            raise NotFound("Store not found")
        return store

    def create(
        self,
        owner: User,
        data: StoreCreate,
        logo: Optional[Upload] = None,
        banner: Optional[Upload] = None,
    ) -> Store:
        slug = self._slug_for(data.name)
        if self._name_taken(data.name, slug):
            raise Conflict("Store name already exists")

        logo_pair, banner_pair = self._store_images(logo, banner)

        store = Store(
            name=data.name,
            slug=slug,
            description=data.description,
            logo=logo_pair.original if logo_pair else None,
            logo_thumbnail=logo_pair.thumbnail if logo_pair else None,
            banner=banner_pair.original if banner_pair else None,
            banner_thumbnail=banner_pair.thumbnail if banner_pair else None,
            address=data.address.model_dump() if data.address else None,
            contact=data.contact.model_dump() if data.contact else None,
            settings={**DEFAULT_STORE_SETTINGS, **data.settings.model_dump()},
            owner_id=owner.id,
        )
        self.db.add(store)
        try:
            self.db.flush()
        except IntegrityError as exc:
            self.db.rollback()
            self.assets.delete_many([logo_pair, banner_pair])
            raise Conflict("Store name already exists") from exc
        # The creator administers the new store
        StaffRoleRegistry(self.db).set_role(store.id, owner, "store_admin")
        self._commit([logo_pair, banner_pair])
        self.db.refresh(store)
        logger.info("User %s created store %s (%s)", owner.id, store.id, store.slug)
        return store

    def update(
        self,
        store: Store,
        data: StoreUpdate,
        logo: Optional[Upload] = None,
        banner: Optional[Upload] = None,
    ) -> Store:
        """Partial update; replaced logo or banner pairs are deleted after the commit."""
        if data.name is not None and data.name != store.name:
            slug = self._slug_for(data.name)
            if self._name_taken(data.name, slug, exclude_id=store.id):
                raise Conflict("Store name already exists")
        else:
            slug = None

        logo_pair, banner_pair = self._store_images(logo, banner)
        released = []

        if slug is not None:
            store.name = data.name
            store.slug = slug
        if data.description is not None:
            store.description = data.description
        # Nested objects merge into what is stored; a new dict so the change is tracked
        if data.address is not None:
            store.address = {**(store.address or {}), **data.address.model_dump(exclude_unset=True)}
        if data.contact is not None:
            store.contact = {**(store.contact or {}), **data.contact.model_dump(exclude_unset=True)}
        if data.settings is not None:
            store.settings = {**(store.settings or {}), **data.settings.model_dump(exclude_unset=True)}
        if data.is_active is not None:
            store.is_active = data.is_active
        if logo_pair:
            released.append(pair_or_none(store.logo, store.logo_thumbnail))
            store.logo, store.logo_thumbnail = logo_pair.original, logo_pair.thumbnail
        if banner_pair:
            released.append(pair_or_none(store.banner, store.banner_thumbnail))
            store.banner, store.banner_thumbnail = banner_pair.original, banner_pair.thumbnail
        store.updated_at = datetime.utcnow()

        self._commit([logo_pair, banner_pair])
        if released:
            self.assets.delete_many(released)
        self.db.refresh(store)
        return store

    def delete(self, store: Store) -> DeletionReport:
        """Remove the store with its catalog and staff roles.

        Asset deletion is best-effort; the records go regardless and the
        merged report lists whatever could not be removed from the blob store.
        """
        products = self.db.query(Product).filter(Product.store_id == store.id).all()
        categories = self.db.query(Category).filter(Category.store_id == store.id).all()

        pairs: List[Optional[AssetPair]] = [
            pair_or_none(store.logo, store.logo_thumbnail),
            pair_or_none(store.banner, store.banner_thumbnail),
        ]
        for product in products:
            pairs.extend(AssetPair(i.original, i.thumbnail) for i in product.images)
            pairs.extend(
                AssetPair(c.image_original, c.image_thumbnail or "") for c in product.colors if c.image_original
            )
        pairs.extend(pair_or_none(c.image, c.thumbnail) for c in categories)
        unique_pairs = list(dict.fromkeys(p for p in pairs if p))
        report = self.assets.delete_many(unique_pairs)

        for product in products:
            self.db.delete(product)
        self.db.flush()
        for category in categories:
            self.db.delete(category)
        StaffRoleRegistry(self.db).remove_store(store.id)
        store_id = store.id
        self.db.delete(store)
        self.db.commit()
        logger.info(
            "Deleted store %s with %d products and %d categories (%d asset deletions failed)",
            store_id, len(products), len(categories), len(report.failed),
        )
        return report
