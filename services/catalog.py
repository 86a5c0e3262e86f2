"""Store-scoped catalog: categories and products with their image pairs.

Both repositories follow the same order of work for a mutation: validate and
check uniqueness/references (no side effects), store new image pairs, write
the record, and only then delete image pairs that are no longer referenced.
If the write fails, the freshly stored pairs are removed again.
"""
import logging
from collections import defaultdict
from datetime import datetime
from typing import Iterable, List, Optional, Sequence

from sqlalchemy.orm import Session, selectinload

from core.db import commit_or_conflict, valid_id
from core.errors import Conflict, NotFound, ValidationFailed
from models.category import Category
from models.product import Product, ProductColor, ProductImage, ProductSize
from models.store import Store
from schemas.category import CategoryCreate, CategoryOut, CategoryUpdate, SubcategoryRef
from schemas.common import ImagePair
from schemas.product import ColorIn, ProductCreate, ProductUpdate
from services.assets import (
    AssetLifecycleManager,
    AssetPair,
    DeletionReport,
    Upload,
    pair_or_none,
    validate_upload,
)
from services.sku import unique_sku

logger = logging.getLogger(__name__)


def annotate_subcategories(categories: Sequence[Category]) -> List[CategoryOut]:
    """Attach derived ``subcategories`` (id + name) to top-level categories.

    Children are grouped by parent id over the given set; categories that are
    themselves subcategories always report an empty list.
    """
    children: dict[int, List[SubcategoryRef]] = defaultdict(list)
    for category in categories:
        if category.parent_category_id is not None:
            children[category.parent_category_id].append(SubcategoryRef(id=category.id, name=category.name))

    annotated = []
    for category in categories:
        out = CategoryOut.model_validate(category)
        if not category.is_subcategory:
            out.subcategories = children.get(category.id, [])
        annotated.append(out)
    return annotated


class CategoryRepository:
    def __init__(self, db: Session, assets: AssetLifecycleManager):
        self.db = db
        self.assets = assets

    def _prefix(self, store: Store) -> str:
        return f"categories/{store.id}"

    def _get(self, store: Store, category_id: int) -> Category:
        if not valid_id(category_id):
            raise NotFound("Category not found in this store")
        category = (
            self.db.query(Category)
            .filter(Category.store_id == store.id, Category.id == category_id)
            .one_or_none()
        )
        if not category:
            raise NotFound("Category not found in this store")
        return category

    def _name_taken(self, store: Store, name: str, exclude_id: Optional[int] = None) -> bool:
        # Exact, case-sensitive match within the store
        query = self.db.query(Category.id).filter(Category.store_id == store.id, Category.name == name)
        if exclude_id is not None:
            query = query.filter(Category.id != exclude_id)
        return query.first() is not None

    def _parent(self, store: Store, parent_id: int) -> Category:
        if not valid_id(parent_id):
            raise NotFound("Parent category not found in this store")
        parent = (
            self.db.query(Category)
            .filter(Category.store_id == store.id, Category.id == parent_id)
            .one_or_none()
        )
        if not parent:
            raise NotFound("Parent category not found in this store")
        return parent

    def list(self, store: Store, page: int = 1, limit: Optional[int] = None) -> tuple[List[CategoryOut], int]:
        categories = self.db.query(Category).filter(Category.store_id == store.id).order_by(Category.id).all()
        annotated = annotate_subcategories(categories)
        if limit is None:
            return annotated, len(annotated)
        start = (page - 1) * limit
        return annotated[start:start + limit], len(annotated)

    def get(self, store: Store, category_id: int) -> CategoryOut:
        category = self._get(store, category_id)
        out = CategoryOut.model_validate(category)
        if not category.is_subcategory:
            out.subcategories = [SubcategoryRef(id=c.id, name=c.name) for c in self._children(store, category)]
        return out

    def _children(self, store: Store, category: Category) -> List[Category]:
        return (
            self.db.query(Category)
            .filter(Category.store_id == store.id, Category.parent_category_id == category.id)
            .order_by(Category.id)
            .all()
        )

    def subcategories(self, store: Store, category_id: int) -> List[Category]:
        return self._children(store, self._get(store, category_id))

    def create(self, store: Store, data: CategoryCreate, image: Optional[Upload] = None) -> Category:
        if self._name_taken(store, data.name):
            raise Conflict("Category already exists in this store")
        if data.is_subcategory:
            self._parent(store, data.parent_category_id)

        pair = self.assets.store(image, self._prefix(store)) if image else None

        category = Category(
            store_id=store.id,
            name=data.name,
            description=data.description,
            image=pair.original if pair else None,
            thumbnail=pair.thumbnail if pair else None,
            is_subcategory=data.is_subcategory,
            parent_category_id=data.parent_category_id if data.is_subcategory else None,
        )
        self.db.add(category)
        self._commit(pair)
        self.db.refresh(category)
        logger.info("Created category %s in store %s", category.id, store.id)
        return category

    def update(
        self, store: Store, category_id: int, data: CategoryUpdate, image: Optional[Upload] = None
    ) -> Category:
        """Partial update. A new image is stored before the old pair is deleted,
        and the old pair goes only after the commit, so a failed upload or
        commit never leaves the category pointing at removed objects.
        """
        category = self._get(store, category_id)

        if data.name is not None and data.name != category.name:
            if self._name_taken(store, data.name, exclude_id=category.id):
                raise Conflict("Category name already exists in this store")
        if data.is_subcategory:
            if data.parent_category_id == category.id:
                raise ValidationFailed("A category cannot be its own parent")
            self._parent(store, data.parent_category_id)

        new_pair = self.assets.store(image, self._prefix(store)) if image else None
        old_pair = pair_or_none(category.image, category.thumbnail) if new_pair else None

        if data.name is not None:
            category.name = data.name
        if data.description is not None:
            category.description = data.description
        if data.is_subcategory is True:
            category.is_subcategory = True
            category.parent_category_id = data.parent_category_id
        elif data.is_subcategory is False:
            category.is_subcategory = False
            category.parent_category_id = None
        if new_pair:
            category.image = new_pair.original
            category.thumbnail = new_pair.thumbnail

        self._commit(new_pair)
        if old_pair:
            # The old objects are no longer referenced; a failure only strands blobs
            self.assets.delete(old_pair)
        self.db.refresh(category)
        return category

    def delete(self, store: Store, category_id: int) -> DeletionReport:
        category = self._get(store, category_id)
        report = self.assets.delete(pair_or_none(category.image, category.thumbnail))

        # Keep "parent iff subcategory": orphaned children become top-level
        for child in self._children(store, category):
            child.is_subcategory = False
            child.parent_category_id = None

        # Removing the category also drops it from every product's category set
        self.db.delete(category)
        self.db.commit()
        logger.info("Deleted category %s from store %s", category_id, store.id)
        return report

    def _commit(self, stored: Optional[AssetPair]) -> None:
        try:
            commit_or_conflict(self.db, "Category already exists in this store")
        except Conflict:
            if stored:
                self.assets.delete(stored)
            raise


class ProductRepository:
    def __init__(self, db: Session, assets: AssetLifecycleManager):
        self.db = db
        self.assets = assets

    def _query(self, store: Store):
        return (
            self.db.query(Product)
            .options(
                selectinload(Product.categories),
                selectinload(Product.images),
                selectinload(Product.colors).selectinload(ProductColor.sizes),
            )
            .filter(Product.store_id == store.id)
        )

    def _get(self, store: Store, product_id: int) -> Product:
        if not valid_id(product_id):
            raise NotFound("Product not found in this store")
        product = self._query(store).filter(Product.id == product_id).one_or_none()
        if not product:
            raise NotFound("Product not found in this store")
        return product

    def get(self, store: Store, product_id: int) -> Product:
        return self._get(store, product_id)

    def list(
        self,
        store: Store,
        categories: Optional[Iterable[int]] = None,
        colors: Optional[Iterable[str]] = None,
        sizes: Optional[Iterable[str]] = None,
        search: Optional[str] = None,
        page: int = 1,
        limit: int = 10,
    ) -> tuple[List[Product], int]:
        query = self._query(store)
        if categories:
            category_ids = [c for c in categories if valid_id(c)]
            query = query.filter(
                Product.categories.any(Category.id.in_(category_ids) & (Category.store_id == store.id))
            )
        if colors:
            query = query.filter(Product.colors.any(ProductColor.name.in_(list(colors))))
        if sizes:
            query = query.filter(Product.colors.any(ProductColor.sizes.any(ProductSize.name.in_(list(sizes)))))
        if search:
            query = query.filter(
                Product.name.icontains(search, autoescape=True)
                | Product.description.icontains(search, autoescape=True)
                | Product.sku.icontains(search, autoescape=True)
            )

        total = query.count()
        items = (
            query.order_by(Product.created_at.desc(), Product.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return items, total

    def _resolve_categories(self, store: Store, category_ids: List[int]) -> List[Category]:
        found = (
            self.db.query(Category)
            .filter(Category.store_id == store.id, Category.id.in_([c for c in category_ids if valid_id(c)]))
            .all()
        )
        # Unknown ids and other stores' ids both make the counts differ
        if len(found) != len(category_ids):
            raise ValidationFailed("One or more categories not found in this store")
        return found

    def _split_uploads(
        self, colors: Optional[List[ColorIn]], uploads: Sequence[Upload]
    ) -> tuple[dict[str, Upload], List[Upload]]:
        """Separate uploads referenced by a color (by filename) from product images."""
        referenced = {c.image for c in colors or [] if isinstance(c.image, str)}
        by_name: dict[str, Upload] = {}
        for upload in uploads:
            by_name.setdefault(upload.filename, upload)
        missing = sorted(referenced - by_name.keys())
        if missing:
            raise ValidationFailed(f"Color image {', '.join(missing)} was not uploaded")
        for upload in uploads:
            validate_upload(upload)
        color_files = {name: by_name[name] for name in referenced}
        images = [u for u in uploads if u.filename not in referenced]
        return color_files, images

    def _build_colors(
        self,
        store: Store,
        colors: List[ColorIn],
        color_files: dict[str, Upload],
        keep: set[AssetPair],
        stored: List[AssetPair],
    ) -> List[ProductColor]:
        pairs_by_file: dict[str, AssetPair] = {}
        built = []
        for color in colors:
            pair = None
            if isinstance(color.image, str):
                if color.image not in pairs_by_file:
                    pairs_by_file[color.image] = self.assets.store(
                        color_files[color.image], f"products/{store.id}/colors"
                    )
                    stored.append(pairs_by_file[color.image])
                pair = pairs_by_file[color.image]
            elif isinstance(color.image, ImagePair):
                pair = AssetPair(original=color.image.original, thumbnail=color.image.thumbnail)
                if pair not in keep:
                    raise ValidationFailed("Color image is not one of this product's color images")
            built.append(
                ProductColor(
                    name=color.name,
                    image_original=pair.original if pair else None,
                    image_thumbnail=pair.thumbnail if pair else None,
                    sizes=[ProductSize(name=s.name, quantity=s.quantity) for s in color.sizes],
                )
            )
        return built

    def _store_assets(self, store, images, colors, color_files, keep):
        """Upload product images, then color images; undo everything on failure."""
        stored: List[AssetPair] = []
        try:
            image_pairs = self.assets.store_many(images, f"products/{store.id}")
            stored.extend(image_pairs)
            built_colors = (
                self._build_colors(store, colors, color_files, keep, stored) if colors is not None else None
            )
        except Exception:
            self.assets.delete_many(stored)
            raise
        return image_pairs, built_colors, stored

    def _commit(self, stored: List[AssetPair]) -> None:
        try:
            commit_or_conflict(self.db, "Product SKU already exists in this store")
        except Conflict:
            self.assets.delete_many(stored)
            raise

    def create(self, store: Store, data: ProductCreate, uploads: Sequence[Upload] = ()) -> Product:
        categories = self._resolve_categories(store, data.categories)
        color_files, images = self._split_uploads(data.colors, uploads)
        sku = unique_sku(self.db, store.id)

        image_pairs, colors, stored = self._store_assets(store, images, data.colors, color_files, set())

        product = Product(
            store_id=store.id,
            name=data.name,
            description=data.description,
            price=data.price,
            sku=sku,
            featured=data.featured,
            categories=categories,
            images=[ProductImage(original=p.original, thumbnail=p.thumbnail) for p in image_pairs],
            colors=colors,
        )
        self.db.add(product)
        self._commit(stored)
        logger.info("Created product %s (%s) in store %s", product.id, sku, store.id)
        return self._get(store, product.id)

    def update(
        self, store: Store, product_id: int, data: ProductUpdate, uploads: Sequence[Upload] = ()
    ) -> Product:
        product = self._get(store, product_id)
        categories = self._resolve_categories(store, data.categories) if data.categories is not None else None
        color_files, images = self._split_uploads(data.colors, uploads)

        current_color_pairs = set(self._color_pairs(product))
        image_pairs, colors, stored = self._store_assets(store, images, data.colors, color_files, current_color_pairs)

        if data.name is not None:
            product.name = data.name
        if data.description is not None:
            product.description = data.description
        if data.price is not None:
            product.price = data.price
        if data.featured is not None:
            product.featured = data.featured
        if categories is not None:
            product.categories = categories
        for pair in image_pairs:
            # New images are appended, never replacing existing ones
            product.images.append(ProductImage(original=pair.original, thumbnail=pair.thumbnail))
        released: List[AssetPair] = []
        if colors is not None:
            still_used = {
                AssetPair(c.image_original, c.image_thumbnail or "") for c in colors if c.image_original
            }
            released = [p for p in current_color_pairs if p not in still_used]
            product.colors = colors
        product.updated_at = datetime.utcnow()

        self._commit(stored)
        if released:
            self.assets.delete_many(released)
        return self._get(store, product.id)

    def _color_pairs(self, product: Product) -> List[AssetPair]:
        return [AssetPair(c.image_original, c.image_thumbnail or "") for c in product.colors if c.image_original]

    def delete(self, store: Store, product_id: int) -> DeletionReport:
        product = self._get(store, product_id)
        pairs = [AssetPair(i.original, i.thumbnail) for i in product.images]
        pairs += [p for p in self._color_pairs(product) if p not in pairs]
        report = self.assets.delete_many(pairs)

        # The record goes regardless of how the blob deletions went
        self.db.delete(product)
        self.db.commit()
        if not report.ok:
            logger.warning(
                "Deleted product %s from store %s; %d objects left behind", product_id, store.id, len(report.failed)
            )
        return report

    def delete_image(self, store: Store, product_id: int, image: ImagePair) -> Product:
        product = self._get(store, product_id)
        match = next(
            (i for i in product.images if i.original == image.original and i.thumbnail == image.thumbnail),
            None,
        )
        if match is None:
            raise NotFound("Image not found")

        report = self.assets.delete(AssetPair(match.original, match.thumbnail))
        if not report.ok:
            logger.warning("Removing image reference from product %s despite failed blob deletion", product_id)

        product.images.remove(match)
        product.updated_at = datetime.utcnow()
        self.db.commit()
        return self._get(store, product.id)
