from datetime import datetime
from sqlalchemy import (
    String, DateTime, ForeignKey, Integer, Numeric, Boolean, Text, Table, Column, UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.db import Base


product_categories = Table(
    "product_categories",
    Base.metadata,
    Column("product_id", Integer, ForeignKey("products.id", ondelete="CASCADE"), primary_key=True),
    Column("category_id", Integer, ForeignKey("categories.id", ondelete="CASCADE"), primary_key=True),
)


class Product(Base):
    __tablename__ = "products"
    # SKUs are unique per store, not globally
    __table_args__ = (UniqueConstraint("store_id", "sku", name="uq_products_store_sku"),)

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    store_id: Mapped[int] = mapped_column(ForeignKey("stores.id", ondelete="CASCADE"), index=True)
    name: Mapped[str] = mapped_column(String(100), index=True)
    description: Mapped[str] = mapped_column(Text)
    price: Mapped[float] = mapped_column(Numeric(12, 2))
    sku: Mapped[str] = mapped_column(String(20), index=True)
    featured: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    store = relationship("Store")
    categories = relationship(
        "Category", secondary=product_categories, back_populates="products", order_by="Category.id"
    )
    images = relationship(
        "ProductImage", cascade="all, delete-orphan", order_by="ProductImage.id", back_populates="product"
    )
    colors = relationship(
        "ProductColor", cascade="all, delete-orphan", order_by="ProductColor.id", back_populates="product"
    )


class ProductImage(Base):
    __tablename__ = "product_images"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    product_id: Mapped[int] = mapped_column(ForeignKey("products.id", ondelete="CASCADE"), index=True)
    original: Mapped[str] = mapped_column(String(500))
    thumbnail: Mapped[str] = mapped_column(String(500))

    product = relationship("Product", back_populates="images")


class ProductColor(Base):
    __tablename__ = "product_colors"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    product_id: Mapped[int] = mapped_column(ForeignKey("products.id", ondelete="CASCADE"), index=True)
    name: Mapped[str] = mapped_column(String(50), index=True)
    image_original: Mapped[str | None] = mapped_column(String(500), nullable=True)
    image_thumbnail: Mapped[str | None] = mapped_column(String(500), nullable=True)

    product = relationship("Product", back_populates="colors")
    sizes = relationship(
        "ProductSize", cascade="all, delete-orphan", order_by="ProductSize.id", back_populates="color"
    )

    @property
    def image(self) -> dict | None:
        if not self.image_original:
            return None
        return {"original": self.image_original, "thumbnail": self.image_thumbnail}


class ProductSize(Base):
    __tablename__ = "product_sizes"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    color_id: Mapped[int] = mapped_column(ForeignKey("product_colors.id", ondelete="CASCADE"), index=True)
    name: Mapped[str] = mapped_column(String(30), index=True)
    quantity: Mapped[int] = mapped_column(Integer, default=0)

    color = relationship("ProductColor", back_populates="sizes")
