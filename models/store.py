from datetime import datetime
from sqlalchemy import String, Boolean, DateTime, Text, JSON, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column

from core.db import Base


DEFAULT_STORE_SETTINGS = {"currency": "USD", "tax_rate": 0.0, "shipping_fee": 0.0}


class Store(Base):
    __tablename__ = "stores"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(150), index=True)
    slug: Mapped[str] = mapped_column(String(170), unique=True, index=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Asset pairs (original + thumbnail)
    logo: Mapped[str | None] = mapped_column(String(500), nullable=True)
    logo_thumbnail: Mapped[str | None] = mapped_column(String(500), nullable=True)
    banner: Mapped[str | None] = mapped_column(String(500), nullable=True)
    banner_thumbnail: Mapped[str | None] = mapped_column(String(500), nullable=True)

    # line1, line2, city, state, country, postal_code
    address: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    # email, phone
    contact: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    # currency, tax_rate, shipping_fee
    settings: Mapped[dict] = mapped_column(JSON, default=lambda: dict(DEFAULT_STORE_SETTINGS))

    # Tenant owner
    owner_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)

    # Status
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
