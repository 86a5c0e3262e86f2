from datetime import datetime

from sqlalchemy import String, DateTime, ForeignKey, Table, Column, Integer, select
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.db import Base


GLOBAL_ROLES = ("customer", "admin", "superadmin")
PRIVILEGED_ROLES = ("admin", "superadmin")
STORE_ROLES = ("store_admin", "store_manager", "store_staff")


# Per-store role memberships; the composite key allows one role per store
user_store_roles = Table(
    "user_store_roles",
    Base.metadata,
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("store_id", Integer, ForeignKey("stores.id", ondelete="CASCADE"), primary_key=True),
    Column("role", String(50), nullable=False),  # store_admin, store_manager, store_staff
    Column("created_at", DateTime, default=datetime.utcnow),
)


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(100))
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    phone: Mapped[str | None] = mapped_column(String(30), unique=True, nullable=True, index=True)
    password_hash: Mapped[str] = mapped_column(String(255))
    role: Mapped[str] = mapped_column(String(20), default="customer")  # Platform-wide role
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    addresses = relationship(
        "Address",
        cascade="all, delete-orphan",
        order_by="Address.id",
        back_populates="user",
    )

    @property
    def is_privileged(self) -> bool:
        return self.role in PRIVILEGED_ROLES

    def store_roles(self, db) -> list[tuple[int, str]]:
        """Return ``(store_id, role)`` pairs in assignment order."""
        rows = db.execute(
            select(user_store_roles.c.store_id, user_store_roles.c.role)
            .where(user_store_roles.c.user_id == self.id)
            .order_by(user_store_roles.c.created_at, user_store_roles.c.store_id)
        ).all()
        return [(store_id, role) for store_id, role in rows]


class Address(Base):
    __tablename__ = "user_addresses"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    name: Mapped[str] = mapped_column(String(50))
    line1: Mapped[str] = mapped_column(String(100))
    line2: Mapped[str | None] = mapped_column(String(100), nullable=True)
    city: Mapped[str] = mapped_column(String(50))
    state: Mapped[str | None] = mapped_column(String(50), nullable=True)
    country: Mapped[str] = mapped_column(String(50))
    postal_code: Mapped[str] = mapped_column(String(20))

    user = relationship("User", back_populates="addresses")
