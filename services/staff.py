from datetime import datetime

from sqlalchemy import select, delete, update
from sqlalchemy.orm import Session

from core.errors import ValidationFailed
from models.user import User, user_store_roles, STORE_ROLES


class StaffRoleRegistry:
    """Per-store role memberships of users."""

    def __init__(self, db: Session):
        self.db = db

    def set_role(self, store_id: int, user: User, role: str) -> None:
        """Upsert: overwrite the user's role in the store or append a new one."""
        if role not in STORE_ROLES:
            raise ValidationFailed(f"role must be one of {', '.join(STORE_ROLES)}")
        existing = self.db.execute(
            select(user_store_roles.c.role).where(
                user_store_roles.c.user_id == user.id,
                user_store_roles.c.store_id == store_id,
            )
        ).first()
        if existing:
            self.db.execute(
                update(user_store_roles)
                .where(user_store_roles.c.user_id == user.id, user_store_roles.c.store_id == store_id)
                .values(role=role)
            )
        else:
            self.db.execute(
                user_store_roles.insert().values(
                    user_id=user.id, store_id=store_id, role=role, created_at=datetime.utcnow()
                )
            )

    def remove_role(self, store_id: int, user: User) -> None:
        """Drop the user's role in the store; a no-op if there is none."""
        self.db.execute(
            delete(user_store_roles).where(
                user_store_roles.c.user_id == user.id,
                user_store_roles.c.store_id == store_id,
            )
        )

    def remove_store(self, store_id: int) -> None:
        self.db.execute(delete(user_store_roles).where(user_store_roles.c.store_id == store_id))

    def staff(self, store_id: int) -> list[tuple[User, str]]:
        rows = self.db.execute(
            select(User, user_store_roles.c.role)
            .join(user_store_roles, user_store_roles.c.user_id == User.id)
            .where(user_store_roles.c.store_id == store_id)
            .order_by(user_store_roles.c.created_at, User.id)
        ).all()
        return [(user, role) for user, role in rows]
