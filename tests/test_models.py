import pytest
from datetime import datetime
from sqlalchemy import create_engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

import models  # noqa: F401
from core.db import Base
from models.category import Category
from models.product import Product, ProductColor, ProductSize
from models.store import DEFAULT_STORE_SETTINGS, Store
from models.user import Address, User, user_store_roles


@pytest.fixture
def db_session():
    """Create a test database session"""
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(bind=engine)
    SessionLocal = sessionmaker(bind=engine)
    session = SessionLocal()
    yield session
    session.close()


def _user(session, email="jane@example.com", **kwargs):
    user = User(name="Jane Smith", email=email, password_hash="hashed_password_456", **kwargs)
    session.add(user)
    session.commit()
    return user


def _store(session, name="Corner Shop"):
    store = Store(name=name, slug=name.lower().replace(" ", "-"))
    session.add(store)
    session.commit()
    return store


class TestUser:
    """Test cases for User model"""

    def test_user_default_values(self, db_session):
        user = _user(db_session)
        db_session.refresh(user)

        assert user.role == "customer"
        assert user.phone is None
        assert user.is_privileged is False
        assert isinstance(user.created_at, datetime)

    def test_privileged_roles(self, db_session):
        assert _user(db_session, email="a@example.com", role="admin").is_privileged
        assert _user(db_session, email="s@example.com", role="superadmin").is_privileged

    def test_email_is_unique(self, db_session):
        _user(db_session)
        with pytest.raises(IntegrityError):
            _user(db_session)

    def test_store_roles_in_assignment_order(self, db_session):
        user = _user(db_session)
        first, second = _store(db_session, "First Shop"), _store(db_session, "Second Shop")
        db_session.execute(user_store_roles.insert().values(
            user_id=user.id, store_id=first.id, role="store_staff", created_at=datetime(2024, 1, 1)
        ))
        db_session.execute(user_store_roles.insert().values(
            user_id=user.id, store_id=second.id, role="store_admin", created_at=datetime(2024, 2, 1)
        ))
        db_session.commit()

        assert user.store_roles(db_session) == [(first.id, "store_staff"), (second.id, "store_admin")]

    def test_one_role_per_store(self, db_session):
        user = _user(db_session)
        store = _store(db_session)
        db_session.execute(user_store_roles.insert().values(user_id=user.id, store_id=store.id, role="store_staff"))
        with pytest.raises(IntegrityError):
            db_session.execute(
                user_store_roles.insert().values(user_id=user.id, store_id=store.id, role="store_admin")
            )

    def test_addresses_are_deleted_with_user(self, db_session):
        user = _user(db_session)
        user.addresses.append(
            Address(name="Home", line1="1 Main St", city="Leeds", country="UK", postal_code="LS1")
        )
        db_session.commit()

        db_session.delete(user)
        db_session.commit()
        assert db_session.query(Address).count() == 0


class TestStore:
    def test_default_settings(self, db_session):
        store = _store(db_session)
        db_session.refresh(store)
        assert store.settings == DEFAULT_STORE_SETTINGS
        assert store.is_active is True

    def test_default_settings_are_not_shared(self, db_session):
        a, b = _store(db_session, "Shop A"), _store(db_session, "Shop B")
        a.settings["currency"] = "EUR"
        assert b.settings["currency"] == "USD"

    def test_slug_is_unique(self, db_session):
        _store(db_session)
        db_session.add(Store(name="Other", slug="corner-shop"))
        with pytest.raises(IntegrityError):
            db_session.commit()


class TestCatalog:
    def test_category_name_unique_per_store(self, db_session):
        first, second = _store(db_session, "First Shop"), _store(db_session, "Second Shop")
        db_session.add_all([Category(store_id=first.id, name="Shoes"), Category(store_id=second.id, name="Shoes")])
        db_session.commit()

        db_session.add(Category(store_id=first.id, name="Shoes"))
        with pytest.raises(IntegrityError):
            db_session.commit()

    def test_sku_unique_per_store(self, db_session):
        first, second = _store(db_session, "First Shop"), _store(db_session, "Second Shop")
        for store in (first, second):
            db_session.add(Product(store_id=store.id, name="Runner", description="x", price=1, sku="SKU-AB12-0001"))
        db_session.commit()

        db_session.add(Product(store_id=first.id, name="Runner 2", description="x", price=1, sku="SKU-AB12-0001"))
        with pytest.raises(IntegrityError):
            db_session.commit()

    def test_color_image_property(self):
        assert ProductColor(name="Red").image is None
        color = ProductColor(name="Red", image_original="https://cdn/a.png", image_thumbnail="https://cdn/a_t.png")
        assert color.image == {"original": "https://cdn/a.png", "thumbnail": "https://cdn/a_t.png"}

    def test_colors_and_sizes_cascade(self, db_session):
        store = _store(db_session)
        product = Product(store_id=store.id, name="Runner", description="x", price=1, sku="SKU-AB12-0001")
        product.colors = [ProductColor(name="Red", sizes=[ProductSize(name="M", quantity=3)])]
        db_session.add(product)
        db_session.commit()

        product.colors = []
        db_session.commit()
        assert db_session.query(ProductColor).count() == 0
        assert db_session.query(ProductSize).count() == 0
