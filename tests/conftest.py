import io
import time

import pytest
from fastapi.testclient import TestClient
from PIL import Image
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from main import app
from core.db import Base, get_db
from models.store import Store
from models.user import User
from security import jwt as jwt_utils
from security.password import hash_password
from services import email as email_service
from services import otp as otp_service
from services.assets import AssetLifecycleManager, get_asset_manager
from services.staff import StaffRoleRegistry
from services.storage import StorageError


class FakeRedis:
    """The subset of redis-py the OTP service uses, with expiring keys."""

    def __init__(self):
        self._store = {}
        self._exp = {}

    def _cleanup(self, key):
        exp = self._exp.get(key)
        if exp is not None and time.time() > exp:
            self._store.pop(key, None)
            self._exp.pop(key, None)

    def setex(self, key, ttl, value):
        self._store[key] = str(value)
        self._exp[key] = time.time() + int(ttl)

    def get(self, key):
        self._cleanup(key)
        return self._store.get(key)

    def exists(self, key):
        self._cleanup(key)
        return 1 if key in self._store else 0

    def delete(self, key):
        self._store.pop(key, None)
        self._exp.pop(key, None)


class FakeBinaryStore:
    """In-memory blob store with switchable failures."""

    base_url = "https://res.cloudinary.com/demo/raw/upload/v1700000000/"

    def __init__(self):
        self.objects = {}
        self.fail_puts = False
        self.fail_put_matching = None
        self.fail_deletes = False

    def put(self, data, content_type, key):
        if self.fail_puts or (self.fail_put_matching and self.fail_put_matching in key):
            raise StorageError(f"put refused for {key}")
        self.objects[key] = data
        return self.base_url + key

    def delete(self, key):
        if self.fail_deletes:
            raise StorageError(f"delete refused for {key}")
        self.objects.pop(key, None)

    def key_for(self, url):
        if not url.startswith(self.base_url):
            raise StorageError(f"Unknown URL {url}")
        return url[len(self.base_url):]


@pytest.fixture()
def db_session_override():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine, "connect")
    def _fk_pragma(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    TestingSessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)
    Base.metadata.create_all(bind=engine)

    db = TestingSessionLocal()

    def _get_db():
        yield db

    app.dependency_overrides[get_db] = _get_db
    try:
        yield db
    finally:
        db.close()
        app.dependency_overrides.clear()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def db(db_session_override):
    return db_session_override


@pytest.fixture()
def blobs():
    return FakeBinaryStore()


@pytest.fixture()
def assets(blobs):
    return AssetLifecycleManager(blobs)


@pytest.fixture()
def client(db_session_override, assets):
    app.dependency_overrides[get_asset_manager] = lambda: assets
    with TestClient(app) as c:
        yield c


@pytest.fixture(autouse=True)
def mock_email_send(monkeypatch):
    sent = []

    def _fake_send(to_email: str, subject: str, body: str) -> None:
        sent.append({"to": to_email, "subject": subject, "body": body})

    monkeypatch.setattr(email_service, "send_email", _fake_send)
    return sent


@pytest.fixture(autouse=True)
def fake_redis(monkeypatch):
    fake = FakeRedis()
    monkeypatch.setattr(otp_service, "redis_client", fake)
    return fake


@pytest.fixture()
def make_user(db):
    counter = {"n": 0}

    def _make(name="Test User", email=None, role="customer", password="testpass123", phone=None):
        counter["n"] += 1
        user = User(
            name=name,
            email=email or f"user{counter['n']}@example.com",
            phone=phone,
            password_hash=hash_password(password),
            role=role,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make


@pytest.fixture()
def make_store(db):
    def _make(name="Test Store", owner=None, is_active=True, slug=None):
        store = Store(
            name=name,
            slug=slug or name.lower().replace(" ", "-"),
            owner_id=owner.id if owner else None,
            is_active=is_active,
        )
        db.add(store)
        db.commit()
        db.refresh(store)
        return store

    return _make


@pytest.fixture()
def grant(db):
    def _grant(user, store, role):
        StaffRoleRegistry(db).set_role(store.id, user, role)
        db.commit()

    return _grant


@pytest.fixture()
def headers_for(db):
    """Authorization headers carrying the user's current claims."""
    def _headers(user):
        claims = jwt_utils.principal_claims(user.role, user.store_roles(db))
        return {"Authorization": f"Bearer {jwt_utils.create_access_token(str(user.id), claims)}"}

    return _headers


@pytest.fixture()
def store(make_store):
    return make_store("Acme Shop")


@pytest.fixture()
def store_admin(make_user, grant, store):
    user = make_user(name="Store Admin", email="storeadmin@example.com")
    grant(user, store, "store_admin")
    return user


@pytest.fixture()
def admin_headers(headers_for, store_admin):
    return headers_for(store_admin)


@pytest.fixture()
def make_png():
    def _make(size=(800, 600), color=(200, 30, 30), fmt="PNG"):
        buf = io.BytesIO()
        Image.new("RGB", size, color).save(buf, format=fmt)
        return buf.getvalue()

    return _make


@pytest.fixture()
def png(make_png):
    return make_png()
