import logging
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker, DeclarativeBase, Session
from sqlalchemy.pool import StaticPool

from core.config import settings
from core.errors import Conflict

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


# Configure engine based on database type
if settings.DATABASE_URL.startswith("sqlite"):
    # For SQLite, use StaticPool for in-memory databases and enable foreign keys
    engine = create_engine(
        settings.DATABASE_URL,
        echo=settings.SQLALCHEMY_ECHO,
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool if ":memory:" in settings.DATABASE_URL else None,
    )

    # Enable foreign key constraints for SQLite
    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()
else:
    # For PostgreSQL and other databases
    engine = create_engine(
        settings.DATABASE_URL,
        echo=settings.SQLALCHEMY_ECHO,
        future=True,
    )

SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


def get_db() -> Generator:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


# Primary keys are 64-bit signed integers
MAX_ID = 2**63 - 1


def valid_id(value: int) -> bool:
    """Whether ``value`` can be a primary key; larger ints overflow the driver."""
    return 1 <= value <= MAX_ID


def get_by_id(db: Session, model, pk: int):
    return db.get(model, pk) if valid_id(pk) else None


def commit_or_conflict(db: Session, message: str) -> None:
    """Commit, turning a unique-constraint violation into a Conflict.

    Uniqueness is enforced by the datastore; two concurrent creates with the
    same name both pass the pre-check and the second one fails here.
    """
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        logger.info("Unique constraint rejected write: %s", exc.orig)
        raise Conflict(message) from exc
