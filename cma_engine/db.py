from datetime import datetime, timezone
from functools import lru_cache

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool

from .core.config import settings


class Base(DeclarativeBase):
    pass


def make_engine(url: str) -> Engine:
    """In-memory SQLite shares one connection so every session sees the same tables."""
    if url == "sqlite://" or (url.startswith("sqlite") and ":memory:" in url):
        return create_engine(url, connect_args={"check_same_thread": False}, poolclass=StaticPool)
    if url.startswith("sqlite"):
        return create_engine(url, connect_args={"check_same_thread": False})
    return create_engine(url, pool_pre_ping=True)


def make_sessionmaker(url: str) -> sessionmaker[Session]:
    engine = make_engine(url)
    init_db(engine)
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False, class_=Session)


@lru_cache
def default_sessionmaker() -> sessionmaker[Session]:
    return make_sessionmaker(settings.DATABASE_URL)


def init_db(engine: Engine) -> None:
    # Importing registers the mapped tables on Base.metadata
    from . import records  # noqa: F401
    Base.metadata.create_all(engine)


def as_utc(value: datetime | None) -> datetime | None:
    """SQLite drops tzinfo on the way back; treat naive values as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
