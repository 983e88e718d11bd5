"""Database bootstrap helpers shared by the portal apps."""

from sqlalchemy import JSON, create_engine
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, sessionmaker
from sqlalchemy.pool import StaticPool

from admitpay.common.config import settings


def make_engine(dsn: str):
    """Engine for a DSN; in-memory sqlite shares one connection across threads."""

    if dsn.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if dsn in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(dsn, **kwargs)
    return create_engine(dsn, pool_pre_ping=True)


def make_session_factory(bind) -> sessionmaker:
    # `expire_on_commit=False` keeps ORM objects readable after commit in handlers.
    return sessionmaker(bind=bind, autoflush=False, autocommit=False, expire_on_commit=False)


# Single SQLAlchemy engine per process.
engine = make_engine(settings.postgres_dsn)
SessionLocal = make_session_factory(engine)

# JSONB on Postgres, plain JSON on other dialects (sqlite in tests).
JSONDocument = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Declarative base for SQLAlchemy models."""

    pass
