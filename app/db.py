# app/db.py
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, declarative_base

# Declarative base for all ORM models
Base = declarative_base()


def make_engine(database_url: str) -> Engine:
    """
    Engine for the durable cache + snapshot tables.
    SQLite connections are used from worker threads (anyio.to_thread), so the
    same-thread check is turned off for them.
    """
    if database_url.startswith("sqlite"):
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            future=True,
        )
    return create_engine(
        database_url,
        pool_pre_ping=True,
        pool_size=10,
        max_overflow=20,
        future=True,
    )


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=engine,
        expire_on_commit=False,
    )


def init_db(engine: Engine) -> None:
    """Create the cache + snapshot tables if missing."""
    # models must be imported so their tables register on Base.metadata
    from app import models  # noqa: F401
    Base.metadata.create_all(engine)
