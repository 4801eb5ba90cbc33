"""Database session management"""

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from airtime_advance.infrastructure.database.models import Base


def create_db_engine(database_url: str) -> Engine:
    """Engine for the ledger store; in-memory SQLite shares one connection"""
    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, **kwargs)

    # Recycle after 1 hour to avoid stale connections
    return create_engine(
        database_url,
        pool_pre_ping=True,
        pool_size=10,
        max_overflow=10,
        pool_recycle=3600,
    )


def create_session_factory(database_url: str) -> sessionmaker:
    """Build engine, create tables and return a session factory"""
    engine = create_db_engine(database_url)
    Base.metadata.create_all(bind=engine)
    return sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)
