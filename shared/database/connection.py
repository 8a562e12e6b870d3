"""
Database connection management.
"""
from typing import Generator, Optional
from sqlalchemy import create_engine, Engine
from sqlalchemy.orm import sessionmaker, Session

from shared.configs.config import get_settings

settings = get_settings()


def get_engine(database_url: Optional[str] = None) -> Engine:
    """
    Get or create database engine.

    Args:
        database_url: Database URL (uses settings if None)

    Returns:
        SQLAlchemy engine
    """
    url = database_url or settings.database_url
    if url.startswith("sqlite"):
        return create_engine(
            url,
            connect_args={"check_same_thread": False},
            echo=settings.debug
        )
    return create_engine(
        url,
        pool_size=10,
        max_overflow=20,
        pool_pre_ping=True,
        echo=settings.debug
    )


# Default database engine
engine = get_engine()

# Session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Generator[Session, None, None]:
    """
    Get database session.

    Yields:
        Database session
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db() -> None:
    """Initialize database tables."""
    from shared.database.models import Base
    Base.metadata.create_all(bind=engine)
