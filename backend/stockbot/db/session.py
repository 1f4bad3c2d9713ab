"""Document-store database session. SQLite compatible with connection pooling."""
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from stockbot.core.config import settings


def build_engine(url: str) -> Engine:
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}

    if url.startswith("sqlite"):
        # SQLite: Use NullPool for thread-safety (bot thread + API thread)
        from sqlalchemy.pool import NullPool
        return create_engine(url, connect_args=connect_args, poolclass=NullPool)

    # PostgreSQL/MySQL: Use QueuePool with sensible defaults
    return create_engine(
        url,
        pool_size=5,
        max_overflow=10,
        pool_timeout=30,
        pool_recycle=3600,
        pool_pre_ping=True,
    )


engine = build_engine(settings.DATABASE_URL)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
