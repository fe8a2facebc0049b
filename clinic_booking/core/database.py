from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from typing import Generator
import redis
from .config import settings


def create_db_engine(database_url: str) -> Engine:
    """Create an engine whose transactions are safe for concurrent bookings.

    SQLite only serializes writers once a write lock is held, and pysqlite
    defers BEGIN until the first DML statement.  Booking transactions read
    before they write, so SQLite transactions are opened with BEGIN IMMEDIATE
    (the SQLAlchemy pysqlite recipe) to take the write lock up front.
    """
    if database_url.startswith("sqlite"):
        db_engine = create_engine(
            database_url,
            connect_args={"check_same_thread": False, "timeout": 30},
        )

        @event.listens_for(db_engine, "connect")
        def _disable_pysqlite_begin(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None

        @event.listens_for(db_engine, "begin")
        def _begin_immediate(conn):
            conn.exec_driver_sql("BEGIN IMMEDIATE")

        return db_engine

    # PostgreSQL with appropriate connection pool settings
    return create_engine(
        database_url,
        pool_size=5,
        max_overflow=10,
        pool_timeout=30,
        pool_recycle=1800,  # Recycle connections after 30 minutes
        pool_pre_ping=True,
    )


engine = create_db_engine(settings.get_database_url)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()

# Connects lazily, on the first publish
redis_client = redis.from_url(settings.REDIS_URL, decode_responses=True)

# Database dependency
def get_db() -> Generator[Session, None, None]:
    """Get database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

# Redis dependency
def get_redis():
    """Get Redis client."""
    return redis_client

# Database initialization
def init_db():
    """Initialize database tables."""
    from ..models import appointment, availability, clinic, patient, practitioner  # noqa: F401

    Base.metadata.create_all(bind=engine)
