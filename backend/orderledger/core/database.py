"""
Database Configuration
"""
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from typing import Generator

from orderledger.core.config import settings


def enable_sqlite_savepoints(engine: Engine) -> Engine:
    """
    Let SQLAlchemy own BEGIN on pysqlite so SAVEPOINTs nest inside the
    request transaction (the audit log writes in a savepoint).
    """
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return engine


db_url = settings.database_url

engine_options = {
    "connect_args": {"check_same_thread": False} if "sqlite" in db_url else {},
    "echo": settings.DEBUG,
}
if settings.DB_ISOLATION_LEVEL:
    engine_options["isolation_level"] = settings.DB_ISOLATION_LEVEL

engine = create_engine(db_url, **engine_options)
if "sqlite" in db_url:
    enable_sqlite_savepoints(engine)

# Session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base model
Base = declarative_base()


def get_db() -> Generator[Session, None, None]:
    """
    Dependency that provides a database session.
    A request that raises leaves nothing behind: uncommitted work is rolled back.
    """
    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def init_db(bind=None):
    """Initialize database tables"""
    # Import models so they register with Base
    from orderledger import models  # noqa: F401
    Base.metadata.create_all(bind=bind or engine)
