"""Database configuration and session management."""
from sqlalchemy import create_engine, event
from sqlalchemy.orm import declarative_base, sessionmaker

from app.config import DATABASE_URL


# Passed by write units of work; SQLite then takes the write lock at BEGIN
WRITE_TRANSACTION = {"begin_immediate": True}


def build_engine(url: str):
    """Create an engine with settings appropriate for the database type."""
    if url.startswith("sqlite"):
        # SQLite-specific config
        engine = create_engine(
            url,
            connect_args={"check_same_thread": False, "timeout": 30}
        )
        _sqlite_transactions(engine)
        return engine

    # PostgreSQL config (production)
    return create_engine(
        url,
        pool_pre_ping=True,  # Verify connections before using
        pool_size=5,
        max_overflow=10
    )


def _sqlite_transactions(engine) -> None:
    """
    WAL journal plus explicit BEGIN.

    Read transactions stay deferred and never hold a lock that writers wait
    on. Connections opened with WRITE_TRANSACTION begin IMMEDIATE, so
    concurrent writers queue on the busy timeout instead of failing with
    "database is locked" when upgrading from a read.
    """
    @event.listens_for(engine, "connect")
    def _configure_connection(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        if conn.get_execution_options().get("begin_immediate"):
            conn.exec_driver_sql("BEGIN IMMEDIATE")
        else:
            conn.exec_driver_sql("BEGIN")


engine = build_engine(DATABASE_URL)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """Dependency for FastAPI endpoints to get database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
