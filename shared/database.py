"""
database.py - Engine and session factory shared by the services.

PostgreSQL is the production store. SQLite URLs are accepted for local runs and
tests; for those every transaction is opened with ``BEGIN IMMEDIATE`` so that
concurrent writers queue on the database lock instead of failing on a lock
upgrade, which is how PostgreSQL row locks behave for the conditional updates
the inventory ledger issues. Read paths that never write call
``begin_read_only`` first and get a plain deferred ``BEGIN``, so on SQLite they
share the database with a writer instead of queueing behind it.
"""

import os
from typing import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

# Database configuration
POSTGRES_USER = os.getenv("POSTGRES_USER", "postgres")
POSTGRES_PASSWORD = os.getenv("POSTGRES_PASSWORD", "postgres")
POSTGRES_HOST = os.getenv("POSTGRES_HOST", "localhost")
POSTGRES_PORT = os.getenv("POSTGRES_PORT", "5432")
POSTGRES_DB = os.getenv("POSTGRES_DB", "kafka_ecom")

# Connection execution option marking a transaction that only reads
READ_ONLY_OPTION = "inventory_read_only"


def build_database_url(
    user: str = POSTGRES_USER,
    password: str = POSTGRES_PASSWORD,
    host: str = POSTGRES_HOST,
    port: str = POSTGRES_PORT,
    db: str = POSTGRES_DB,
) -> str:
    """Build a PostgreSQL URL from its parts."""
    return f"postgresql://{user}:{password}@{host}:{port}/{db}"


def _enable_sqlite_immediate_transactions(engine: Engine) -> None:
    """Let SQLAlchemy own BEGIN on SQLite and make it take the write lock up front."""

    @event.listens_for(engine, "connect")
    def do_connect(dbapi_connection, connection_record):
        # Disable pysqlite's implicit BEGIN so the "begin" hook below is the only one
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def do_begin(conn):
        if conn.get_execution_options().get(READ_ONLY_OPTION):
            conn.exec_driver_sql("BEGIN")
        else:
            conn.exec_driver_sql("BEGIN IMMEDIATE")


def create_db_engine(database_url: str, echo: bool = False) -> Engine:
    """Create an engine for ``database_url``."""
    if database_url.startswith("sqlite"):
        engine = create_engine(
            database_url,
            echo=echo,
            connect_args={"check_same_thread": False, "timeout": 30},
        )
        _enable_sqlite_immediate_transactions(engine)
        return engine

    return create_engine(database_url, echo=echo, pool_pre_ping=True)


def create_session_factory(engine: Engine) -> sessionmaker:
    """Session factory with the services' defaults."""
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def begin_read_only(db: Session) -> None:
    """
    Start the session's next transaction as a read-only one.

    Only SQLite treats it differently (deferred ``BEGIN``, no write lock). A
    session that is already inside a transaction keeps that transaction.
    Nothing may be written in a read-only transaction.
    """
    if not db.in_transaction():
        db.connection(execution_options={READ_ONLY_OPTION: True})


def session_scope(session_factory: sessionmaker) -> Iterator[Session]:
    """Yield a session and always close it (FastAPI dependency shape)."""
    db = session_factory()
    try:
        yield db
    finally:
        db.close()
