import logging

from sqlalchemy import inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError
from sqlmodel import SQLModel, create_engine

from app.config import DB_CONNECT_ARGS, DB_URL

logger = logging.getLogger("book_downloads.db")


def build_engine(url: str = DB_URL, connect_args: dict | None = None) -> Engine:
    if connect_args is None:
        connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    kwargs = {}
    if not url.startswith("sqlite"):
        # Pool tuning for long-running server processes
        kwargs.update(pool_size=5, max_overflow=10, pool_recycle=3600)
    return create_engine(
        url,
        connect_args=connect_args,
        pool_pre_ping=True,  # Verify connections before use
        echo=False,
        **kwargs,
    )


engine = build_engine(DB_URL, DB_CONNECT_ARGS)


def init_db(target: Engine | None = None) -> None:
    # Registers the documents table on SQLModel.metadata
    from app import models  # noqa: F401

    SQLModel.metadata.create_all(target or engine)
    ensure_schema_compatibility(target or engine)
    logger.info("event=schema_ready url=%s", (target or engine).url.render_as_string(hide_password=True))


def ensure_connection(target: Engine | None = None) -> bool:
    """
    Verify that the database connection is alive.
    Used by the health endpoint when the SQL backend is active.
    """
    try:
        with (target or engine).connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except OperationalError:
        return False


def ensure_schema_compatibility(target: Engine | None = None) -> None:
    """Add columns introduced after a database was first created."""
    target = target or engine
    columns = {column["name"] for column in inspect(target).get_columns("documents")}
    if "version" not in columns:
        with target.begin() as conn:
            conn.execute(text("ALTER TABLE documents ADD COLUMN version INTEGER NOT NULL DEFAULT 1"))
        logger.info("event=schema_migrated column=documents.version")
