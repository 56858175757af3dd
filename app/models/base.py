"""
Declarative base, engine and session factory
"""
import os

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import NullPool

from app.config import get_settings
from app.utils.logger import log


def _absolute_sqlite_url(url: str) -> str:
    # sqlite:///relative.db follows the cwd; pin it to where the process started
    prefix = "sqlite:///"
    if url.startswith(prefix) and not url.startswith(prefix + "/"):
        return prefix + os.path.abspath(url[len(prefix):])
    return url


def build_engine(url: str) -> Engine:
    """Create an engine for the configured database.

    SQLite gets a NullPool and a generous busy timeout so the scheduler,
    API requests and scripts can share one file. Other backends get a
    small recycled pool; AWB creation needs SELECT ... FOR UPDATE there.
    """
    url = _absolute_sqlite_url(url)
    if url.startswith("sqlite"):
        return create_engine(
            url,
            connect_args={"check_same_thread": False, "timeout": 60},
            poolclass=NullPool,
        )
    return create_engine(
        url,
        pool_pre_ping=True,
        pool_size=5,
        max_overflow=10,
        pool_recycle=300,
    )


engine = build_engine(get_settings().database_url)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """FastAPI dependency: one session per request"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _add_missing_columns(bind: Engine) -> None:
    """ALTER existing tables for columns added to the models since they were created."""
    inspector = inspect(bind)
    with bind.begin() as conn:
        for name, table in Base.metadata.tables.items():
            if not inspector.has_table(name):
                continue
            present = {column["name"] for column in inspector.get_columns(name)}
            for column in table.columns:
                if column.name in present:
                    continue
                ddl = f"ALTER TABLE {name} ADD COLUMN {column.name} {column.type.compile(dialect=bind.dialect)}"
                log.info(f"Schema upgrade: {ddl}")
                conn.execute(text(ddl))


def init_db(bind: Engine = None) -> None:
    """Create missing tables and columns for every AWB sync model."""
    import app.models  # noqa: F401  registers the models on Base.metadata

    bind = bind or engine
    Base.metadata.create_all(bind=bind)
    _add_missing_columns(bind)
