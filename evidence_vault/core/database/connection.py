# File: evidence_vault/core/database/connection.py

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from evidence_vault.core.config.settings import settings


def build_engine(database_url: str):
    # check_same_thread=False is needed only for SQLite (Test Mode).
    # The busy timeout lets concurrent workers queue on SQLite's write lock.
    connect_args = {"check_same_thread": False, "timeout": 30} if database_url.startswith("sqlite") else {}

    return create_engine(
        database_url,
        echo=False,
        pool_pre_ping=True,
        connect_args=connect_args
    )


engine = build_engine(settings.DATABASE_URL)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def init_db(bind=None):
    """Creates every table the vault needs. Safe to run repeatedly."""
    from evidence_vault.core.database.base import Base
    import evidence_vault.core.records.models  # noqa: F401 (registers file_records)

    Base.metadata.create_all(bind=bind or engine)
