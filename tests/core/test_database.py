# File: tests/core/test_database.py

import sqlalchemy
from sqlalchemy import text
from evidence_vault.core.database.connection import SessionLocal, engine, init_db
from evidence_vault.core.records.data.repository import SqlFileRecordRepo


def test_database_connection():
    """
    Simple smoke test to ensure DB is reachable and configured.
    """
    with SessionLocal() as db:
        # Simple query valid in both Postgres and SQLite
        result = db.execute(text("SELECT 1"))
        assert result.scalar() == 1


def test_repository_ping():
    assert SqlFileRecordRepo().ping() is True


def test_init_db_is_repeatable():
    """
    init-db can run against an existing schema without complaint.
    """
    init_db(engine)
    init_db(engine)

    inspector = sqlalchemy.inspect(engine)
    assert "file_records" in inspector.get_table_names()

    columns = {c["name"] for c in inspector.get_columns("file_records")}
    for expected in ("owner_id", "content_fingerprint", "tier_a_state", "tier_b_state",
                     "migration_attempts", "next_attempt_at", "lease_owner", "metadata"):
        assert expected in columns
