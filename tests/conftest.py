# File: tests/conftest.py

import pytest
import os
import sys
import sqlalchemy
from sqlalchemy import text
from sqlalchemy_utils import database_exists, create_database

# 1. Add project root to path and force the test database
sys.path.append(os.getcwd())
if not os.getenv("DATABASE_URL"):
    os.environ["USE_SQLITE"] = "true"

# 2. Import Settings and the shared engine
from evidence_vault.core.config.settings import settings
from evidence_vault.core.database.connection import engine as TEST_ENGINE, init_db
from evidence_vault.core.common.clock import utc_now
from evidence_vault.core.common.timeouts import TimeoutRunner
from evidence_vault.core.records.data.repository import SqlFileRecordRepo
from evidence_vault.features.ingest.service.coordinator import IngestCoordinator
from evidence_vault.features.migration.domain.models import BackoffPolicy, MigrationPolicy
from evidence_vault.features.migration.service.worker import MigrationWorker

from fakes import FakeClock, FakeDealStore, FakePinStore


@pytest.fixture(scope="session", autouse=True)
def global_setup():
    """
    Runs once per test session.
    Ensures the DB exists and has the schema.
    """
    if not database_exists(TEST_ENGINE.url):
        create_database(TEST_ENGINE.url)

    init_db(TEST_ENGINE)

    yield


@pytest.fixture(scope="function", autouse=True)
def clean_db(global_setup):
    """
    Runs before EVERY test.
    Detects DB type and cleans tables appropriately.
    """
    with TEST_ENGINE.connect() as conn:
        trans = conn.begin()

        is_sqlite = "sqlite" in str(TEST_ENGINE.url)
        table_names = sqlalchemy.inspect(TEST_ENGINE).get_table_names()

        for table in table_names:
            if is_sqlite:
                conn.execute(text(f'DELETE FROM "{table}";'))
            else:
                conn.execute(text(f'TRUNCATE TABLE "{table}" CASCADE;'))

        trans.commit()

    yield


# --- Collaborators & services ---

@pytest.fixture
def clock():
    return FakeClock(utc_now())


@pytest.fixture
def timeouts():
    runner = TimeoutRunner(max_workers=16, name="test")
    yield runner
    runner.shutdown()


@pytest.fixture
def repo():
    return SqlFileRecordRepo()


@pytest.fixture
def pin_store():
    return FakePinStore()


@pytest.fixture
def deal_store():
    return FakeDealStore()


@pytest.fixture
def coordinator(repo, pin_store, timeouts, clock):
    return IngestCoordinator(
        repo,
        pin_store,
        timeouts=timeouts,
        max_upload_bytes=1024 * 1024,
        pin_timeout_seconds=2.0,
        pin_stale_after_seconds=300.0,
        clock=clock,
    )


@pytest.fixture
def policy():
    # No backoff and no jitter: a scheduled retry is due again immediately.
    return MigrationPolicy(
        max_attempts=3,
        backoff=BackoffPolicy(base_seconds=0.0, max_seconds=0.0, jitter=0.0),
        lease_seconds=60.0,
        deal_timeout_seconds=2.0,
        batch_size=10,
        poll_interval_seconds=0.05,
    )


@pytest.fixture
def make_worker(repo, deal_store, policy, timeouts, clock):
    def build(worker_id="worker-1", **overrides):
        return MigrationWorker(
            overrides.get("repo", repo),
            overrides.get("deal_store", deal_store),
            overrides.get("policy", policy),
            worker_id=worker_id,
            clock=overrides.get("clock", clock),
            timeouts=overrides.get("timeouts", timeouts),
        )
    return build


@pytest.fixture
def worker(make_worker):
    return make_worker()
