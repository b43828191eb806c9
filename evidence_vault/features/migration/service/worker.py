import logging
import os
import random
import socket
import threading
from typing import Callable, List, Optional
from uuid import UUID, uuid4

from evidence_vault.core.common.clock import seconds_from, utc_now
from evidence_vault.core.common.errors import CollaboratorBusy, error_category, is_retryable
from evidence_vault.core.common.timeouts import TimeoutRunner
from evidence_vault.core.records.domain.interfaces import IFileRecordRepository
from evidence_vault.core.records.domain.models import FileRecord
from ..domain.interfaces import IDealStore
from ..domain.models import MigrationOutcome, MigrationPolicy, MigrationResult

logger = logging.getLogger(__name__)


def default_worker_id(suffix: Optional[str] = None) -> str:
    return f"{socket.gethostname()}:{os.getpid()}:{suffix or uuid4().hex[:8]}"


class MigrationWorker:
    """
    Moves pinned records from tier A to tier B.

    A worker only ever touches a record it holds the lease on: the claim is a
    conditional update out of `queued`, and every later write is conditional on
    `migrating` + this worker's id. Losing one of those writes means the lease
    expired and somebody else owns the record now, so the result is dropped.
    """

    def __init__(self,
                 repo: IFileRecordRepository,
                 deal_store: IDealStore,
                 policy: Optional[MigrationPolicy] = None,
                 worker_id: Optional[str] = None,
                 clock: Callable = utc_now,
                 rng: Optional[random.Random] = None,
                 timeouts: Optional[TimeoutRunner] = None):
        self.repo = repo
        self.deal_store = deal_store
        self.policy = policy or MigrationPolicy()
        self.worker_id = worker_id or default_worker_id()
        self.clock = clock
        self.rng = rng or random.Random()
        self.timeouts = timeouts or TimeoutRunner(max_workers=2, name="deal")

    # ------------------------------------------------------------------

    def process_next(self) -> MigrationOutcome:
        """Claims the oldest due record and migrates it."""
        if not self.timeouts.has_capacity():
            # Claiming now would spend an attempt on a call that cannot start.
            logger.warning(f"⚠️ Deal pool is saturated; {self.worker_id} is not claiming this round")
            return MigrationOutcome(record_id=None, result=MigrationResult.SKIPPED)
        record = self.repo.claim_next(self.worker_id, self.clock(), self.policy.lease_seconds)
        if not record:
            return MigrationOutcome(record_id=None, result=MigrationResult.SKIPPED)
        return self.migrate(record)

    def migrate_record(self, record_id: UUID) -> MigrationOutcome:
        """
        Migrates one specific record now, ignoring its backoff schedule.
        A record that is completed, in flight elsewhere, or not pinned is left alone.
        """
        if not self.timeouts.has_capacity():
            raise CollaboratorBusy(f"Deal pool is saturated; {record_id} was not claimed")
        record = self.repo.claim_record(record_id, self.worker_id, self.clock(), self.policy.lease_seconds)
        if not record:
            logger.info(f"Record {record_id} is not claimable; skipping")
            return MigrationOutcome(record_id=record_id, result=MigrationResult.SKIPPED)
        return self.migrate(record)

    def migrate(self, record: FileRecord) -> MigrationOutcome:
        """Runs the deal for a record this worker has already claimed."""
        logger.info(
            f"Migrating {record.id} ({record.tier_a_id}), attempt {record.migration_attempts}"
            f"/{self.policy.max_attempts}"
        )
        deal_metadata = {
            "originalName": record.original_name,
            "ownerId": record.owner_id,
            "fingerprint": record.content_fingerprint,
        }

        try:
            deal = self.timeouts.run(
                self.policy.deal_timeout_seconds, self.deal_store.store, record.tier_a_id, deal_metadata
            )
        except Exception as e:
            return self._handle_failure(record, e)

        if not self.repo.complete_migration(record.id, self.worker_id, deal.tier_b_id, deal.deal_id, self.clock()):
            logger.warning(f"Lease on {record.id} was lost; dropping deal {deal.deal_id}")
            return MigrationOutcome(record.id, MigrationResult.CONFLICT, record.migration_attempts)

        logger.info(f"✅ Migrated {record.id} to tier B as {deal.tier_b_id} (deal {deal.deal_id})")
        return MigrationOutcome(record.id, MigrationResult.COMPLETED, record.migration_attempts)

    def run_once(self, stop_event: Optional[threading.Event] = None) -> List[MigrationOutcome]:
        """Reclaims expired leases, then processes up to batch_size due records."""
        self.repo.reclaim_expired_leases(self.clock(), self.policy.max_attempts)

        outcomes = []
        for _ in range(self.policy.batch_size):
            if stop_event is not None and stop_event.is_set():
                break
            outcome = self.process_next()
            if outcome.result == MigrationResult.SKIPPED:
                break
            outcomes.append(outcome)
        return outcomes

    def drain(self) -> List[MigrationOutcome]:
        """Processes batches until nothing is due."""
        outcomes = []
        while True:
            batch = self.run_once()
            if not batch:
                return outcomes
            outcomes.extend(batch)

    def run_forever(self, stop_event: threading.Event):
        logger.info(f"Migration worker {self.worker_id} started")
        while not stop_event.is_set():
            try:
                processed = self.run_once(stop_event)
            except Exception as e:
                # Database hiccups must not kill the worker thread.
                logger.exception(f"Migration worker {self.worker_id} loop error: {e}")
                processed = []

            if not processed:
                stop_event.wait(self.policy.poll_interval_seconds)
        logger.info(f"Migration worker {self.worker_id} stopped")

    # ------------------------------------------------------------------

    def _handle_failure(self, record: FileRecord, exc: Exception) -> MigrationOutcome:
        attempts = record.migration_attempts
        category = error_category(exc)
        message = str(exc) or type(exc).__name__
        now = self.clock()

        if not is_retryable(exc) or attempts >= self.policy.max_attempts:
            reason = "terminal error" if not is_retryable(exc) else f"{attempts} attempts"
            logger.error(f"❌ Migration of {record.id} failed after {reason}: {message}")
            if not self.repo.fail_migration(record.id, self.worker_id, message, category, now):
                logger.warning(f"Lease on {record.id} was lost before the failure was recorded")
                return MigrationOutcome(record.id, MigrationResult.CONFLICT, attempts, message)
            return MigrationOutcome(record.id, MigrationResult.FAILED, attempts, message)

        delay = self.policy.backoff.delay(attempts, self.rng)
        logger.warning(
            f"Migration of {record.id} failed (attempt {attempts}/{self.policy.max_attempts}, {category}): "
            f"{message}. Retrying in {delay:.1f}s"
        )
        if not self.repo.schedule_retry(record.id, self.worker_id, message, category,
                                        seconds_from(now, delay), now):
            logger.warning(f"Lease on {record.id} was lost before the retry was scheduled")
            return MigrationOutcome(record.id, MigrationResult.CONFLICT, attempts, message)
        return MigrationOutcome(record.id, MigrationResult.RETRY_SCHEDULED, attempts, message, delay)
