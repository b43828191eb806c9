import logging
from typing import Callable, Optional
from uuid import UUID

from evidence_vault.core.common.clock import utc_now
from evidence_vault.core.common.enums import TierAState, TierBState
from evidence_vault.core.common.errors import ConcurrencyConflict, InvalidTransition, RecordNotFound
from evidence_vault.core.records.domain.interfaces import IFileRecordRepository
from evidence_vault.core.records.domain.models import FileRecord
from evidence_vault.features.ingest.domain.models import normalize_owner

logger = logging.getLogger(__name__)


class MigrationScheduler:
    """
    Manual control over the migration queue.
    Workers pick requeued records up on their next poll.
    """

    def __init__(self, repo: IFileRecordRepository, clock: Callable = utc_now):
        self.repo = repo
        self.clock = clock

    def request_retry(self, record_id: UUID, owner_id: str, force: bool = False) -> FileRecord:
        """
        failed -> queued, eligible immediately.
        Without force the record gets exactly one more automatic attempt;
        with force its attempt counter starts over.
        """
        record = self.repo.get_for_owner(record_id, normalize_owner(owner_id))
        if not record:
            raise RecordNotFound(f"File {record_id} not found.")

        if record.tier_b_state == TierBState.COMPLETED:
            raise InvalidTransition(f"File {record_id} is already on tier B.")
        if record.tier_b_state != TierBState.FAILED:
            raise InvalidTransition(
                f"File {record_id} migration is {record.tier_b_state.value}; only failed migrations can be retried."
            )
        if record.tier_a_state != TierAState.PINNED:
            raise InvalidTransition(
                f"File {record_id} is {record.tier_a_state.value} on tier A; there is nothing to migrate from."
            )

        if not self.repo.requeue(record.id, force, self.clock()):
            raise ConcurrencyConflict(f"File {record_id} changed while the retry was being requested.")

        logger.info(f"Manual retry requested for {record.id} (force={force})")
        return self.repo.get(record.id)

    def retry_failed(self, owner_id: Optional[str] = None, force: bool = False) -> int:
        """Requeues every failed migration, optionally for one owner. Returns how many were requeued."""
        owner = normalize_owner(owner_id) if owner_id else None
        now = self.clock()

        requeued = 0
        for record_id in self.repo.list_failed_ids(owner):
            if self.repo.requeue(record_id, force, now):
                requeued += 1

        logger.info(f"Requeued {requeued} failed migrations" + (f" for {owner}" if owner else ""))
        return requeued
