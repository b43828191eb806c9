import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID

from sqlalchemy import func, or_, and_, text
from sqlalchemy.exc import IntegrityError

from evidence_vault.core.database.connection import SessionLocal
from evidence_vault.core.common.clock import seconds_from
from evidence_vault.core.common.enums import TierAState, TierBState
from ..models import FileRecordModel
from ..domain.interfaces import IFileRecordRepository
from ..domain.models import FileRecord, RecordFilter, StateCount

logger = logging.getLogger(__name__)

# How many due rows a worker looks at per claim; losers of a race move on to the next one.
CLAIM_SCAN_SIZE = 20

_STATUS_FILTERS = {
    "pinned": FileRecordModel.tier_a_state == TierAState.PINNED,
    "tier_b": FileRecordModel.tier_b_state == TierBState.COMPLETED,
    "failed": FileRecordModel.tier_b_state == TierBState.FAILED,
    "migrating": FileRecordModel.tier_b_state == TierBState.MIGRATING,
    "queued": FileRecordModel.tier_b_state == TierBState.QUEUED,
}


class SqlFileRecordRepo(IFileRecordRepository):

    def __init__(self, session_factory=None):
        self.session_factory = session_factory or SessionLocal

    # ------------------------------------------------------------------ reads

    def ping(self) -> bool:
        with self.session_factory() as db:
            return db.execute(text("SELECT 1")).scalar() == 1

    def get(self, record_id: UUID) -> Optional[FileRecord]:
        with self.session_factory() as db:
            row = db.get(FileRecordModel, record_id)
            return FileRecord.from_model(row) if row else None

    def get_for_owner(self, record_id: UUID, owner_id: str) -> Optional[FileRecord]:
        return self._first(FileRecordModel.id == record_id, FileRecordModel.owner_id == owner_id)

    def find_by_fingerprint(self, owner_id: str, fingerprint: str) -> Optional[FileRecord]:
        return self._first(
            FileRecordModel.owner_id == owner_id,
            FileRecordModel.content_fingerprint == fingerprint,
        )

    def find_by_tier_a_id(self, owner_id: str, tier_a_id: str) -> Optional[FileRecord]:
        return self._first(FileRecordModel.owner_id == owner_id, FileRecordModel.tier_a_id == tier_a_id)

    def find_by_tier_b_id(self, owner_id: str, tier_b_id: str) -> Optional[FileRecord]:
        return self._first(FileRecordModel.owner_id == owner_id, FileRecordModel.tier_b_id == tier_b_id)

    def list_for_owner(self, owner_id: str, record_filter: RecordFilter) -> Tuple[List[FileRecord], int]:
        with self.session_factory() as db:
            query = db.query(FileRecordModel).filter(FileRecordModel.owner_id == owner_id)

            if record_filter.status:
                query = query.filter(_STATUS_FILTERS[record_filter.status])
            if record_filter.report_id:
                query = query.filter(FileRecordModel.meta["reportId"].as_string() == record_filter.report_id)
            if record_filter.case_id:
                query = query.filter(FileRecordModel.meta["caseId"].as_string() == record_filter.case_id)

            total = query.count()
            rows = (
                query.order_by(FileRecordModel.created_at.desc(), FileRecordModel.id)
                .offset((record_filter.page - 1) * record_filter.limit)
                .limit(record_filter.limit)
                .all()
            )
            return [FileRecord.from_model(r) for r in rows], total

    def count_by_state(self, owner_id: Optional[str] = None) -> List[StateCount]:
        with self.session_factory() as db:
            query = db.query(
                FileRecordModel.tier_a_state,
                FileRecordModel.tier_b_state,
                func.count(FileRecordModel.id),
                func.coalesce(func.sum(FileRecordModel.size_bytes), 0),
            )
            if owner_id is not None:
                query = query.filter(FileRecordModel.owner_id == owner_id)

            rows = query.group_by(FileRecordModel.tier_a_state, FileRecordModel.tier_b_state).all()
            return [
                StateCount(tier_a_state=a, tier_b_state=b, count=int(count), total_bytes=int(total or 0))
                for a, b, count, total in rows
            ]

    def list_failed_ids(self, owner_id: Optional[str] = None) -> List[UUID]:
        with self.session_factory() as db:
            query = db.query(FileRecordModel.id).filter(
                FileRecordModel.tier_b_state == TierBState.FAILED,
                FileRecordModel.tier_a_state == TierAState.PINNED,
            )
            if owner_id is not None:
                query = query.filter(FileRecordModel.owner_id == owner_id)
            return [row_id for (row_id,) in query.order_by(FileRecordModel.updated_at.desc()).all()]

    # ------------------------------------------------------- ingest / tier A

    def insert_if_absent(self, record_data: Dict[str, Any], pin_token: str, now: datetime) -> Tuple[FileRecord, bool]:
        """
        Relies on the (owner_id, content_fingerprint) unique constraint rather than a
        check-then-insert, so N concurrent identical uploads produce exactly one winner.
        """
        with self.session_factory() as db:
            row = FileRecordModel(
                **record_data,
                tier_a_state=TierAState.PINNING,
                tier_b_state=TierBState.QUEUED,
                migration_attempts=0,
                lease_owner=pin_token,
                created_at=now,
                updated_at=now,
            )
            db.add(row)
            try:
                db.commit()
            except IntegrityError:
                db.rollback()
                existing = self.find_by_fingerprint(record_data["owner_id"], record_data["content_fingerprint"])
                if existing is None:
                    # The violation was not the dedup key.
                    raise
                logger.info(f"Duplicate content for owner {existing.owner_id}: record {existing.id}")
                return existing, False

            db.refresh(row)
            return FileRecord.from_model(row), True

    def reclaim_for_pinning(self, record_id: UUID, pin_token: str, stale_before: datetime, now: datetime) -> bool:
        return self._conditional_update(
            record_id,
            [or_(
                FileRecordModel.tier_a_state == TierAState.FAILED,
                and_(
                    FileRecordModel.tier_a_state == TierAState.PINNING,
                    FileRecordModel.updated_at < stale_before,
                ),
            )],
            {
                FileRecordModel.tier_a_state: TierAState.PINNING,
                FileRecordModel.lease_owner: pin_token,
                FileRecordModel.last_error: None,
                FileRecordModel.last_error_category: None,
            },
            now,
        )

    def mark_pinned(self, record_id: UUID, pin_token: str, tier_a_id: str, pinned_at: datetime, now: datetime) -> bool:
        # Setting next_attempt_at is the enqueue: the record and its queue entry are one row.
        return self._conditional_update(
            record_id,
            [
                FileRecordModel.tier_a_state == TierAState.PINNING,
                FileRecordModel.lease_owner == pin_token,
                FileRecordModel.tier_a_id.is_(None),
            ],
            {
                FileRecordModel.tier_a_state: TierAState.PINNED,
                FileRecordModel.tier_a_id: tier_a_id,
                FileRecordModel.tier_a_pinned_at: pinned_at,
                FileRecordModel.lease_owner: None,
                FileRecordModel.next_attempt_at: now,
                FileRecordModel.last_error: None,
                FileRecordModel.last_error_category: None,
            },
            now,
        )

    def mark_pin_failed(self, record_id: UUID, pin_token: str, error: str, category: str, now: datetime) -> bool:
        return self._conditional_update(
            record_id,
            [FileRecordModel.tier_a_state == TierAState.PINNING, FileRecordModel.lease_owner == pin_token],
            {
                FileRecordModel.tier_a_state: TierAState.FAILED,
                FileRecordModel.lease_owner: None,
                FileRecordModel.last_error: error,
                FileRecordModel.last_error_category: category,
            },
            now,
        )

    def record_tier_a_error(self, record_id: UUID, error: str, category: str, now: datetime) -> bool:
        return self._conditional_update(
            record_id,
            [FileRecordModel.tier_a_state == TierAState.PINNED],
            {FileRecordModel.last_error: error, FileRecordModel.last_error_category: category},
            now,
        )

    def release(self, record_id: UUID, now: datetime) -> bool:
        return self._conditional_update(
            record_id,
            [FileRecordModel.tier_a_state.in_([TierAState.PINNED, TierAState.FAILED])],
            {FileRecordModel.tier_a_state: TierAState.RELEASED, FileRecordModel.released_at: now},
            now,
        )

    # ---------------------------------------------------- migration / tier B

    def claim_next(self, worker_id: str, now: datetime, lease_seconds: float) -> Optional[FileRecord]:
        with self.session_factory() as db:
            candidate_ids = [
                row_id for (row_id,) in (
                    db.query(FileRecordModel.id)
                    .filter(
                        FileRecordModel.tier_b_state == TierBState.QUEUED,
                        FileRecordModel.tier_a_state == TierAState.PINNED,
                        FileRecordModel.next_attempt_at <= now,
                    )
                    .order_by(FileRecordModel.next_attempt_at, FileRecordModel.created_at)
                    .limit(CLAIM_SCAN_SIZE)
                    .all()
                )
            ]
            db.rollback()

            for record_id in candidate_ids:
                record = self._claim(db, record_id, worker_id, now, lease_seconds)
                if record:
                    return record

            return None

    def claim_record(self, record_id: UUID, worker_id: str, now: datetime, lease_seconds: float) -> Optional[FileRecord]:
        with self.session_factory() as db:
            return self._claim(db, record_id, worker_id, now, lease_seconds)

    def complete_migration(self, record_id: UUID, worker_id: str, tier_b_id: str, deal_id: str, now: datetime) -> bool:
        return self._conditional_update(
            record_id,
            self._held_by(worker_id),
            {
                FileRecordModel.tier_b_state: TierBState.COMPLETED,
                FileRecordModel.tier_b_id: tier_b_id,
                FileRecordModel.deal_id: deal_id,
                FileRecordModel.tier_b_completed_at: now,
                FileRecordModel.lease_owner: None,
                FileRecordModel.lease_expires_at: None,
                FileRecordModel.last_error: None,
                FileRecordModel.last_error_category: None,
            },
            now,
        )

    def schedule_retry(self, record_id: UUID, worker_id: str, error: str, category: str,
                       next_attempt_at: datetime, now: datetime) -> bool:
        return self._conditional_update(
            record_id,
            self._held_by(worker_id),
            {
                FileRecordModel.tier_b_state: TierBState.QUEUED,
                FileRecordModel.next_attempt_at: next_attempt_at,
                FileRecordModel.lease_owner: None,
                FileRecordModel.lease_expires_at: None,
                FileRecordModel.last_error: error,
                FileRecordModel.last_error_category: category,
            },
            now,
        )

    def fail_migration(self, record_id: UUID, worker_id: str, error: str, category: str, now: datetime) -> bool:
        return self._conditional_update(
            record_id,
            self._held_by(worker_id),
            {
                FileRecordModel.tier_b_state: TierBState.FAILED,
                FileRecordModel.next_attempt_at: None,
                FileRecordModel.lease_owner: None,
                FileRecordModel.lease_expires_at: None,
                FileRecordModel.last_error: error,
                FileRecordModel.last_error_category: category,
            },
            now,
        )

    def reclaim_expired_leases(self, now: datetime, max_attempts: int) -> int:
        expired = [
            FileRecordModel.tier_b_state == TierBState.MIGRATING,
            FileRecordModel.lease_expires_at < now,
        ]
        error = "Migration lease expired before the worker reported back"
        released = {
            FileRecordModel.lease_owner: None,
            FileRecordModel.lease_expires_at: None,
            FileRecordModel.last_error: error,
            FileRecordModel.last_error_category: "lease_expired",
            FileRecordModel.updated_at: now,
        }

        with self.session_factory() as db:
            exhausted = (
                db.query(FileRecordModel)
                .filter(*expired, FileRecordModel.migration_attempts >= max_attempts)
                .update({**released, FileRecordModel.tier_b_state: TierBState.FAILED,
                         FileRecordModel.next_attempt_at: None},
                        synchronize_session=False)
            )
            requeued = (
                db.query(FileRecordModel)
                .filter(*expired, FileRecordModel.migration_attempts < max_attempts)
                .update({**released, FileRecordModel.tier_b_state: TierBState.QUEUED,
                         FileRecordModel.next_attempt_at: now},
                        synchronize_session=False)
            )
            db.commit()

        if exhausted or requeued:
            logger.warning(f"Reclaimed expired migration leases: {requeued} requeued, {exhausted} failed")
        return exhausted + requeued

    def requeue(self, record_id: UUID, reset_attempts: bool, now: datetime) -> bool:
        values = {
            FileRecordModel.tier_b_state: TierBState.QUEUED,
            FileRecordModel.next_attempt_at: now,
            FileRecordModel.last_error: None,
            FileRecordModel.last_error_category: None,
        }
        if reset_attempts:
            values[FileRecordModel.migration_attempts] = 0

        return self._conditional_update(
            record_id,
            [FileRecordModel.tier_b_state == TierBState.FAILED, FileRecordModel.tier_a_state == TierAState.PINNED],
            values,
            now,
        )

    # --------------------------------------------------------------- helpers

    def _first(self, *conditions) -> Optional[FileRecord]:
        with self.session_factory() as db:
            row = db.query(FileRecordModel).filter(*conditions).first()
            return FileRecord.from_model(row) if row else None

    @staticmethod
    def _claim(db, record_id: UUID, worker_id: str, now: datetime, lease_seconds: float) -> Optional[FileRecord]:
        # The state predicate in the WHERE clause is the per-record mutex:
        # only one UPDATE can move a given row out of `queued`.
        claimed = (
            db.query(FileRecordModel)
            .filter(
                FileRecordModel.id == record_id,
                FileRecordModel.tier_b_state == TierBState.QUEUED,
                FileRecordModel.tier_a_state == TierAState.PINNED,
            )
            .update(
                {
                    FileRecordModel.tier_b_state: TierBState.MIGRATING,
                    FileRecordModel.migration_attempts: FileRecordModel.migration_attempts + 1,
                    FileRecordModel.lease_owner: worker_id,
                    FileRecordModel.lease_expires_at: seconds_from(now, lease_seconds),
                    FileRecordModel.last_attempt_at: now,
                    FileRecordModel.next_attempt_at: None,
                    FileRecordModel.updated_at: now,
                },
                synchronize_session=False,
            )
        )
        db.commit()

        if claimed != 1:
            return None
        row = db.get(FileRecordModel, record_id, populate_existing=True)
        return FileRecord.from_model(row)

    @staticmethod
    def _held_by(worker_id: str) -> list:
        return [FileRecordModel.tier_b_state == TierBState.MIGRATING, FileRecordModel.lease_owner == worker_id]

    def _conditional_update(self, record_id: UUID, conditions: list, values: dict, now: datetime) -> bool:
        """UPDATE ... WHERE id = :id AND <current state>. True when exactly this row moved."""
        values = {**values, FileRecordModel.updated_at: now}
        with self.session_factory() as db:
            try:
                updated = (
                    db.query(FileRecordModel)
                    .filter(FileRecordModel.id == record_id, *conditions)
                    .update(values, synchronize_session=False)
                )
                db.commit()
            except Exception as e:
                db.rollback()
                raise e
            return updated == 1
