from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID

from .models import FileRecord, RecordFilter, StateCount


class IFileRecordRepository(ABC):
    """
    Contract for the file record store, the single source of truth for migration state.
    Every mutation is a conditional update keyed on the record's current state and
    returns whether it applied; a False return means another actor got there first.
    """

    # --- Reads ---

    @abstractmethod
    def ping(self) -> bool:
        """Cheap round trip to the store for liveness checks."""
        pass

    @abstractmethod
    def get(self, record_id: UUID) -> Optional[FileRecord]:
        pass

    @abstractmethod
    def get_for_owner(self, record_id: UUID, owner_id: str) -> Optional[FileRecord]:
        pass

    @abstractmethod
    def find_by_fingerprint(self, owner_id: str, fingerprint: str) -> Optional[FileRecord]:
        pass

    @abstractmethod
    def find_by_tier_a_id(self, owner_id: str, tier_a_id: str) -> Optional[FileRecord]:
        pass

    @abstractmethod
    def find_by_tier_b_id(self, owner_id: str, tier_b_id: str) -> Optional[FileRecord]:
        pass

    @abstractmethod
    def list_for_owner(self, owner_id: str, record_filter: RecordFilter) -> Tuple[List[FileRecord], int]:
        """Returns (page of records newest first, total matching)."""
        pass

    @abstractmethod
    def count_by_state(self, owner_id: Optional[str] = None) -> List[StateCount]:
        """Grouped counts and byte totals per (tier A state, tier B state). No owner means system-wide."""
        pass

    @abstractmethod
    def list_failed_ids(self, owner_id: Optional[str] = None) -> List[UUID]:
        pass

    # --- Ingest / tier A ---

    @abstractmethod
    def insert_if_absent(self, record_data: Dict[str, Any], pin_token: str, now: datetime) -> Tuple[FileRecord, bool]:
        """
        Atomically inserts a `pinning` placeholder unless (owner_id, content_fingerprint) exists.
        Returns (record, created). Only the caller that gets created=True may pin.
        """
        pass

    @abstractmethod
    def reclaim_for_pinning(self, record_id: UUID, pin_token: str, stale_before: datetime, now: datetime) -> bool:
        """failed, or pinning untouched since `stale_before` -> pinning under a new token."""
        pass

    @abstractmethod
    def mark_pinned(self, record_id: UUID, pin_token: str, tier_a_id: str, pinned_at: datetime, now: datetime) -> bool:
        """pinning -> pinned, and enqueues tier-B migration in the same write."""
        pass

    @abstractmethod
    def mark_pin_failed(self, record_id: UUID, pin_token: str, error: str, category: str, now: datetime) -> bool:
        pass

    @abstractmethod
    def record_tier_a_error(self, record_id: UUID, error: str, category: str, now: datetime) -> bool:
        """Diagnostics for a pinned record whose tier-A operation (e.g. unpin) failed."""
        pass

    @abstractmethod
    def release(self, record_id: UUID, now: datetime) -> bool:
        """pinned|failed -> released (soft delete)."""
        pass

    # --- Migration / tier B ---

    @abstractmethod
    def claim_next(self, worker_id: str, now: datetime, lease_seconds: float) -> Optional[FileRecord]:
        """queued (and due) -> migrating under a lease. Increments migration_attempts."""
        pass

    @abstractmethod
    def claim_record(self, record_id: UUID, worker_id: str, now: datetime, lease_seconds: float) -> Optional[FileRecord]:
        """Same transition as claim_next for one specific record, ignoring its backoff schedule."""
        pass

    @abstractmethod
    def complete_migration(self, record_id: UUID, worker_id: str, tier_b_id: str, deal_id: str, now: datetime) -> bool:
        pass

    @abstractmethod
    def schedule_retry(self, record_id: UUID, worker_id: str, error: str, category: str,
                       next_attempt_at: datetime, now: datetime) -> bool:
        pass

    @abstractmethod
    def fail_migration(self, record_id: UUID, worker_id: str, error: str, category: str, now: datetime) -> bool:
        pass

    @abstractmethod
    def reclaim_expired_leases(self, now: datetime, max_attempts: int) -> int:
        """migrating with an expired lease -> queued, or failed once the attempt cap is reached."""
        pass

    @abstractmethod
    def requeue(self, record_id: UUID, reset_attempts: bool, now: datetime) -> bool:
        """failed -> queued (manual retry)."""
        pass
