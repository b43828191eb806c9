from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional
from uuid import UUID

from evidence_vault.core.common.clock import ensure_utc
from evidence_vault.core.common.enums import TierAState, TierBState, MigrationStatus
from evidence_vault.core.common.errors import ValidationError


@dataclass(frozen=True)
class FileRecord:
    """
    Detached snapshot of a file record row.
    Services hand these around instead of live ORM objects.
    """
    id: UUID
    owner_id: str
    original_name: str
    size_bytes: int
    mime_type: str
    content_fingerprint: str
    tier_a_state: TierAState
    tier_b_state: TierBState
    migration_attempts: int
    tier_a_id: Optional[str] = None
    tier_a_pinned_at: Optional[datetime] = None
    tier_b_id: Optional[str] = None
    deal_id: Optional[str] = None
    tier_b_completed_at: Optional[datetime] = None
    next_attempt_at: Optional[datetime] = None
    lease_owner: Optional[str] = None
    lease_expires_at: Optional[datetime] = None
    last_attempt_at: Optional[datetime] = None
    last_error: Optional[str] = None
    last_error_category: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    released_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_model(cls, row) -> "FileRecord":
        return cls(
            id=row.id,
            owner_id=row.owner_id,
            original_name=row.original_name,
            size_bytes=row.size_bytes,
            mime_type=row.mime_type,
            content_fingerprint=row.content_fingerprint,
            tier_a_state=row.tier_a_state,
            tier_b_state=row.tier_b_state,
            migration_attempts=row.migration_attempts or 0,
            tier_a_id=row.tier_a_id,
            tier_a_pinned_at=ensure_utc(row.tier_a_pinned_at),
            tier_b_id=row.tier_b_id,
            deal_id=row.deal_id,
            tier_b_completed_at=ensure_utc(row.tier_b_completed_at),
            next_attempt_at=ensure_utc(row.next_attempt_at),
            lease_owner=row.lease_owner,
            lease_expires_at=ensure_utc(row.lease_expires_at),
            last_attempt_at=ensure_utc(row.last_attempt_at),
            last_error=row.last_error,
            last_error_category=row.last_error_category,
            metadata=dict(row.meta or {}),
            released_at=ensure_utc(row.released_at),
            created_at=ensure_utc(row.created_at),
            updated_at=ensure_utc(row.updated_at),
        )

    @property
    def migration_status(self) -> MigrationStatus:
        if self.tier_b_state == TierBState.COMPLETED:
            return MigrationStatus.COMPLETED
        if self.tier_b_state == TierBState.FAILED:
            return MigrationStatus.FAILED
        if self.tier_b_state == TierBState.MIGRATING:
            return MigrationStatus.IN_PROGRESS
        if self.tier_a_state != TierAState.PINNED:
            # Nothing to migrate from until tier A holds the content.
            return MigrationStatus.BLOCKED
        return MigrationStatus.PENDING

    @property
    def is_available(self) -> bool:
        return self.tier_a_state == TierAState.PINNED or self.tier_b_state == TierBState.COMPLETED


@dataclass(frozen=True)
class StateCount:
    """One cell of the per-owner tier A x tier B grid."""
    tier_a_state: TierAState
    tier_b_state: TierBState
    count: int
    total_bytes: int


@dataclass(frozen=True)
class RecordFilter:
    """
    Listing filter for an owner's files.
    `status` is one of: pinned, tier_b, failed, migrating, queued.
    """
    status: Optional[str] = None
    report_id: Optional[str] = None
    case_id: Optional[str] = None
    page: int = 1
    limit: int = 20

    STATUSES = ("pinned", "tier_b", "failed", "migrating", "queued")
    MAX_LIMIT = 100

    def __post_init__(self):
        if self.status is not None and self.status not in self.STATUSES:
            raise ValidationError(f"Unknown status filter '{self.status}'. Expected one of {', '.join(self.STATUSES)}.")
        if self.page < 1:
            raise ValidationError("page must be >= 1.")
        if not 1 <= self.limit <= self.MAX_LIMIT:
            raise ValidationError(f"limit must be between 1 and {self.MAX_LIMIT}.")
