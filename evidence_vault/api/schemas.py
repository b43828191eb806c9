from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel

from evidence_vault.core.records.domain.models import FileRecord
from evidence_vault.features.migration.domain.models import MigrationOutcome
from evidence_vault.features.status.domain.models import OwnerSummary, StatusView


class ErrorResponse(BaseModel):
    error: str
    message: str


class FileOut(BaseModel):
    id: UUID
    owner_id: str
    original_name: str
    size_bytes: int
    mime_type: str
    content_fingerprint: str
    tier_a_id: Optional[str] = None
    tier_a_state: str
    tier_a_pinned_at: Optional[datetime] = None
    tier_b_id: Optional[str] = None
    deal_id: Optional[str] = None
    tier_b_state: str
    tier_b_completed_at: Optional[datetime] = None
    migration_status: str
    migration_attempts: int
    next_attempt_at: Optional[datetime] = None
    last_attempt_at: Optional[datetime] = None
    last_error: Optional[str] = None
    last_error_category: Optional[str] = None
    metadata: Dict[str, Any] = {}
    released_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, record: FileRecord) -> "FileOut":
        return cls(
            id=record.id,
            owner_id=record.owner_id,
            original_name=record.original_name,
            size_bytes=record.size_bytes,
            mime_type=record.mime_type,
            content_fingerprint=record.content_fingerprint,
            tier_a_id=record.tier_a_id,
            tier_a_state=record.tier_a_state.value,
            tier_a_pinned_at=record.tier_a_pinned_at,
            tier_b_id=record.tier_b_id,
            deal_id=record.deal_id,
            tier_b_state=record.tier_b_state.value,
            tier_b_completed_at=record.tier_b_completed_at,
            migration_status=record.migration_status.value,
            migration_attempts=record.migration_attempts,
            next_attempt_at=record.next_attempt_at,
            last_attempt_at=record.last_attempt_at,
            last_error=record.last_error,
            last_error_category=record.last_error_category,
            metadata=record.metadata,
            released_at=record.released_at,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )


class UploadOut(BaseModel):
    is_duplicate: bool
    file: FileOut


class FileListOut(BaseModel):
    files: List[FileOut]
    page: int
    limit: int
    total: int
    pages: int


class StatusOut(BaseModel):
    file: FileOut
    migration_status: str
    verified: bool
    verification_error: Optional[str] = None
    tier_a_drift: bool
    deal_status: Optional[str] = None
    is_available: bool
    is_pinned: bool
    is_on_tier_b: bool
    is_migrating: bool
    has_failed: bool

    @classmethod
    def from_view(cls, view: StatusView) -> "StatusOut":
        return cls(
            file=FileOut.from_record(view.record),
            migration_status=view.migration_status.value,
            verified=view.verified,
            verification_error=view.verification_error,
            tier_a_drift=view.tier_a_drift,
            deal_status=view.deal_status,
            is_available=view.is_available,
            is_pinned=view.is_pinned,
            is_on_tier_b=view.is_on_tier_b,
            is_migrating=view.is_migrating,
            has_failed=view.has_failed,
        )


class SummaryOut(BaseModel):
    owner_id: Optional[str] = None
    total_files: int
    total_bytes: int
    migration_rate: float
    counts: Dict[str, Dict[str, int]]

    @classmethod
    def from_summary(cls, summary: OwnerSummary) -> "SummaryOut":
        return cls(
            owner_id=summary.owner_id,
            total_files=summary.total_files,
            total_bytes=summary.total_bytes,
            migration_rate=round(summary.migration_rate, 4),
            counts=summary.as_grid(),
        )


class RetryOut(BaseModel):
    file_id: UUID
    status: str
    migration_attempts: int


class MigrationOut(BaseModel):
    file_id: UUID
    result: str
    migration_attempts: int
    error: Optional[str] = None
    next_attempt_in: Optional[float] = None
    file: FileOut

    @classmethod
    def from_outcome(cls, outcome: MigrationOutcome, record: FileRecord) -> "MigrationOut":
        return cls(
            file_id=record.id,
            result=outcome.result.value,
            migration_attempts=record.migration_attempts,
            error=outcome.error,
            next_attempt_in=outcome.next_attempt_in,
            file=FileOut.from_record(record),
        )


class HealthOut(BaseModel):
    status: str
    database: str
