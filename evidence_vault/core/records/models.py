import uuid
from sqlalchemy import (
    Column, String, Integer, BigInteger, DateTime, Text, JSON, Uuid,
    Enum as SQLEnum, UniqueConstraint, Index,
)
from evidence_vault.core.database.base import Base
from evidence_vault.core.common.clock import utc_now
from evidence_vault.core.common.enums import TierAState, TierBState


class FileRecordModel(Base):
    """
    One uniquely-fingerprinted file owned by one wallet.
    The row is also the tier-B migration queue entry: workers poll on
    (tier_b_state, next_attempt_at) and claim rows with conditional updates.
    """
    __tablename__ = "file_records"
    __table_args__ = (
        # The dedup key. Concurrent identical uploads race on this constraint.
        UniqueConstraint("owner_id", "content_fingerprint", name="uq_file_records_owner_fingerprint"),
        Index("ix_file_records_migration_poll", "tier_b_state", "next_attempt_at"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    owner_id = Column(String(128), nullable=False, index=True)

    original_name = Column(String(255), nullable=False)
    size_bytes = Column(BigInteger, nullable=False)
    mime_type = Column(String(255), nullable=False)
    content_fingerprint = Column(String(64), nullable=False)

    # Tier A (pinning service)
    tier_a_id = Column(String(255), nullable=True, index=True)
    tier_a_state = Column(SQLEnum(TierAState), nullable=False, default=TierAState.PINNING)
    tier_a_pinned_at = Column(DateTime(timezone=True), nullable=True)

    # Tier B (deal-based durable store)
    tier_b_id = Column(String(255), nullable=True, index=True)
    deal_id = Column(String(255), nullable=True)
    tier_b_state = Column(SQLEnum(TierBState), nullable=False, default=TierBState.QUEUED)
    tier_b_completed_at = Column(DateTime(timezone=True), nullable=True)

    # Migration bookkeeping
    migration_attempts = Column(Integer, nullable=False, default=0)
    next_attempt_at = Column(DateTime(timezone=True), nullable=True)
    lease_owner = Column(String(128), nullable=True)
    lease_expires_at = Column(DateTime(timezone=True), nullable=True)
    last_attempt_at = Column(DateTime(timezone=True), nullable=True)
    last_error = Column(Text, nullable=True)
    last_error_category = Column(String(64), nullable=True)

    # Caller annotations (reportId, caseId, ...). `metadata` is reserved on declarative classes.
    meta = Column("metadata", JSON, default=dict)

    released_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)
