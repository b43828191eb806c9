# File: evidence_vault/core/common/enums.py

from enum import Enum, unique


@unique
class TierAState(str, Enum):
    PINNING = "pinning"
    PINNED = "pinned"
    FAILED = "failed"
    RELEASED = "released"


@unique
class TierBState(str, Enum):
    QUEUED = "queued"
    MIGRATING = "migrating"
    COMPLETED = "completed"
    FAILED = "failed"


@unique
class MigrationStatus(str, Enum):
    """Caller-facing rollup of both tiers."""
    PENDING = "pending"
    BLOCKED = "blocked"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
