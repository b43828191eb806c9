import random
from dataclasses import dataclass
from enum import Enum
from typing import Optional
from uuid import UUID


@dataclass(frozen=True)
class BackoffPolicy:
    """
    Exponential backoff between automatic migration attempts.
    delay(n) = min(max_seconds, base_seconds * multiplier ** (n - 1)),
    scaled down by a random factor in [1 - jitter, 1].
    """
    base_seconds: float = 5.0
    max_seconds: float = 300.0
    multiplier: float = 2.0
    jitter: float = 0.2

    def delay(self, attempt: int, rng: Optional[random.Random] = None) -> float:
        attempt = max(1, attempt)
        raw = min(self.max_seconds, self.base_seconds * (self.multiplier ** (attempt - 1)))
        if self.jitter <= 0:
            return raw
        roll = (rng or random).random()
        return raw * (1.0 - self.jitter * roll)


@dataclass(frozen=True)
class MigrationPolicy:
    max_attempts: int = 3
    backoff: BackoffPolicy = BackoffPolicy()
    lease_seconds: float = 600.0
    deal_timeout_seconds: float = 120.0
    batch_size: int = 10
    poll_interval_seconds: float = 2.0

    @classmethod
    def from_settings(cls, settings) -> "MigrationPolicy":
        return cls(
            max_attempts=settings.MIGRATION_MAX_ATTEMPTS,
            backoff=BackoffPolicy(
                base_seconds=settings.BACKOFF_BASE_SECONDS,
                max_seconds=settings.BACKOFF_MAX_SECONDS,
                jitter=settings.BACKOFF_JITTER,
            ),
            lease_seconds=settings.LEASE_SECONDS,
            deal_timeout_seconds=settings.DEAL_TIMEOUT_SECONDS,
            batch_size=settings.WORKER_BATCH_SIZE,
            poll_interval_seconds=settings.POLL_INTERVAL_SECONDS,
        )


@dataclass(frozen=True)
class DealResult:
    tier_b_id: str
    deal_id: str


@dataclass(frozen=True)
class DealStatus:
    status: str
    message: Optional[str] = None


class MigrationResult(str, Enum):
    COMPLETED = "completed"
    RETRY_SCHEDULED = "retry_scheduled"
    FAILED = "failed"
    CONFLICT = "conflict"   # lease lost to another worker or to expiry
    SKIPPED = "skipped"     # nothing claimable


@dataclass(frozen=True)
class MigrationOutcome:
    record_id: Optional[UUID]
    result: MigrationResult
    attempts: int = 0
    error: Optional[str] = None
    next_attempt_in: Optional[float] = None
