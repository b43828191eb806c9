from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from evidence_vault.core.common.enums import MigrationStatus, TierAState, TierBState
from evidence_vault.core.records.domain.models import FileRecord, StateCount


@dataclass(frozen=True)
class StatusView:
    """
    A record as stored, plus what the collaborators say about it right now.
    When a live check could not be made, verified is False and the stored
    state is all we report.
    """
    record: FileRecord
    verified: bool
    tier_a_drift: bool = False
    deal_status: Optional[str] = None
    tier_a_details: Optional[Dict[str, Any]] = None
    verification_error: Optional[str] = None

    @property
    def migration_status(self) -> MigrationStatus:
        return self.record.migration_status

    @property
    def is_pinned(self) -> bool:
        return self.record.tier_a_state == TierAState.PINNED and not self.tier_a_drift

    @property
    def is_on_tier_b(self) -> bool:
        return self.record.tier_b_state == TierBState.COMPLETED

    @property
    def is_migrating(self) -> bool:
        return self.record.tier_b_state == TierBState.MIGRATING

    @property
    def has_failed(self) -> bool:
        return self.record.tier_b_state == TierBState.FAILED or self.record.tier_a_state == TierAState.FAILED

    @property
    def is_available(self) -> bool:
        return self.is_pinned or self.is_on_tier_b


@dataclass(frozen=True)
class OwnerSummary:
    owner_id: Optional[str]
    counts: List[StateCount] = field(default_factory=list)

    @property
    def total_files(self) -> int:
        return sum(c.count for c in self.counts)

    @property
    def total_bytes(self) -> int:
        return sum(c.total_bytes for c in self.counts)

    def count(self, tier_a_state: Optional[TierAState] = None, tier_b_state: Optional[TierBState] = None) -> int:
        return sum(
            c.count for c in self.counts
            if (tier_a_state is None or c.tier_a_state == tier_a_state)
            and (tier_b_state is None or c.tier_b_state == tier_b_state)
        )

    @property
    def migration_rate(self) -> float:
        """Share of files already on tier B, 0.0 - 1.0."""
        total = self.total_files
        if total == 0:
            return 0.0
        return self.count(tier_b_state=TierBState.COMPLETED) / total

    def as_grid(self) -> Dict[str, Dict[str, int]]:
        grid: Dict[str, Dict[str, int]] = {}
        for c in self.counts:
            grid.setdefault(c.tier_a_state.value, {})[c.tier_b_state.value] = c.count
        return grid


@dataclass(frozen=True)
class RetrievedContent:
    """Evidence bytes read back from one tier, already checked against the record's fingerprint."""
    record: FileRecord
    data: bytes
    source: str  # "tier_a" or "tier_b"
