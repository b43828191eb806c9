from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict

from evidence_vault.core.records.domain.models import FileRecord

DEFAULT_MIME_TYPE = "application/octet-stream"


def normalize_owner(owner_id: str) -> str:
    """Wallet addresses are case-insensitive; we store them lower-cased."""
    return (owner_id or "").strip().lower()


@dataclass(frozen=True)
class IngestRequest:
    """
    Request object for ingesting an uploaded file.
    The owner has already been authenticated by the layer in front of us.
    """
    owner_id: str
    data: bytes
    original_name: str
    mime_type: str = DEFAULT_MIME_TYPE
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def size_bytes(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class IngestResult:
    """A duplicate is a normal outcome, not an error: the existing record comes back flagged."""
    record: FileRecord
    is_duplicate: bool


@dataclass(frozen=True)
class PinResult:
    tier_a_id: str
    size_bytes: int
    timestamp: datetime
