import hashlib
import logging
from threading import Lock
from typing import Any, Dict

from evidence_vault.core.common.clock import utc_now
from evidence_vault.core.common.errors import ContentNotFound
from ..domain.interfaces import IPinStore
from ..domain.models import PinResult

logger = logging.getLogger(__name__)


class InMemoryPinStore(IPinStore):
    """
    Process-local stand-in for the pinning service.
    Identifiers are derived from the bytes, like a real content address,
    so pinning the same content twice yields the same id.
    """

    def __init__(self):
        self._lock = Lock()
        self._pins: Dict[str, Dict[str, Any]] = {}
        self._content: Dict[str, bytes] = {}

    def pin(self, data: bytes, metadata: Dict[str, Any]) -> PinResult:
        tier_a_id = "bafy" + hashlib.sha256(data).hexdigest()[:55]
        timestamp = utc_now()
        with self._lock:
            self._pins[tier_a_id] = {
                "cid": tier_a_id,
                "size": len(data),
                "metadata": dict(metadata),
                "pinned_at": timestamp.isoformat(),
            }
            self._content[tier_a_id] = bytes(data)
        logger.debug(f"Pinned {tier_a_id} ({len(data)} bytes) in memory")
        return PinResult(tier_a_id=tier_a_id, size_bytes=len(data), timestamp=timestamp)

    def unpin(self, tier_a_id: str) -> None:
        with self._lock:
            self._content.pop(tier_a_id, None)
            if self._pins.pop(tier_a_id, None) is None:
                raise ContentNotFound(f"{tier_a_id} is not pinned")

    def get_metadata(self, tier_a_id: str) -> Dict[str, Any]:
        with self._lock:
            entry = self._pins.get(tier_a_id)
        if entry is None:
            raise ContentNotFound(f"{tier_a_id} is not pinned")
        return dict(entry)

    def fetch(self, tier_a_id: str) -> bytes:
        with self._lock:
            data = self._content.get(tier_a_id)
        if data is None:
            raise ContentNotFound(f"{tier_a_id} is not pinned")
        return data
