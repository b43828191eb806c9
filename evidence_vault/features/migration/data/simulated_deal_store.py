import hashlib
import logging
from threading import Lock
from typing import Any, Callable, Dict, Optional

from evidence_vault.core.common.errors import ContentNotFound, FundingPending, TerminalCollaboratorError
from ..domain.interfaces import IDealStore
from ..domain.models import DealResult, DealStatus

logger = logging.getLogger(__name__)


class SimulatedDealStore(IDealStore):
    """
    Local deal store for development and tests.
    Piece ids are derived from the tier-A id, so storing the same content
    twice is idempotent. With funded=False every store call fails the way a
    provider without a funded payment account does.

    Like a real provider it pulls the bytes by tier-A id (`content_source`)
    when the deal is made, and serves them back from its own copy.
    """

    def __init__(self, funded: bool = True, content_source: Optional[Callable[[str], bytes]] = None):
        self.funded = funded
        self.content_source = content_source
        self._lock = Lock()
        self._deals: Dict[str, Dict[str, Any]] = {}

    def set_funded(self, funded: bool):
        self.funded = funded

    def store(self, tier_a_id: str, metadata: Dict[str, Any]) -> DealResult:
        if not tier_a_id or not tier_a_id.strip():
            raise TerminalCollaboratorError("Cannot store content without a tier-A identifier.")
        if not self.funded:
            raise FundingPending("Deal store payment account is not funded yet.")

        digest = hashlib.sha256(tier_a_id.encode("utf-8")).hexdigest()
        tier_b_id = "baga6ea4seaq" + digest[:48]
        deal_id = str(int(digest[:12], 16))
        data = self.content_source(tier_a_id) if self.content_source else None

        with self._lock:
            self._deals[tier_b_id] = {
                "deal_id": deal_id, "tier_a_id": tier_a_id, "metadata": dict(metadata), "data": data,
            }

        logger.info(f"Simulated deal {deal_id} for {tier_a_id} -> {tier_b_id}")
        return DealResult(tier_b_id=tier_b_id, deal_id=deal_id)

    def check_deal(self, tier_b_id: str) -> DealStatus:
        with self._lock:
            deal = self._deals.get(tier_b_id)
        if deal is None:
            raise ContentNotFound(f"No deal known for {tier_b_id}")
        return DealStatus(status="active", message=f"Deal {deal['deal_id']} is active")

    def retrieve(self, tier_b_id: str) -> bytes:
        with self._lock:
            deal = self._deals.get(tier_b_id)
        if deal is None:
            raise ContentNotFound(f"No deal known for {tier_b_id}")
        if deal["data"] is None:
            raise ContentNotFound(f"Deal {deal['deal_id']} holds no retrievable copy of {tier_b_id}")
        logger.info(f"Retrieved {len(deal['data'])} bytes for {tier_b_id}")
        return deal["data"]
