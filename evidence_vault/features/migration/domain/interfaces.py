from abc import ABC, abstractmethod
from typing import Any, Dict

from .models import DealResult, DealStatus


class IDealStore(ABC):
    """
    Tier B: the storage-deal network.

    Implementations raise:
    - CollaboratorUnavailable (or FundingPending) for anything worth retrying
    - TerminalCollaboratorError when the content can never be stored
    - ContentNotFound from check_deal and retrieve for an unknown tier-B id
    """

    @abstractmethod
    def store(self, tier_a_id: str, metadata: Dict[str, Any]) -> DealResult:
        """Fetches the content by its tier-A id and places it under a storage deal."""
        pass

    @abstractmethod
    def check_deal(self, tier_b_id: str) -> DealStatus:
        pass

    @abstractmethod
    def retrieve(self, tier_b_id: str) -> bytes:
        """Reads the stored copy back from the deal network."""
        pass
