from abc import ABC, abstractmethod
from typing import Any, Dict

from .models import PinResult


class IContentAddresser(ABC):
    @abstractmethod
    def fingerprint(self, data: bytes) -> str:
        """Stable digest of the given bytes."""
        pass


class IPinStore(ABC):
    """
    Contract for the fast tier (tier A) pinning service.
    Transient failures raise CollaboratorUnavailable, permanent ones TerminalCollaboratorError.
    """

    @abstractmethod
    def pin(self, data: bytes, metadata: Dict[str, Any]) -> PinResult:
        pass

    @abstractmethod
    def unpin(self, tier_a_id: str) -> None:
        pass

    @abstractmethod
    def fetch(self, tier_a_id: str) -> bytes:
        """Reads the pinned bytes back. Raises ContentNotFound if they are gone."""
        pass

    @abstractmethod
    def get_metadata(self, tier_a_id: str) -> Dict[str, Any]:
        """
        Returns what the pinning service knows about the content.
        Raises ContentNotFound if it is no longer pinned.
        """
        pass
