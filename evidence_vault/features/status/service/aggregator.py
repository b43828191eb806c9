import logging
from typing import List, Optional, Tuple
from uuid import UUID

from evidence_vault.core.common.enums import TierAState, TierBState
from evidence_vault.core.common.errors import ContentNotFound, RecordNotFound, TerminalCollaboratorError
from evidence_vault.core.common.timeouts import TimeoutRunner
from evidence_vault.core.records.domain.interfaces import IFileRecordRepository
from evidence_vault.core.records.domain.models import FileRecord, RecordFilter
from evidence_vault.features.ingest.data.hasher import SHA256ContentAddresser
from evidence_vault.features.ingest.domain.interfaces import IContentAddresser, IPinStore
from evidence_vault.features.ingest.domain.models import normalize_owner
from evidence_vault.features.migration.domain.interfaces import IDealStore
from ..domain.models import OwnerSummary, RetrievedContent, StatusView

logger = logging.getLogger(__name__)


class StatusAggregator:
    """
    Read side of the vault. Never mutates records: drift found by a live
    check is reported, not repaired.
    """

    def __init__(self,
                 repo: IFileRecordRepository,
                 pin_store: IPinStore,
                 deal_store: IDealStore,
                 timeouts: Optional[TimeoutRunner] = None,
                 live_check_timeout: float = 10.0,
                 addresser: Optional[IContentAddresser] = None):
        self.repo = repo
        self.pin_store = pin_store
        self.deal_store = deal_store
        self.timeouts = timeouts or TimeoutRunner(max_workers=4, name="status")
        self.live_check_timeout = live_check_timeout
        self.addresser = addresser or SHA256ContentAddresser()

    def status(self, record_id: UUID, owner_id: str) -> StatusView:
        record = self._get_owned(record_id, owner_id)

        verified = True
        tier_a_drift = False
        tier_a_details = None
        deal_status = None
        errors = []

        if record.tier_a_state == TierAState.PINNED and record.tier_a_id:
            try:
                tier_a_details = self.timeouts.run(
                    self.live_check_timeout, self.pin_store.get_metadata, record.tier_a_id
                )
            except ContentNotFound:
                logger.warning(f"{record.id}: {record.tier_a_id} is no longer pinned on tier A")
                tier_a_drift = True
            except Exception as e:
                logger.warning(f"Tier-A check for {record.id} failed: {e}")
                verified = False
                errors.append(f"tier A: {e}")

        if record.tier_b_state == TierBState.COMPLETED and record.tier_b_id:
            try:
                deal = self.timeouts.run(self.live_check_timeout, self.deal_store.check_deal, record.tier_b_id)
                deal_status = deal.status
            except Exception as e:
                logger.warning(f"Tier-B check for {record.id} failed: {e}")
                verified = False
                errors.append(f"tier B: {e}")

        return StatusView(
            record=record,
            verified=verified,
            tier_a_drift=tier_a_drift,
            deal_status=deal_status,
            tier_a_details=tier_a_details,
            verification_error="; ".join(errors) or None,
        )

    def summary(self, owner_id: str) -> OwnerSummary:
        owner = normalize_owner(owner_id)
        return OwnerSummary(owner_id=owner, counts=self.repo.count_by_state(owner))

    def fetch_content(self, record_id: UUID, owner_id: str) -> RetrievedContent:
        """
        Reads the evidence back, preferring the durable tier-B copy and falling
        back to tier A when tier B cannot deliver. A copy whose digest does not
        match the recorded fingerprint is never returned.
        """
        record = self._get_owned(record_id, owner_id)

        sources = []
        if record.tier_b_state == TierBState.COMPLETED and record.tier_b_id:
            sources.append(("tier_b", self.deal_store.retrieve, record.tier_b_id))
        if record.tier_a_state == TierAState.PINNED and record.tier_a_id:
            sources.append(("tier_a", self.pin_store.fetch, record.tier_a_id))
        if not sources:
            raise ContentNotFound(f"File {record_id} has no retrievable copy.")

        last_error = None
        integrity_error = None
        for source, read, identifier in sources:
            try:
                data = self.timeouts.run(self.live_check_timeout, read, identifier)
            except Exception as e:
                logger.warning(f"Reading {record.id} from {source} failed: {e}")
                last_error = e
                continue

            if self.addresser.fingerprint(data) != record.content_fingerprint:
                logger.error(f"❌ {source} copy of {record.id} does not match its fingerprint")
                integrity_error = TerminalCollaboratorError(f"The {source} copy of {record_id} failed the integrity check.")
                continue

            logger.info(f"Serving {record.id} from {source} ({len(data)} bytes)")
            return RetrievedContent(record=record, data=data, source=source)

        # A corrupted copy outranks a merely unreachable one.
        raise integrity_error or last_error

    def system_summary(self) -> OwnerSummary:
        return OwnerSummary(owner_id=None, counts=self.repo.count_by_state())

    def list_files(self, owner_id: str, record_filter: Optional[RecordFilter] = None) -> Tuple[List[FileRecord], int]:
        return self.repo.list_for_owner(normalize_owner(owner_id), record_filter or RecordFilter())

    def get_file(self, record_id: UUID, owner_id: str) -> FileRecord:
        return self._get_owned(record_id, owner_id)

    def find_by_tier_a_id(self, owner_id: str, tier_a_id: str) -> FileRecord:
        record = self.repo.find_by_tier_a_id(normalize_owner(owner_id), tier_a_id)
        if not record:
            raise RecordNotFound(f"No file with tier-A id {tier_a_id}.")
        return record

    def find_by_tier_b_id(self, owner_id: str, tier_b_id: str) -> FileRecord:
        record = self.repo.find_by_tier_b_id(normalize_owner(owner_id), tier_b_id)
        if not record:
            raise RecordNotFound(f"No file with tier-B id {tier_b_id}.")
        return record

    def _get_owned(self, record_id: UUID, owner_id: str) -> FileRecord:
        # A foreign owner's record is reported exactly like a missing one.
        record = self.repo.get_for_owner(record_id, normalize_owner(owner_id))
        if not record:
            raise RecordNotFound(f"File {record_id} not found.")
        return record
