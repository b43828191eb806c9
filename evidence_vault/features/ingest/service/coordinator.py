import json
import logging
from datetime import timedelta
from typing import Callable, Optional
from uuid import UUID, uuid4

from evidence_vault.core.common.clock import utc_now
from evidence_vault.core.common.enums import TierAState
from evidence_vault.core.common.errors import (
    CollaboratorUnavailable,
    ConcurrencyConflict,
    ContentNotFound,
    PayloadTooLarge,
    RecordNotFound,
    TerminalCollaboratorError,
    ValidationError,
    error_category,
)
from evidence_vault.core.common.timeouts import TimeoutRunner
from evidence_vault.core.records.domain.interfaces import IFileRecordRepository
from evidence_vault.core.records.domain.models import FileRecord
from ..domain.interfaces import IContentAddresser, IPinStore
from ..domain.models import DEFAULT_MIME_TYPE, IngestRequest, IngestResult, normalize_owner
from ..data.hasher import SHA256ContentAddresser

logger = logging.getLogger(__name__)

MAX_NAME_LENGTH = 255


class IngestCoordinator:
    """
    Entry point for uploads, and the only writer of tier-A state.
    Orchestrates validation, fingerprinting, deduplication, the tier-A pin
    and the hand-off to the tier-B migration queue.
    """

    def __init__(self,
                 repo: IFileRecordRepository,
                 pin_store: IPinStore,
                 addresser: Optional[IContentAddresser] = None,
                 timeouts: Optional[TimeoutRunner] = None,
                 max_upload_bytes: int = 100 * 1024 * 1024,
                 pin_timeout_seconds: float = 30.0,
                 pin_stale_after_seconds: float = 300.0,
                 clock: Callable = utc_now):
        self.repo = repo
        self.pin_store = pin_store
        self.addresser = addresser or SHA256ContentAddresser()
        self.timeouts = timeouts or TimeoutRunner(name="pin")
        self.max_upload_bytes = max_upload_bytes
        self.pin_timeout_seconds = pin_timeout_seconds
        self.pin_stale_after = timedelta(seconds=pin_stale_after_seconds)
        self.clock = clock

    def ingest(self, request: IngestRequest) -> IngestResult:
        """
        Ingests one upload.
        - Validates (size first, so oversized payloads are never hashed).
        - Fingerprints the bytes.
        - Returns the existing record for a known (owner, fingerprint).
        - Otherwise claims the dedup key with an atomic insert and pins to tier A.

        Tier-A failures are recorded on the record and never raised: the caller
        always gets a durable record back.
        """
        owner_id = normalize_owner(request.owner_id)
        self._validate(request, owner_id)

        fingerprint = self.addresser.fingerprint(request.data)

        existing = self.repo.find_by_fingerprint(owner_id, fingerprint)
        if existing:
            return self._resolve_existing(existing, request)

        pin_token = uuid4().hex
        record_data = {
            "owner_id": owner_id,
            "original_name": request.original_name.strip(),
            "size_bytes": request.size_bytes,
            "mime_type": (request.mime_type or DEFAULT_MIME_TYPE).strip(),
            "content_fingerprint": fingerprint,
            "meta": dict(request.metadata or {}),
        }
        record, created = self.repo.insert_if_absent(record_data, pin_token, self.clock())

        if not created:
            # Lost the race against a concurrent identical upload.
            return self._resolve_existing(record, request)

        logger.info(f"New upload {record.id} for {owner_id}: {record.original_name} ({record.size_bytes} bytes)")
        return IngestResult(record=self._pin(record, request, pin_token), is_duplicate=False)

    def release(self, record_id: UUID, owner_id: str) -> FileRecord:
        """
        Soft delete: unpins from tier A and marks the record `released`.
        The record itself (and any tier-B copy) is kept for the audit trail.
        """
        owner_id = normalize_owner(owner_id)
        record = self.repo.get_for_owner(record_id, owner_id)
        if not record:
            raise RecordNotFound(f"File {record_id} not found.")

        if record.tier_a_state == TierAState.RELEASED:
            return record
        if record.tier_a_state == TierAState.PINNING:
            raise ConcurrencyConflict(f"File {record_id} is still being pinned; try again shortly.")

        if record.tier_a_state == TierAState.PINNED:
            self._unpin(record)

        if not self.repo.release(record.id, self.clock()):
            current = self.repo.get(record.id)
            if current and current.tier_a_state == TierAState.RELEASED:
                return current
            raise ConcurrencyConflict(f"File {record_id} changed while it was being released.")

        logger.info(f"Released {record.id} from tier A ({record.tier_a_id})")
        return self.repo.get(record.id)

    # ------------------------------------------------------------------

    def _validate(self, request: IngestRequest, owner_id: str):
        if not owner_id:
            raise ValidationError("Owner address is required.")

        if request.size_bytes > self.max_upload_bytes:
            raise PayloadTooLarge(
                f"File is {request.size_bytes} bytes; the limit is {self.max_upload_bytes} bytes."
            )
        if request.size_bytes == 0:
            raise ValidationError("File is empty.")

        name = (request.original_name or "").strip()
        if not name:
            raise ValidationError("File name is required.")
        if len(name) > MAX_NAME_LENGTH:
            raise ValidationError(f"File name exceeds {MAX_NAME_LENGTH} characters.")
        if any(ch in name for ch in ("/", "\\", "\x00")):
            raise ValidationError("File name must not contain path separators.")

        if request.mime_type and len(request.mime_type) > 255:
            raise ValidationError("MIME type is too long.")

        if not isinstance(request.metadata, dict):
            raise ValidationError("Metadata must be a JSON object.")
        try:
            json.dumps(request.metadata)
        except (TypeError, ValueError) as e:
            raise ValidationError(f"Metadata is not JSON serializable: {e}")

    def _resolve_existing(self, existing: FileRecord, request: IngestRequest) -> IngestResult:
        """
        A known fingerprint is a duplicate, unless its tier-A pin never succeeded.
        In that case the fresh bytes give us a second chance, and exactly one caller
        wins the reclaim.
        """
        if existing.tier_a_state in (TierAState.FAILED, TierAState.PINNING):
            now = self.clock()
            pin_token = uuid4().hex
            if self.repo.reclaim_for_pinning(existing.id, pin_token, now - self.pin_stale_after, now):
                logger.info(f"Re-pinning {existing.id} (previous tier-A state: {existing.tier_a_state.value})")
                return IngestResult(record=self._pin(existing, request, pin_token), is_duplicate=False)

        logger.info(f"Duplicate upload of {existing.id} by {existing.owner_id}")
        return IngestResult(record=existing, is_duplicate=True)

    def _pin(self, record: FileRecord, request: IngestRequest, pin_token: str) -> FileRecord:
        pin_metadata = {
            **(request.metadata or {}),
            "name": record.original_name,
            "ownerId": record.owner_id,
            "fingerprint": record.content_fingerprint,
            "uploadedAt": self.clock().isoformat(),
        }

        try:
            result = self.timeouts.run(self.pin_timeout_seconds, self.pin_store.pin, request.data, pin_metadata)
        except Exception as e:
            logger.error(f"Tier-A pin failed for {record.id}: {e}")
            if not self.repo.mark_pin_failed(record.id, pin_token, str(e), error_category(e), self.clock()):
                logger.warning(f"Pin claim on {record.id} was taken over before the failure was recorded")
            return self.repo.get(record.id)

        if not self.repo.mark_pinned(record.id, pin_token, result.tier_a_id, result.timestamp, self.clock()):
            logger.warning(
                f"Pin claim on {record.id} was taken over; tier-A content {result.tier_a_id} is not referenced"
            )
        else:
            logger.info(f"Pinned {record.id} as {result.tier_a_id}; queued for tier-B migration")
        return self.repo.get(record.id)

    def _unpin(self, record: FileRecord):
        try:
            self.timeouts.run(self.pin_timeout_seconds, self.pin_store.unpin, record.tier_a_id)
        except ContentNotFound:
            logger.info(f"{record.tier_a_id} was already unpinned")
        except TerminalCollaboratorError as e:
            self.repo.record_tier_a_error(record.id, str(e), e.category, self.clock())
            raise
        except Exception as e:
            logger.error(f"Unpin of {record.tier_a_id} failed: {e}")
            self.repo.record_tier_a_error(record.id, str(e), error_category(e), self.clock())
            raise CollaboratorUnavailable(f"Could not unpin {record.tier_a_id}: {e}") from e
