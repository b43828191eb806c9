# File: evidence_vault/core/container.py

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from evidence_vault.core.common.timeouts import TimeoutRunner
from evidence_vault.core.records.data.repository import SqlFileRecordRepo
from evidence_vault.core.records.domain.interfaces import IFileRecordRepository
from evidence_vault.features.ingest.data.memory_pin_store import InMemoryPinStore
from evidence_vault.features.ingest.data.pinata_adapter import PinataPinStore
from evidence_vault.features.ingest.domain.interfaces import IPinStore
from evidence_vault.features.ingest.service.coordinator import IngestCoordinator
from evidence_vault.features.migration.data.simulated_deal_store import SimulatedDealStore
from evidence_vault.features.migration.domain.interfaces import IDealStore
from evidence_vault.features.migration.domain.models import MigrationPolicy
from evidence_vault.features.migration.service.api import MigrationScheduler
from evidence_vault.features.migration.service.worker import MigrationWorker
from evidence_vault.features.status.service.aggregator import StatusAggregator

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Everything the HTTP app, the CLI and the workers need, wired once."""
    repo: IFileRecordRepository
    pin_store: IPinStore
    deal_store: IDealStore
    pin_timeouts: TimeoutRunner
    deal_timeouts: TimeoutRunner
    status_timeouts: TimeoutRunner
    policy: MigrationPolicy
    ingest: IngestCoordinator
    scheduler: MigrationScheduler
    status: StatusAggregator

    def worker_factory(self) -> Callable[[str], MigrationWorker]:
        def build(worker_id: str) -> MigrationWorker:
            return MigrationWorker(
                self.repo, self.deal_store, self.policy, worker_id=worker_id, timeouts=self.deal_timeouts
            )
        return build

    def shutdown(self):
        for runner in (self.pin_timeouts, self.deal_timeouts, self.status_timeouts):
            runner.shutdown()
        if isinstance(self.pin_store, PinataPinStore):
            self.pin_store.close()


def build_pin_store(settings) -> IPinStore:
    if settings.PINATA_JWT:
        # The HTTP client timeout is what actually ends a slow request; the local deadline is a backstop.
        return PinataPinStore(settings.PINATA_JWT, settings.PINATA_API_URL,
                              timeout=settings.PIN_TIMEOUT_SECONDS, gateway=settings.PINATA_GATEWAY)
    logger.warning("⚠️ PINATA_JWT is not set; pinning to the in-memory store (content is lost on restart)")
    return InMemoryPinStore()


def build_services(settings,
                   session_factory=None,
                   pin_store: Optional[IPinStore] = None,
                   deal_store: Optional[IDealStore] = None,
                   worker_concurrency: Optional[int] = None) -> Services:
    settings.validate()
    worker_concurrency = worker_concurrency or settings.WORKER_CONCURRENCY

    repo = SqlFileRecordRepo(session_factory)
    pin_store = pin_store or build_pin_store(settings)
    deal_store = deal_store or SimulatedDealStore(funded=settings.DEAL_STORE_FUNDED, content_source=pin_store.fetch)
    policy = MigrationPolicy.from_settings(settings)

    queue_timeout = settings.COLLABORATOR_QUEUE_TIMEOUT_SECONDS
    pin_timeouts = TimeoutRunner(settings.PIN_CONCURRENCY, name="pin", queue_timeout=queue_timeout)
    # One slot per pool worker, plus room for API-triggered migrations.
    deal_timeouts = TimeoutRunner(worker_concurrency + 2, name="deal", queue_timeout=queue_timeout)
    status_timeouts = TimeoutRunner(settings.STATUS_CONCURRENCY, name="status", queue_timeout=queue_timeout)
    backstop = settings.PIN_TIMEOUT_SECONDS + settings.COLLABORATOR_GRACE_SECONDS

    return Services(
        repo=repo,
        pin_store=pin_store,
        deal_store=deal_store,
        pin_timeouts=pin_timeouts,
        deal_timeouts=deal_timeouts,
        status_timeouts=status_timeouts,
        policy=policy,
        ingest=IngestCoordinator(
            repo,
            pin_store,
            timeouts=pin_timeouts,
            max_upload_bytes=settings.MAX_UPLOAD_BYTES,
            pin_timeout_seconds=backstop,
            pin_stale_after_seconds=settings.PIN_STALE_AFTER_SECONDS,
        ),
        scheduler=MigrationScheduler(repo),
        status=StatusAggregator(repo, pin_store, deal_store, timeouts=status_timeouts,
                                live_check_timeout=backstop),
    )
