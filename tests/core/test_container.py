from evidence_vault.core.config.settings import settings
from evidence_vault.core.container import build_services

from fakes import FakeDealStore, FakePinStore


def test_each_collaborator_concern_gets_its_own_pool():
    services = build_services(settings, pin_store=FakePinStore(), deal_store=FakeDealStore(), worker_concurrency=5)
    try:
        runners = {services.pin_timeouts, services.deal_timeouts, services.status_timeouts}
        assert len(runners) == 3

        assert services.ingest.timeouts is services.pin_timeouts
        assert services.status.timeouts is services.status_timeouts
        assert services.worker_factory()("w").timeouts is services.deal_timeouts

        assert services.pin_timeouts.max_workers == settings.PIN_CONCURRENCY
        assert services.deal_timeouts.max_workers == 7
    finally:
        services.shutdown()
