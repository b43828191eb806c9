import pytest

from evidence_vault import cli
from evidence_vault.core import container
from evidence_vault.core.common.enums import TierBState
from evidence_vault.core.common.errors import CollaboratorUnavailable
from evidence_vault.features.ingest.domain.models import IngestRequest


def test_parser_knows_every_command():
    parser = cli.build_parser()

    assert parser.parse_args(["init-db"]).func is cli.cmd_init_db
    assert parser.parse_args(["worker", "--once"]).once is True
    assert parser.parse_args(["migrate", "0b5d7f62-7c4e-4b0a-9d59-4b7f1c1e7d11"]).func is cli.cmd_migrate
    args = parser.parse_args(["retry-failed", "--owner", "0xabc", "--force"])
    assert (args.owner, args.force) == ("0xabc", True)

    with pytest.raises(SystemExit):
        parser.parse_args([])


def test_init_db_command():
    assert cli.main(["init-db"]) == 0


def test_retry_failed_command_requeues(coordinator, worker, deal_store, repo, capsys):
    deal_store.always_fail = CollaboratorUnavailable("provider down")
    record = coordinator.ingest(IngestRequest(owner_id="0xabc", data=b"x", original_name="x.bin")).record
    worker.drain()
    assert repo.get(record.id).tier_b_state == TierBState.FAILED

    assert cli.main(["retry-failed", "--owner", "0xABC"]) == 0

    assert "Requeued 1 failed migrations" in capsys.readouterr().out
    assert repo.get(record.id).tier_b_state == TierBState.QUEUED


@pytest.fixture
def cli_services(monkeypatch, pin_store, deal_store):
    """Points the CLI at the test collaborators instead of the configured ones."""
    deal_store.content_source = pin_store.fetch
    real_build = container.build_services

    def build(settings, **kwargs):
        return real_build(settings, pin_store=pin_store, deal_store=deal_store, **kwargs)

    monkeypatch.setattr(container, "build_services", build)


def test_migrate_command_runs_one_record(cli_services, coordinator, repo, capsys):
    record = coordinator.ingest(IngestRequest(owner_id="0xabc", data=b"y", original_name="y.bin")).record

    assert cli.main(["migrate", str(record.id)]) == 0
    assert "completed (attempt 1)" in capsys.readouterr().out
    assert repo.get(record.id).tier_b_state == TierBState.COMPLETED

    # Nothing left to do for it.
    assert cli.main(["migrate", str(record.id)]) == 1
    assert "is not waiting for migration" in capsys.readouterr().out


def test_migrate_command_reports_failures(cli_services, coordinator, deal_store, capsys):
    record = coordinator.ingest(IngestRequest(owner_id="0xabc", data=b"z", original_name="z.bin")).record
    deal_store.errors.append(CollaboratorUnavailable("provider down"))

    assert cli.main(["migrate", str(record.id)]) == 1
    assert "retry_scheduled (attempt 1): provider down" in capsys.readouterr().out
