"""
evidence-vault command line.

    evidence-vault init-db
    evidence-vault serve [--host H] [--port P] [--with-workers]
    evidence-vault worker [--concurrency N] [--once]
    evidence-vault retry-failed [--owner ADDRESS] [--force]
    evidence-vault migrate RECORD_ID
"""

import argparse
import logging
import signal
import sys
import threading
import uuid

from evidence_vault.core.config.settings import settings
from evidence_vault.core.logging_setup import configure_logging

logger = logging.getLogger("evidence_vault.cli")


def cmd_init_db(args) -> int:
    from evidence_vault.core.database.connection import init_db

    init_db()
    logger.info("✅ Database tables created")
    return 0


def cmd_serve(args) -> int:
    import uvicorn
    from evidence_vault.api.app import create_app
    from evidence_vault.core.container import build_services
    from evidence_vault.features.migration.service.pool import MigrationPool

    services = build_services(settings)
    app = create_app(services)

    pool = None
    if args.with_workers:
        pool = MigrationPool(services.worker_factory(), settings.WORKER_CONCURRENCY)
        pool.start()

    try:
        uvicorn.run(app, host=args.host, port=args.port, log_config=None)
    finally:
        if pool:
            pool.stop()
        services.shutdown()
    return 0


def cmd_worker(args) -> int:
    from evidence_vault.core.container import build_services
    from evidence_vault.features.migration.service.pool import MigrationPool

    concurrency = args.concurrency or settings.WORKER_CONCURRENCY
    services = build_services(settings, worker_concurrency=concurrency)
    try:
        if args.once:
            worker = services.worker_factory()("cli-once")
            outcomes = worker.drain()
            logger.info(f"Processed {len(outcomes)} migrations")
            return 0

        stop_requested = threading.Event()

        def handle_signal(signum, frame):
            logger.info(f"Received {signal.Signals(signum).name}, finishing in-flight migrations")
            stop_requested.set()

        signal.signal(signal.SIGTERM, handle_signal)
        signal.signal(signal.SIGINT, handle_signal)

        with MigrationPool(services.worker_factory(), concurrency):
            while not stop_requested.wait(1.0):
                pass
        return 0
    finally:
        services.shutdown()


def cmd_retry_failed(args) -> int:
    from evidence_vault.core.container import build_services

    services = build_services(settings)
    try:
        count = services.scheduler.retry_failed(owner_id=args.owner, force=args.force)
        print(f"Requeued {count} failed migrations")
        return 0
    finally:
        services.shutdown()


def cmd_migrate(args) -> int:
    from evidence_vault.core.container import build_services
    from evidence_vault.features.migration.domain.models import MigrationResult
    from evidence_vault.features.migration.service.worker import default_worker_id

    services = build_services(settings)
    try:
        outcome = services.worker_factory()(default_worker_id("cli")).migrate_record(args.record_id)
        if outcome.result == MigrationResult.SKIPPED:
            print(f"{args.record_id} is not waiting for migration")
            return 1
        line = f"Migration of {args.record_id}: {outcome.result.value} (attempt {outcome.attempts})"
        print(f"{line}: {outcome.error}" if outcome.error else line)
        return 0 if outcome.result == MigrationResult.COMPLETED else 1
    finally:
        services.shutdown()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="evidence-vault", description="Two-tier evidence storage pipeline")
    parser.add_argument("--log-level", default=None, help="Overrides LOG_LEVEL")
    commands = parser.add_subparsers(dest="command", required=True)

    init_db = commands.add_parser("init-db", help="Create database tables")
    init_db.set_defaults(func=cmd_init_db)

    serve = commands.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", default="0.0.0.0")
    serve.add_argument("--port", type=int, default=8000)
    serve.add_argument("--with-workers", action="store_true", help="Also run migration workers in this process")
    serve.set_defaults(func=cmd_serve)

    worker = commands.add_parser("worker", help="Run tier-B migration workers")
    worker.add_argument("--concurrency", type=int, default=None)
    worker.add_argument("--once", action="store_true", help="Process everything due, then exit")
    worker.set_defaults(func=cmd_worker)

    retry = commands.add_parser("retry-failed", help="Requeue failed migrations")
    retry.add_argument("--owner", default=None, help="Only this owner's files")
    retry.add_argument("--force", action="store_true", help="Reset attempt counters")
    retry.set_defaults(func=cmd_retry_failed)

    migrate = commands.add_parser("migrate", help="Migrate one queued record to tier B now")
    migrate.add_argument("record_id", type=uuid.UUID)
    migrate.set_defaults(func=cmd_migrate)

    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)

    try:
        settings.validate()
    except ValueError as e:
        logger.error(f"Invalid configuration: {e}")
        return 2

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
