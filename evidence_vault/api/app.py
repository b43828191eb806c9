import logging
from contextlib import asynccontextmanager
from typing import Iterable, Optional

from fastapi import FastAPI

from evidence_vault.core.config.settings import settings
from evidence_vault.core.container import Services, build_services
from evidence_vault.features.ingest.domain.models import normalize_owner
from .errors import setup_error_handlers
from .routes import router

logger = logging.getLogger(__name__)


def create_app(services: Optional[Services] = None,
               owner_header: Optional[str] = None,
               admin_owners: Optional[Iterable[str]] = None) -> FastAPI:
    """
    Builds the HTTP app. Tests pass their own Services; otherwise they are
    wired from settings and torn down with the app.
    """
    owns_services = services is None
    services = services or build_services(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        if owns_services:
            services.shutdown()

    app = FastAPI(title="Evidence Vault", version="0.1.0", lifespan=lifespan)
    app.state.services = services
    app.state.owner_header = owner_header or settings.OWNER_HEADER
    if admin_owners is None:
        admin_owners = settings.ADMIN_OWNERS
    app.state.admin_owners = {normalize_owner(a) for a in admin_owners}

    setup_error_handlers(app)
    app.include_router(router)

    logger.info(f"Evidence Vault API ready (owner header: {app.state.owner_header})")
    return app
