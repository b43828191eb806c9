import json
import logging
import math
from urllib.parse import quote
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, Request, Response, UploadFile, status

from evidence_vault.core.common.errors import InvalidTransition, ValidationError
from evidence_vault.core.container import Services
from evidence_vault.core.records.domain.models import RecordFilter
from evidence_vault.features.ingest.domain.models import DEFAULT_MIME_TYPE, IngestRequest, normalize_owner
from evidence_vault.features.migration.domain.models import MigrationResult
from evidence_vault.features.migration.service.worker import default_worker_id
from .schemas import FileListOut, FileOut, HealthOut, MigrationOut, RetryOut, StatusOut, SummaryOut, UploadOut

logger = logging.getLogger(__name__)

router = APIRouter()


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_owner(request: Request) -> str:
    """The auth layer in front of us has already verified this address."""
    owner = (request.headers.get(request.app.state.owner_header) or "").strip()
    if not owner:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED,
                            detail=f"Missing {request.app.state.owner_header} header.")
    return owner


def get_admin(request: Request, owner: str = Depends(get_owner)) -> str:
    if normalize_owner(owner) not in request.app.state.admin_owners:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="System-wide state is limited to admins.")
    return owner


def _parse_metadata(raw: Optional[str]) -> dict:
    if not raw:
        return {}
    try:
        metadata = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ValidationError(f"metadata is not valid JSON: {e.msg}")
    if not isinstance(metadata, dict):
        raise ValidationError("metadata must be a JSON object.")
    return metadata


@router.get("/health", response_model=HealthOut, tags=["Health"])
def health(services: Services = Depends(get_services)):
    try:
        database = "ok" if services.repo.ping() else "unavailable"
    except Exception as e:
        logger.warning(f"Health check could not reach the database: {e}")
        database = "unavailable"
    return HealthOut(status="ok", database=database)


@router.post("/files", response_model=UploadOut, status_code=status.HTTP_201_CREATED, tags=["Files"])
def upload_file(response: Response,
                file: UploadFile = File(...),
                metadata: Optional[str] = Form(None),
                owner: str = Depends(get_owner),
                services: Services = Depends(get_services)):
    # One byte past the cap is enough to reject without reading the rest.
    data = file.file.read(services.ingest.max_upload_bytes + 1)

    result = services.ingest.ingest(IngestRequest(
        owner_id=owner,
        data=data,
        original_name=file.filename or "",
        mime_type=file.content_type or DEFAULT_MIME_TYPE,
        metadata=_parse_metadata(metadata),
    ))
    if result.is_duplicate:
        response.status_code = status.HTTP_200_OK
    return UploadOut(is_duplicate=result.is_duplicate, file=FileOut.from_record(result.record))


@router.get("/files", response_model=FileListOut, tags=["Files"])
def list_files(status_filter: Optional[str] = Query(None, alias="status"),
               report_id: Optional[str] = Query(None, alias="reportId"),
               case_id: Optional[str] = Query(None, alias="caseId"),
               page: int = Query(1),
               limit: int = Query(20),
               owner: str = Depends(get_owner),
               services: Services = Depends(get_services)):
    record_filter = RecordFilter(status=status_filter, report_id=report_id, case_id=case_id, page=page, limit=limit)
    records, total = services.status.list_files(owner, record_filter)
    return FileListOut(
        files=[FileOut.from_record(r) for r in records],
        page=page,
        limit=limit,
        total=total,
        pages=math.ceil(total / limit) if total else 0,
    )


@router.get("/files/summary", response_model=SummaryOut, tags=["Files"])
def owner_summary(owner: str = Depends(get_owner), services: Services = Depends(get_services)):
    return SummaryOut.from_summary(services.status.summary(owner))


@router.get("/files/system-summary", response_model=SummaryOut, tags=["Admin"])
def system_summary(admin: str = Depends(get_admin), services: Services = Depends(get_services)):
    return SummaryOut.from_summary(services.status.system_summary())


@router.get("/files/by-tier-a/{tier_a_id}", response_model=FileOut, tags=["Files"])
def file_by_tier_a_id(tier_a_id: str, owner: str = Depends(get_owner), services: Services = Depends(get_services)):
    return FileOut.from_record(services.status.find_by_tier_a_id(owner, tier_a_id))


@router.get("/files/by-tier-b/{tier_b_id}", response_model=FileOut, tags=["Files"])
def file_by_tier_b_id(tier_b_id: str, owner: str = Depends(get_owner), services: Services = Depends(get_services)):
    return FileOut.from_record(services.status.find_by_tier_b_id(owner, tier_b_id))


@router.get("/files/{file_id}/status", response_model=StatusOut, tags=["Files"])
def file_status(file_id: UUID, owner: str = Depends(get_owner), services: Services = Depends(get_services)):
    return StatusOut.from_view(services.status.status(file_id, owner))


@router.post("/files/{file_id}/retry", response_model=RetryOut, status_code=status.HTTP_202_ACCEPTED, tags=["Files"])
def retry_migration(file_id: UUID,
                    force: bool = Query(False),
                    owner: str = Depends(get_owner),
                    services: Services = Depends(get_services)):
    record = services.scheduler.request_retry(file_id, owner, force=force)
    return RetryOut(file_id=record.id, status=record.tier_b_state.value,
                    migration_attempts=record.migration_attempts)


@router.delete("/files/{file_id}", response_model=FileOut, tags=["Files"])
def release_file(file_id: UUID, owner: str = Depends(get_owner), services: Services = Depends(get_services)):
    return FileOut.from_record(services.ingest.release(file_id, owner))


@router.get("/files/{file_id}/content", response_class=Response, tags=["Files"])
def download_file(file_id: UUID, owner: str = Depends(get_owner), services: Services = Depends(get_services)):
    content = services.status.fetch_content(file_id, owner)
    record = content.record
    return Response(
        content=content.data,
        media_type=record.mime_type,
        headers={
            "Content-Disposition": f"attachment; filename*=UTF-8''{quote(record.original_name)}",
            "X-Content-Source": content.source,
            "X-Content-Fingerprint": record.content_fingerprint,
        },
    )


@router.post("/files/{file_id}/migrate", response_model=MigrationOut, tags=["Files"])
def migrate_now(file_id: UUID, owner: str = Depends(get_owner), services: Services = Depends(get_services)):
    """Runs the tier-B migration for one queued file right away instead of waiting for a worker."""
    record = services.status.get_file(file_id, owner)
    worker = services.worker_factory()(default_worker_id("api"))

    outcome = worker.migrate_record(record.id)
    if outcome.result == MigrationResult.SKIPPED:
        raise InvalidTransition(
            f"File {file_id} is not waiting for migration "
            f"(tier A {record.tier_a_state.value}, tier B {record.tier_b_state.value})."
        )
    return MigrationOut.from_outcome(outcome, services.repo.get(record.id))
