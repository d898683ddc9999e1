"""
Casos de uso para jobs de resync, reprocess e import.
"""
from typing import Dict, List, Mapping, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.application.dto.sync_dto import JobCreateDTO, JobDTO, JobFiltersDTO, JobProgressDTO
from app.application.services.job_engine import (
    CrmImportSource,
    CrmRecordSource,
    JobEngine,
    RawPayloadRecordSource,
    RecordSource,
)
from app.core.config import settings
from app.infrastructure.external.lead_sync.crm_client import CrmClient
from app.shared.constants.sync_constants import JobKind, JobStatus


def build_record_sources() -> Dict[JobKind, RecordSource]:
    """
    Origenes disponibles segun la configuracion.
    Sin CRM_BASE_URL solo se puede reprocesar desde raw; resync e import
    necesitan el CRM.
    """
    sources: Dict[JobKind, RecordSource] = {JobKind.REPROCESS: RawPayloadRecordSource()}
    if settings.CRM_BASE_URL:
        client = CrmClient(
            settings.CRM_BASE_URL,
            timeout_s=settings.CRM_TIMEOUT_SECONDS,
            max_retries=settings.CRM_MAX_RETRIES,
        )
        sources[JobKind.RESYNC] = CrmRecordSource(client, delay_seconds=settings.CRM_RATE_LIMIT_DELAY_SECONDS)
        sources[JobKind.IMPORT] = CrmImportSource(client)
    return sources


class SyncJobUseCases:
    """
    Superficie de control de jobs: crear, procesar, pausar, reanudar,
    cancelar, consultar, listar, borrar y editar filtros.
    """

    def __init__(self, db: AsyncSession, sources: Optional[Mapping[JobKind, RecordSource]] = None):
        self.db = db
        self.engine = JobEngine(
            db,
            sources if sources is not None else build_record_sources(),
            default_batch_size=settings.JOB_DEFAULT_BATCH_SIZE,
            max_batch_size=settings.JOB_MAX_BATCH_SIZE,
            lease_seconds=settings.JOB_LEASE_SECONDS,
            error_details_limit=settings.JOB_ERROR_DETAILS_LIMIT,
            local_table=settings.LEADS_TABLE,
        )

    async def create_job(self, dto: JobCreateDTO) -> JobDTO:
        job = await self.engine.create(
            dto.kind,
            filters=dto.filters.to_criteria() if dto.filters else None,
            batch_size=dto.batch_size,
            created_by=dto.created_by,
        )
        return JobDTO.model_validate(job)

    async def process_job(self, job_id: str) -> JobProgressDTO:
        progress = await self.engine.process(job_id)
        return JobProgressDTO.model_validate(progress)

    async def pause_job(self, job_id: str) -> JobDTO:
        return JobDTO.model_validate(await self.engine.pause(job_id))

    async def resume_job(self, job_id: str) -> JobDTO:
        return JobDTO.model_validate(await self.engine.resume(job_id))

    async def cancel_job(self, job_id: str) -> JobDTO:
        return JobDTO.model_validate(await self.engine.cancel(job_id))

    async def get_job(self, job_id: str) -> JobDTO:
        return JobDTO.model_validate(await self.engine.status(job_id))

    async def list_jobs(self, limit: int = 20, status: Optional[JobStatus] = None) -> List[JobDTO]:
        jobs = await self.engine.list_recent(limit, status)
        return [JobDTO.model_validate(job) for job in jobs]

    async def delete_job(self, job_id: str) -> None:
        await self.engine.delete(job_id)

    async def update_filters(self, job_id: str, filters: JobFiltersDTO) -> JobDTO:
        job = await self.engine.update_filters(job_id, filters.to_criteria())
        return JobDTO.model_validate(job)
