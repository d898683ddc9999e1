"""
Endpoints del pipeline de sincronizacion de leads.

Cada endpoint ejecuta una unidad de trabajo acotada (un batch de la cola,
un batch de un job, una reconciliacion). El scheduler externo o la UI los
invocan repetidamente; no se lanzan tareas en segundo plano.
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Response, status
from loguru import logger

from app.api.v1.dependencies.use_case_deps import (
    get_mapping_use_cases,
    get_schema_use_cases,
    get_sync_job_use_cases,
    get_sync_log_use_cases,
    get_sync_queue_use_cases,
)
from app.application.dto.sync_dto import (
    DiagnosticsReportDTO,
    JobCreateDTO,
    JobDTO,
    JobFiltersDTO,
    JobProgressDTO,
    MappingCreateDTO,
    MappingDTO,
    MappingSuggestionsDTO,
    MappingValidateRequestDTO,
    MappingValidationDTO,
    QueueRunResultDTO,
    QueueStatusDTO,
    ReconcileRequestDTO,
    ReconcileResultDTO,
    SyncLogDetailDTO,
    SyncLogSummaryDTO,
)
from app.application.use_cases.sync_job_use_cases import SyncJobUseCases
from app.application.use_cases.sync_use_cases import (
    MappingUseCases,
    SchemaUseCases,
    SyncLogUseCases,
    SyncQueueUseCases,
)
from app.shared.constants.sync_constants import JobStatus, MappingScope


router = APIRouter(prefix="/sync", tags=["Sync"])


# ----------------------------------------------------------------------
# Jobs de resync/reprocess
# ----------------------------------------------------------------------

@router.post(
    "/jobs",
    response_model=JobDTO,
    status_code=status.HTTP_201_CREATED,
    summary="Crear job de resync/reprocess"
)
async def create_job(
    dto: JobCreateDTO,
    use_cases: SyncJobUseCases = Depends(get_sync_job_use_cases)
) -> JobDTO:
    """
    Crea un job en estado pending.

    El total se calcula con los mismos filtros que usara cada batch.
    """
    return await use_cases.create_job(dto)


@router.get("/jobs", response_model=List[JobDTO], summary="Listar jobs recientes")
async def list_jobs(
    limit: int = Query(20, ge=1, le=200),
    job_status: Optional[JobStatus] = Query(None, alias="status"),
    use_cases: SyncJobUseCases = Depends(get_sync_job_use_cases)
) -> List[JobDTO]:
    return await use_cases.list_jobs(limit, job_status)


@router.get("/jobs/{job_id}", response_model=JobDTO, summary="Estado de un job")
async def get_job(
    job_id: str,
    use_cases: SyncJobUseCases = Depends(get_sync_job_use_cases)
) -> JobDTO:
    return await use_cases.get_job(job_id)


@router.post("/jobs/{job_id}/process", response_model=JobProgressDTO, summary="Procesar el siguiente batch")
async def process_job(
    job_id: str,
    use_cases: SyncJobUseCases = Depends(get_sync_job_use_cases)
) -> JobProgressDTO:
    """
    Procesa un batch y devuelve el progreso.
    Llamar de nuevo mientras `has_more` sea true.
    """
    return await use_cases.process_job(job_id)


@router.post("/jobs/{job_id}/pause", response_model=JobDTO, summary="Pausar job")
async def pause_job(
    job_id: str,
    use_cases: SyncJobUseCases = Depends(get_sync_job_use_cases)
) -> JobDTO:
    return await use_cases.pause_job(job_id)


@router.post("/jobs/{job_id}/resume", response_model=JobDTO, summary="Reanudar job")
async def resume_job(
    job_id: str,
    use_cases: SyncJobUseCases = Depends(get_sync_job_use_cases)
) -> JobDTO:
    return await use_cases.resume_job(job_id)


@router.post("/jobs/{job_id}/cancel", response_model=JobDTO, summary="Cancelar job")
async def cancel_job(
    job_id: str,
    use_cases: SyncJobUseCases = Depends(get_sync_job_use_cases)
) -> JobDTO:
    return await use_cases.cancel_job(job_id)


@router.put("/jobs/{job_id}/filters", response_model=JobDTO, summary="Editar filtros de un job pending")
async def update_job_filters(
    job_id: str,
    filters: JobFiltersDTO,
    use_cases: SyncJobUseCases = Depends(get_sync_job_use_cases)
) -> JobDTO:
    """Solo se permite antes del primer batch; despues los filtros son inmutables."""
    return await use_cases.update_filters(job_id, filters)


@router.delete("/jobs/{job_id}", status_code=status.HTTP_204_NO_CONTENT, summary="Eliminar job inactivo")
async def delete_job(
    job_id: str,
    use_cases: SyncJobUseCases = Depends(get_sync_job_use_cases)
) -> Response:
    await use_cases.delete_job(job_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ----------------------------------------------------------------------
# Cola, logs y schema
# ----------------------------------------------------------------------

@router.post("/queue/process", response_model=QueueRunResultDTO, summary="Procesar un batch de la cola")
async def process_queue(
    use_cases: SyncQueueUseCases = Depends(get_sync_queue_use_cases)
) -> QueueRunResultDTO:
    logger.info("Procesamiento de cola solicitado desde API")
    return await use_cases.process_queue()


@router.get("/queue", response_model=QueueStatusDTO, summary="Estado de la cola")
async def queue_status(
    use_cases: SyncQueueUseCases = Depends(get_sync_queue_use_cases)
) -> QueueStatusDTO:
    return await use_cases.queue_status()


@router.get("/logs", response_model=List[SyncLogSummaryDTO], summary="Ultimas corridas de sincronizacion")
async def list_sync_logs(
    limit: int = Query(20, ge=1, le=200),
    use_cases: SyncLogUseCases = Depends(get_sync_log_use_cases)
) -> List[SyncLogSummaryDTO]:
    return await use_cases.summaries(limit)


@router.get("/logs/{endpoint}", response_model=List[SyncLogDetailDTO], summary="Fallos individuales por origen")
async def list_sync_failures(
    endpoint: str,
    limit: int = Query(100, ge=1, le=500),
    use_cases: SyncLogUseCases = Depends(get_sync_log_use_cases)
) -> List[SyncLogDetailDTO]:
    """`endpoint` es el origen del log: sync_queue o sync_jobs."""
    return await use_cases.details(endpoint, limit)


@router.post("/schema/reconcile", response_model=ReconcileResultDTO, summary="Reconciliar columnas de leads")
async def reconcile_schema(
    dto: ReconcileRequestDTO,
    use_cases: SchemaUseCases = Depends(get_schema_use_cases)
) -> ReconcileResultDTO:
    """
    Agrega en el destino las columnas que faltan.

    - pull: espejo remoto -> base local
    - push: base local -> espejo remoto
    - dry_run: devuelve el SQL sin ejecutarlo
    """
    return await use_cases.reconcile(dto)


# ----------------------------------------------------------------------
# Mapeos y diagnostico
# ----------------------------------------------------------------------

@router.get("/mappings", response_model=List[MappingDTO], summary="Listar mapeos")
async def list_mappings(
    scope: Optional[MappingScope] = Query(None),
    active_only: bool = Query(False),
    use_cases: MappingUseCases = Depends(get_mapping_use_cases)
) -> List[MappingDTO]:
    return await use_cases.list_mappings(scope, active_only)


@router.post("/mappings", response_model=MappingDTO, status_code=status.HTTP_201_CREATED, summary="Crear mapeo")
async def create_mapping(
    dto: MappingCreateDTO,
    use_cases: MappingUseCases = Depends(get_mapping_use_cases)
) -> MappingDTO:
    return await use_cases.create_mapping(dto)


@router.post("/mappings/validate", response_model=MappingValidationDTO, summary="Validar tipos de un mapeo")
async def validate_mapping(
    dto: MappingValidateRequestDTO,
    use_cases: MappingUseCases = Depends(get_mapping_use_cases)
) -> MappingValidationDTO:
    return use_cases.validate(dto)


@router.get("/mappings/suggestions", response_model=MappingSuggestionsDTO, summary="Sugerir mapeos desde el CRM")
async def mapping_suggestions(
    scope: MappingScope = Query(MappingScope.BATCH),
    use_cases: MappingUseCases = Depends(get_mapping_use_cases)
) -> MappingSuggestionsDTO:
    return await use_cases.suggestions(scope)


@router.get("/mappings/{mapping_id}", response_model=MappingDTO, summary="Obtener mapeo")
async def get_mapping(
    mapping_id: int,
    use_cases: MappingUseCases = Depends(get_mapping_use_cases)
) -> MappingDTO:
    return await use_cases.get_mapping(mapping_id)


@router.post("/mappings/{mapping_id}/activate", response_model=MappingValidationDTO, summary="Activar mapeo")
async def activate_mapping(
    mapping_id: int,
    use_cases: MappingUseCases = Depends(get_mapping_use_cases)
) -> MappingValidationDTO:
    """Rechaza tipos incompatibles sin transformacion y destinos ya mapeados en el scope."""
    return await use_cases.activate(mapping_id)


@router.post("/mappings/{mapping_id}/deactivate", response_model=MappingDTO, summary="Desactivar mapeo")
async def deactivate_mapping(
    mapping_id: int,
    use_cases: MappingUseCases = Depends(get_mapping_use_cases)
) -> MappingDTO:
    return await use_cases.deactivate(mapping_id)


@router.get("/diagnostics", response_model=DiagnosticsReportDTO, summary="Diagnostico de mapeos")
async def run_diagnostics(
    use_cases: MappingUseCases = Depends(get_mapping_use_cases)
) -> DiagnosticsReportDTO:
    """Reporte de solo lectura: duplicados, divergencias y columnas sin mapeo."""
    return await use_cases.diagnostics()
