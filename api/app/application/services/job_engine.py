"""
Motor de jobs batch (resync, reprocess, import) con checkpoint.

Un job recorre los leads que cumplen sus filtros en orden de id, un batch
por invocacion. No hay loop en memoria: un scheduler externo (o la API)
llama a process() hasta que el job termina.

- resync: trae cada lead del CRM upstream (con delay fijo entre llamadas)
- reprocess: re-deriva los valores desde el payload raw guardado
- import: recorre el listado del CRM e inserta los leads que faltan localmente

Cada batch renueva el lease por registro y persiste el progreso solo si
el worker sigue siendo duenio del job y el cursor no cambio desde la lectura.
Si el CRM no responde el batch se corta en ese lead y el job sigue running.
"""
import asyncio
import os
import socket
import uuid
from itertools import islice
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.application.services.field_mapping_engine import apply_mappings
from app.domain.entities.sync import JobProgress, MappingRule
from app.infrastructure.database.models import SyncJobModel
from app.infrastructure.external.lead_sync.crm_client import CrmClient
from app.infrastructure.repositories.field_mapping_repository import FieldMappingRepository
from app.infrastructure.repositories.lead_repository import (
    LeadRepository,
    filter_columns,
    normalize_filters,
)
from app.infrastructure.repositories.sync_job_repository import SyncJobRepository
from app.infrastructure.repositories.sync_log_repository import SyncLogRepository
from app.shared.constants.sync_constants import (
    ACTIVE_JOB_STATUSES,
    JobKind,
    JobStatus,
    MappingScope,
)
from app.shared.exceptions.domain import (
    InvalidJobTransitionException,
    JobNotFoundException,
    ValidationException,
)
from app.shared.exceptions.sync import (
    PermanentValidationError,
    SyncConfigurationError,
    TransientRemoteError,
)
from app.shared.utils.datetime_utils import DateTimeUtils
from app.shared.utils.error_sanitizer import describe_exception

LOG_ENDPOINT = "sync_jobs"

JOB_DIRECTIONS = {
    JobKind.RESYNC: "resync:crm->local",
    JobKind.REPROCESS: "reprocess:raw->local",
    JobKind.IMPORT: "import:crm->local",
}


class RecordSource(Protocol):
    """Origen de los valores autoritativos de un lead."""

    stores_raw: bool
    imports_missing: bool

    async def next_batch(
        self,
        leads: LeadRepository,
        after_id: Optional[int],
        limit: int,
        criteria: Mapping[str, Any],
    ) -> List[Dict[str, Any]]:
        ...

    async def fetch(self, lead: Mapping[str, Any]) -> Dict[str, Any]:
        ...


class LocalLeadSource:
    """Recorre los leads locales que cumplen los filtros del job."""

    stores_raw = False
    imports_missing = False

    async def next_batch(
        self,
        leads: LeadRepository,
        after_id: Optional[int],
        limit: int,
        criteria: Mapping[str, Any],
    ) -> List[Dict[str, Any]]:
        return await leads.fetch_batch(after_id, limit, criteria)


class CrmRecordSource(LocalLeadSource):
    """Lee cada lead del CRM (crm.lead.get) respetando el rate limit."""

    stores_raw = True

    def __init__(self, client: CrmClient, delay_seconds: float = 0.5):
        self.client = client
        self.delay_seconds = delay_seconds

    async def fetch(self, lead: Mapping[str, Any]) -> Dict[str, Any]:
        if self.delay_seconds > 0:
            await asyncio.sleep(self.delay_seconds)
        record = await asyncio.to_thread(self.client.get_lead, lead["id"])
        return record.fields


class RawPayloadRecordSource(LocalLeadSource):
    """Re-deriva los valores desde la columna raw del lead."""

    async def fetch(self, lead: Mapping[str, Any]) -> Dict[str, Any]:
        raw = lead.get("raw")
        if not raw or not isinstance(raw, dict):
            raise PermanentValidationError(f"Lead {lead['id']} sin payload raw para reprocesar")
        return raw


class CrmImportSource:
    """
    Recorre crm.lead.list por ID ascendente para importar los leads que
    faltan en la base local. El cursor del job es el ultimo ID del CRM visto.
    """

    stores_raw = True
    imports_missing = True

    def __init__(self, client: CrmClient, select: Sequence[str] = ("*", "UF_*")):
        self.client = client
        self.select = tuple(select)

    async def next_batch(
        self,
        leads: LeadRepository,
        after_id: Optional[int],
        limit: int,
        criteria: Mapping[str, Any],
    ) -> List[Dict[str, Any]]:
        items = await asyncio.to_thread(self._list_after, after_id or 0, limit)
        return [{"id": int(item["ID"]), "raw": item} for item in items]

    def _list_after(self, after_id: int, limit: int) -> List[Dict[str, Any]]:
        params = [("order[ID]", "ASC"), ("filter[>ID]", after_id)]
        params += [("select[]", field) for field in self.select]
        return list(islice(self.client.iter_list("crm.lead.list", params=params), limit))

    async def fetch(self, lead: Mapping[str, Any]) -> Dict[str, Any]:
        return dict(lead["raw"])


def _worker_id() -> str:
    return f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"


def _progress(job: SyncJobModel, batch_processed: int, has_more: bool) -> JobProgress:
    return JobProgress(
        job_id=job.id,
        status=job.status,
        processed_count=job.processed_count,
        total_count=job.total_count,
        updated_count=job.updated_count,
        skipped_count=job.skipped_count,
        error_count=job.error_count,
        cursor=job.cursor,
        batch_processed=batch_processed,
        has_more=has_more,
    )


class JobEngine:
    """
    Ciclo de vida de los jobs batch.

    Transiciones:
        pending -> running -> completed
        running <-> paused
        pending | running | paused -> cancelled
        running -> failed (error de configuracion)
    """

    def __init__(
        self,
        db: AsyncSession,
        sources: Mapping[JobKind, RecordSource],
        *,
        default_batch_size: int = 50,
        max_batch_size: int = 500,
        lease_seconds: int = 300,
        error_details_limit: int = 100,
        local_table: str = "leads",
        worker_id: Optional[str] = None,
    ):
        self.db = db
        self.sources = dict(sources)
        self.default_batch_size = default_batch_size
        self.max_batch_size = max_batch_size
        self.lease_seconds = lease_seconds
        self.error_details_limit = error_details_limit
        self.worker_id = worker_id or _worker_id()

        self.jobs = SyncJobRepository(db)
        self.leads = LeadRepository(db, local_table)
        self.mappings = FieldMappingRepository(db)
        self.logs = SyncLogRepository(db)

    # ------------------------------------------------------------------
    # Creacion y consultas
    # ------------------------------------------------------------------

    async def create(
        self,
        kind: JobKind,
        filters: Optional[Mapping[str, Any]] = None,
        batch_size: Optional[int] = None,
        created_by: Optional[str] = None,
    ) -> SyncJobModel:
        """Crea un job pending con el total calculado con los mismos filtros del batch."""
        kind = JobKind(kind)
        if kind not in self.sources:
            raise SyncConfigurationError(f"No hay origen configurado para jobs '{kind.value}'")
        batch_size = batch_size or self.default_batch_size
        if batch_size < 1 or batch_size > self.max_batch_size:
            raise ValidationException(
                f"batch_size debe estar entre 1 y {self.max_batch_size}", field="batch_size"
            )

        criteria, total = await self._criteria_and_total(kind, filters)

        job = await self.jobs.add(SyncJobModel(
            id=str(uuid.uuid4()),
            kind=kind.value,
            status=JobStatus.PENDING.value,
            total_count=total,
            batch_size=batch_size,
            filter_criteria=criteria,
            error_details=[],
            created_by=created_by,
            created_at=DateTimeUtils.now_utc(),
        ))
        await self.db.commit()
        logger.info(f"Job {kind.value} {job.id} creado: {total} leads, batch {batch_size}")
        return job

    async def status(self, job_id: str) -> SyncJobModel:
        job = await self.jobs.get(job_id)
        if not job:
            raise JobNotFoundException(job_id)
        return job

    async def list_recent(self, limit: int = 20, status: Optional[JobStatus] = None) -> List[SyncJobModel]:
        return await self.jobs.list_recent(limit, status)

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    async def pause(self, job_id: str) -> SyncJobModel:
        return await self._control(
            job_id, "pause", [JobStatus.PENDING, JobStatus.RUNNING], JobStatus.PAUSED,
            paused_at=DateTimeUtils.now_utc(),
        )

    async def resume(self, job_id: str) -> SyncJobModel:
        return await self._control(
            job_id, "resume", [JobStatus.PAUSED], JobStatus.RUNNING, paused_at=None,
        )

    async def cancel(self, job_id: str) -> SyncJobModel:
        now = DateTimeUtils.now_utc()
        return await self._control(
            job_id, "cancel", [JobStatus.PENDING, JobStatus.RUNNING, JobStatus.PAUSED], JobStatus.CANCELLED,
            cancelled_at=now, completed_at=now, locked_by=None, locked_until=None,
        )

    async def delete(self, job_id: str) -> None:
        """Borra un job que no esta activo (pending/running)."""
        job = await self.status(job_id)
        deletable = [s for s in JobStatus if s not in ACTIVE_JOB_STATUSES]
        if not await self.jobs.delete(job_id, deletable):
            raise InvalidJobTransitionException(job_id, job.status, "delete")
        await self.db.commit()
        logger.info(f"Job {job_id} eliminado")

    async def update_filters(self, job_id: str, filters: Optional[Mapping[str, Any]]) -> SyncJobModel:
        """Los filtros solo cambian mientras el job no empezo; el total se recalcula."""
        job = await self.status(job_id)
        if job.status != JobStatus.PENDING.value:
            raise InvalidJobTransitionException(job_id, job.status, "update_filters")

        criteria, total = await self._criteria_and_total(JobKind(job.kind), filters)
        if not await self.jobs.update_fields(
            job_id, [JobStatus.PENDING],
            filter_criteria=criteria, total_count=total, updated_at=DateTimeUtils.now_utc(),
        ):
            current = await self.status(job_id)
            raise InvalidJobTransitionException(job_id, current.status, "update_filters")
        await self.db.commit()
        return await self.status(job_id)

    async def _control(self, job_id: str, action: str, from_statuses, to_status: JobStatus, **values) -> SyncJobModel:
        job = await self.status(job_id)
        if not await self.jobs.transition(job_id, from_statuses, to_status, **values):
            raise InvalidJobTransitionException(job_id, job.status, action)
        await self.db.commit()
        logger.info(f"Job {job_id}: {job.status} -> {to_status.value}")
        return await self.status(job_id)

    async def _criteria_and_total(self, kind: JobKind, filters: Optional[Mapping[str, Any]]):
        """Filtros validados y total de leads. Los jobs import no filtran y su total es desconocido (0)."""
        if kind is JobKind.IMPORT:
            if normalize_filters(filters):
                raise ValidationException("Los jobs import no aceptan filtros", field="filter_criteria")
            return {}, 0
        criteria = await self._validated_filters(filters)
        return criteria, await self.leads.count(criteria)

    async def _validated_filters(self, filters: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
        criteria = normalize_filters(filters)
        columns = filter_columns(criteria)
        if columns:
            live = {col.name for col in await self.leads.list_columns()}
            unknown = sorted(set(columns) - live)
            if unknown:
                raise ValidationException(
                    f"Columnas de filtro inexistentes: {', '.join(unknown)}", field="filter_criteria"
                )
        return criteria

    # ------------------------------------------------------------------
    # Procesamiento
    # ------------------------------------------------------------------

    async def process(self, job_id: str) -> JobProgress:
        """
        Procesa el siguiente batch del job.

        Raises:
            JobNotFoundException: el job no existe
            SyncConfigurationError: faltan mapeos batch o columnas destino (el job queda failed)
            TransientRemoteError: el origen no responde (el job sigue running desde el ultimo lead hecho)
        """
        job = await self.status(job_id)

        if job.status == JobStatus.PENDING.value:
            await self.jobs.transition(job_id, [JobStatus.PENDING], JobStatus.RUNNING, started_at=DateTimeUtils.now_utc())
            await self.db.commit()
            job = await self.status(job_id)

        if job.status != JobStatus.RUNNING.value:
            return _progress(job, 0, False)

        if not await self.jobs.claim_lease(job_id, self.worker_id, DateTimeUtils.now_utc(), self.lease_seconds):
            await self.db.commit()
            logger.info(f"Job {job_id} en proceso por otra invocacion")
            return _progress(job, 0, True)
        await self.db.commit()

        try:
            return await self._process_batch(job_id)
        finally:
            await self.jobs.release_lease(job_id, self.worker_id)
            await self.db.commit()

    async def _process_batch(self, job_id: str) -> JobProgress:
        job = await self.status(job_id)
        kind = JobKind(job.kind)
        cursor = job.cursor
        batch_size = job.batch_size
        criteria = dict(job.filter_criteria or {})
        previous_errors = list(job.error_details or [])
        counters = {
            "processed_count": job.processed_count,
            "updated_count": job.updated_count,
            "skipped_count": job.skipped_count,
            "error_count": job.error_count,
        }
        current_batch = (job.current_batch or 0) + 1

        rules = await self._batch_rules(job_id, previous_errors)
        source = self.sources.get(kind)
        if source is None:
            await self._fail(job_id, previous_errors, f"No hay origen configurado para jobs '{kind.value}'")
            raise SyncConfigurationError(f"No hay origen configurado para jobs '{kind.value}'")

        started_at = DateTimeUtils.now_utc()
        batch = await source.next_batch(self.leads, cursor, batch_size, criteria)
        logger.info(f"Job {job_id} batch {current_batch}: {len(batch)} leads despues de {cursor}")

        done: List[Dict[str, Any]] = []
        new_errors: List[Dict[str, Any]] = []
        interrupted: Optional[TransientRemoteError] = None
        for lead in batch:
            if not await self._renew_lease(job_id):
                logger.warning(f"Job {job_id}: lease perdido en el lead {lead['id']}, se descarta el batch")
                job = await self.status(job_id)
                return _progress(job, 0, job.status == JobStatus.RUNNING.value)
            try:
                updated = await self._process_record(lead, source, rules)
                await self.db.commit()
            except TransientRemoteError as e:
                # El origen no responde: el lead se reintenta en la proxima invocacion
                await self.db.rollback()
                interrupted = e
                logger.error(f"Job {job_id} interrumpido en el lead {lead['id']}: {describe_exception(e)}")
                break
            except SQLAlchemyError as e:
                await self.db.rollback()
                new_errors.append(self._record_error(lead["id"], e))
            except Exception as e:
                new_errors.append(self._record_error(lead["id"], e))
                await self._mark_lead_error(lead["id"], new_errors[-1])
            else:
                counters["updated_count" if updated else "skipped_count"] += 1
            done.append(lead)

        counters["processed_count"] += len(done)
        counters["error_count"] += len(new_errors)
        error_details = (previous_errors + new_errors)[-self.error_details_limit:]
        now = DateTimeUtils.now_utc()

        values: Dict[str, Any] = dict(counters, error_details=error_details, current_batch=current_batch, updated_at=now)
        if done:
            values["cursor"] = done[-1]["id"]
        if not await self.jobs.save_progress(job_id, self.worker_id, cursor, **values):
            await self.db.rollback()
            logger.warning(f"Job {job_id}: progreso del batch {current_batch} descartado, el job cambio de duenio")
            job = await self.status(job_id)
            return _progress(job, 0, job.status == JobStatus.RUNNING.value)

        has_more = interrupted is not None or len(batch) == batch_size
        if not has_more:
            if await self.jobs.transition(job_id, [JobStatus.RUNNING], JobStatus.COMPLETED, completed_at=now):
                logger.success(f"Job {job_id} completado: {counters['processed_count']} leads procesados")

        metadata: Dict[str, Any] = {"job_id": job_id, "batch": current_batch}
        if interrupted is not None:
            metadata["interrupted"] = describe_exception(interrupted)
        await self.logs.add_summary(
            source=LOG_ENDPOINT,
            direction=JOB_DIRECTIONS[kind],
            succeeded=len(done) - len(new_errors),
            failed=len(new_errors),
            skipped=0,
            started_at=started_at,
            completed_at=now,
            processing_time_ms=int((now - started_at).total_seconds() * 1000),
            metadata=metadata,
        )
        for error in new_errors:
            await self.logs.add_detailed(
                endpoint=LOG_ENDPOINT,
                table_name=self.leads.table_name,
                record_id=str(error["row_id"]),
                status="failed",
                error_message=error["error"],
                metadata={"job_id": job_id},
            )
        await self.db.commit()

        if interrupted is not None:
            raise TransientRemoteError(
                f"Job {job_id} interrumpido: {interrupted.message}",
                details={"job_id": job_id, "row_id": batch[len(done)]["id"]},
            )

        job = await self.status(job_id)
        return _progress(job, len(done), has_more and job.status == JobStatus.RUNNING.value)

    async def _renew_lease(self, job_id: str) -> bool:
        renewed = await self.jobs.renew_lease(job_id, self.worker_id, DateTimeUtils.now_utc(), self.lease_seconds)
        await self.db.commit()
        return renewed

    async def _batch_rules(self, job_id: str, previous_errors: List[Dict[str, Any]]) -> List[MappingRule]:
        """Mapeos batch activos cuyas columnas destino existen; si no, el job falla."""
        rules = await self.mappings.active_rules(MappingScope.BATCH)
        if not rules:
            await self._fail(job_id, previous_errors, "No hay mapeos batch activos configurados")
            raise SyncConfigurationError("No hay mapeos batch activos configurados")

        live = {col.name for col in await self.leads.list_columns()}
        missing = sorted({rule.target_field for rule in rules} - live)
        if missing:
            message = f"Columnas destino inexistentes: {', '.join(missing)}"
            await self._fail(job_id, previous_errors, message)
            raise SyncConfigurationError(message, details={"columns": missing})
        return rules

    async def _fail(self, job_id: str, previous_errors: List[Dict[str, Any]], message: str) -> None:
        now = DateTimeUtils.now_utc()
        error = {"row_id": None, "error": message, "timestamp": now.isoformat()}
        await self.jobs.transition(
            job_id, [JobStatus.RUNNING], JobStatus.FAILED,
            completed_at=now,
            error_details=(previous_errors + [error])[-self.error_details_limit:],
        )
        await self.db.commit()
        logger.error(f"Job {job_id} fallido: {message}")

    async def _process_record(self, lead: Mapping[str, Any], source: RecordSource, rules: List[MappingRule]) -> bool:
        """
        Actualiza un lead con los valores del origen, o lo inserta en jobs import.

        Returns:
            bool: False si no hubo nada que escribir (o el lead ya existia en un import)
        """
        if source.imports_missing and await self.leads.get_values(lead["id"], []) is not None:
            return False

        payload = await source.fetch(lead)
        shaped = apply_mappings(payload, rules)
        values: Dict[str, Any] = {k: v.to_python() for k, v in shaped.items() if k != "id"}
        now = DateTimeUtils.now_utc()

        if source.imports_missing:
            values.setdefault("created_at", now)
            values.update(id=lead["id"], raw=payload, last_sync_at=now, sync_status="synced", has_sync_errors=False)
            await self.leads.insert(values)
            return True

        if not values:
            return False

        values.update(
            last_sync_at=now,
            sync_status="synced",
            sync_errors=None,
            has_sync_errors=False,
        )
        if source.stores_raw:
            values["raw"] = payload
        return await self.leads.update_fields(lead["id"], values)

    def _record_error(self, row_id: Any, error: Exception) -> Dict[str, Any]:
        message = describe_exception(error)
        logger.error(f"Lead {row_id}: {message}")
        return {"row_id": row_id, "error": message, "timestamp": DateTimeUtils.now_utc().isoformat()}

    async def _mark_lead_error(self, row_id: Any, error: Dict[str, Any]) -> None:
        """Deja el error en el lead; si no se puede escribir, solo se registra en el job."""
        try:
            await self.leads.update_fields(row_id, {
                "sync_status": "error",
                "sync_errors": error,
                "has_sync_errors": True,
            })
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.warning(f"No se pudo registrar el error en el lead {row_id}: {e}")
