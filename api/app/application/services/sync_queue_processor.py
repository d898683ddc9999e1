"""
Procesador de la cola de sincronizacion (local -> espejo remoto).

Cada invocacion es independiente: toma hasta N eventos elegibles, los
aplica de forma idempotente en el espejo y deja registro de la corrida.

Garantias:
- at-least-once: un evento solo sale de pending al completarse o agotar reintentos
- idempotencia: el remoto se escribe con upsert/delete por id
- last-write-wins por timestamp: una version vieja nunca pisa una nueva
"""
import asyncio
import time
from datetime import datetime, timedelta
from typing import Any, Awaitable, Dict, List, Mapping, Optional, TypeVar

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.application.services.field_mapping_engine import apply_mappings
from app.application.services.schema_reconciler import SchemaReconciler
from app.domain.entities.sync import MappingRule, QueueRunResult
from app.infrastructure.database.models import ChangeEventModel
from app.infrastructure.external.lead_sync.types import RemoteMirror, SchemaTarget
from app.infrastructure.repositories.change_event_repository import ChangeEventRepository
from app.infrastructure.repositories.field_mapping_repository import FieldMappingRepository
from app.infrastructure.repositories.lead_repository import LeadRepository
from app.infrastructure.repositories.sync_log_repository import SyncLogRepository
from app.shared.constants.sync_constants import (
    ANNOTATION_SKIPPED_OLDER,
    ANNOTATION_SKIPPED_SELF_SYNC,
    CONFLICT_TIMESTAMP_FIELDS,
    ChangeOperation,
    MappingScope,
    SchemaDirection,
)
from app.shared.exceptions.sync import (
    PermanentValidationError,
    SchemaMismatchError,
    SchemaReconciliationError,
    SyncConfigurationError,
    TransientRemoteError,
)
from app.shared.utils.datetime_utils import DateTimeUtils
from app.shared.utils.error_sanitizer import describe_exception

T = TypeVar("T")

LOG_ENDPOINT = "sync_queue"


def conflict_timestamp(payload: Mapping[str, Any]) -> datetime:
    """
    Timestamp de la version entrante: el primero presente entre
    updated_at, updated, modificado, criado.

    Raises:
        PermanentValidationError: ningun campo presente o interpretable
    """
    for name in CONFLICT_TIMESTAMP_FIELDS:
        raw = payload.get(name)
        if raw in (None, ""):
            continue
        parsed = DateTimeUtils.parse_timestamp(raw)
        if parsed is None:
            raise PermanentValidationError(f"Timestamp invalido en '{name}': {raw}", field=name)
        return parsed
    raise PermanentValidationError(
        f"El payload no tiene timestamp de version ({', '.join(CONFLICT_TIMESTAMP_FIELDS)})"
    )


def backoff_delay(retry_count: int, base_seconds: float, max_seconds: float) -> float:
    """Espera exponencial: base * 2^(retry_count - 1), con techo."""
    if retry_count < 1:
        return 0.0
    return min(max_seconds, base_seconds * (2 ** (retry_count - 1)))


class SyncQueueProcessor:
    """
    Drena change_events hacia el espejo remoto.

    Errores de corrida (no poder leer la cola, sin mapeos realtime,
    reconciliacion fallida) se propagan. Los errores de un evento quedan
    aislados en ese evento.
    """

    def __init__(
        self,
        db: AsyncSession,
        mirror: RemoteMirror,
        *,
        schema_target: Optional[SchemaTarget] = None,
        source_system: str = "gestao",
        destination_system: str = "tabulador",
        batch_size: int = 100,
        max_retries: int = 5,
        backoff_base_seconds: float = 30.0,
        backoff_max_seconds: float = 3600.0,
        call_timeout_seconds: float = 15.0,
        remote_schema: str = "public",
        remote_table: str = "leads",
        local_table: str = "leads",
    ):
        self.db = db
        self.mirror = mirror
        self.schema_target = schema_target
        self.source_system = source_system
        self.destination_system = destination_system
        self.batch_size = batch_size
        self.max_retries = max_retries
        self.backoff_base_seconds = backoff_base_seconds
        self.backoff_max_seconds = backoff_max_seconds
        self.call_timeout_seconds = call_timeout_seconds
        self.remote_schema = remote_schema
        self.remote_table = remote_table

        self.events = ChangeEventRepository(db)
        self.mappings = FieldMappingRepository(db)
        self.leads = LeadRepository(db, local_table)
        self.logs = SyncLogRepository(db)

    async def run(self) -> QueueRunResult:
        """Procesa un batch de la cola y persiste el resumen de la corrida."""
        result = QueueRunResult(started_at=DateTimeUtils.now_utc())

        events = await self.events.fetch_pending(self.batch_size, self.max_retries, result.started_at)
        if not events:
            logger.info("Cola de sincronizacion vacia")
            result.completed_at = DateTimeUtils.now_utc()
            return result

        rules = await self.mappings.active_rules(MappingScope.REALTIME)
        if not rules:
            raise SyncConfigurationError("No hay mapeos realtime activos configurados")

        logger.info(f"Procesando {len(events)} eventos de la cola ({self.source_system} -> {self.destination_system})")
        failures: List[Dict[str, Any]] = []

        # Se relee cada evento: un rollback de la marca processing expira la sesion
        for event_id in [event.id for event in events]:
            event = await self.events.get(event_id)
            failure = await self._process_event(event, rules, result)
            if failure:
                failures.append(failure)
            await self.db.commit()

        result.completed_at = DateTimeUtils.now_utc()
        await self._write_logs(result, failures)
        await self.db.commit()

        logger.success(
            f"Cola procesada: {result.succeeded} ok, {result.skipped} omitidos, "
            f"{result.retried} reintentos, {result.failed} fallidos"
        )
        return result

    async def _process_event(
        self,
        event: ChangeEventModel,
        rules: List[MappingRule],
        result: QueueRunResult,
    ) -> Optional[Dict[str, Any]]:
        result.processed += 1
        await self._mark_processing(event)

        started = time.monotonic()
        try:
            annotation = await self._apply(event, rules)
        except (SyncConfigurationError, SchemaReconciliationError):
            raise
        except Exception as e:
            return await self._handle_failure(event, e, result, _elapsed_ms(started))

        now = DateTimeUtils.now_utc()
        await self.events.mark_completed(event, annotation=annotation, now=now)
        if annotation:
            result.skipped += 1
            logger.info(f"Evento {event.id} ({event.target_row_id}) {annotation}")
            return None

        result.succeeded += 1
        if event.operation != ChangeOperation.DELETE.value and str(event.target_row_id).isdigit():
            await self.leads.mark_synced(int(event.target_row_id), self.source_system, now)
        return None

    async def _mark_processing(self, event: ChangeEventModel) -> None:
        """Marca informativa: si falla, el evento se procesa igual."""
        try:
            await self.events.mark_processing(event)
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            await self.db.refresh(event)
            logger.warning(f"No se pudo marcar el evento {event.id} como processing: {e}")

    async def _apply(self, event: ChangeEventModel, rules: List[MappingRule]) -> Optional[str]:
        """
        Aplica el evento en el espejo remoto.

        Returns:
            Optional[str]: anotacion cuando el resultado es una omision deliberada
        """
        if event.origin and event.origin == self.destination_system:
            return ANNOTATION_SKIPPED_SELF_SYNC

        try:
            operation = ChangeOperation(event.operation)
        except ValueError:
            raise PermanentValidationError(f"Operacion desconocida: '{event.operation}'")

        row_id = str(event.target_row_id)
        if operation is ChangeOperation.DELETE:
            await self._remote(self.mirror.delete(row_id), "delete")
            return None

        payload = event.payload or {}
        incoming = conflict_timestamp(payload)
        shaped = apply_mappings(payload, rules)
        values = {name: value.to_python() for name, value in shaped.items()}
        values.setdefault("updated_at", incoming)
        values["sync_source"] = self.source_system

        remote_updated_at = await self._remote(self.mirror.get_updated_at(row_id), "get_updated_at")
        if remote_updated_at is not None and DateTimeUtils.ensure_utc(remote_updated_at) > incoming:
            return ANNOTATION_SKIPPED_OLDER

        try:
            await self._remote(self.mirror.upsert(row_id, values), "upsert")
        except SchemaMismatchError as e:
            if self.schema_target is None:
                raise
            logger.warning(f"Schema remoto desactualizado ({e.message}), reconciliando y reintentando")
            await self._reconcile_remote()
            await self._remote(self.mirror.upsert(row_id, values), "upsert")
        return None

    async def _reconcile_remote(self) -> None:
        local_columns = await self.leads.list_columns()
        reconciler = SchemaReconciler(self.schema_target, self.remote_schema, self.remote_table)
        await reconciler.reconcile(local_columns, SchemaDirection.PUSH)

    async def _remote(self, awaitable: Awaitable[T], what: str) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=self.call_timeout_seconds)
        except asyncio.TimeoutError as e:
            raise TransientRemoteError(f"Timeout en espejo remoto ({what})") from e

    async def _handle_failure(
        self,
        event: ChangeEventModel,
        error: Exception,
        result: QueueRunResult,
        elapsed_ms: int,
    ) -> Dict[str, Any]:
        message = describe_exception(error)
        event.retry_count = (event.retry_count or 0) + 1
        permanent = isinstance(error, PermanentValidationError)

        if permanent or event.retry_count >= self.max_retries:
            await self.events.mark_failed(event, message)
            result.failed += 1
            status = "failed"
            logger.error(f"Evento {event.id} ({event.target_row_id}) fallido tras {event.retry_count} intentos: {message}")
        else:
            delay = backoff_delay(event.retry_count, self.backoff_base_seconds, self.backoff_max_seconds)
            await self.events.mark_retry(event, message, DateTimeUtils.now_utc() + timedelta(seconds=delay))
            result.retried += 1
            status = "retry"
            logger.warning(f"Evento {event.id} ({event.target_row_id}) reintento {event.retry_count}: {message}")

        failure = {
            "event_id": event.id,
            "row_id": event.target_row_id,
            "table": event.target_table,
            "status": status,
            "error": message,
            "retry_count": event.retry_count,
            "duration_ms": elapsed_ms,
        }
        result.errors.append({k: failure[k] for k in ("event_id", "row_id", "status", "error")})
        return failure

    async def _write_logs(self, result: QueueRunResult, failures: List[Dict[str, Any]]) -> None:
        await self.logs.add_summary(
            source=LOG_ENDPOINT,
            direction=f"{self.source_system}->{self.destination_system}",
            succeeded=result.succeeded,
            failed=result.failed,
            skipped=result.skipped,
            started_at=result.started_at,
            completed_at=result.completed_at,
            processing_time_ms=result.processing_time_ms,
            metadata={"processed": result.processed, "retried": result.retried},
        )
        for failure in failures:
            await self.logs.add_detailed(
                endpoint=LOG_ENDPOINT,
                table_name=failure["table"],
                record_id=str(failure["row_id"]),
                status=failure["status"],
                error_message=failure["error"],
                execution_time_ms=failure["duration_ms"],
                metadata={"event_id": failure["event_id"], "retry_count": failure["retry_count"]},
            )


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)
