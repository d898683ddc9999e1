"""
Casos de uso del pipeline de sincronizacion: cola, logs, schema, mapeos y diagnostico.
"""
import asyncio
from typing import List, Optional

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from app.application.dto.sync_dto import (
    DiagnosticsReportDTO,
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
from app.application.services.field_mapping_engine import (
    suggest_mappings,
    suggest_transformation,
    validate_mapping,
)
from app.application.services.mapping_diagnostics import MappingDiagnostics
from app.application.services.schema_reconciler import SchemaReconciler
from app.application.services.sync_queue_processor import SyncQueueProcessor
from app.core.config import settings
from app.domain.entities.sync import ColumnDescriptor, SourceField
from app.infrastructure.external.lead_sync.crm_client import CrmClient
from app.infrastructure.external.lead_sync.postgres_target import PostgresSchemaTarget
from app.infrastructure.external.lead_sync.remote_mirror import PostgresRemoteMirror
from app.infrastructure.repositories.change_event_repository import ChangeEventRepository
from app.infrastructure.repositories.field_mapping_repository import FieldMappingRepository
from app.infrastructure.repositories.lead_repository import LeadRepository
from app.infrastructure.repositories.sync_log_repository import SyncLogRepository
from app.shared.constants.sync_constants import MappingScope, SchemaDirection
from app.shared.exceptions.domain import EntityNotFoundException
from app.shared.exceptions.sync import SyncConfigurationError


class SyncQueueUseCases:
    """Drena la cola de cambios hacia el espejo remoto."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def process_queue(self) -> QueueRunResultDTO:
        mirror = PostgresRemoteMirror(
            settings.REMOTE_DATABASE_URL,
            settings.LEADS_SCHEMA,
            settings.LEADS_TABLE,
            timeout_s=settings.REMOTE_CALL_TIMEOUT_SECONDS,
        )
        try:
            processor = SyncQueueProcessor(
                self.db,
                mirror,
                schema_target=mirror,
                source_system=settings.SYNC_SOURCE_SYSTEM,
                destination_system=settings.SYNC_DESTINATION_SYSTEM,
                batch_size=settings.SYNC_QUEUE_BATCH_SIZE,
                max_retries=settings.SYNC_MAX_RETRIES,
                backoff_base_seconds=settings.SYNC_BACKOFF_BASE_SECONDS,
                backoff_max_seconds=settings.SYNC_BACKOFF_MAX_SECONDS,
                call_timeout_seconds=settings.REMOTE_CALL_TIMEOUT_SECONDS,
                remote_schema=settings.LEADS_SCHEMA,
                remote_table=settings.LEADS_TABLE,
                local_table=settings.LEADS_TABLE,
            )
            result = await processor.run()
        finally:
            await mirror.close()
        return QueueRunResultDTO(**result.to_dict())

    async def queue_status(self) -> QueueStatusDTO:
        counts = await ChangeEventRepository(self.db).count_by_status()
        return QueueStatusDTO(**counts)


class SyncLogUseCases:
    """Lectura de los logs persistidos de sincronizacion."""

    def __init__(self, db: AsyncSession):
        self.repository = SyncLogRepository(db)

    async def summaries(self, limit: int = 20) -> List[SyncLogSummaryDTO]:
        rows = await self.repository.recent_summaries(limit)
        return [SyncLogSummaryDTO.model_validate(row) for row in rows]

    async def details(self, endpoint: str, limit: int = 100) -> List[SyncLogDetailDTO]:
        rows = await self.repository.detailed_for(endpoint, limit)
        return [SyncLogDetailDTO.model_validate(row) for row in rows]


class SchemaUseCases:
    """Reconciliacion de columnas entre la tabla local y el espejo remoto."""

    async def reconcile(self, dto: ReconcileRequestDTO) -> ReconcileResultDTO:
        schema, table = settings.LEADS_SCHEMA, settings.LEADS_TABLE
        timeout = settings.REMOTE_CALL_TIMEOUT_SECONDS
        local = PostgresSchemaTarget(settings.local_conninfo, schema, table, timeout_s=timeout, label="base local")
        remote = PostgresSchemaTarget(settings.REMOTE_DATABASE_URL, schema, table, timeout_s=timeout, label="espejo remoto")

        source, target = (remote, local) if dto.direction is SchemaDirection.PULL else (local, remote)
        try:
            columns = await source.list_columns()
            if not columns:
                raise SyncConfigurationError(f"La tabla {schema}.{table} no existe en el origen de la reconciliacion")
            result = await SchemaReconciler(target, schema, table).reconcile(columns, dto.direction, dto.dry_run)
        finally:
            await local.close()
            await remote.close()
        return ReconcileResultDTO(**result.to_dict())


class MappingUseCases:
    """Alta, validacion, activacion y sugerencias de mapeos de campos."""

    def __init__(self, db: AsyncSession, crm_client: Optional[CrmClient] = None):
        self.db = db
        self.repository = FieldMappingRepository(db)
        self.leads = LeadRepository(db, settings.LEADS_TABLE)
        self._crm_client = crm_client

    def _crm(self) -> CrmClient:
        if self._crm_client is None:
            self._crm_client = CrmClient(
                settings.CRM_BASE_URL,
                timeout_s=settings.CRM_TIMEOUT_SECONDS,
                max_retries=settings.CRM_MAX_RETRIES,
            )
        return self._crm_client

    async def list_mappings(self, scope: Optional[MappingScope] = None, active_only: bool = False) -> List[MappingDTO]:
        mappings = await self.repository.list(scope, active_only)
        return [MappingDTO.model_validate(m) for m in mappings]

    async def create_mapping(self, dto: MappingCreateDTO) -> MappingDTO:
        """Crea el mapeo inactivo; la activacion es un paso explicito."""
        mapping = await self.repository.create(
            scope=dto.scope,
            source_field=dto.source_field,
            target_field=dto.target_field,
            source_type=dto.source_type,
            target_type=dto.target_type,
            transformation=dto.transformation.value if dto.transformation else None,
            value_map=dto.value_map,
            priority=dto.priority,
            notes=dto.notes,
        )
        await self.db.commit()
        logger.info(f"Mapeo {mapping.id} creado ({mapping.scope}): {mapping.source_field} -> {mapping.target_field}")
        return MappingDTO.model_validate(mapping)

    def validate(self, dto: MappingValidateRequestDTO) -> MappingValidationDTO:
        validation = validate_mapping(
            SourceField(dto.source_field, dto.source_type),
            ColumnDescriptor(dto.target_field, dto.target_type),
        )
        transformation = suggest_transformation(dto.source_type, dto.target_type)
        return MappingValidationDTO(
            valid=validation.valid,
            warnings=validation.warnings,
            errors=validation.errors,
            suggested_transformation=transformation.value if transformation else None,
        )

    async def activate(self, mapping_id: int) -> MappingValidationDTO:
        validation = await self.repository.activate(mapping_id)
        await self.db.commit()
        logger.info(f"Mapeo {mapping_id} activado")
        return MappingValidationDTO(valid=validation.valid, warnings=validation.warnings, errors=validation.errors)

    async def deactivate(self, mapping_id: int) -> MappingDTO:
        mapping = await self.repository.deactivate(mapping_id)
        await self.db.commit()
        logger.info(f"Mapeo {mapping_id} desactivado")
        return MappingDTO.model_validate(mapping)

    async def get_mapping(self, mapping_id: int) -> MappingDTO:
        mapping = await self.repository.get(mapping_id)
        if not mapping:
            raise EntityNotFoundException("FieldMapping", mapping_id)
        return MappingDTO.model_validate(mapping)

    async def suggestions(self, scope: MappingScope = MappingScope.BATCH) -> MappingSuggestionsDTO:
        """Sugiere mapeos campos del CRM -> columnas de leads no mapeadas en el scope."""
        source_fields = await asyncio.to_thread(self._crm().list_lead_fields)
        target_fields = await self.leads.list_columns()
        existing = await self.repository.active_rules(scope)

        suggestions = suggest_mappings(source_fields, target_fields, existing)
        logger.info(f"{len(suggestions)} sugerencias de mapeo para {scope.value}")
        return MappingSuggestionsDTO(
            scope=scope,
            source_fields=len(source_fields),
            target_fields=len(target_fields),
            suggestions=[s.to_dict() for s in suggestions],
        )

    async def diagnostics(self) -> DiagnosticsReportDTO:
        report = await MappingDiagnostics(self.db, settings.LEADS_TABLE).run()
        return DiagnosticsReportDTO(**report.to_dict())
