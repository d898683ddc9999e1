"""
Modelos de base de datos (ORM).
"""
from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    DateTime,
    Index,
    Integer,
    JSON,
    Numeric,
    String,
    Text,
)

from app.infrastructure.database.session import Base
from app.shared.constants.sync_constants import ChangeEventStatus, JobStatus
from app.shared.utils.datetime_utils import utc_now

# BIGSERIAL en PostgreSQL; SQLite solo autoincrementa INTEGER PRIMARY KEY
BigIntId = BigInteger().with_variant(Integer, "sqlite")


class LeadModel(Base):
    """
    Lead en la base operacional (gestao).

    `id` es el ID del lead en el CRM. Las columnas de negocio pueden crecer
    via reconciliacion de schema; los repositorios escriben columnas
    dinamicas con SQL Core, no a traves de este modelo.
    """

    __tablename__ = "leads"

    id = Column(BigInteger, primary_key=True, autoincrement=False)
    nome = Column(Text, nullable=True)
    telefone = Column(Text, nullable=True)
    email = Column(Text, nullable=True)
    idade = Column(Integer, nullable=True)
    address = Column(Text, nullable=True)
    responsible = Column(Text, nullable=True)
    scouter = Column(Text, nullable=True)
    valor_ficha = Column(Numeric(12, 2), nullable=True)
    ficha_confirmada = Column(Boolean, nullable=True)

    raw = Column(JSON, nullable=True)  # Ultimo payload crudo recibido del CRM

    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    # Columnas de sincronizacion
    last_sync_at = Column(DateTime(timezone=True), nullable=True)
    sync_source = Column(String(50), nullable=True)
    sync_status = Column(String(50), nullable=True)
    sync_errors = Column(JSON, nullable=True)
    has_sync_errors = Column(Boolean, default=False)

    def __repr__(self):
        return f"<Lead(id={self.id}, nome={self.nome})>"


class ChangeEventModel(Base):
    """
    Evento de la cola de sincronizacion (outbox).

    Nunca se borra: completed/failed quedan como historial.
    """

    __tablename__ = "change_events"

    id = Column(BigIntId, primary_key=True, autoincrement=True)
    target_table = Column(String(100), nullable=False, default="leads")
    target_row_id = Column(String(100), nullable=False, index=True)
    operation = Column(String(20), nullable=False)
    payload = Column(JSON, nullable=False, default=dict)  # Snapshot completo de la fila
    origin = Column(String(50), nullable=True)  # Sistema que produjo el cambio
    retry_count = Column(Integer, nullable=False, default=0)
    status = Column(String(20), nullable=False, default=ChangeEventStatus.PENDING.value)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    next_attempt_at = Column(DateTime(timezone=True), nullable=True)
    last_error = Column(Text, nullable=True)
    annotation = Column(String(100), nullable=True)

    __table_args__ = (
        Index("ix_change_events_status_created", "status", "created_at"),
    )

    def __repr__(self):
        return f"<ChangeEvent(id={self.id}, op={self.operation}, row={self.target_row_id}, status={self.status})>"


class SyncJobModel(Base):
    """
    Job de resync/reprocess con checkpoint.

    El progreso se reanuda desde `cursor` (ultimo id de lead procesado).
    `locked_by`/`locked_until` son el lease que impide que dos invocaciones
    procesen el mismo job a la vez.
    """

    __tablename__ = "sync_jobs"

    id = Column(String(36), primary_key=True)
    kind = Column(String(20), nullable=False)
    status = Column(String(20), nullable=False, default=JobStatus.PENDING.value, index=True)

    total_count = Column(Integer, nullable=False, default=0)
    processed_count = Column(Integer, nullable=False, default=0)
    updated_count = Column(Integer, nullable=False, default=0)
    skipped_count = Column(Integer, nullable=False, default=0)
    error_count = Column(Integer, nullable=False, default=0)
    batch_size = Column(Integer, nullable=False, default=50)
    current_batch = Column(Integer, nullable=False, default=0)

    cursor = Column(BigInteger, nullable=True)
    filter_criteria = Column(JSON, nullable=True)
    error_details = Column(JSON, nullable=False, default=list)  # [{row_id, error, timestamp}]
    created_by = Column(String(100), nullable=True)

    locked_by = Column(String(64), nullable=True)
    locked_until = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)
    started_at = Column(DateTime(timezone=True), nullable=True)
    paused_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<SyncJob(id={self.id}, kind={self.kind}, status={self.status})>"


class FieldMappingModel(Base):
    """
    Almacen canonico de mapeos de campos.

    `scope` separa la vista realtime (cola) de la vista batch (jobs).
    A lo sumo un mapeo activo por (scope, target_field); se valida en el
    repositorio y los duplicados heredados los reporta el diagnostico.
    """

    __tablename__ = "field_mappings"

    id = Column(BigIntId, primary_key=True, autoincrement=True)
    scope = Column(String(20), nullable=False, index=True)
    source_field = Column(String(255), nullable=False)
    target_field = Column(String(255), nullable=False)
    source_type = Column(String(100), nullable=False, default="string")
    target_type = Column(String(100), nullable=False, default="text")
    transformation = Column(String(50), nullable=True)
    value_map = Column(JSON, nullable=True)
    priority = Column(Integer, nullable=False, default=0)
    active = Column(Boolean, nullable=False, default=False)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    __table_args__ = (
        Index("ix_field_mappings_scope_target", "scope", "target_field"),
    )

    def __repr__(self):
        return f"<FieldMapping({self.scope}: {self.source_field} -> {self.target_field}, active={self.active})>"


class SyncLogSummaryModel(Base):
    """Una fila por corrida del procesador de la cola o por batch de job."""

    __tablename__ = "sync_logs_summary"

    id = Column(BigIntId, primary_key=True, autoincrement=True)
    source = Column(String(100), nullable=False)
    direction = Column(String(100), nullable=False)
    records_synced = Column(Integer, nullable=False, default=0)
    records_failed = Column(Integer, nullable=False, default=0)
    records_skipped = Column(Integer, nullable=False, default=0)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    processing_time_ms = Column(Integer, nullable=True)
    run_metadata = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)


class SyncLogDetailedModel(Base):
    """Una fila por fallo individual."""

    __tablename__ = "sync_logs_detailed"

    id = Column(BigIntId, primary_key=True, autoincrement=True)
    endpoint = Column(String(100), nullable=False)
    table_name = Column(String(100), nullable=True)
    record_id = Column(String(100), nullable=True)
    status = Column(String(20), nullable=False)
    error_message = Column(Text, nullable=True)
    execution_time_ms = Column(Integer, nullable=True)
    log_metadata = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
