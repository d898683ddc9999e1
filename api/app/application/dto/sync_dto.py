"""
DTOs del pipeline de sincronizacion de leads.
Definen la estructura de datos que expone la API de sync.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from app.shared.constants.sync_constants import JobKind, MappingScope, SchemaDirection, Transformation


class JobFiltersDTO(BaseModel):
    """
    Criterios de seleccion de leads para un job.

    - null_fields: todas las columnas listadas vacias
    - any_null_fields: al menos una vacia
    - lead_ids: solo estos leads
    - has_sync_errors: leads cuya ultima sincronizacion fallo
    """
    null_fields: Optional[List[str]] = Field(None, description="Columnas que deben ser NULL")
    any_null_fields: Optional[List[str]] = Field(None, description="Al menos una de estas columnas es NULL")
    created_from: Optional[datetime] = Field(None, description="created_at desde (inclusive)")
    created_to: Optional[datetime] = Field(None, description="created_at hasta (inclusive)")
    lead_ids: Optional[List[int]] = Field(None, description="Ids de lead a procesar")
    has_sync_errors: Optional[bool] = Field(None, description="Filtra por el flag has_sync_errors")

    class Config:
        extra = "forbid"

    def to_criteria(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


class JobCreateDTO(BaseModel):
    """DTO para crear un job de resync/reprocess."""
    kind: JobKind = Field(..., description="resync (desde el CRM), reprocess (desde raw) o import (leads faltantes)")
    filters: Optional[JobFiltersDTO] = None
    batch_size: Optional[int] = Field(None, ge=1, description="Leads por batch")
    created_by: Optional[str] = Field(None, max_length=100)


class JobErrorDTO(BaseModel):
    row_id: Optional[Any] = None
    error: str
    timestamp: str


class JobDTO(BaseModel):
    """Snapshot de un job."""
    id: str
    kind: str
    status: str
    total_count: int
    processed_count: int
    updated_count: int
    skipped_count: int
    error_count: int
    batch_size: int
    current_batch: int
    cursor: Optional[int] = None
    filter_criteria: Optional[Dict[str, Any]] = None
    error_details: List[JobErrorDTO] = Field(default_factory=list)
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    paused_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class JobProgressDTO(BaseModel):
    """Resultado de procesar un batch."""
    job_id: str
    status: str
    processed_count: int
    total_count: int
    updated_count: int
    skipped_count: int
    error_count: int
    cursor: Optional[int] = None
    batch_processed: int
    has_more: bool

    class Config:
        from_attributes = True


class QueueRunResultDTO(BaseModel):
    """Resumen de una corrida de la cola."""
    processed: int
    succeeded: int
    failed: int
    skipped: int
    retried: int
    processing_time_ms: int
    errors: List[Dict[str, Any]] = Field(default_factory=list)


class QueueStatusDTO(BaseModel):
    """Eventos de la cola por estado."""
    pending: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0


class SyncLogSummaryDTO(BaseModel):
    """Una corrida de la cola o un batch de job."""
    id: int
    source: str
    direction: str
    records_synced: int
    records_failed: int
    records_skipped: int
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    processing_time_ms: Optional[int] = None
    metadata: Optional[Dict[str, Any]] = Field(None, validation_alias="run_metadata")
    created_at: datetime

    class Config:
        from_attributes = True


class SyncLogDetailDTO(BaseModel):
    id: int
    endpoint: str
    table_name: Optional[str] = None
    record_id: Optional[str] = None
    status: str
    error_message: Optional[str] = None
    execution_time_ms: Optional[int] = None
    metadata: Optional[Dict[str, Any]] = Field(None, validation_alias="log_metadata")
    created_at: datetime

    class Config:
        from_attributes = True


class ReconcileRequestDTO(BaseModel):
    direction: SchemaDirection = Field(SchemaDirection.PULL, description="pull: remoto -> local, push: local -> remoto")
    dry_run: bool = Field(False, description="Solo genera el SQL, sin ejecutarlo")


class ReconcileResultDTO(BaseModel):
    """Resultado de la reconciliacion de schema."""
    direction: SchemaDirection
    dry_run: bool
    columns_analyzed: int
    columns_missing: List[str]
    columns_added: List[str]
    columns_skipped: List[str]
    indexes_created: List[str]
    index_failures: List[str]
    schema_reloaded: bool
    sql_executed: Optional[str] = None
    processing_time_ms: int
    stages: List[str]


class MappingCreateDTO(BaseModel):
    """DTO para crear un mapeo (queda inactivo hasta activarlo)."""
    scope: MappingScope
    source_field: str = Field(..., min_length=1, max_length=255)
    target_field: str = Field(..., min_length=1, max_length=255)
    source_type: str = Field("string", max_length=100)
    target_type: str = Field("text", max_length=100)
    transformation: Optional[Transformation] = None
    value_map: Optional[Dict[str, Any]] = Field(None, description="Tabla de valores aplicada antes de la transformacion")
    priority: int = 0
    notes: Optional[str] = None


class MappingDTO(BaseModel):
    id: int
    scope: str
    source_field: str
    target_field: str
    source_type: str
    target_type: str
    transformation: Optional[str] = None
    value_map: Optional[Dict[str, Any]] = None
    priority: int
    active: bool
    notes: Optional[str] = None

    class Config:
        from_attributes = True


class MappingValidateRequestDTO(BaseModel):
    source_field: str = Field(..., min_length=1)
    source_type: str = Field("string")
    target_field: str = Field(..., min_length=1)
    target_type: str = Field("text")


class MappingValidationDTO(BaseModel):
    valid: bool
    warnings: List[str] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)
    suggested_transformation: Optional[str] = None


class MappingSuggestionDTO(BaseModel):
    source_field: str
    target_field: str
    similarity: float
    confidence: str
    reason: str
    transformation: Optional[str] = None


class MappingSuggestionsDTO(BaseModel):
    scope: MappingScope
    source_fields: int
    target_fields: int
    suggestions: List[MappingSuggestionDTO]


class DiagnosticIssueDTO(BaseModel):
    severity: str
    category: str
    field: str
    message: str
    scope: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)


class DiagnosticsReportDTO(BaseModel):
    """Reporte de salud de los mapeos."""
    health: str
    summary: str
    statistics: Dict[str, int]
    issues: List[DiagnosticIssueDTO]
    recommendations: List[str]
    last_check: datetime
