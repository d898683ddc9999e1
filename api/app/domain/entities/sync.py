"""
Entidades del pipeline de sincronizacion.

Son estructuras sin I/O que viajan entre repositorios, servicios y API.
"""
from __future__ import annotations

from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Any, Dict, List, Optional

from app.shared.constants.sync_constants import (
    HealthStatus,
    IssueSeverity,
    MappingScope,
    SchemaDirection,
)


@dataclass(frozen=True)
class ColumnDescriptor:
    """Descripcion transitoria de una columna (information_schema)."""
    name: str
    data_type: str
    nullable: bool = True
    has_default: bool = False


@dataclass(frozen=True)
class SourceField:
    """Campo expuesto por el sistema origen (ej: crm.lead.fields)."""
    name: str
    data_type: str = "string"
    title: Optional[str] = None


@dataclass(frozen=True)
class MappingRule:
    """Vista inmutable de un mapeo activo usada por el motor de mapeo."""
    source_field: str
    target_field: str
    source_type: str = "string"
    target_type: str = "text"
    transformation: Optional[str] = None
    value_map: Optional[Dict[str, Any]] = None
    priority: int = 0
    scope: MappingScope = MappingScope.REALTIME
    id: Optional[int] = None


@dataclass
class MappingSuggestion:
    """Sugerencia de mapeo entre un campo origen y una columna destino."""
    source_field: str
    target_field: str
    similarity: float
    confidence: str             # high | medium | low
    reason: str
    transformation: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class MappingValidation:
    """Resultado de validate_mapping."""
    valid: bool
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


@dataclass
class ReconcileResult:
    """Resultado de una corrida de reconciliacion de schema."""
    direction: SchemaDirection
    dry_run: bool = False
    columns_analyzed: int = 0
    columns_missing: List[str] = field(default_factory=list)
    columns_added: List[str] = field(default_factory=list)
    columns_skipped: List[str] = field(default_factory=list)
    indexes_created: List[str] = field(default_factory=list)
    index_failures: List[str] = field(default_factory=list)
    schema_reloaded: bool = False
    sql_executed: Optional[str] = None
    processing_time_ms: int = 0
    stages: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["direction"] = self.direction.value
        return data


@dataclass
class QueueRunResult:
    """Resumen de una invocacion del procesador de la cola."""
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    retried: int = 0
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    errors: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def processing_time_ms(self) -> int:
        if not self.started_at or not self.completed_at:
            return 0
        return int((self.completed_at - self.started_at).total_seconds() * 1000)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "processed": self.processed,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped": self.skipped,
            "retried": self.retried,
            "processing_time_ms": self.processing_time_ms,
            "errors": self.errors,
        }


@dataclass
class JobProgress:
    """Progreso devuelto por cada llamada a process()."""
    job_id: str
    status: str
    processed_count: int
    total_count: int
    updated_count: int
    skipped_count: int
    error_count: int
    cursor: Optional[int]
    batch_processed: int
    has_more: bool

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class DiagnosticIssue:
    """Hallazgo del diagnostico de mapeos."""
    severity: IssueSeverity
    category: str               # duplicate | divergence | orphan
    field: str
    message: str
    scope: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["severity"] = self.severity.value
        return data


@dataclass
class DiagnosticsReport:
    """Reporte de salud de los mapeos."""
    health: HealthStatus
    summary: str
    statistics: Dict[str, int]
    issues: List[DiagnosticIssue]
    recommendations: List[str]
    last_check: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "health": self.health.value,
            "summary": self.summary,
            "statistics": self.statistics,
            "issues": [issue.to_dict() for issue in self.issues],
            "recommendations": self.recommendations,
            "last_check": self.last_check.isoformat(),
        }
