"""
Constantes del pipeline de sincronizacion de leads.
"""
from enum import Enum


class ChangeOperation(str, Enum):
    """Operaciones que puede transportar un evento de la cola."""
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


class ChangeEventStatus(str, Enum):
    """Estados de un evento de la cola de sincronizacion."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class JobKind(str, Enum):
    """Variantes de job batch."""
    RESYNC = "resync"        # Trae valores desde el CRM upstream
    REPROCESS = "reprocess"  # Re-deriva valores desde el payload raw guardado
    IMPORT = "import"        # Importa leads del CRM que faltan en la base local


class JobStatus(str, Enum):
    """Estados de un job batch."""
    PENDING = "pending"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


ACTIVE_JOB_STATUSES = frozenset({JobStatus.PENDING, JobStatus.RUNNING})


class MappingScope(str, Enum):
    """
    Vistas sobre el almacen unico de mapeos.

    - realtime: alimenta la cola (local -> espejo remoto)
    - batch: alimenta los jobs de resync/reprocess (CRM -> local)
    """
    REALTIME = "realtime"
    BATCH = "batch"


class Transformation(str, Enum):
    """Conjunto cerrado de transformaciones de tipo soportadas."""
    TO_NUMBER = "to_number"
    TO_STRING = "to_string"
    TO_BOOLEAN = "to_boolean"
    TO_DATE = "to_date"
    TO_TIMESTAMP = "to_timestamp"


class SchemaDirection(str, Enum):
    """Direccion de la reconciliacion de schema."""
    PULL = "pull"  # remoto -> local
    PUSH = "push"  # local -> remoto


class IssueSeverity(str, Enum):
    """Severidad de un hallazgo del diagnostico de mapeos."""
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class HealthStatus(str, Enum):
    """Etiqueta global de salud de los mapeos."""
    CRITICAL = "critical"    # Duplicados activos
    ATTENTION = "attention"  # Divergencias entre vistas
    OK = "ok"                # Solo columnas huerfanas
    HEALTHY = "healthy"


# Anotaciones para resultados que no son error
ANNOTATION_SKIPPED_OLDER = "skipped: older version"
ANNOTATION_SKIPPED_SELF_SYNC = "skipped: self-sync"

# Campos de timestamp aceptados para resolver conflictos, en orden de prioridad.
# Nunca se usa "ahora" como fallback.
CONFLICT_TIMESTAMP_FIELDS = ("updated_at", "updated", "modificado", "criado")

# Columnas de sistema que no requieren mapeo
SYSTEM_COLUMNS = frozenset({
    "id",
    "raw",
    "created_at",
    "updated_at",
    "last_sync_at",
    "sync_status",
    "sync_source",
    "sync_errors",
    "has_sync_errors",
    "geocoded_at",
})

# Columnas que no reciben indice secundario al agregarse por reconciliacion
INDEX_EXCLUDED_COLUMNS = frozenset({"id", "created_at", "updated_at"})
