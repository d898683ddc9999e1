"""
Taxonomia de errores del pipeline de sincronizacion.

- TransientRemoteError: red/timeout/5xx. Se reintenta con backoff hasta el techo.
- PermanentValidationError: payload o tipos invalidos. No se reintenta.
- SchemaMismatchError: el remoto no tiene una columna requerida.
- SyncConfigurationError: configuracion ausente o inconsistente. Aborta la corrida.
- SchemaReconciliationError: fallo el DDL de reconciliacion. Aborta la corrida.
"""
from typing import Any, Dict, Optional

from app.shared.exceptions.base import AppException


class SyncException(AppException):
    """Excepcion base del pipeline de sincronizacion."""

    def __init__(
        self,
        message: str,
        error_code: str = "SYNC_ERROR",
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message,
            status_code=status_code,
            error_code=error_code,
            details=details,
        )


class TransientRemoteError(SyncException):
    """Fallo transitorio al hablar con el espejo remoto o el CRM."""

    retryable = True

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, error_code="TRANSIENT_REMOTE_ERROR", status_code=502, details=details)


class PermanentValidationError(SyncException):
    """El cambio nunca podra aplicarse tal cual: reintentar no cambia el resultado."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(
            message,
            error_code="PERMANENT_VALIDATION_ERROR",
            status_code=422,
            details={"field": field} if field else None,
        )


class SchemaMismatchError(SyncException):
    """El destino no conoce una o mas columnas del payload."""

    retryable = True

    def __init__(self, message: str, column: Optional[str] = None):
        super().__init__(
            message,
            error_code="SCHEMA_MISMATCH",
            status_code=409,
            details={"column": column} if column else None,
        )


class SyncConfigurationError(SyncException):
    """Error de configuracion del pipeline (mapeos, credenciales, schema)."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, error_code="SYNC_CONFIGURATION_ERROR", status_code=500, details=details)


class SchemaReconciliationError(SyncException):
    """Fallo fatal durante la reconciliacion de schema."""

    def __init__(self, message: str, sql: Optional[str] = None):
        super().__init__(
            message,
            error_code="SCHEMA_RECONCILIATION_ERROR",
            status_code=500,
            details={"sql": sql} if sql else None,
        )
