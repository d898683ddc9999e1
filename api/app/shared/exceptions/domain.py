"""
Excepciones relacionadas con la lógica de dominio.
"""
from typing import Any

from app.shared.exceptions.base import AppException


class DomainException(AppException):
    """Excepción base para errores de dominio."""

    def __init__(self, message: str, error_code: str = "DOMAIN_ERROR", details=None):
        super().__init__(
            message=message,
            status_code=400,
            error_code=error_code,
            details=details
        )


class EntityNotFoundException(DomainException):
    """Excepción cuando no se encuentra una entidad."""

    def __init__(self, entity_name: str, entity_id: Any):
        super().__init__(
            message=f"{entity_name} con ID {entity_id} no encontrado",
            error_code="ENTITY_NOT_FOUND",
            details={"entity": entity_name, "id": str(entity_id)}
        )
        self.status_code = 404


class ValidationException(DomainException):
    """Excepción para errores de validación."""

    def __init__(self, message: str, field: str = None, errors: list[str] | None = None):
        details: dict[str, Any] = {}
        if field:
            details["field"] = field
        if errors:
            details["errors"] = errors
        super().__init__(
            message=message,
            error_code="VALIDATION_ERROR",
            details=details or None
        )


class JobNotFoundException(DomainException):
    """Excepcion cuando no se encuentra un job de resync/reprocess."""

    def __init__(self, job_id: str):
        super().__init__(
            message=f"Job con ID '{job_id}' no encontrado",
            error_code="JOB_NOT_FOUND",
            details={"job_id": job_id}
        )
        self.status_code = 404


class InvalidJobTransitionException(DomainException):
    """Excepcion cuando se pide una transicion de estado no permitida."""

    def __init__(self, job_id: str, current_status: str, action: str):
        super().__init__(
            message=f"No se puede ejecutar '{action}' sobre el job '{job_id}' en estado '{current_status}'",
            error_code="INVALID_JOB_TRANSITION",
            details={"job_id": job_id, "status": current_status, "action": action}
        )
        self.status_code = 409
