"""
Excepción base para todas las excepciones personalizadas del pipeline.
"""
from typing import Optional, Dict, Any


class AppException(Exception):
    """
    Excepción base de la aplicación.
    Todas las excepciones personalizadas deben heredar de esta clase.

    El atributo `retryable` indica si el pipeline puede reintentar la
    operacion que la origino (errores transitorios de red/remoto).
    """

    retryable: bool = False

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        error_code: str = "INTERNAL_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        """
        Inicializa la excepción.

        Args:
            message: Mensaje de error descriptivo
            status_code: Código de estado HTTP
            error_code: Código de error personalizado
            details: Detalles adicionales del error
        """
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Representacion JSON del error para la API."""
        return {
            "error": self.error_code,
            "message": self.message,
            "details": self.details,
        }
