"""
Middleware para manejo centralizado de errores.
"""
from fastapi import Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from loguru import logger

from app.shared.utils.error_sanitizer import describe_exception


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """
    Captura errores no manejados.

    Los AppException los resuelve el exception handler de la aplicacion;
    aqui solo llegan errores inesperados, que nunca exponen detalles internos.
    """

    async def dispatch(self, request: Request, call_next):
        """
        Procesa la peticion y captura errores.

        Args:
            request: Peticion HTTP
            call_next: Siguiente middleware/handler

        Returns:
            Response: Respuesta HTTP
        """
        try:
            response = await call_next(request)
            return response
        except Exception as exc:
            logger.opt(exception=exc).error(
                "Error no manejado en {} {}: {}",
                request.method,
                request.url.path,
                describe_exception(exc),
            )

            # Respuesta de error generica
            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content={
                    "error": "INTERNAL_SERVER_ERROR",
                    "message": "Ha ocurrido un error interno del servidor",
                    "details": {}
                }
            )
