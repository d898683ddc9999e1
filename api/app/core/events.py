"""
Manejadores de eventos de inicio y cierre de la aplicacion.
"""
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable

from fastapi import FastAPI
from loguru import logger

from app.core.config import settings
from app.infrastructure.database.session import init_db, close_db


def startup_handler(app: FastAPI) -> Callable:
    """
    Manejador de eventos de inicio de la aplicacion.

    Args:
        app: Instancia de FastAPI

    Returns:
        Callable: Funcion asincrona de inicio
    """
    async def startup() -> None:
        """Inicializa recursos al inicio de la aplicacion."""
        try:
            configure_logging()
            logger.info(f"Iniciando {settings.APP_NAME} v{settings.APP_VERSION}")
            logger.info(f"Entorno: {settings.ENVIRONMENT}")

            # Validar configuracion critica
            _validate_config()

            # Inicializar base de datos (crea tablas si no existen)
            await init_db()
            logger.info("Base de datos inicializada")

            logger.success("Aplicacion iniciada correctamente")

            # Mostrar URLs disponibles
            _print_available_urls()

        except Exception as e:
            logger.error(f"Error durante startup: {e}")
            logger.exception("Detalle del error:")
            raise

    return startup


_file_sink_id = None


def configure_logging() -> None:
    """Agrega el sink de archivo con rotacion (una sola vez por proceso)."""
    global _file_sink_id
    if _file_sink_id is not None or not settings.LOG_FILE:
        return
    _file_sink_id = logger.add(
        settings.LOG_FILE,
        rotation="500 MB",
        retention="10 days",
        level=settings.LOG_LEVEL
    )


def _validate_config() -> None:
    """Valida que la configuracion critica este presente."""
    warnings = []

    if not settings.REMOTE_DATABASE_URL:
        warnings.append("REMOTE_DATABASE_URL no configurada - la cola y la reconciliacion no funcionaran")

    if not settings.CRM_BASE_URL:
        warnings.append("CRM_BASE_URL no configurada - solo se podran crear jobs de reprocess")

    if settings.SYNC_SOURCE_SYSTEM == settings.SYNC_DESTINATION_SYSTEM:
        warnings.append("SYNC_SOURCE_SYSTEM y SYNC_DESTINATION_SYSTEM son iguales - todos los eventos se omitiran")

    # Mostrar advertencias
    for warning in warnings:
        logger.warning(f"CONFIG: {warning}")


def _print_available_urls() -> None:
    """Imprime las URLs disponibles de la aplicacion."""
    # Determinar la URL base de acceso
    if settings.HOST == "0.0.0.0":
        access_host = "localhost"
    else:
        access_host = settings.HOST

    base_url = f"http://{access_host}:{settings.PORT}"

    logger.opt(colors=True).info("<bold><green>" + "=" * 80 + "</green></bold>")
    logger.opt(colors=True).info(f"<cyan>  Swagger UI:   {base_url}/docs</cyan>")
    logger.opt(colors=True).info(f"<cyan>  Sync API:     {base_url}/api/v1/sync</cyan>")
    logger.opt(colors=True).info(f"<cyan>  Health:       {base_url}/health</cyan>")
    logger.opt(colors=True).info("<bold><green>" + "=" * 80 + "</green></bold>")


def shutdown_handler(app: FastAPI) -> Callable:
    """
    Manejador de eventos de cierre de la aplicacion.

    Args:
        app: Instancia de FastAPI

    Returns:
        Callable: Funcion asincrona de cierre
    """
    async def shutdown() -> None:
        """Libera recursos al cerrar la aplicacion."""
        logger.info("Cerrando aplicacion...")

        # Cerrar conexiones de base de datos
        await close_db()
        logger.info("Conexiones de base de datos cerradas")

        logger.success("Aplicacion cerrada correctamente")

    return shutdown


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Ciclo de vida de la aplicacion: startup antes de servir, shutdown al cerrar."""
    await startup_handler(app)()
    try:
        yield
    finally:
        await shutdown_handler(app)()
