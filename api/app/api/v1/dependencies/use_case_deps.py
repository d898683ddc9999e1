"""
Dependencias para inyeccion de casos de uso.
"""
from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.application.use_cases.sync_job_use_cases import SyncJobUseCases
from app.application.use_cases.sync_use_cases import (
    MappingUseCases,
    SchemaUseCases,
    SyncLogUseCases,
    SyncQueueUseCases,
)
from app.infrastructure.database.session import get_db


async def get_sync_job_use_cases(
    db: AsyncSession = Depends(get_db)
) -> SyncJobUseCases:
    """
    Dependencia para obtener los casos de uso de jobs.

    Args:
        db: Sesion de base de datos

    Returns:
        SyncJobUseCases: Instancia de casos de uso de jobs
    """
    return SyncJobUseCases(db)


async def get_sync_queue_use_cases(
    db: AsyncSession = Depends(get_db)
) -> SyncQueueUseCases:
    """
    Dependencia para obtener los casos de uso de la cola.

    Returns:
        SyncQueueUseCases: Instancia de casos de uso de la cola
    """
    return SyncQueueUseCases(db)


async def get_sync_log_use_cases(
    db: AsyncSession = Depends(get_db)
) -> SyncLogUseCases:
    return SyncLogUseCases(db)


def get_schema_use_cases() -> SchemaUseCases:
    """La reconciliacion usa conexiones psycopg propias, no la sesion ORM."""
    return SchemaUseCases()


async def get_mapping_use_cases(
    db: AsyncSession = Depends(get_db)
) -> MappingUseCases:
    """
    Dependencia para obtener los casos de uso de mapeos y diagnostico.

    Args:
        db: Sesion de base de datos

    Returns:
        MappingUseCases: Instancia de casos de uso de mapeos
    """
    return MappingUseCases(db)
