"""
Repositorio de jobs de resync/reprocess (sync_jobs).

Toda transicion de estado es un UPDATE condicional: el rowcount indica si
esta invocacion gano la transicion. No se confia en el estado leido antes.
"""
from datetime import datetime, timedelta
from typing import Any, Iterable, List, Optional

from sqlalchemy import delete, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.infrastructure.database.models import SyncJobModel
from app.shared.constants.sync_constants import JobStatus


class SyncJobRepository:
    """Gestiona la tabla sync_jobs."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def add(self, job: SyncJobModel) -> SyncJobModel:
        self.db.add(job)
        await self.db.flush()
        return job

    async def get(self, job_id: str) -> Optional[SyncJobModel]:
        """Lee el job descartando la copia en memoria de la sesion."""
        return await self.db.get(SyncJobModel, job_id, populate_existing=True)

    async def list_recent(self, limit: int = 20, status: Optional[JobStatus] = None) -> List[SyncJobModel]:
        query = select(SyncJobModel)
        if status:
            query = query.where(SyncJobModel.status == JobStatus(status).value)
        query = query.order_by(SyncJobModel.created_at.desc(), SyncJobModel.id.desc()).limit(limit)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def list_ids_by_status(self, status: JobStatus) -> List[str]:
        query = (
            select(SyncJobModel.id)
            .where(SyncJobModel.status == status.value)
            .order_by(SyncJobModel.created_at.asc())
        )
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def transition(
        self,
        job_id: str,
        from_statuses: Iterable[JobStatus],
        to_status: JobStatus,
        **values: Any,
    ) -> bool:
        """
        Cambia el estado solo si el job esta en uno de `from_statuses`.

        Returns:
            bool: True si esta llamada aplico la transicion
        """
        result = await self.db.execute(
            update(SyncJobModel)
            .where(
                SyncJobModel.id == job_id,
                SyncJobModel.status.in_([JobStatus(s).value for s in from_statuses]),
            )
            .values(status=to_status.value, **values)
            .execution_options(synchronize_session=False)
        )
        await self.db.flush()
        return result.rowcount == 1

    async def update_fields(self, job_id: str, only_in: Iterable[JobStatus], **values: Any) -> bool:
        """UPDATE condicionado al estado actual, sin cambiar el estado."""
        result = await self.db.execute(
            update(SyncJobModel)
            .where(
                SyncJobModel.id == job_id,
                SyncJobModel.status.in_([JobStatus(s).value for s in only_in]),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        await self.db.flush()
        return result.rowcount == 1

    async def save_progress(
        self,
        job_id: str,
        owner: str,
        expected_cursor: Optional[int],
        **values: Any,
    ) -> bool:
        """
        Persiste el avance de un batch.

        Solo aplica si `owner` sigue teniendo el lease y el cursor no cambio
        desde que se leyo el batch: un worker con el lease vencido no puede
        retroceder el cursor ni los contadores.
        """
        same_cursor = (
            SyncJobModel.cursor.is_(None) if expected_cursor is None
            else SyncJobModel.cursor == expected_cursor
        )
        result = await self.db.execute(
            update(SyncJobModel)
            .where(
                SyncJobModel.id == job_id,
                SyncJobModel.status.in_([JobStatus.RUNNING.value, JobStatus.PAUSED.value]),
                SyncJobModel.locked_by == owner,
                same_cursor,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        await self.db.flush()
        return result.rowcount == 1

    async def renew_lease(self, job_id: str, owner: str, now: datetime, lease_seconds: int) -> bool:
        """Extiende el lease propio. False si otro worker lo tomo o fue liberado."""
        result = await self.db.execute(
            update(SyncJobModel)
            .where(SyncJobModel.id == job_id, SyncJobModel.locked_by == owner)
            .values(locked_until=now + timedelta(seconds=lease_seconds))
            .execution_options(synchronize_session=False)
        )
        await self.db.flush()
        return result.rowcount == 1

    async def claim_lease(self, job_id: str, owner: str, now: datetime, lease_seconds: int) -> bool:
        """
        Punto unico de exclusion mutua entre invocaciones concurrentes.

        Solo un job running sin lease vigente puede tomarse.
        """
        result = await self.db.execute(
            update(SyncJobModel)
            .where(
                SyncJobModel.id == job_id,
                SyncJobModel.status == JobStatus.RUNNING.value,
                or_(
                    SyncJobModel.locked_until.is_(None),
                    SyncJobModel.locked_until < now,
                ),
            )
            .values(locked_by=owner, locked_until=now + timedelta(seconds=lease_seconds))
            .execution_options(synchronize_session=False)
        )
        await self.db.flush()
        return result.rowcount == 1

    async def release_lease(self, job_id: str, owner: str) -> None:
        await self.db.execute(
            update(SyncJobModel)
            .where(SyncJobModel.id == job_id, SyncJobModel.locked_by == owner)
            .values(locked_by=None, locked_until=None)
            .execution_options(synchronize_session=False)
        )
        await self.db.flush()

    async def delete(self, job_id: str, only_in: Iterable[JobStatus]) -> bool:
        result = await self.db.execute(
            delete(SyncJobModel)
            .where(
                SyncJobModel.id == job_id,
                SyncJobModel.status.in_([JobStatus(s).value for s in only_in]),
            )
            .execution_options(synchronize_session=False)
        )
        await self.db.flush()
        return result.rowcount == 1
