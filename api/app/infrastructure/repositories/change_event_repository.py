"""
Repositorio de la cola de sincronizacion (change_events).
"""
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from loguru import logger
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.infrastructure.database.models import ChangeEventModel
from app.shared.constants.sync_constants import ChangeEventStatus, ChangeOperation
from app.shared.utils.datetime_utils import DateTimeUtils


class ChangeEventRepository:
    """
    Gestiona la tabla change_events.

    Los eventos se leen en orden de llegada. La marca `processing` es solo
    informativa: guarda en next_attempt_at un lease corto para que un evento
    abandonado por una invocacion caida vuelva a ser elegible.
    """

    PROCESSING_LEASE_SECONDS = 300

    def __init__(self, db: AsyncSession):
        self.db = db

    async def enqueue(
        self,
        target_row_id: Any,
        operation: ChangeOperation,
        payload: Dict[str, Any],
        origin: str,
        destination: str,
        target_table: str = "leads",
    ) -> Optional[ChangeEventModel]:
        """
        Encola un cambio con el snapshot completo de la fila.

        Un cambio cuyo origen es el mismo sistema destino no se encola:
        seria el eco de una escritura de sincronizacion.
        """
        if origin and origin == destination:
            logger.info(
                f"Cambio de {target_table}#{target_row_id} ignorado: origen '{origin}' es el destino"
            )
            return None

        event = ChangeEventModel(
            target_table=target_table,
            target_row_id=str(target_row_id),
            operation=ChangeOperation(operation).value,
            payload=dict(payload or {}),
            origin=origin,
            retry_count=0,
            status=ChangeEventStatus.PENDING.value,
            created_at=DateTimeUtils.now_utc(),
        )
        self.db.add(event)
        await self.db.flush()
        return event

    async def get(self, event_id: int) -> Optional[ChangeEventModel]:
        return await self.db.get(ChangeEventModel, event_id, populate_existing=True)

    async def fetch_pending(
        self,
        limit: int,
        max_retries: int,
        now: Optional[datetime] = None,
    ) -> List[ChangeEventModel]:
        """
        Eventos elegibles, del mas antiguo al mas nuevo.

        Elegible: pending (o processing abandonado), bajo el techo de
        reintentos y con el backoff vencido.
        """
        now = now or DateTimeUtils.now_utc()
        query = (
            select(ChangeEventModel)
            .where(
                ChangeEventModel.status.in_([
                    ChangeEventStatus.PENDING.value,
                    ChangeEventStatus.PROCESSING.value,
                ]),
                ChangeEventModel.retry_count < max_retries,
                or_(
                    ChangeEventModel.next_attempt_at.is_(None),
                    ChangeEventModel.next_attempt_at <= now,
                ),
            )
            .order_by(ChangeEventModel.created_at.asc(), ChangeEventModel.id.asc())
            .limit(limit)
        )
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def mark_processing(self, event: ChangeEventModel, now: Optional[datetime] = None) -> None:
        now = now or DateTimeUtils.now_utc()
        event.status = ChangeEventStatus.PROCESSING.value
        event.next_attempt_at = now + timedelta(seconds=self.PROCESSING_LEASE_SECONDS)
        await self.db.flush()

    async def mark_completed(
        self,
        event: ChangeEventModel,
        annotation: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> None:
        event.status = ChangeEventStatus.COMPLETED.value
        event.processed_at = now or DateTimeUtils.now_utc()
        event.next_attempt_at = None
        event.annotation = annotation
        event.last_error = None
        await self.db.flush()

    async def mark_retry(self, event: ChangeEventModel, error: str, next_attempt_at: datetime) -> None:
        """Vuelve a pending con el reintento ya contabilizado."""
        event.status = ChangeEventStatus.PENDING.value
        event.last_error = error
        event.next_attempt_at = next_attempt_at
        await self.db.flush()

    async def mark_failed(self, event: ChangeEventModel, error: str, now: Optional[datetime] = None) -> None:
        """Estado terminal: el evento no vuelve a leerse."""
        event.status = ChangeEventStatus.FAILED.value
        event.last_error = error
        event.processed_at = now or DateTimeUtils.now_utc()
        event.next_attempt_at = None
        await self.db.flush()

    async def count_by_status(self) -> Dict[str, int]:
        query = select(ChangeEventModel.status, func.count()).group_by(ChangeEventModel.status)
        result = await self.db.execute(query)
        counts = {status.value: 0 for status in ChangeEventStatus}
        counts.update({row[0]: row[1] for row in result.all()})
        return counts
