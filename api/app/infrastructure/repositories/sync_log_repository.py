"""
Repositorio de logs persistidos de sincronizacion.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.infrastructure.database.models import SyncLogDetailedModel, SyncLogSummaryModel
from app.shared.utils.error_sanitizer import sanitize_error_message


class SyncLogRepository:
    """Gestiona sync_logs_summary y sync_logs_detailed."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def add_summary(
        self,
        source: str,
        direction: str,
        succeeded: int,
        failed: int,
        skipped: int,
        started_at: Optional[datetime],
        completed_at: Optional[datetime],
        processing_time_ms: int,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> SyncLogSummaryModel:
        row = SyncLogSummaryModel(
            source=source,
            direction=direction,
            records_synced=succeeded,
            records_failed=failed,
            records_skipped=skipped,
            started_at=started_at,
            completed_at=completed_at,
            processing_time_ms=processing_time_ms,
            run_metadata=metadata or {},
        )
        self.db.add(row)
        await self.db.flush()
        return row

    async def add_detailed(
        self,
        endpoint: str,
        record_id: Optional[str],
        status: str,
        error_message: Optional[str] = None,
        table_name: Optional[str] = None,
        execution_time_ms: Optional[int] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> SyncLogDetailedModel:
        row = SyncLogDetailedModel(
            endpoint=endpoint,
            table_name=table_name,
            record_id=record_id,
            status=status,
            error_message=sanitize_error_message(error_message) if error_message else None,
            execution_time_ms=execution_time_ms,
            log_metadata=metadata or {},
        )
        self.db.add(row)
        await self.db.flush()
        return row

    async def recent_summaries(self, limit: int = 20) -> List[SyncLogSummaryModel]:
        query = (
            select(SyncLogSummaryModel)
            .order_by(SyncLogSummaryModel.created_at.desc(), SyncLogSummaryModel.id.desc())
            .limit(limit)
        )
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def detailed_for(self, endpoint: str, limit: int = 100) -> List[SyncLogDetailedModel]:
        query = (
            select(SyncLogDetailedModel)
            .where(SyncLogDetailedModel.endpoint == endpoint)
            .order_by(SyncLogDetailedModel.id.desc())
            .limit(limit)
        )
        result = await self.db.execute(query)
        return list(result.scalars().all())
