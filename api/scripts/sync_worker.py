"""
CLI: worker de sincronizacion para ejecutar desde un scheduler externo.

Cada ejecucion es una unidad de trabajo acotada:
  1. procesa un batch de la cola de cambios (local -> espejo remoto)
  2. avanza los jobs pending/running hasta que terminan o se agota
     el presupuesto de batches de esta invocacion

Uso recomendado:
  - Ejecutar como job (cron/systemd timer), por ejemplo cada minuto.
  - El estado vive en la base: una ejecucion interrumpida se retoma en la siguiente.

Ejecucion:
  python scripts/sync_worker.py
  python scripts/sync_worker.py --queue-only
  python scripts/sync_worker.py --jobs-only --max-batches 5
  python scripts/sync_worker.py --job-id <uuid>
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path
from typing import Callable, Dict, List, Mapping, Optional

from loguru import logger
from dotenv import load_dotenv

# Permite ejecutar este script desde cualquier cwd sin configurar PYTHONPATH.
# La carpeta "api" contiene el paquete raiz `app/`.
_API_ROOT = Path(__file__).resolve().parents[1]
if str(_API_ROOT) not in sys.path:
    sys.path.insert(0, str(_API_ROOT))

load_dotenv(_API_ROOT / ".env", override=False)

from app.application.services.job_engine import RecordSource
from app.application.use_cases.sync_job_use_cases import SyncJobUseCases
from app.application.use_cases.sync_use_cases import SyncQueueUseCases
from app.core.config import settings
from app.core.events import configure_logging
from app.infrastructure.database.session import close_db, get_sessionmaker
from app.infrastructure.repositories.sync_job_repository import SyncJobRepository
from app.shared.constants.sync_constants import JobKind, JobStatus
from app.shared.exceptions.base import AppException


async def drain_queue(session_factory: Callable) -> Dict[str, int]:
    async with session_factory() as db:
        result = await SyncQueueUseCases(db).process_queue()
    return result.model_dump(exclude={"errors"})


async def advance_jobs(
    session_factory: Callable,
    max_batches: int,
    job_ids: Optional[List[str]] = None,
    sources: Optional[Mapping[JobKind, RecordSource]] = None,
) -> Dict[str, int]:
    """
    Procesa batches de los jobs activos, en orden de creacion.

    Un job que falla por configuracion queda failed; uno cortado porque el
    CRM no responde sigue running y se retoma en la proxima ejecucion.
    Ninguno de los dos frena a los demas (ambos cuentan en "failed").
    """
    if job_ids is None:
        async with session_factory() as db:
            repo = SyncJobRepository(db)
            job_ids = (
                await repo.list_ids_by_status(JobStatus.RUNNING)
                + await repo.list_ids_by_status(JobStatus.PENDING)
            )

    stats = {"jobs": len(job_ids), "batches": 0, "completed": 0, "failed": 0}
    for job_id in job_ids:
        if stats["batches"] >= max_batches:
            logger.info(f"Presupuesto de {max_batches} batches agotado")
            break

        async with session_factory() as db:
            use_cases = SyncJobUseCases(db, sources=sources)
            progress = None
            try:
                while stats["batches"] < max_batches:
                    progress = await use_cases.process_job(job_id)
                    stats["batches"] += 1
                    if not progress.has_more:
                        break
            except AppException as e:
                stats["failed"] += 1
                logger.error(f"Job {job_id} abortado: {e.message}")
                continue

        if progress and progress.status == JobStatus.COMPLETED.value:
            stats["completed"] += 1
    return stats


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Worker de sincronizacion de leads")
    scope = parser.add_mutually_exclusive_group()
    scope.add_argument("--queue-only", action="store_true", help="Solo procesa la cola de cambios")
    scope.add_argument("--jobs-only", action="store_true", help="Solo avanza jobs de resync/reprocess")
    parser.add_argument(
        "--max-batches",
        type=int,
        default=settings.WORKER_MAX_BATCHES_PER_RUN,
        help="Maximo de batches de jobs por ejecucion",
    )
    parser.add_argument("--job-id", action="append", dest="job_ids", help="Avanza solo este job (repetible)")
    return parser.parse_args(argv)


async def main(argv: Optional[List[str]] = None) -> int:
    args = _parse_args(argv)
    configure_logging()
    session_factory = get_sessionmaker()
    exit_code = 0

    try:
        if not args.jobs_only and not args.job_ids:
            try:
                queue_stats = await drain_queue(session_factory)
                logger.info(f"Cola: {queue_stats}")
            except AppException as e:
                logger.error(f"Procesamiento de cola abortado: {e.message}")
                exit_code = 1

        if not args.queue_only:
            job_stats = await advance_jobs(session_factory, args.max_batches, args.job_ids)
            logger.info(f"Jobs: {job_stats}")
            if job_stats["failed"]:
                exit_code = 1
    finally:
        await close_db()

    return exit_code


if __name__ == "__main__":
    raise SystemExit(asyncio.run(main()))
