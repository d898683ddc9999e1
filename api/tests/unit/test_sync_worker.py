from __future__ import annotations

import pytest

from app.application.services.job_engine import JobEngine, RawPayloadRecordSource
from app.infrastructure.database.models import LeadModel, SyncJobModel
from app.infrastructure.repositories.field_mapping_repository import FieldMappingRepository
from app.shared.constants.sync_constants import JobKind, JobStatus, MappingScope
from scripts.sync_worker import _parse_args, advance_jobs

SOURCES = {JobKind.REPROCESS: RawPayloadRecordSource()}


async def _setup(session_factory, leads: int, with_mapping: bool = True) -> None:
    async with session_factory() as db:
        for i in range(1, leads + 1):
            db.add(LeadModel(id=i, raw={"ID": str(i), "NAME": f"Lead {i}"}))
        await db.commit()
        if with_mapping:
            repo = FieldMappingRepository(db)
            mapping = await repo.create(MappingScope.BATCH, "NAME", "nome")
            await repo.activate(mapping.id)
            await db.commit()


async def _create_job(session_factory, batch_size: int) -> str:
    async with session_factory() as db:
        job = await JobEngine(db, SOURCES).create(JobKind.REPROCESS, batch_size=batch_size)
        return job.id


async def _job(session_factory, job_id: str) -> SyncJobModel:
    async with session_factory() as db:
        return await db.get(SyncJobModel, job_id)


@pytest.mark.asyncio
async def test_advance_jobs_shares_the_batch_budget(session_factory) -> None:
    await _setup(session_factory, 5)
    first = await _create_job(session_factory, batch_size=2)
    second = await _create_job(session_factory, batch_size=2)

    stats = await advance_jobs(session_factory, max_batches=4, sources=SOURCES)

    assert stats == {"jobs": 2, "batches": 4, "completed": 1, "failed": 0}
    assert (await _job(session_factory, first)).status == JobStatus.COMPLETED.value
    pending_second = await _job(session_factory, second)
    assert pending_second.status == JobStatus.RUNNING.value
    assert pending_second.processed_count == 2

    stats = await advance_jobs(session_factory, max_batches=10, sources=SOURCES)
    assert stats["completed"] == 1
    assert (await _job(session_factory, second)).status == JobStatus.COMPLETED.value


@pytest.mark.asyncio
async def test_failed_job_does_not_block_the_rest(session_factory) -> None:
    await _setup(session_factory, 2, with_mapping=False)
    broken = await _create_job(session_factory, batch_size=5)

    stats = await advance_jobs(session_factory, max_batches=5, job_ids=[broken], sources=SOURCES)

    assert stats["failed"] == 1
    assert (await _job(session_factory, broken)).status == JobStatus.FAILED.value


def test_cli_scopes_are_mutually_exclusive() -> None:
    args = _parse_args(["--jobs-only", "--max-batches", "3", "--job-id", "a", "--job-id", "b"])
    assert args.jobs_only is True
    assert args.max_batches == 3
    assert args.job_ids == ["a", "b"]

    with pytest.raises(SystemExit):
        _parse_args(["--queue-only", "--jobs-only"])
