from __future__ import annotations

from datetime import datetime, timezone

import pytest
from sqlalchemy import select

from app.application.services.sync_queue_processor import (
    SyncQueueProcessor,
    backoff_delay,
    conflict_timestamp,
)
from app.domain.entities.sync import ColumnDescriptor
from app.infrastructure.database.models import (
    ChangeEventModel,
    LeadModel,
    SyncLogDetailedModel,
    SyncLogSummaryModel,
)
from app.infrastructure.repositories.change_event_repository import ChangeEventRepository
from app.infrastructure.repositories.field_mapping_repository import FieldMappingRepository
from app.shared.constants.sync_constants import (
    ANNOTATION_SKIPPED_OLDER,
    ANNOTATION_SKIPPED_SELF_SYNC,
    ChangeEventStatus,
    ChangeOperation,
    MappingScope,
)
from app.shared.exceptions.sync import (
    PermanentValidationError,
    SchemaMismatchError,
    SyncConfigurationError,
    TransientRemoteError,
)


class FakeMirror:
    """Espejo remoto en memoria con fallos programables en upsert."""

    def __init__(self, fail_times: int = 0, error: Exception | None = None):
        self.rows: dict[str, dict] = {}
        self.upserts: list[tuple[str, dict]] = []
        self.deletes: list[str] = []
        self.fail_times = fail_times
        self.error = error or TransientRemoteError("connection reset")

    async def get_updated_at(self, row_id):
        return self.rows.get(row_id, {}).get("updated_at")

    async def upsert(self, row_id, values):
        if self.fail_times > 0:
            self.fail_times -= 1
            raise self.error
        self.upserts.append((row_id, dict(values)))
        self.rows[row_id] = {**self.rows.get(row_id, {}), **values}

    async def delete(self, row_id):
        self.deletes.append(row_id)
        return self.rows.pop(row_id, None) is not None


class RecordingTarget:
    def __init__(self):
        self.executed: list[str] = []
        self.reloads = 0

    async def list_columns(self):
        return [ColumnDescriptor("id", "bigint"), ColumnDescriptor("nome", "text")]

    async def execute(self, sql):
        self.executed.append(sql)

    async def reload_schema_cache(self):
        self.reloads += 1


PAYLOAD = {
    "id": 1,
    "nome": "Ana",
    "telefone": "11999990000",
    "updated_at": "2024-05-01T10:00:00Z",
}


async def _seed(db_session, with_mappings: bool = True) -> None:
    db_session.add(LeadModel(id=1, nome="Ana"))
    if with_mappings:
        repo = FieldMappingRepository(db_session)
        for field in ("nome", "telefone"):
            mapping = await repo.create(MappingScope.REALTIME, field, field, "string", "text")
            await repo.activate(mapping.id)
    await db_session.commit()


async def _enqueue(db_session, payload=None, operation=ChangeOperation.UPDATE, origin="gestao", row_id="1"):
    event = await ChangeEventRepository(db_session).enqueue(
        row_id, operation, payload if payload is not None else PAYLOAD, origin=origin, destination="tabulador"
    )
    await db_session.commit()
    return event


def _processor(db_session, mirror, **kwargs) -> SyncQueueProcessor:
    kwargs.setdefault("backoff_base_seconds", 0)
    return SyncQueueProcessor(db_session, mirror, **kwargs)


def test_conflict_timestamp_priority_and_missing() -> None:
    assert conflict_timestamp({"criado": "01/02/2024", "updated_at": "2024-05-01T10:00:00Z"}) == datetime(
        2024, 5, 1, 10, tzinfo=timezone.utc
    )
    assert conflict_timestamp({"modificado": "02/03/2024 08:00"}) == datetime(2024, 3, 2, 8, tzinfo=timezone.utc)
    with pytest.raises(PermanentValidationError):
        conflict_timestamp({"nome": "Ana"})


def test_backoff_delay_is_exponential_and_capped() -> None:
    assert backoff_delay(1, 30, 3600) == 30
    assert backoff_delay(2, 30, 3600) == 60
    assert backoff_delay(4, 30, 3600) == 240
    assert backoff_delay(10, 30, 3600) == 3600


@pytest.mark.asyncio
async def test_process_applies_update_and_marks_lead(db_session) -> None:
    await _seed(db_session)
    event = await _enqueue(db_session)
    mirror = FakeMirror()

    result = await _processor(db_session, mirror).run()

    assert result.processed == 1 and result.succeeded == 1 and result.failed == 0
    row = mirror.rows["1"]
    assert row["nome"] == "Ana"
    assert row["telefone"] == "11999990000"
    assert row["updated_at"] == datetime(2024, 5, 1, 10, tzinfo=timezone.utc)
    assert row["sync_source"] == "gestao"

    stored = await ChangeEventRepository(db_session).get(event.id)
    assert stored.status == ChangeEventStatus.COMPLETED.value
    assert stored.processed_at is not None

    lead = await db_session.get(LeadModel, 1, populate_existing=True)
    assert lead.last_sync_at is not None
    assert lead.sync_source == "gestao"

    summaries = (await db_session.execute(select(SyncLogSummaryModel))).scalars().all()
    assert len(summaries) == 1 and summaries[0].records_synced == 1


@pytest.mark.asyncio
async def test_reapplying_same_event_is_idempotent(db_session) -> None:
    await _seed(db_session)
    mirror = FakeMirror()

    await _enqueue(db_session)
    await _processor(db_session, mirror).run()
    first = dict(mirror.rows["1"])

    await _enqueue(db_session)
    result = await _processor(db_session, mirror).run()

    assert result.succeeded == 1
    assert mirror.rows["1"] == first
    assert len(mirror.rows) == 1


@pytest.mark.asyncio
async def test_older_version_is_skipped_without_touching_remote(db_session) -> None:
    await _seed(db_session)
    event = await _enqueue(db_session)
    mirror = FakeMirror()
    newer = datetime(2024, 6, 1, tzinfo=timezone.utc)
    mirror.rows["1"] = {"nome": "Ana Maria", "updated_at": newer}

    result = await _processor(db_session, mirror).run()

    assert result.skipped == 1 and result.succeeded == 0
    assert mirror.upserts == []
    assert mirror.rows["1"] == {"nome": "Ana Maria", "updated_at": newer}
    stored = await ChangeEventRepository(db_session).get(event.id)
    assert stored.status == ChangeEventStatus.COMPLETED.value
    assert stored.annotation == ANNOTATION_SKIPPED_OLDER


@pytest.mark.asyncio
async def test_self_sync_is_not_enqueued_and_short_circuits(db_session) -> None:
    await _seed(db_session)
    refused = await _enqueue(db_session, origin="tabulador")
    assert refused is None

    # Evento heredado con origen = destino
    legacy = ChangeEventModel(
        target_table="leads",
        target_row_id="1",
        operation="update",
        payload=PAYLOAD,
        origin="tabulador",
        created_at=datetime.now(timezone.utc),
    )
    db_session.add(legacy)
    await db_session.commit()
    mirror = FakeMirror()

    result = await _processor(db_session, mirror).run()

    assert result.skipped == 1
    assert mirror.upserts == [] and mirror.deletes == []
    stored = await ChangeEventRepository(db_session).get(legacy.id)
    assert stored.status == ChangeEventStatus.COMPLETED.value
    assert stored.annotation == ANNOTATION_SKIPPED_SELF_SYNC


@pytest.mark.asyncio
async def test_retry_ceiling_marks_failed_after_five_failures(db_session) -> None:
    await _seed(db_session)
    event = await _enqueue(db_session)
    mirror = FakeMirror(fail_times=100)
    processor = _processor(db_session, mirror, max_retries=5)

    for attempt in range(1, 6):
        result = await processor.run()
        assert result.processed == 1
        stored = await ChangeEventRepository(db_session).get(event.id)
        assert stored.retry_count == attempt

    assert stored.status == ChangeEventStatus.FAILED.value
    assert stored.last_error
    assert "Traceback" not in stored.last_error

    again = await processor.run()
    assert again.processed == 0

    detailed = (await db_session.execute(select(SyncLogDetailedModel))).scalars().all()
    assert len(detailed) == 5
    assert [row.status for row in detailed][-1] == "failed"


@pytest.mark.asyncio
async def test_four_failures_then_success_completes(db_session) -> None:
    await _seed(db_session)
    event = await _enqueue(db_session)
    mirror = FakeMirror(fail_times=4)
    processor = _processor(db_session, mirror, max_retries=5)

    for _ in range(5):
        await processor.run()

    stored = await ChangeEventRepository(db_session).get(event.id)
    assert stored.status == ChangeEventStatus.COMPLETED.value
    assert stored.retry_count == 4
    assert mirror.rows["1"]["nome"] == "Ana"


@pytest.mark.asyncio
async def test_backoff_delays_next_attempt(db_session) -> None:
    await _seed(db_session)
    event = await _enqueue(db_session)
    processor = _processor(db_session, FakeMirror(fail_times=1), backoff_base_seconds=600)

    first = await processor.run()
    second = await processor.run()

    assert first.retried == 1
    assert second.processed == 0
    stored = await ChangeEventRepository(db_session).get(event.id)
    assert stored.status == ChangeEventStatus.PENDING.value
    assert stored.next_attempt_at is not None


@pytest.mark.asyncio
async def test_permanent_validation_failure_is_not_retried(db_session) -> None:
    await _seed(db_session)
    event = await _enqueue(db_session, payload={"id": 1, "nome": "Ana"})
    mirror = FakeMirror()

    result = await _processor(db_session, mirror).run()

    assert result.failed == 1 and result.retried == 0
    stored = await ChangeEventRepository(db_session).get(event.id)
    assert stored.status == ChangeEventStatus.FAILED.value
    assert stored.retry_count == 1
    assert mirror.upserts == []


@pytest.mark.asyncio
async def test_delete_of_absent_row_succeeds(db_session) -> None:
    await _seed(db_session)
    event = await _enqueue(db_session, payload={"id": 99}, operation=ChangeOperation.DELETE, row_id="99")
    mirror = FakeMirror()

    result = await _processor(db_session, mirror).run()

    assert result.succeeded == 1
    assert mirror.deletes == ["99"]
    stored = await ChangeEventRepository(db_session).get(event.id)
    assert stored.status == ChangeEventStatus.COMPLETED.value


@pytest.mark.asyncio
async def test_schema_mismatch_reconciles_remote_and_retries_once(db_session) -> None:
    await _seed(db_session)
    await _enqueue(db_session)
    mirror = FakeMirror(fail_times=1, error=SchemaMismatchError('column "telefone" does not exist'))
    target = RecordingTarget()

    result = await _processor(db_session, mirror, schema_target=target).run()

    assert result.succeeded == 1
    assert any(sql.startswith("ALTER TABLE") and '"telefone"' in sql for sql in target.executed)
    assert target.reloads == 1
    assert len(mirror.upserts) == 1


@pytest.mark.asyncio
async def test_missing_realtime_mappings_is_fatal(db_session) -> None:
    await _seed(db_session, with_mappings=False)
    await _enqueue(db_session)

    with pytest.raises(SyncConfigurationError):
        await _processor(db_session, FakeMirror()).run()


@pytest.mark.asyncio
async def test_empty_queue_is_a_noop(db_session) -> None:
    result = await _processor(db_session, FakeMirror()).run()
    assert result.processed == 0


@pytest.mark.asyncio
async def test_newer_event_overwrites_older_remote_row(db_session) -> None:
    await _seed(db_session)
    event = await _enqueue(db_session)
    mirror = FakeMirror()
    older = datetime(2024, 4, 1, tzinfo=timezone.utc)
    mirror.rows["1"] = {"nome": "Ana Antiga", "updated_at": older}

    result = await _processor(db_session, mirror).run()

    assert result.succeeded == 1 and result.skipped == 0
    assert len(mirror.upserts) == 1
    assert mirror.rows["1"]["nome"] == "Ana"
    assert mirror.rows["1"]["updated_at"] == datetime(2024, 5, 1, 10, tzinfo=timezone.utc)
    stored = await ChangeEventRepository(db_session).get(event.id)
    assert stored.status == ChangeEventStatus.COMPLETED.value
    assert stored.annotation is None


@pytest.mark.asyncio
async def test_serialized_timestamp_is_coerced_for_timestamp_mapping(db_session) -> None:
    await _seed(db_session)
    repo = FieldMappingRepository(db_session)
    mapping = await repo.create(MappingScope.REALTIME, "updated_at", "updated_at", "timestamptz", "timestamptz")
    await repo.activate(mapping.id)
    await db_session.commit()
    event = await _enqueue(db_session, payload={**PAYLOAD, "updated_at": "2024-05-01T10:00:00+00:00"})
    mirror = FakeMirror()

    result = await _processor(db_session, mirror).run()

    assert result.succeeded == 1 and result.failed == 0
    assert mirror.rows["1"]["updated_at"] == datetime(2024, 5, 1, 10, tzinfo=timezone.utc)
    stored = await ChangeEventRepository(db_session).get(event.id)
    assert stored.status == ChangeEventStatus.COMPLETED.value
