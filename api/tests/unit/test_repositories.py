from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from app.infrastructure.database.models import LeadModel, SyncJobModel
from app.infrastructure.repositories.change_event_repository import ChangeEventRepository
from app.infrastructure.repositories.field_mapping_repository import FieldMappingRepository
from app.infrastructure.repositories.lead_repository import LeadRepository, normalize_filters
from app.infrastructure.repositories.sync_job_repository import SyncJobRepository
from app.shared.constants.sync_constants import ChangeOperation, JobStatus, MappingScope
from app.shared.exceptions.domain import EntityNotFoundException, ValidationException

BASE = datetime(2024, 1, 1, tzinfo=timezone.utc)


async def _seed(db_session) -> None:
    db_session.add_all([
        LeadModel(id=1, nome="Ana", telefone=None, email=None, created_at=BASE),
        LeadModel(id=2, nome=None, telefone=None, email="b@x.com", created_at=BASE + timedelta(days=1)),
        LeadModel(id=3, nome=None, telefone="11", email=None, created_at=BASE + timedelta(days=2)),
        LeadModel(id=4, nome="Duda", telefone="12", email="d@x.com", created_at=BASE + timedelta(days=3)),
    ])
    await db_session.commit()


def test_normalize_filters_rejects_unknown_keys_and_bad_dates() -> None:
    with pytest.raises(ValidationException):
        normalize_filters({"status": "x"})
    with pytest.raises(ValidationException):
        normalize_filters({"created_from": "ontem"})


def test_normalize_filters_accepts_strings_and_br_dates() -> None:
    filters = normalize_filters({
        "null_fields": "nome",
        "any_null_fields": ["telefone", "email", "email"],
        "created_from": "02/01/2024",
        "created_to": "",
    })

    assert filters == {
        "null_fields": ["nome"],
        "any_null_fields": ["email", "telefone"],
        "created_from": "2024-01-02T00:00:00+00:00",
    }


@pytest.mark.asyncio
async def test_lead_filters_drive_count_and_batches(db_session) -> None:
    await _seed(db_session)
    repo = LeadRepository(db_session)

    assert await repo.count({}) == 4
    assert await repo.count({"null_fields": ["nome"]}) == 2
    assert await repo.count({"null_fields": ["nome", "telefone"]}) == 1
    assert await repo.count({"any_null_fields": ["telefone", "email"]}) == 3

    window = normalize_filters({"created_from": BASE + timedelta(days=1), "created_to": BASE + timedelta(days=2)})
    assert await repo.count(window) == 2

    batch = await repo.fetch_batch(None, 2, {"any_null_fields": ["telefone", "email"]})
    assert [row["id"] for row in batch] == [1, 2]
    batch = await repo.fetch_batch(2, 2, {"any_null_fields": ["telefone", "email"]})
    assert [row["id"] for row in batch] == [3]


@pytest.mark.asyncio
async def test_lead_update_fields_and_live_columns(db_session) -> None:
    await _seed(db_session)
    repo = LeadRepository(db_session)

    assert await repo.update_fields(2, {"nome": "Bia", "idade": 22}) is True
    assert await repo.update_fields(99, {"nome": "X"}) is False
    assert await repo.get_values(2, ["nome", "idade"]) == {"id": 2, "nome": "Bia", "idade": 22}
    assert await repo.get_values(99, ["nome"]) is None

    names = [c.name for c in await repo.list_columns()]
    assert {"id", "nome", "raw", "sync_status"} <= set(names)


@pytest.mark.asyncio
async def test_mapping_activation_requires_compatible_types(db_session) -> None:
    repo = FieldMappingRepository(db_session)
    bad = await repo.create(MappingScope.REALTIME, "UF_CRM_FOTO", "ficha_confirmada", "jsonb", "boolean")

    with pytest.raises(ValidationException):
        await repo.activate(bad.id)

    with_transform = await repo.create(
        MappingScope.REALTIME, "UF_CRM_IDADE", "idade", "string", "integer", transformation="to_number"
    )
    validation = await repo.activate(with_transform.id)
    assert validation.valid is True
    assert validation.warnings

    with pytest.raises(EntityNotFoundException):
        await repo.activate(12345)


@pytest.mark.asyncio
async def test_mapping_activation_rejects_second_active_target_in_scope(db_session) -> None:
    repo = FieldMappingRepository(db_session)
    first = await repo.create(MappingScope.BATCH, "NAME", "nome")
    second = await repo.create(MappingScope.BATCH, "TITLE", "nome")
    other_scope = await repo.create(MappingScope.REALTIME, "TITLE", "nome")

    await repo.activate(first.id)
    with pytest.raises(ValidationException) as exc_info:
        await repo.activate(second.id)
    assert exc_info.value.details["errors"] == [f"mapping_id={first.id}"]

    await repo.activate(other_scope.id)
    await repo.deactivate(first.id)
    await repo.activate(second.id)

    rules = await repo.active_rules(MappingScope.BATCH)
    assert [r.source_field for r in rules] == ["TITLE"]


@pytest.mark.asyncio
async def test_change_events_skip_echo_and_respect_backoff(db_session) -> None:
    repo = ChangeEventRepository(db_session)

    echo = await repo.enqueue(1, ChangeOperation.UPDATE, {"id": 1}, origin="tabulador", destination="tabulador")
    assert echo is None

    first = await repo.enqueue(1, ChangeOperation.INSERT, {"id": 1}, origin="gestao", destination="tabulador")
    second = await repo.enqueue(2, ChangeOperation.UPDATE, {"id": 2}, origin="gestao", destination="tabulador")
    await repo.mark_retry(second, "timeout", datetime.now(timezone.utc) + timedelta(minutes=5))
    await db_session.commit()

    pending = await repo.fetch_pending(limit=10, max_retries=5)
    assert [e.id for e in pending] == [first.id]

    await repo.mark_completed(first, annotation="skipped_newer_remote")
    await db_session.commit()

    counts = await repo.count_by_status()
    assert counts["completed"] == 1
    assert counts["pending"] == 1
    assert counts["failed"] == 0


@pytest.mark.asyncio
async def test_activation_rejects_transformations_that_do_not_fit_the_target(db_session) -> None:
    repo = FieldMappingRepository(db_session)
    disguised = await repo.create(
        MappingScope.REALTIME, "UF_CRM_FOTO", "ficha_confirmada", "jsonb", "boolean", transformation="to_date"
    )
    with pytest.raises(ValidationException):
        await repo.activate(disguised.id)

    wrong_family = await repo.create(
        MappingScope.REALTIME, "UF_CRM_IDADE", "idade", "string", "integer", transformation="to_boolean"
    )
    with pytest.raises(ValidationException) as exc_info:
        await repo.activate(wrong_family.id)
    assert exc_info.value.details["errors"] == ["transformation=to_boolean"]

    assert (await repo.get(disguised.id)).active is False
    assert (await repo.get(wrong_family.id)).active is False


@pytest.mark.asyncio
async def test_activation_stores_the_suggested_transformation(db_session) -> None:
    repo = FieldMappingRepository(db_session)
    mapping = await repo.create(MappingScope.BATCH, "UF_CRM_IDADE", "idade", "string", "integer")

    validation = await repo.activate(mapping.id)

    assert validation.valid is True and validation.warnings
    [rule] = await repo.active_rules(MappingScope.BATCH)
    assert rule.transformation == "to_number"

    compatible = await repo.create(MappingScope.REALTIME, "updated_at", "updated_at", "timestamptz", "timestamptz")
    await repo.activate(compatible.id)
    assert (await repo.get(compatible.id)).transformation is None


def test_normalize_filters_lead_ids_and_sync_errors() -> None:
    assert normalize_filters({"lead_ids": ["3", 1, 3], "has_sync_errors": True}) == {
        "lead_ids": [1, 3],
        "has_sync_errors": True,
    }
    assert normalize_filters({"lead_ids": 7}) == {"lead_ids": [7]}
    with pytest.raises(ValidationException):
        normalize_filters({"lead_ids": ["abc"]})


@pytest.mark.asyncio
async def test_lead_ids_and_sync_error_filters(db_session) -> None:
    await _seed(db_session)
    repo = LeadRepository(db_session)
    await repo.update_fields(2, {"has_sync_errors": True})
    await repo.update_fields(4, {"has_sync_errors": None})
    await db_session.commit()

    assert await repo.count({"has_sync_errors": True}) == 1
    assert await repo.count({"has_sync_errors": False}) == 3
    assert await repo.count({"lead_ids": [1, 3, 99]}) == 2
    batch = await repo.fetch_batch(None, 10, {"lead_ids": [4, 2], "has_sync_errors": False})
    assert [row["id"] for row in batch] == [4]


@pytest.mark.asyncio
async def test_lead_insert(db_session) -> None:
    repo = LeadRepository(db_session)

    await repo.insert({"id": 10, "nome": "Nova", "raw": {"ID": "10"}, "created_at": BASE})
    await db_session.commit()

    assert await repo.get_values(10, ["nome", "raw"]) == {"id": 10, "nome": "Nova", "raw": {"ID": "10"}}


@pytest.mark.asyncio
async def test_job_progress_requires_owner_and_unchanged_cursor(db_session) -> None:
    jobs = SyncJobRepository(db_session)
    await jobs.add(SyncJobModel(
        id="job-1", kind="reprocess", status=JobStatus.RUNNING.value, batch_size=2, cursor=4, processed_count=4,
    ))
    now = datetime.now(timezone.utc)
    assert await jobs.claim_lease("job-1", "worker-b", now, 300)

    assert await jobs.renew_lease("job-1", "worker-a", now, 300) is False
    assert await jobs.save_progress("job-1", "worker-a", 4, cursor=6, processed_count=6) is False
    assert await jobs.save_progress("job-1", "worker-b", None, cursor=2, processed_count=2) is False
    assert await jobs.save_progress("job-1", "worker-b", 4, cursor=6, processed_count=6) is True
    assert await jobs.renew_lease("job-1", "worker-b", now, 300) is True
    await db_session.commit()

    stored = await jobs.get("job-1")
    assert (stored.cursor, stored.processed_count) == (6, 6)
