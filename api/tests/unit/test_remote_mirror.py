from __future__ import annotations

from datetime import datetime, timezone

import pytest

pytest.importorskip("psycopg")

import psycopg
from psycopg.types.json import Jsonb

from app.infrastructure.external.lead_sync.postgres_target import (
    PostgresSchemaTarget,
    translate_psycopg_error,
)
from app.infrastructure.external.lead_sync.remote_mirror import (
    PostgresRemoteMirror,
    build_upsert_sql,
)
from app.shared.exceptions.sync import (
    PermanentValidationError,
    SchemaMismatchError,
    SyncConfigurationError,
    TransientRemoteError,
)


class _DummyCursor:
    def __init__(self, rows=None, rowcount: int = 1, error: Exception | None = None) -> None:
        self.rows = rows or []
        self.rowcount = rowcount
        self.error = error
        self.executed: list[tuple[str, tuple]] = []

    async def execute(self, sql: str, params=()) -> None:
        self.executed.append((sql, params))
        if self.error:
            raise self.error

    async def fetchall(self):
        return self.rows

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


class _DummyConn:
    def __init__(self, cursor: _DummyCursor) -> None:
        self._cursor = cursor
        self.closed = False

    def cursor(self):
        return self._cursor

    async def close(self) -> None:
        self.closed = True


def _mirror(cursor: _DummyCursor) -> PostgresRemoteMirror:
    mirror = PostgresRemoteMirror("postgresql://dummy", "public", "leads")
    mirror._conn = _DummyConn(cursor)
    return mirror


def test_upsert_sql_has_conflict_and_updated_at_guard() -> None:
    sql = build_upsert_sql("public", "leads", ["id", "nome", "updated_at"])

    assert sql.startswith('INSERT INTO "public"."leads" ("id", "nome", "updated_at") VALUES (%s, %s, %s)')
    assert 'ON CONFLICT ("id") DO UPDATE SET "nome" = EXCLUDED."nome"' in sql
    assert 'EXCLUDED."updated_at" >= "public"."leads"."updated_at"' in sql


def test_upsert_sql_without_updated_at_or_other_columns() -> None:
    assert "WHERE" not in build_upsert_sql("public", "leads", ["id", "nome"])
    assert build_upsert_sql("public", "leads", ["id"]).endswith("DO NOTHING")
    with pytest.raises(ValueError):
        build_upsert_sql("public", "leads", ["nome"])
    with pytest.raises(ValueError):
        build_upsert_sql("public", "leads", ["id", 'nome"; drop table leads; --'])


@pytest.mark.asyncio
async def test_upsert_sends_id_as_int_and_json_as_jsonb() -> None:
    cursor = _DummyCursor()
    mirror = _mirror(cursor)

    await mirror.upsert("42", {"id": 99, "nome": "Ana", "sync_errors": {"a": 1}})

    sql, params = cursor.executed[0]
    assert '("id", "nome", "sync_errors")' in sql
    assert params[0] == 42
    assert params[1] == "Ana"
    assert isinstance(params[2], Jsonb)


@pytest.mark.asyncio
async def test_delete_reports_whether_a_row_existed() -> None:
    assert await _mirror(_DummyCursor(rowcount=1)).delete("7") is True
    assert await _mirror(_DummyCursor(rowcount=0)).delete("7") is False


@pytest.mark.asyncio
async def test_get_updated_at_parses_remote_value() -> None:
    ts = datetime(2024, 5, 1, 10, tzinfo=timezone.utc)
    assert await _mirror(_DummyCursor(rows=[{"updated_at": ts}])).get_updated_at("1") == ts
    assert await _mirror(_DummyCursor(rows=[])).get_updated_at("1") is None


@pytest.mark.asyncio
async def test_driver_errors_are_translated() -> None:
    cursor = _DummyCursor(error=psycopg.errors.UndefinedColumn('column "telefone" does not exist'))
    with pytest.raises(SchemaMismatchError):
        await _mirror(cursor).upsert("1", {"telefone": "11"})

    cursor = _DummyCursor(error=psycopg.OperationalError("server closed the connection"))
    mirror = _mirror(cursor)
    with pytest.raises(TransientRemoteError):
        await mirror.delete("1")
    assert mirror._conn is None


def test_translate_data_errors_as_permanent() -> None:
    assert isinstance(translate_psycopg_error(psycopg.DataError("bad value")), PermanentValidationError)
    assert isinstance(translate_psycopg_error(psycopg.IntegrityError("dup")), PermanentValidationError)
    assert isinstance(translate_psycopg_error(psycopg.InternalError("boom")), TransientRemoteError)


def test_missing_conninfo_is_a_configuration_error() -> None:
    with pytest.raises(SyncConfigurationError):
        PostgresSchemaTarget("", "public", "leads", label="espejo remoto")


@pytest.mark.asyncio
async def test_list_columns_maps_information_schema_rows() -> None:
    cursor = _DummyCursor(rows=[
        {"column_name": "id", "data_type": "bigint", "is_nullable": "NO", "column_default": None},
        {"column_name": "nome", "data_type": "text", "is_nullable": "YES", "column_default": None},
        {"column_name": "created_at", "data_type": "timestamp with time zone", "is_nullable": "YES", "column_default": "now()"},
    ])
    columns = await _mirror(cursor).list_columns()

    assert [c.name for c in columns] == ["id", "nome", "created_at"]
    assert columns[0].nullable is False
    assert columns[2].has_default is True
    assert cursor.executed[0][1] == ("public", "leads")
