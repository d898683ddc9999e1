"""
Espejo remoto de leads (tabulador) sobre Postgres.

Escrituras idempotentes por id:
- upsert: INSERT ... ON CONFLICT (id) DO UPDATE
- delete: borrar una fila inexistente no es error
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from psycopg.types.json import Jsonb

from app.shared.utils.datetime_utils import DateTimeUtils

from .postgres_target import PostgresSchemaTarget
from .types import qualified_table, quote_ident


def adapt_value(value: Any) -> Any:
    """Adapta valores nativos a parametros psycopg (dict/list -> jsonb)."""
    if isinstance(value, (dict, list)):
        return Jsonb(value)
    return value


def build_upsert_sql(
    schema: str,
    table: str,
    columns: list[str],
    conflict_pk: str = "id",
    updated_at_col: str = "updated_at",
) -> str:
    """
    UPSERT por PK. Si se escribe updated_at, la fila remota solo se pisa
    cuando la version entrante no es mas vieja.
    """
    if conflict_pk not in columns:
        raise ValueError(f"Falta PK '{conflict_pk}' en columnas para UPSERT")

    target = qualified_table(schema, table)
    insert_cols_sql = ", ".join(quote_ident(c) for c in columns)
    placeholders = ", ".join(["%s"] * len(columns))

    update_cols = [c for c in columns if c != conflict_pk]
    if not update_cols:
        return (
            f"INSERT INTO {target} ({insert_cols_sql}) VALUES ({placeholders}) "
            f"ON CONFLICT ({quote_ident(conflict_pk)}) DO NOTHING"
        )

    set_sql = ", ".join(f"{quote_ident(c)} = EXCLUDED.{quote_ident(c)}" for c in update_cols)
    sql = (
        f"INSERT INTO {target} ({insert_cols_sql}) VALUES ({placeholders}) "
        f"ON CONFLICT ({quote_ident(conflict_pk)}) DO UPDATE SET {set_sql}"
    )
    if updated_at_col in columns:
        col = quote_ident(updated_at_col)
        sql += f" WHERE {target}.{col} IS NULL OR EXCLUDED.{col} >= {target}.{col}"
    return sql


class PostgresRemoteMirror(PostgresSchemaTarget):
    """Tabla de leads del espejo remoto. Tambien sirve como SchemaTarget (push)."""

    def __init__(self, conninfo: str, schema: str, table: str, *, timeout_s: float = 15.0) -> None:
        super().__init__(conninfo, schema, table, timeout_s=timeout_s, label="espejo remoto")

    async def get_updated_at(self, row_id: str) -> Optional[datetime]:
        rows = await self._fetch(
            f"SELECT updated_at FROM {qualified_table(self.schema, self.table)} WHERE id = %s",
            (_coerce_id(row_id),),
        )
        if not rows:
            return None
        return DateTimeUtils.parse_timestamp(rows[0]["updated_at"])

    async def upsert(self, row_id: str, values: dict[str, Any]) -> None:
        row = {"id": _coerce_id(row_id), **{k: v for k, v in values.items() if k != "id"}}
        columns = list(row.keys())
        sql = build_upsert_sql(self.schema, self.table, columns)
        await self._execute(sql, tuple(adapt_value(row[c]) for c in columns))

    async def delete(self, row_id: str) -> bool:
        deleted = await self._execute(
            f"DELETE FROM {qualified_table(self.schema, self.table)} WHERE id = %s",
            (_coerce_id(row_id),),
        )
        return deleted > 0


def _coerce_id(row_id: Any) -> Any:
    """Los ids del CRM son numericos; se envian como int cuando es posible."""
    text = str(row_id)
    return int(text) if text.isdigit() else text
