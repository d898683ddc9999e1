"""
Destino Postgres (psycopg v3 async) para reconciliacion de schema.

Se usa tanto para la base local (direccion pull) como para el espejo
remoto (direccion push). Cada llamada tiene timeout acotado; un timeout
o una caida de conexion es un error transitorio.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, List, Optional, TypeVar

import psycopg
from psycopg.rows import dict_row
from loguru import logger

from app.domain.entities.sync import ColumnDescriptor
from app.shared.exceptions.sync import (
    PermanentValidationError,
    SchemaMismatchError,
    SyncConfigurationError,
    TransientRemoteError,
)

T = TypeVar("T")

LIST_COLUMNS_SQL = """
    SELECT column_name, data_type, is_nullable, column_default
    FROM information_schema.columns
    WHERE table_schema = %s
      AND table_name = %s
    ORDER BY ordinal_position
"""

RELOAD_SCHEMA_SQL = "NOTIFY pgrst, 'reload schema'"


def translate_psycopg_error(exc: psycopg.Error) -> Exception:
    """
    Traduce errores del driver a la taxonomia del pipeline.

    - columna inexistente -> SchemaMismatchError
    - datos/constraints invalidos -> PermanentValidationError
    - resto (conexion, timeouts, errores internos) -> TransientRemoteError
    """
    message = getattr(getattr(exc, "diag", None), "message_primary", None) or str(exc)
    if isinstance(exc, psycopg.errors.UndefinedColumn):
        return SchemaMismatchError(message)
    if isinstance(exc, (psycopg.DataError, psycopg.IntegrityError)):
        return PermanentValidationError(message)
    return TransientRemoteError(message, details={"driver_error": exc.__class__.__name__})


class PostgresSchemaTarget:
    """
    Conexion psycopg async con autocommit.

    Uso:
        async with PostgresSchemaTarget(conninfo, "public", "leads") as target:
            await target.list_columns()
    """

    def __init__(
        self,
        conninfo: str,
        schema: str,
        table: str,
        *,
        timeout_s: float = 15.0,
        label: str = "postgres",
    ) -> None:
        if not conninfo:
            raise SyncConfigurationError(f"Falta la URL de conexion para '{label}'")
        self._conninfo = conninfo
        self.schema = schema
        self.table = table
        self._timeout_s = timeout_s
        self._label = label
        self._conn: Optional[psycopg.AsyncConnection] = None

    async def __aenter__(self) -> "PostgresSchemaTarget":
        await self._connection()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        if self._conn is not None:
            await self._conn.close()
            self._conn = None

    async def _connection(self) -> psycopg.AsyncConnection:
        if self._conn is None or self._conn.closed:
            try:
                self._conn = await asyncio.wait_for(
                    psycopg.AsyncConnection.connect(
                        self._conninfo,
                        row_factory=dict_row,
                        autocommit=True,
                        connect_timeout=max(1, int(self._timeout_s)),
                    ),
                    timeout=self._timeout_s,
                )
            except asyncio.TimeoutError as e:
                raise TransientRemoteError(f"Timeout conectando a {self._label}") from e
            except psycopg.OperationalError as e:
                raise TransientRemoteError(f"No se pudo conectar a {self._label}: {e}") from e
        return self._conn

    async def _bounded(self, awaitable: Awaitable[T], what: str) -> T:
        """Ejecuta con timeout y traduce errores del driver."""
        try:
            return await asyncio.wait_for(awaitable, timeout=self._timeout_s)
        except asyncio.TimeoutError as e:
            await self._discard_connection()
            raise TransientRemoteError(f"Timeout en {self._label} ({what})") from e
        except psycopg.Error as e:
            if isinstance(e, (psycopg.OperationalError, psycopg.InterfaceError)):
                await self._discard_connection()
            raise translate_psycopg_error(e) from e

    async def _discard_connection(self) -> None:
        conn, self._conn = self._conn, None
        if conn is not None and not conn.closed:
            try:
                await conn.close()
            except psycopg.Error as e:
                logger.warning(f"No se pudo cerrar conexion a {self._label}: {e}")

    async def _fetch(self, sql: str, params: tuple = ()) -> list[dict[str, Any]]:
        conn = await self._connection()

        async def _run() -> list[dict[str, Any]]:
            async with conn.cursor() as cur:
                await cur.execute(sql, params)
                return await cur.fetchall()

        return await self._bounded(_run(), "fetch")

    async def _execute(self, sql: str, params: tuple = ()) -> int:
        conn = await self._connection()

        async def _run() -> int:
            async with conn.cursor() as cur:
                await cur.execute(sql, params)
                return cur.rowcount or 0

        return await self._bounded(_run(), "execute")

    async def list_columns(self) -> List[ColumnDescriptor]:
        rows = await self._fetch(LIST_COLUMNS_SQL, (self.schema, self.table))
        return [
            ColumnDescriptor(
                name=row["column_name"],
                data_type=row["data_type"],
                nullable=row["is_nullable"] == "YES",
                has_default=row["column_default"] is not None,
            )
            for row in rows
        ]

    async def execute(self, sql: str) -> None:
        await self._execute(sql)

    async def reload_schema_cache(self) -> None:
        await self._execute(RELOAD_SCHEMA_SQL)
