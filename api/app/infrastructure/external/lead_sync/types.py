"""
Tipos y utilidades puras para la sincronizacion de leads con sistemas externos.

Se mantienen libres de I/O para poder testearlos facilmente.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, List, Optional, Protocol

from app.domain.entities.sync import ColumnDescriptor

_SAFE_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]{0,62}$")


def is_safe_identifier(name: str) -> bool:
    """Nombre de columna/tabla aceptado para DDL generado."""
    return bool(name) and bool(_SAFE_IDENTIFIER.match(name))


def quote_ident(name: str) -> str:
    """
    Cita un identificador Postgres.

    Raises:
        ValueError: si el identificador no es seguro
    """
    if not is_safe_identifier(name):
        raise ValueError(f"Identificador invalido: {name!r}")
    return f'"{name}"'


def qualified_table(schema: str, table: str) -> str:
    return f"{quote_ident(schema)}.{quote_ident(table)}"


@dataclass(frozen=True)
class CrmRecord:
    """Lead crudo devuelto por el CRM (crm.lead.get)."""

    record_id: str
    fields: dict[str, Any]


class SchemaTarget(Protocol):
    """Base de datos sobre la que corre la reconciliacion de schema."""

    async def list_columns(self) -> List[ColumnDescriptor]:
        ...

    async def execute(self, sql: str) -> None:
        ...

    async def reload_schema_cache(self) -> None:
        ...


class RemoteMirror(Protocol):
    """Espejo remoto de leads, escrito de forma idempotente por id."""

    async def get_updated_at(self, row_id: str) -> Optional[Any]:
        ...

    async def upsert(self, row_id: str, values: dict[str, Any]) -> None:
        ...

    async def delete(self, row_id: str) -> bool:
        ...
