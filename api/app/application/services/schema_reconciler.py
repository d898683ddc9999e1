"""
Reconciliacion de schema entre dos tablas de leads.

Etapas lineales: received -> diffed -> (no-op | altering -> indexing ->
cache-reloading) -> done. Solo agrega columnas: nunca borra ni altera tipos.
"""
import re
import time
from typing import Dict, Iterable, List, Optional, Tuple

from loguru import logger

from app.domain.entities.sync import ColumnDescriptor, ReconcileResult
from app.infrastructure.external.lead_sync.types import (
    SchemaTarget,
    is_safe_identifier,
    qualified_table,
    quote_ident,
)
from app.shared.constants.sync_constants import INDEX_EXCLUDED_COLUMNS, SchemaDirection
from app.shared.exceptions.sync import SchemaReconciliationError

# Tipo de information_schema -> tipo DDL. Tipos fuera de la tabla se omiten.
DDL_TYPES: Dict[str, str] = {
    "text": "TEXT",
    "character varying": "TEXT",
    "varchar": "TEXT",
    "integer": "INTEGER",
    "bigint": "BIGINT",
    "smallint": "SMALLINT",
    "boolean": "BOOLEAN",
    "numeric": "NUMERIC",
    "decimal": "NUMERIC",
    "real": "REAL",
    "double precision": "DOUBLE PRECISION",
    "timestamp with time zone": "TIMESTAMPTZ",
    "timestamp without time zone": "TIMESTAMP",
    "timestamptz": "TIMESTAMPTZ",
    "date": "DATE",
    "time": "TIME",
    "uuid": "UUID",
    "jsonb": "JSONB",
    "json": "JSONB",
    "bytea": "BYTEA",
}

MAX_IDENTIFIER_LENGTH = 63


def map_data_type(data_type: str) -> Optional[str]:
    """Tipo DDL para un data_type; ignora precision/longitud ("numeric(12, 2)")."""
    key = re.sub(r"\(.*\)$", "", (data_type or "").lower()).strip()
    return DDL_TYPES.get(key)


def index_name(table: str, column: str) -> str:
    return f"idx_{table}_{column}"[:MAX_IDENTIFIER_LENGTH]


def build_reconcile_sql(
    schema: str,
    table: str,
    missing: Iterable[ColumnDescriptor],
) -> Tuple[Optional[str], List[Tuple[str, str]], List[str], List[str]]:
    """
    Genera el DDL para las columnas faltantes.

    Returns:
        (alter_sql, [(index_name, index_sql)], columnas agregadas, columnas omitidas)
    """
    parts: List[str] = []
    indexes: List[Tuple[str, str]] = []
    added: List[str] = []
    skipped: List[str] = []

    target = qualified_table(schema, table)
    for col in missing:
        if not is_safe_identifier(col.name):
            logger.warning(f"Columna con nombre no seguro omitida: {col.name!r}")
            skipped.append(col.name)
            continue

        ddl_type = map_data_type(col.data_type)
        if not ddl_type:
            logger.warning(f"Tipo no soportado: {col.name} ({col.data_type})")
            skipped.append(col.name)
            continue

        # Siempre nullable: NOT NULL sin default falla sobre tablas con filas
        parts.append(f"ADD COLUMN IF NOT EXISTS {quote_ident(col.name)} {ddl_type}")
        added.append(col.name)

        if col.name not in INDEX_EXCLUDED_COLUMNS:
            name = index_name(table, col.name)
            indexes.append((
                name,
                f"CREATE INDEX IF NOT EXISTS {quote_ident(name)} ON {target} ({quote_ident(col.name)})",
            ))

    alter_sql = f"ALTER TABLE {target} " + ", ".join(parts) if parts else None
    return alter_sql, indexes, added, skipped


class SchemaReconciler:
    """
    Agrega al destino las columnas que existen en el origen.

    La falla del ALTER es fatal (SchemaReconciliationError); la falla de un
    indice o del reload de cache es un warning.
    """

    def __init__(self, target: SchemaTarget, schema: str, table: str):
        self.target = target
        self.schema = schema
        self.table = table

    async def reconcile(
        self,
        source_columns: Iterable[ColumnDescriptor],
        direction: SchemaDirection = SchemaDirection.PULL,
        dry_run: bool = False,
    ) -> ReconcileResult:
        started = time.monotonic()
        source_columns = list(source_columns)
        result = ReconcileResult(direction=SchemaDirection(direction), dry_run=dry_run)
        result.stages.append("received")
        result.columns_analyzed = len(source_columns)

        existing = {col.name for col in await self.target.list_columns()}
        missing = [col for col in source_columns if col.name not in existing]
        result.columns_missing = [col.name for col in missing]
        result.stages.append("diffed")
        logger.info(
            f"Reconciliacion {result.direction.value} sobre {self.schema}.{self.table}: "
            f"{len(source_columns)} columnas analizadas, {len(missing)} faltantes"
        )

        alter_sql, indexes, added, skipped = build_reconcile_sql(self.schema, self.table, missing)
        result.columns_skipped = skipped

        if not alter_sql:
            result.stages.extend(["no-op", "done"])
            result.processing_time_ms = _elapsed_ms(started)
            return result

        statements = [alter_sql] + [sql for _, sql in indexes]
        result.sql_executed = ";\n".join(statements + ["NOTIFY pgrst, 'reload schema'"]) + ";"

        if dry_run:
            result.stages.append("done")
            result.processing_time_ms = _elapsed_ms(started)
            logger.info(f"Dry run: {len(added)} columnas a agregar")
            return result

        result.stages.append("altering")
        try:
            await self.target.execute(alter_sql)
        except Exception as e:
            logger.error(f"Fallo el ALTER TABLE en {self.schema}.{self.table}: {e}")
            raise SchemaReconciliationError(f"No se pudieron agregar columnas: {e}", sql=alter_sql) from e
        result.columns_added = added

        result.stages.append("indexing")
        for name, sql in indexes:
            try:
                await self.target.execute(sql)
                result.indexes_created.append(name)
            except Exception as e:
                logger.warning(f"No se pudo crear el indice {name}: {e}")
                result.index_failures.append(name)

        result.stages.append("cache-reloading")
        try:
            await self.target.reload_schema_cache()
            result.schema_reloaded = True
        except Exception as e:
            logger.warning(f"No se pudo recargar el cache de schema: {e}")

        result.stages.append("done")
        result.processing_time_ms = _elapsed_ms(started)
        logger.success(
            f"Reconciliacion completada: {len(result.columns_added)} columnas agregadas, "
            f"{len(result.indexes_created)} indices creados"
        )
        return result


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)
