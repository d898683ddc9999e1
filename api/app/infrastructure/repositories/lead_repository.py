"""
Repositorio de leads en la base operacional.

Las columnas de la tabla leads pueden crecer por reconciliacion de schema,
por eso las lecturas filtradas y las escrituras se arman con SQL Core sobre
una tabla ligera construida con los nombres pedidos.
"""
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional

from sqlalchemy import and_, column, func, insert, inspect, or_, select, table, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.domain.entities.sync import ColumnDescriptor
from app.infrastructure.database.models import LeadModel
from app.shared.exceptions.domain import ValidationException
from app.shared.utils.datetime_utils import DateTimeUtils

FILTER_KEYS = ("null_fields", "any_null_fields", "created_from", "created_to", "lead_ids", "has_sync_errors")


def lead_table(names: Iterable[str], table_name: str = "leads"):
    """
    Tabla ligera con las columnas pedidas.

    Las columnas conocidas por el modelo conservan su tipo (JSON, DateTime),
    las demas se tratan como tipo generico.
    """
    known = LeadModel.__table__.c
    columns = []
    for name in dict.fromkeys(names):
        columns.append(column(name, known[name].type) if name in known else column(name))
    return table(table_name, *columns)


def normalize_filters(filters: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """
    Valida y normaliza los criterios de filtro de un job.

    Raises:
        ValidationException: clave desconocida, fecha o id invalido
    """
    filters = dict(filters or {})
    unknown = set(filters) - set(FILTER_KEYS)
    if unknown:
        raise ValidationException(
            f"Filtros desconocidos: {', '.join(sorted(unknown))}",
            field="filter_criteria",
        )

    normalized: Dict[str, Any] = {}
    for key in ("null_fields", "any_null_fields"):
        values = filters.get(key) or []
        if isinstance(values, str):
            values = [values]
        if values:
            normalized[key] = sorted(set(str(v) for v in values))

    for key in ("created_from", "created_to"):
        raw = filters.get(key)
        if raw in (None, ""):
            continue
        parsed = DateTimeUtils.parse_timestamp(raw)
        if parsed is None:
            raise ValidationException(f"Fecha invalida en '{key}': {raw}", field=key)
        normalized[key] = parsed.isoformat()

    lead_ids = filters.get("lead_ids") or []
    if isinstance(lead_ids, (str, int)):
        lead_ids = [lead_ids]
    if lead_ids:
        try:
            normalized["lead_ids"] = sorted({int(v) for v in lead_ids})
        except (TypeError, ValueError):
            raise ValidationException(f"Ids de lead invalidos: {lead_ids}", field="lead_ids")

    if filters.get("has_sync_errors") is not None:
        normalized["has_sync_errors"] = bool(filters["has_sync_errors"])
    return normalized


def filter_columns(filters: Mapping[str, Any]) -> List[str]:
    """Columnas elegidas por el usuario que el filtro necesita; se validan contra la tabla viva."""
    return list(filters.get("null_fields", [])) + list(filters.get("any_null_fields", []))


def build_filter_clauses(leads, filters: Mapping[str, Any]) -> list:
    """
    Predicados compartidos por el conteo y por cada lectura de batch.

    - null_fields: todas las columnas listadas son NULL
    - any_null_fields: al menos una es NULL
    - created_from / created_to: rango sobre created_at
    - lead_ids: id dentro de la lista
    - has_sync_errors: valor del flag (NULL cuenta como False)
    """
    clauses = []
    for name in filters.get("null_fields", []):
        clauses.append(leads.c[name].is_(None))

    any_null = filters.get("any_null_fields", [])
    if any_null:
        clauses.append(or_(*[leads.c[name].is_(None) for name in any_null]))

    if filters.get("created_from"):
        clauses.append(leads.c.created_at >= DateTimeUtils.parse_timestamp(filters["created_from"]))
    if filters.get("created_to"):
        clauses.append(leads.c.created_at <= DateTimeUtils.parse_timestamp(filters["created_to"]))
    if filters.get("lead_ids"):
        clauses.append(leads.c.id.in_(filters["lead_ids"]))
    if "has_sync_errors" in filters:
        flag = leads.c.has_sync_errors
        clauses.append(flag.is_(True) if filters["has_sync_errors"] else or_(flag.is_(None), flag.is_(False)))
    return clauses


class LeadRepository:
    """Gestiona la tabla leads."""

    def __init__(self, db: AsyncSession, table_name: str = "leads"):
        self.db = db
        self.table_name = table_name

    async def list_columns(self) -> List[ColumnDescriptor]:
        """Columnas vivas de la tabla (no las del modelo ORM)."""

        def _inspect(sync_session) -> list:
            inspector = inspect(sync_session.connection())
            return inspector.get_columns(self.table_name)

        raw_columns = await self.db.run_sync(_inspect)
        return [
            ColumnDescriptor(
                name=col["name"],
                data_type=str(col["type"]).lower(),
                nullable=bool(col.get("nullable", True)),
                has_default=col.get("default") is not None,
            )
            for col in raw_columns
        ]

    async def count(self, filters: Mapping[str, Any]) -> int:
        leads = lead_table(["id", "created_at", "has_sync_errors", *filter_columns(filters)], self.table_name)
        query = select(func.count()).select_from(leads)
        clauses = build_filter_clauses(leads, filters)
        if clauses:
            query = query.where(and_(*clauses))
        return int((await self.db.execute(query)).scalar_one())

    async def fetch_batch(
        self,
        after_id: Optional[int],
        limit: int,
        filters: Mapping[str, Any],
    ) -> List[Dict[str, Any]]:
        """
        Siguiente batch estrictamente despues de `after_id`, por id ascendente.

        Returns:
            Lista de {"id", "raw"}
        """
        leads = lead_table(["id", "raw", "created_at", "has_sync_errors", *filter_columns(filters)], self.table_name)
        clauses = build_filter_clauses(leads, filters)
        if after_id is not None:
            clauses.append(leads.c.id > after_id)

        query = select(leads.c.id, leads.c.raw)
        if clauses:
            query = query.where(and_(*clauses))
        query = query.order_by(leads.c.id.asc()).limit(limit)

        result = await self.db.execute(query)
        return [{"id": row.id, "raw": row.raw} for row in result]

    async def get_values(self, lead_id: int, names: Iterable[str]) -> Optional[Dict[str, Any]]:
        leads = lead_table(["id", *names], self.table_name)
        result = await self.db.execute(select(leads).where(leads.c.id == lead_id))
        row = result.mappings().first()
        return dict(row) if row else None

    async def update_fields(self, lead_id: int, values: Mapping[str, Any]) -> bool:
        """
        Actualiza columnas arbitrarias de un lead.

        Returns:
            bool: False si el lead no existe
        """
        if not values:
            return False
        leads = lead_table(["id", *values.keys()], self.table_name)
        result = await self.db.execute(
            update(leads).where(leads.c.id == lead_id).values(**dict(values))
        )
        await self.db.flush()
        return result.rowcount == 1

    async def mark_synced(self, lead_id: int, source: str, now: Optional[datetime] = None) -> bool:
        """Registra en el lead local la ultima sincronizacion exitosa."""
        return await self.update_fields(lead_id, {
            "last_sync_at": now or DateTimeUtils.now_utc(),
            "sync_source": source,
        })

    async def insert(self, values: Mapping[str, Any]) -> None:
        """Inserta un lead nuevo con columnas arbitrarias (debe incluir id)."""
        leads = lead_table(values.keys(), self.table_name)
        await self.db.execute(insert(leads).values(**dict(values)))
        await self.db.flush()
