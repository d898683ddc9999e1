"""
Valores tipados del payload de sincronizacion.

Los payloads que vienen del CRM o de la base local son mapas heterogeneos.
Antes de escribirse en un destino cada valor se convierte en un FieldValue
etiquetado, y su tipo se valida contra la familia de la columna destino.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional


class ValueKind(Enum):
    """Etiqueta del valor."""
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    TIMESTAMP = "timestamp"
    JSON = "json"
    NULL = "null"


@dataclass(frozen=True)
class FieldValue:
    """Valor etiquetado. `value` siempre es coherente con `kind`."""

    kind: ValueKind
    value: Any = None

    @classmethod
    def null(cls) -> "FieldValue":
        return cls(ValueKind.NULL, None)

    @classmethod
    def of(cls, raw: Any) -> "FieldValue":
        """
        Envuelve un valor python sin transformarlo.

        bool se evalua antes que int porque es subclase de int.
        """
        if raw is None:
            return cls.null()
        if isinstance(raw, bool):
            return cls(ValueKind.BOOLEAN, raw)
        if isinstance(raw, (int, float, Decimal)):
            return cls(ValueKind.NUMBER, raw)
        if isinstance(raw, datetime):
            if raw.tzinfo is None:
                raw = raw.replace(tzinfo=timezone.utc)
            return cls(ValueKind.TIMESTAMP, raw)
        if isinstance(raw, date):
            return cls(ValueKind.TIMESTAMP, raw)
        if isinstance(raw, (dict, list)):
            return cls(ValueKind.JSON, raw)
        return cls(ValueKind.STRING, str(raw))

    @property
    def is_null(self) -> bool:
        return self.kind is ValueKind.NULL

    def to_python(self) -> Optional[Any]:
        """Valor nativo listo para el driver de base de datos."""
        return self.value
