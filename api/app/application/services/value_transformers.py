"""
Transformadores de valores del payload.

Funciones puras que implementan el conjunto cerrado de transformaciones
de tipo (to_number, to_string, to_boolean, to_date, to_timestamp).
Entienden los formatos que envia el CRM: montos "6|BRL", decimales con
coma, fechas dd/MM/yyyy y booleanos en portugues.
"""
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, Optional

from app.domain.entities.field_value import FieldValue, ValueKind
from app.shared.constants.sync_constants import Transformation
from app.shared.exceptions.sync import PermanentValidationError
from app.shared.utils.datetime_utils import DateTimeUtils

TRUE_VALUES = frozenset({"1", "true", "t", "y", "yes", "s", "sim"})
FALSE_VALUES = frozenset({"0", "false", "f", "n", "no", "nao", "não"})


def _is_blank(raw: Any) -> bool:
    return raw is None or (isinstance(raw, str) and not raw.strip())


def to_number(raw: Any) -> FieldValue:
    """
    Convierte a numero.

    "6|BRL" -> 6, "1.234,56" -> 1234.56, "12,5" -> 12.5
    """
    if _is_blank(raw):
        return FieldValue.null()
    if isinstance(raw, bool):
        return FieldValue(ValueKind.NUMBER, int(raw))
    if isinstance(raw, (int, float, Decimal)):
        return FieldValue(ValueKind.NUMBER, raw)

    text = str(raw).strip()
    if "|" in text:
        # Formato money del CRM: "<monto>|<moneda>"
        text = text.split("|", 1)[0].strip()
    if "," in text:
        text = text.replace(".", "").replace(",", ".")

    try:
        number = Decimal(text)
    except InvalidOperation:
        raise PermanentValidationError(f"Valor no numerico: '{raw}'")
    if not number.is_finite():
        raise PermanentValidationError(f"Valor no numerico: '{raw}'")

    if number == number.to_integral_value():
        return FieldValue(ValueKind.NUMBER, int(number))
    return FieldValue(ValueKind.NUMBER, float(number))


def to_string(raw: Any) -> FieldValue:
    if raw is None:
        return FieldValue.null()
    if isinstance(raw, bool):
        return FieldValue(ValueKind.STRING, "true" if raw else "false")
    if isinstance(raw, (datetime, date)):
        return FieldValue(ValueKind.STRING, raw.isoformat())
    if isinstance(raw, (list, tuple)):
        # Campos multiple del CRM llegan como lista
        return FieldValue(ValueKind.STRING, ", ".join(str(item) for item in raw))
    return FieldValue(ValueKind.STRING, str(raw))


def to_boolean(raw: Any) -> FieldValue:
    """Acepta bool, 1/0, true/false, sim/nao, Y/N."""
    if _is_blank(raw):
        return FieldValue.null()
    if isinstance(raw, bool):
        return FieldValue(ValueKind.BOOLEAN, raw)
    if isinstance(raw, (int, float)) and raw in (0, 1):
        return FieldValue(ValueKind.BOOLEAN, bool(raw))

    text = str(raw).strip().lower()
    if text in TRUE_VALUES:
        return FieldValue(ValueKind.BOOLEAN, True)
    if text in FALSE_VALUES:
        return FieldValue(ValueKind.BOOLEAN, False)
    raise PermanentValidationError(f"Valor booleano invalido: '{raw}'")


def to_timestamp(raw: Any) -> FieldValue:
    if _is_blank(raw):
        return FieldValue.null()
    parsed = DateTimeUtils.parse_timestamp(raw)
    if parsed is None:
        raise PermanentValidationError(f"Fecha/hora invalida: '{raw}'")
    return FieldValue(ValueKind.TIMESTAMP, parsed)


def to_date(raw: Any) -> FieldValue:
    stamped = to_timestamp(raw)
    if stamped.is_null:
        return stamped
    return FieldValue(ValueKind.TIMESTAMP, stamped.value.date())


TRANSFORMERS: Dict[Transformation, Callable[[Any], FieldValue]] = {
    Transformation.TO_NUMBER: to_number,
    Transformation.TO_STRING: to_string,
    Transformation.TO_BOOLEAN: to_boolean,
    Transformation.TO_DATE: to_date,
    Transformation.TO_TIMESTAMP: to_timestamp,
}


def apply_value_map(raw: Any, value_map: Optional[Dict[str, Any]]) -> Any:
    """
    Traduce valores enumerados (ej: ids de enum del CRM) antes de transformar.

    Las claves se comparan como string; un valor sin entrada pasa sin cambios.
    """
    if not value_map or raw is None:
        return raw
    if isinstance(raw, list):
        return [value_map.get(str(item), item) for item in raw]
    return value_map.get(str(raw), raw)


def transform(raw: Any, transformation: Optional[str]) -> FieldValue:
    """
    Aplica una transformacion por nombre.

    Sin transformacion el valor se envuelve tal cual.

    Raises:
        PermanentValidationError: transformacion desconocida o valor invalido
    """
    if not transformation:
        return FieldValue.of(raw)
    try:
        key = Transformation(transformation)
    except ValueError:
        raise PermanentValidationError(f"Transformacion desconocida: '{transformation}'")
    return TRANSFORMERS[key](raw)
