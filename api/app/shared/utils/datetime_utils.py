"""
Utilidades para manejo de fechas y horas.
"""
from datetime import date, datetime, timezone
from typing import Any, Optional


# Formatos brasileros que envia el CRM ademas de ISO 8601
BR_DATETIME_FORMATS = (
    "%d/%m/%Y %H:%M:%S",
    "%d/%m/%Y %H:%M",
    "%d/%m/%Y",
)


class DateTimeUtils:
    """Clase de utilidades para operaciones con fechas y horas."""

    @staticmethod
    def now_utc() -> datetime:
        """
        Obtiene la fecha y hora actual en UTC.

        Returns:
            datetime: Fecha y hora actual en UTC
        """
        return datetime.now(timezone.utc)

    @staticmethod
    def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
        """
        Normaliza un datetime a UTC aware.

        Los drivers sin soporte de zona horaria (sqlite) devuelven datetimes
        naive: se asumen en UTC.
        """
        if dt is None:
            return None
        if dt.tzinfo is None:
            return dt.replace(tzinfo=timezone.utc)
        return dt.astimezone(timezone.utc)

    @staticmethod
    def parse_timestamp(value: Any) -> Optional[datetime]:
        """
        Interpreta un timestamp en ISO 8601 o en formato brasilero dd/MM/yyyy[ HH:mm[:ss]].

        Args:
            value: datetime, date o string

        Returns:
            Optional[datetime]: datetime UTC aware o None si no se pudo interpretar
        """
        if value is None:
            return None
        if isinstance(value, datetime):
            return DateTimeUtils.ensure_utc(value)
        if isinstance(value, date):
            return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
        if not isinstance(value, str):
            return None

        raw = value.strip()
        if not raw:
            return None

        iso = raw[:-1] + "+00:00" if raw.endswith("Z") else raw
        try:
            return DateTimeUtils.ensure_utc(datetime.fromisoformat(iso))
        except ValueError:
            pass

        for fmt in BR_DATETIME_FORMATS:
            try:
                return datetime.strptime(raw, fmt).replace(tzinfo=timezone.utc)
            except ValueError:
                continue
        return None


def utc_now() -> datetime:
    """Atajo usado como default de columnas."""
    return DateTimeUtils.now_utc()
