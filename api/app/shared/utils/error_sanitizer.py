"""
Sanitizacion de mensajes de error antes de persistirlos.

Los mensajes guardados en change_events, sync_jobs y sync_logs_detailed
no deben exponer stack traces ni rutas de archivos.
"""
import re
from typing import Optional

from app.shared.exceptions.base import AppException

DEFAULT_ERROR_MESSAGE = "Ocurrio un error"
MAX_ERROR_LENGTH = 500

_FRAME_PREFIXES = ("at ", "File \"", "Traceback ")
_PAREN_LOCATION = re.compile(r"\([^()]*:\d+(?::\d+)?\)")
_TRAILING_AT = re.compile(r"\s+at\s+.*$")
_FILE_PATH = re.compile(r"(?:[A-Za-z]:)?(?:[\\/][\w.\-]+)+\.(?:py|ts|js)(?::\d+)*")


def sanitize_error_message(message: Optional[str]) -> str:
    """
    Devuelve solo la primera linea util de un mensaje, sin frames ni rutas.

    Args:
        message: mensaje crudo (puede incluir un traceback)

    Returns:
        str: mensaje limpio, nunca vacio
    """
    if not message:
        return DEFAULT_ERROR_MESSAGE

    lines = [
        line.strip()
        for line in str(message).splitlines()
        if line.strip() and not line.strip().startswith(_FRAME_PREFIXES)
    ]
    main = lines[0] if lines else DEFAULT_ERROR_MESSAGE

    main = _TRAILING_AT.sub("", main)
    main = _PAREN_LOCATION.sub("", main)
    main = _FILE_PATH.sub("<file>", main)
    main = re.sub(r"\s{2,}", " ", main).strip()

    return (main or DEFAULT_ERROR_MESSAGE)[:MAX_ERROR_LENGTH]


def describe_exception(exc: BaseException) -> str:
    """Mensaje sanitizado para una excepcion, con su tipo cuando no es propia."""
    if isinstance(exc, AppException):
        return sanitize_error_message(exc.message)
    text = str(exc)
    if not text:
        return exc.__class__.__name__
    return sanitize_error_message(f"{exc.__class__.__name__}: {text}")
