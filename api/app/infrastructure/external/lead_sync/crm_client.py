"""
Cliente minimo del CRM upstream (REST estilo Bitrix24, via webhook).

Requisitos cubiertos:
- requests
- paginacion por token 'next'
- rate-limit/backoff (429, 5xx, errores de red)
- lectura de un lead (crm.lead.get) y de sus campos (crm.lead.fields)
"""

from __future__ import annotations

import time
from typing import Any, Iterable, Optional

import requests

from app.domain.entities.sync import SourceField
from app.shared.exceptions.sync import (
    PermanentValidationError,
    SyncConfigurationError,
    TransientRemoteError,
)

from .types import CrmRecord

# Tipos del CRM -> familias de tipos del motor de mapeo
CRM_FIELD_TYPES = {
    "string": "string",
    "char": "string",
    "url": "string",
    "crm_status": "string",
    "enumeration": "string",
    "crm_multifield": "string",
    "address": "string",
    "integer": "integer",
    "double": "numeric",
    "money": "string",  # llega como "6|BRL"
    "boolean": "boolean",
    "date": "date",
    "datetime": "timestamp",
    "file": "jsonb",
    "user": "integer",
    "employee": "integer",
    "crm_entity": "string",
}


class CrmClient:
    """
    Cliente HTTP del CRM.

    Importante:
    - No hace cast de tipos de campos: eso se decide en el mapeo.
    - Es sincronico (requests); desde codigo async se llama con asyncio.to_thread.
    """

    def __init__(
        self,
        base_url: str,
        *,
        session: Optional[requests.Session] = None,
        timeout_s: int = 30,
        max_retries: int = 6,
        min_backoff_s: float = 0.8,
        max_backoff_s: float = 20.0,
        sleep=time.sleep,
    ) -> None:
        if not base_url:
            raise SyncConfigurationError("Falta CRM_BASE_URL para consultar el CRM")
        self._base_url = base_url.rstrip("/")
        self._timeout_s = timeout_s
        self._max_retries = max_retries
        self._min_backoff_s = min_backoff_s
        self._max_backoff_s = max_backoff_s
        self._session = session or requests.Session()
        self._sleep = sleep

    def get_lead(self, lead_id: Any) -> CrmRecord:
        """
        Lee un lead por id.

        Raises:
            PermanentValidationError: el CRM no conoce el lead
            TransientRemoteError: red/429/5xx tras agotar reintentos
        """
        payload = self._request_json("crm.lead.get.json", [("ID", str(lead_id))])
        result = payload.get("result")
        if not result:
            raise PermanentValidationError(f"Lead {lead_id} no encontrado en el CRM")
        return CrmRecord(record_id=str(result.get("ID", lead_id)), fields=result)

    def iter_list(
        self,
        method: str,
        *,
        params: Optional[list[tuple[str, Any]]] = None,
    ) -> Iterable[dict[str, Any]]:
        """
        Itera los resultados de un metodo de listado (ej: crm.lead.list).

        El CRM pagina con 'start' y devuelve el proximo offset en 'next'.
        """
        start: Optional[int] = 0
        while start is not None:
            query = list(params or []) + [("start", start)]
            payload = self._request_json(f"{method}.json", query)
            for item in payload.get("result") or []:
                yield item
            start = payload.get("next")

    def list_lead_fields(self) -> list[SourceField]:
        """Campos del lead (crm.lead.fields) como SourceField para sugerencias."""
        payload = self._request_json("crm.lead.fields.json", [])
        fields = payload.get("result") or {}
        return [
            SourceField(
                name=field_id,
                data_type=CRM_FIELD_TYPES.get(str(meta.get("type", "string")).lower(), "string"),
                title=meta.get("listLabel") or meta.get("formLabel") or meta.get("title"),
            )
            for field_id, meta in fields.items()
        ]

    def _request_json(self, method: str, query: list[tuple[str, Any]]) -> dict[str, Any]:
        """
        Request HTTP con backoff para 429/5xx.

        Estrategia:
        - 429: respeta Retry-After si existe, si no exponencial con jitter simple.
        - 5xx y errores de red: exponencial con jitter.
        - 4xx (no 429): error inmediato, no se reintenta.
        """
        url = f"{self._base_url}/{method}"

        for attempt in range(self._max_retries + 1):
            try:
                resp = self._session.request(
                    method="GET",
                    url=url,
                    params=query,
                    timeout=self._timeout_s,
                )
            except (requests.ConnectionError, requests.Timeout) as e:
                if attempt >= self._max_retries:
                    raise TransientRemoteError(f"CRM inaccesible tras {attempt} reintentos: {e}") from e
                self._sleep(self._backoff(attempt))
                continue

            if 200 <= resp.status_code < 300:
                return resp.json()

            # Errores recuperables
            if resp.status_code == 429 or 500 <= resp.status_code < 600:
                if attempt >= self._max_retries:
                    raise TransientRemoteError(
                        f"CRM error {resp.status_code} tras {attempt} reintentos",
                        details={"status_code": resp.status_code},
                    )

                retry_after = resp.headers.get("Retry-After")
                if retry_after:
                    try:
                        sleep_s = float(retry_after)
                    except ValueError:
                        sleep_s = self._min_backoff_s
                else:
                    sleep_s = self._backoff(attempt)

                self._sleep(sleep_s)
                continue

            # Errores no recuperables
            raise PermanentValidationError(
                f"CRM request fallo {resp.status_code}: {_error_description(resp)}"
            )

        raise TransientRemoteError("CRM sin respuesta")

    def _backoff(self, attempt: int) -> float:
        # Exponencial simple + jitter proporcional
        base = min(self._max_backoff_s, self._min_backoff_s * (2 ** attempt))
        return base + (0.15 * base)


def _error_description(resp: requests.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text[:200]
    return str(body.get("error_description") or body.get("error") or body)[:200]
