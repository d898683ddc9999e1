from __future__ import annotations

from typing import Any

import pytest
import requests

from app.infrastructure.external.lead_sync.crm_client import CrmClient
from app.shared.exceptions.sync import (
    PermanentValidationError,
    SyncConfigurationError,
    TransientRemoteError,
)


class _DummyResponse:
    def __init__(self, status_code: int, payload: Any = None, headers: dict | None = None) -> None:
        self.status_code = status_code
        self._payload = payload if payload is not None else {}
        self.headers = headers or {}
        self.text = str(self._payload)

    def json(self):
        return self._payload


class _DummySession:
    """Devuelve las respuestas en orden y registra cada request."""

    def __init__(self, responses: list) -> None:
        self._responses = list(responses)
        self.calls: list[dict] = []

    def request(self, **kwargs):
        self.calls.append(kwargs)
        item = self._responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


def _client(responses: list, **kwargs):
    session = _DummySession(responses)
    sleeps: list[float] = []
    client = CrmClient(
        "https://crm.example.com/rest/1/token/",
        session=session,
        sleep=sleeps.append,
        **kwargs,
    )
    return client, session, sleeps


def test_missing_base_url_is_a_configuration_error() -> None:
    with pytest.raises(SyncConfigurationError):
        CrmClient("")


def test_get_lead_returns_record() -> None:
    client, session, _ = _client([_DummyResponse(200, {"result": {"ID": "15", "NAME": "Ana"}})])

    record = client.get_lead(15)

    assert record.record_id == "15"
    assert record.fields["NAME"] == "Ana"
    assert session.calls[0]["url"] == "https://crm.example.com/rest/1/token/crm.lead.get.json"
    assert session.calls[0]["params"] == [("ID", "15")]


def test_get_lead_without_result_is_permanent() -> None:
    client, _, _ = _client([_DummyResponse(200, {"result": None})])

    with pytest.raises(PermanentValidationError):
        client.get_lead(99)


def test_iter_list_follows_next_offset() -> None:
    client, session, _ = _client([
        _DummyResponse(200, {"result": [{"ID": "1"}, {"ID": "2"}], "next": 2}),
        _DummyResponse(200, {"result": [{"ID": "3"}]}),
    ])

    items = list(client.iter_list("crm.lead.list", params=[("select[]", "ID")]))

    assert [i["ID"] for i in items] == ["1", "2", "3"]
    assert session.calls[0]["params"] == [("select[]", "ID"), ("start", 0)]
    assert session.calls[1]["params"] == [("select[]", "ID"), ("start", 2)]


def test_rate_limit_honours_retry_after() -> None:
    client, session, sleeps = _client([
        _DummyResponse(429, headers={"Retry-After": "3"}),
        _DummyResponse(200, {"result": {"ID": "1"}}),
    ])

    client.get_lead(1)

    assert sleeps == [3.0]
    assert len(session.calls) == 2


def test_server_errors_exhaust_retries_as_transient() -> None:
    client, session, sleeps = _client(
        [_DummyResponse(503), _DummyResponse(502), _DummyResponse(500)],
        max_retries=2,
        min_backoff_s=1.0,
    )

    with pytest.raises(TransientRemoteError) as exc_info:
        client.get_lead(1)

    assert exc_info.value.details == {"status_code": 500}
    assert len(session.calls) == 3
    assert sleeps == [pytest.approx(1.15), pytest.approx(2.3)]


def test_network_errors_are_retried() -> None:
    client, _, sleeps = _client(
        [requests.ConnectionError("reset"), _DummyResponse(200, {"result": {"ID": "1"}})],
    )

    assert client.get_lead(1).record_id == "1"
    assert len(sleeps) == 1


def test_client_errors_are_not_retried() -> None:
    client, session, sleeps = _client([
        _DummyResponse(400, {"error": "ERROR_CORE", "error_description": "Not found"}),
    ])

    with pytest.raises(PermanentValidationError) as exc_info:
        client.get_lead(1)

    assert "Not found" in exc_info.value.message
    assert len(session.calls) == 1
    assert sleeps == []


def test_list_lead_fields_maps_types_and_labels() -> None:
    client, _, _ = _client([
        _DummyResponse(200, {"result": {
            "NAME": {"type": "string", "title": "Nome"},
            "UF_CRM_IDADE": {"type": "integer", "title": "UF_CRM_IDADE", "listLabel": "Idade"},
            "OPPORTUNITY": {"type": "money", "title": "Oportunidade"},
            "UF_CRM_X": {"type": "custom_widget"},
        }}),
    ])

    fields = {f.name: f for f in client.list_lead_fields()}

    assert fields["NAME"].data_type == "string"
    assert fields["NAME"].title == "Nome"
    assert fields["UF_CRM_IDADE"].data_type == "integer"
    assert fields["UF_CRM_IDADE"].title == "Idade"
    assert fields["OPPORTUNITY"].data_type == "string"
    assert fields["UF_CRM_X"].data_type == "string"
