from __future__ import annotations

from datetime import datetime, timezone

import pytest

from app.application.services.field_mapping_engine import (
    apply_mappings,
    are_types_compatible,
    default_transformation,
    normalize,
    similarity,
    suggest_mappings,
    suggest_transformation,
    transformation_fits,
    validate_mapping,
)
from app.domain.entities.field_value import ValueKind
from app.domain.entities.sync import ColumnDescriptor, MappingRule, SourceField
from app.shared.constants.sync_constants import Transformation
from app.shared.exceptions.sync import PermanentValidationError


def test_normalize_strips_vendor_prefix_and_underscores() -> None:
    assert normalize("UF_CRM_Nome_Completo") == "nome completo"
    assert normalize("uf_idade") == "idade"
    assert normalize("  telefone__principal ") == "telefone principal"


def test_similarity_properties() -> None:
    assert similarity("abc", "abc") == 1.0
    assert similarity("", "") == 1.0
    assert similarity("kitten", "sitting") == pytest.approx(1 - 3 / 7)
    assert similarity("kitten", "sitting") == similarity("sitting", "kitten")
    assert 0.0 <= similarity("abc", "xyz") <= 1.0


def test_suggest_mappings_uses_synonyms_and_is_deterministic() -> None:
    sources = [SourceField("UF_CRM_TELEFONE", "string"), SourceField("NAME", "string")]
    targets = [ColumnDescriptor("telefone", "text"), ColumnDescriptor("nome", "text")]

    first = suggest_mappings(sources, targets, [])
    second = suggest_mappings(list(reversed(sources)), list(reversed(targets)), [])

    pairs = [(s.source_field, s.target_field) for s in first]
    assert pairs == [("NAME", "nome"), ("UF_CRM_TELEFONE", "telefone")]
    assert [(s.source_field, s.target_field) for s in second] == pairs
    assert all(s.confidence == "high" and s.similarity == 1.0 for s in first)
    assert all(s.transformation is None for s in first)


def test_suggest_mappings_excludes_already_mapped_fields() -> None:
    sources = [SourceField("UF_CRM_TELEFONE", "string"), SourceField("NAME", "string")]
    targets = [ColumnDescriptor("telefone", "text"), ColumnDescriptor("nome", "text")]
    existing = [MappingRule(source_field="NAME", target_field="nome")]

    result = suggest_mappings(sources, targets, existing)

    assert [(s.source_field, s.target_field) for s in result] == [("UF_CRM_TELEFONE", "telefone")]
    assert all(s.source_field != "NAME" and s.target_field != "nome" for s in result)


def test_suggest_mappings_confidence_tiers() -> None:
    sources = [SourceField("UF_CRM_ESTATURA", "string"), SourceField("UF_CRM_ALTURA", "string")]
    targets = [ColumnDescriptor("estatura_cm", "integer"), ColumnDescriptor("altura_total", "integer")]

    result = {(s.source_field, s.target_field): s for s in suggest_mappings(sources, targets)}

    medium = result[("UF_CRM_ESTATURA", "estatura_cm")]
    assert medium.confidence == "medium"
    assert medium.transformation == "to_number"

    low = result[("UF_CRM_ALTURA", "altura_total")]
    assert low.confidence == "low"
    assert low.similarity == pytest.approx(0.5)

    ordered = suggest_mappings(sources, targets)
    assert ordered[0].confidence == "medium"


def test_are_types_compatible_is_symmetric_by_family() -> None:
    assert are_types_compatible("integer", "bigint")
    assert are_types_compatible("bigint", "integer")
    assert are_types_compatible("timestamptz", "date")
    assert are_types_compatible("jsonb", "json")
    assert are_types_compatible("custom_type", "custom_type")
    assert not are_types_compatible("text", "integer")
    assert not are_types_compatible("integer", "text")


def test_suggest_transformation() -> None:
    assert suggest_transformation("integer", "bigint") is None
    assert suggest_transformation("text", "integer") == Transformation.TO_NUMBER
    assert suggest_transformation("string", "boolean") == Transformation.TO_BOOLEAN
    assert suggest_transformation("text", "date") == Transformation.TO_DATE
    assert suggest_transformation("string", "timestamp with time zone") == Transformation.TO_TIMESTAMP
    assert suggest_transformation("integer", "text") == Transformation.TO_STRING
    # Sin transformacion conocida: requiere mapeo manual
    assert suggest_transformation("jsonb", "integer") is None


def test_validate_mapping_outcomes() -> None:
    ok = validate_mapping(SourceField("NAME", "string"), ColumnDescriptor("nome", "text"))
    assert ok.valid and ok.warnings == [] and ok.errors == []

    warned = validate_mapping(SourceField("UF_CRM_IDADE", "string"), ColumnDescriptor("idade", "integer"))
    assert warned.valid
    assert len(warned.warnings) == 1 and "to_number" in warned.warnings[0]
    assert warned.errors == []

    invalid = validate_mapping(SourceField("UF_CRM_DATA", "jsonb"), ColumnDescriptor("idade", "integer"))
    assert not invalid.valid
    assert len(invalid.errors) == 1
    assert invalid.warnings == []


def test_apply_mappings_shapes_typed_values() -> None:
    mappings = [
        MappingRule("NAME", "nome", "string", "text"),
        MappingRule("UF_CRM_IDADE", "idade", "string", "integer", transformation="to_number"),
        MappingRule("UF_CRM_VALOR", "valor_ficha", "money", "numeric", transformation="to_number"),
        MappingRule(
            "UF_CRM_CONFIRMADA", "ficha_confirmada", "enumeration", "boolean",
            value_map={"1878": True, "1880": False},
        ),
    ]
    payload = {
        "NAME": "Ana",
        "UF_CRM_IDADE": "25",
        "UF_CRM_VALOR": "6|BRL",
        "UF_CRM_CONFIRMADA": "1878",
        "IGNORED": "x",
    }

    shaped = apply_mappings(payload, mappings)

    assert set(shaped) == {"nome", "idade", "valor_ficha", "ficha_confirmada"}
    assert shaped["nome"].kind == ValueKind.STRING and shaped["nome"].value == "Ana"
    assert shaped["idade"].value == 25
    assert shaped["valor_ficha"].value == 6
    assert shaped["ficha_confirmada"].kind == ValueKind.BOOLEAN
    assert shaped["ficha_confirmada"].value is True


def test_apply_mappings_uses_highest_priority_present_source() -> None:
    mappings = [
        MappingRule("PHONE", "telefone", priority=1),
        MappingRule("UF_CRM_TEL", "telefone", priority=5),
    ]

    assert apply_mappings({"PHONE": "1", "UF_CRM_TEL": "2"}, mappings)["telefone"].value == "2"
    assert apply_mappings({"PHONE": "1"}, mappings)["telefone"].value == "1"
    assert apply_mappings({}, mappings) == {}


def test_apply_mappings_rejects_incompatible_values() -> None:
    with pytest.raises(PermanentValidationError):
        apply_mappings(
            {"UF_CRM_IDADE": "abc"},
            [MappingRule("UF_CRM_IDADE", "idade", "string", "integer", transformation="to_number")],
        )

    with pytest.raises(PermanentValidationError) as exc:
        apply_mappings({"UF_CRM_IDADE": "25"}, [MappingRule("UF_CRM_IDADE", "idade", "string", "integer")])
    assert exc.value.details == {"field": "idade"}


def test_apply_mappings_keeps_nulls() -> None:
    shaped = apply_mappings(
        {"UF_CRM_IDADE": None},
        [MappingRule("UF_CRM_IDADE", "idade", "string", "integer", transformation="to_number")],
    )
    assert shaped["idade"].is_null


def test_suggest_mappings_matches_synonyms_inside_compound_names() -> None:
    sources = [SourceField("UF_CRM_NOMERESPONSAVEL", "string")]
    targets = [ColumnDescriptor("responsavel", "text")]

    [suggestion] = suggest_mappings(sources, targets)

    assert suggestion.confidence == "high"
    assert suggestion.similarity == 1.0
    assert "responsible" in suggestion.reason


def test_apply_mappings_coerces_serialized_values_of_compatible_types() -> None:
    mappings = [
        MappingRule("updated_at", "updated_at", "timestamptz", "timestamptz"),
        MappingRule("UF_CRM_IDADE", "idade", "integer", "integer"),
        MappingRule("UF_CRM_ATIVO", "ficha_confirmada", "boolean", "boolean"),
        MappingRule("UF_CRM_NASCIMENTO", "nascimento", "date", "date"),
    ]
    payload = {
        "updated_at": "2024-05-01T10:00:00+00:00",
        "UF_CRM_IDADE": "25",
        "UF_CRM_ATIVO": "Y",
        "UF_CRM_NASCIMENTO": "02/01/2000",
    }

    shaped = apply_mappings(payload, mappings)

    assert shaped["updated_at"].kind == ValueKind.TIMESTAMP
    assert shaped["updated_at"].value == datetime(2024, 5, 1, 10, tzinfo=timezone.utc)
    assert shaped["idade"].kind == ValueKind.NUMBER and shaped["idade"].value == 25
    assert shaped["ficha_confirmada"].value is True
    assert shaped["nascimento"].value == datetime(2000, 1, 2).date()


def test_apply_mappings_still_rejects_unconvertible_compatible_values() -> None:
    with pytest.raises(PermanentValidationError):
        apply_mappings({"UF_CRM_IDADE": "vinte"}, [MappingRule("UF_CRM_IDADE", "idade", "integer", "integer")])


def test_default_transformation_and_fit() -> None:
    assert default_transformation("bigint") == Transformation.TO_NUMBER
    assert default_transformation("timestamptz") == Transformation.TO_TIMESTAMP
    assert default_transformation("date") == Transformation.TO_DATE
    assert default_transformation("jsonb") is None

    assert transformation_fits("to_number", "integer")
    assert transformation_fits("to_date", "timestamptz")
    assert transformation_fits("to_string", "jsonb")
    assert not transformation_fits("to_date", "boolean")
    assert not transformation_fits("to_number", "text")
    assert not transformation_fits("to_upper", "text")
