"""
Motor de mapeo de campos.

Libreria de funciones puras (sin I/O):
- normalizacion de nombres y similaridad por distancia de edicion
- sugerencias de mapeo (diccionario de sinonimos + similaridad)
- tabla de compatibilidad de tipos y sugerencia de transformacion
- validacion de mapeos (obligatoria antes de activar uno)
- aplicacion de mapeos a un payload crudo, produciendo valores tipados
"""
import re
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from app.application.services.value_transformers import apply_value_map, transform
from app.domain.entities.field_value import FieldValue, ValueKind
from app.domain.entities.sync import (
    ColumnDescriptor,
    MappingRule,
    MappingSuggestion,
    MappingValidation,
    SourceField,
)
from app.shared.constants.sync_constants import Transformation
from app.shared.exceptions.sync import PermanentValidationError

VENDOR_PREFIXES = ("uf_crm_", "uf_")

MIN_SUGGESTION_SIMILARITY = 0.5
HIGH_CONFIDENCE = 0.9
MEDIUM_CONFIDENCE = 0.7

CONFIDENCE_ORDER = {"high": 3, "medium": 2, "low": 1}

# Sinonimos conocidos entre CRM y base local (nombres ya normalizados)
COMMON_SYNONYMS: Dict[str, Sequence[str]] = {
    "name": ("nome", "name", "title", "nome completo", "full name"),
    "email": ("email", "e-mail", "correio", "mail"),
    "phone": ("telefone", "phone", "celular", "tel", "mobile", "phone number"),
    "age": ("idade", "age", "anos"),
    "address": ("endereco", "address", "local", "rua", "logradouro"),
    "cpf": ("cpf", "documento", "doc", "tax id"),
    "rg": ("rg", "identidade", "identity"),
    "responsible": ("responsavel", "responsible", "atribuido", "assigned"),
    "scouter": ("scouter", "captador", "olheiro"),
    "status": ("status", "estado", "state", "situacao"),
    "photo": ("foto", "photo", "imagem", "image", "avatar"),
    "date": ("data", "date", "quando"),
    "created_at": ("criado", "created", "data criacao"),
    "updated_at": ("atualizado", "updated", "modificado", "modified"),
}

# Familias de tipos: dos tipos de la misma familia son compatibles
TYPE_FAMILIES: Dict[str, str] = {
    # numeric
    "integer": "numeric",
    "int": "numeric",
    "int4": "numeric",
    "int8": "numeric",
    "bigint": "numeric",
    "smallint": "numeric",
    "numeric": "numeric",
    "number": "numeric",
    "decimal": "numeric",
    "real": "numeric",
    "double precision": "numeric",
    "double": "numeric",
    "float": "numeric",
    "money": "numeric",
    # text
    "string": "text",
    "text": "text",
    "varchar": "text",
    "character varying": "text",
    "char": "text",
    "character": "text",
    "uuid": "text",
    # boolean
    "boolean": "boolean",
    "bool": "boolean",
    "bit": "boolean",
    # timestamp
    "date": "timestamp",
    "datetime": "timestamp",
    "timestamp": "timestamp",
    "timestamptz": "timestamp",
    "timestamp with time zone": "timestamp",
    "timestamp without time zone": "timestamp",
    # json
    "json": "json",
    "jsonb": "json",
    "object": "json",
    # array
    "array": "array",
    "list": "array",
}

# Tipos de valor aceptados por cada familia de columna destino
FAMILY_VALUE_KINDS: Dict[str, frozenset] = {
    "numeric": frozenset({ValueKind.NUMBER}),
    "text": frozenset({ValueKind.STRING}),
    "boolean": frozenset({ValueKind.BOOLEAN}),
    "timestamp": frozenset({ValueKind.TIMESTAMP}),
    "json": frozenset({ValueKind.JSON, ValueKind.STRING, ValueKind.NUMBER, ValueKind.BOOLEAN}),
    "array": frozenset({ValueKind.JSON}),
}

# Conversion implicita cuando origen y destino son de la misma familia pero
# el valor llega serializado (JSON de la cola, strings del CRM)
FAMILY_DEFAULT_TRANSFORMATIONS: Dict[str, Transformation] = {
    "numeric": Transformation.TO_NUMBER,
    "text": Transformation.TO_STRING,
    "boolean": Transformation.TO_BOOLEAN,
    "timestamp": Transformation.TO_TIMESTAMP,
}

# Familia que produce cada transformacion
TRANSFORMATION_FAMILIES: Dict[Transformation, str] = {
    Transformation.TO_NUMBER: "numeric",
    Transformation.TO_STRING: "text",
    Transformation.TO_BOOLEAN: "boolean",
    Transformation.TO_DATE: "timestamp",
    Transformation.TO_TIMESTAMP: "timestamp",
}


def normalize(name: str) -> str:
    """
    Normaliza un nombre de campo para compararlo.

    "UF_CRM_Nome_Completo" -> "nome completo"
    """
    text = (name or "").lower().strip()
    for prefix in VENDOR_PREFIXES:
        if text.startswith(prefix):
            text = text[len(prefix):]
            break
    text = text.replace("_", " ")
    return re.sub(r"\s+", " ", text).strip()


def levenshtein(a: str, b: str) -> int:
    """Distancia de edicion clasica con dos filas."""
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)

    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i]
        for j, char_b in enumerate(b, start=1):
            cost = 0 if char_a == char_b else 1
            current.append(min(
                previous[j] + 1,
                current[j - 1] + 1,
                previous[j - 1] + cost,
            ))
        previous = current
    return previous[-1]


def similarity(a: str, b: str) -> float:
    """1 - distancia/max(len). Dos strings vacios son identicos."""
    longest = max(len(a), len(b))
    if longest == 0:
        return 1.0
    return 1.0 - levenshtein(a, b) / longest


def type_family(data_type: Optional[str]) -> Optional[str]:
    """Familia de un tipo, o None si es desconocido."""
    if not data_type:
        return None
    key = data_type.lower().strip()
    if key.endswith("[]"):
        return "array"
    key = re.sub(r"\(.*\)$", "", key).strip()
    return TYPE_FAMILIES.get(key)


def are_types_compatible(type_a: str, type_b: str) -> bool:
    """Compatibilidad simetrica por familia. Tipos identicos siempre son compatibles."""
    a = (type_a or "").lower().strip()
    b = (type_b or "").lower().strip()
    if a == b:
        return True
    family_a = type_family(a)
    return family_a is not None and family_a == type_family(b)


def suggest_transformation(source_type: str, target_type: str) -> Optional[Transformation]:
    """
    Sugiere la transformacion para tipos incompatibles.

    None significa "ya compatible" cuando los tipos lo son, y "requiere
    mapeo manual" en otro caso: el llamador debe distinguir ambos con
    are_types_compatible.
    """
    if are_types_compatible(source_type, target_type):
        return None

    source = type_family(source_type)
    target = type_family(target_type)

    if source == "text":
        if target == "numeric":
            return Transformation.TO_NUMBER
        if target == "boolean":
            return Transformation.TO_BOOLEAN
        if target == "timestamp":
            if (target_type or "").lower().strip() == "date":
                return Transformation.TO_DATE
            return Transformation.TO_TIMESTAMP

    if source in ("numeric", "boolean", "timestamp") and target == "text":
        return Transformation.TO_STRING

    if source == "numeric" and target == "boolean":
        return Transformation.TO_BOOLEAN

    return None


def validate_mapping(source: SourceField, target: ColumnDescriptor) -> MappingValidation:
    """
    Valida un mapeo propuesto.

    - tipos compatibles: valido sin mensajes
    - incompatibles con transformacion conocida: valido con un warning
    - incompatibles sin transformacion: invalido con un error
    """
    if are_types_compatible(source.data_type, target.data_type):
        return MappingValidation(valid=True)

    transformation = suggest_transformation(source.data_type, target.data_type)
    if transformation:
        return MappingValidation(
            valid=True,
            warnings=[
                f"Tipos incompatibles ({source.data_type} -> {target.data_type}). "
                f"Sugerencia: usar transformacion '{transformation.value}'"
            ],
        )
    return MappingValidation(
        valid=False,
        errors=[
            f"Tipos incompatibles y sin transformacion disponible "
            f"({source.data_type} -> {target.data_type})"
        ],
    )


def _synonym_key(source_name: str, target_name: str) -> Optional[str]:
    """
    Clave del diccionario si ambos nombres contienen una variante del mismo sinonimo.

    Busca por substring: "nomeresponsavel" contiene "nome" y "responsavel".
    """
    for key, variants in COMMON_SYNONYMS.items():
        in_source = any(variant in source_name for variant in variants)
        if in_source and any(variant in target_name for variant in variants):
            return key
    return None


def suggest_mappings(
    source_fields: Iterable[SourceField],
    target_fields: Iterable[ColumnDescriptor],
    existing_mappings: Iterable[MappingRule] = (),
) -> List[MappingSuggestion]:
    """
    Sugiere mapeos para todos los pares origen/destino aun no mapeados.

    Orden: confianza desc, similaridad desc, y nombres como desempate.
    """
    existing = list(existing_mappings)
    mapped_sources = {m.source_field for m in existing}
    mapped_targets = {m.target_field for m in existing}
    targets = [t for t in target_fields if t.name not in mapped_targets]

    suggestions: List[MappingSuggestion] = []
    for source in source_fields:
        if source.name in mapped_sources:
            continue
        source_normalized = normalize(source.title or source.name)

        for target in targets:
            target_normalized = normalize(target.name)
            transformation = suggest_transformation(source.data_type, target.data_type)
            transformation_value = transformation.value if transformation else None

            synonym = _synonym_key(source_normalized, target_normalized)
            if synonym:
                suggestions.append(MappingSuggestion(
                    source_field=source.name,
                    target_field=target.name,
                    similarity=1.0,
                    confidence="high",
                    reason=f"Mapeo comun conocido: {synonym}",
                    transformation=transformation_value,
                ))
                continue

            score = similarity(source_normalized, target_normalized)
            if score < MIN_SUGGESTION_SIMILARITY:
                continue

            if score >= HIGH_CONFIDENCE:
                confidence = "high"
            elif score >= MEDIUM_CONFIDENCE:
                confidence = "medium"
            else:
                confidence = "low"

            suggestions.append(MappingSuggestion(
                source_field=source.name,
                target_field=target.name,
                similarity=round(score, 4),
                confidence=confidence,
                reason=f"Similaridad de nombre ({round(score * 100)}%)",
                transformation=transformation_value,
            ))

    suggestions.sort(key=lambda s: (
        -CONFIDENCE_ORDER[s.confidence],
        -s.similarity,
        s.source_field,
        s.target_field,
    ))
    return suggestions


def default_transformation(target_type: str) -> Optional[Transformation]:
    """Transformacion implicita para la familia del tipo destino."""
    if (target_type or "").lower().strip() == "date":
        return Transformation.TO_DATE
    family = type_family(target_type)
    return FAMILY_DEFAULT_TRANSFORMATIONS.get(family) if family else None


def transformation_fits(transformation: str, target_type: str) -> bool:
    """True si la transformacion produce valores aceptados por la columna destino."""
    try:
        produced = TRANSFORMATION_FAMILIES[Transformation(transformation)]
    except ValueError:
        return False
    family = type_family(target_type)
    if family is None or family == "json":
        return True
    return produced == family


def _shape_value(raw: Any, rule: MappingRule) -> FieldValue:
    value = transform(raw, rule.transformation)
    if rule.transformation or value.is_null:
        return value
    family = type_family(rule.target_type)
    if family is None or value.kind in FAMILY_VALUE_KINDS[family]:
        return value
    if not are_types_compatible(rule.source_type, rule.target_type):
        return value
    fallback = default_transformation(rule.target_type)
    if fallback is None:
        return value
    return transform(raw, fallback.value)


def _check_value_kind(value: FieldValue, rule: MappingRule) -> None:
    if value.is_null:
        return
    family = type_family(rule.target_type)
    if family is None:
        return
    if value.kind not in FAMILY_VALUE_KINDS[family]:
        raise PermanentValidationError(
            f"Valor de tipo {value.kind.value} incompatible con la columna "
            f"'{rule.target_field}' ({rule.target_type})",
            field=rule.target_field,
        )


def apply_mappings(payload: Mapping[str, Any], mappings: Iterable[MappingRule]) -> Dict[str, FieldValue]:
    """
    Convierte un payload crudo en {target_field: FieldValue}.

    Por cada columna destino se usa el mapeo de mayor prioridad cuyo campo
    origen este presente en el payload. Los campos ausentes no se escriben.
    Sin transformacion explicita, un valor serializado ("25", una fecha ISO)
    se convierte con la transformacion por defecto de la familia destino
    cuando los tipos declarados son compatibles.

    Raises:
        PermanentValidationError: un valor no es convertible al tipo destino
    """
    by_target: Dict[str, List[MappingRule]] = {}
    for rule in mappings:
        by_target.setdefault(rule.target_field, []).append(rule)

    shaped: Dict[str, FieldValue] = {}
    for target, rules in by_target.items():
        for rule in sorted(rules, key=lambda r: -r.priority):
            if rule.source_field not in payload:
                continue
            raw = apply_value_map(payload[rule.source_field], rule.value_map)
            value = _shape_value(raw, rule)
            _check_value_kind(value, rule)
            shaped[target] = value
            break
    return shaped
