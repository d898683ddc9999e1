"""
Entidades del dominio.
"""
from app.domain.entities.field_value import FieldValue, ValueKind
from app.domain.entities.sync import (
    ColumnDescriptor,
    SourceField,
    MappingRule,
    MappingSuggestion,
    MappingValidation,
    ReconcileResult,
    QueueRunResult,
    JobProgress,
    DiagnosticIssue,
    DiagnosticsReport,
)

__all__ = [
    "FieldValue",
    "ValueKind",
    "ColumnDescriptor",
    "SourceField",
    "MappingRule",
    "MappingSuggestion",
    "MappingValidation",
    "ReconcileResult",
    "QueueRunResult",
    "JobProgress",
    "DiagnosticIssue",
    "DiagnosticsReport",
]
