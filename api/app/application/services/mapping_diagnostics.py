"""
Diagnostico de salud de los mapeos de campos.

Solo lectura: detecta duplicados, divergencias entre las vistas realtime y
batch y columnas sin mapeo. Nunca corrige nada; emite recomendaciones para
que el operador actue.
"""
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from app.domain.entities.sync import DiagnosticIssue, DiagnosticsReport, MappingRule
from app.infrastructure.repositories.field_mapping_repository import FieldMappingRepository
from app.infrastructure.repositories.lead_repository import LeadRepository
from app.shared.constants.sync_constants import (
    SYSTEM_COLUMNS,
    HealthStatus,
    IssueSeverity,
    MappingScope,
)
from app.shared.utils.datetime_utils import DateTimeUtils

SEVERITY_ORDER = {
    IssueSeverity.CRITICAL: 0,
    IssueSeverity.HIGH: 1,
    IssueSeverity.MEDIUM: 2,
    IssueSeverity.LOW: 3,
}


def find_duplicates(rules: Iterable[MappingRule]) -> List[DiagnosticIssue]:
    """Mas de un mapeo activo para la misma columna destino dentro de un scope."""
    grouped: Dict[tuple, List[MappingRule]] = {}
    for rule in rules:
        grouped.setdefault((rule.scope.value, rule.target_field), []).append(rule)

    issues = []
    for (scope, target), group in sorted(grouped.items()):
        if len(group) < 2:
            continue
        sources = sorted(rule.source_field for rule in group)
        issues.append(DiagnosticIssue(
            severity=IssueSeverity.CRITICAL,
            category="duplicate",
            field=target,
            scope=scope,
            message=f"{len(group)} mapeos activos para '{target}' en {scope}: {', '.join(sources)}",
            details={"mapping_ids": sorted(r.id for r in group if r.id is not None), "sources": sources},
        ))
    return issues


def find_divergences(rules: Iterable[MappingRule]) -> List[DiagnosticIssue]:
    """Misma columna destino alimentada por campos origen distintos en cada vista."""
    sources: Dict[str, Dict[str, set]] = {}
    for rule in rules:
        per_scope = sources.setdefault(rule.target_field, {})
        per_scope.setdefault(rule.scope.value, set()).add(rule.source_field)

    issues = []
    for target in sorted(sources):
        realtime = sources[target].get(MappingScope.REALTIME.value)
        batch = sources[target].get(MappingScope.BATCH.value)
        if not realtime or not batch or realtime == batch:
            continue
        issues.append(DiagnosticIssue(
            severity=IssueSeverity.HIGH,
            category="divergence",
            field=target,
            message=(
                f"'{target}' usa origenes distintos: realtime={', '.join(sorted(realtime))}, "
                f"batch={', '.join(sorted(batch))}"
            ),
            details={"realtime": sorted(realtime), "batch": sorted(batch)},
        ))
    return issues


def find_orphans(live_columns: Iterable[str], rules: Iterable[MappingRule]) -> List[DiagnosticIssue]:
    """Columnas vivas sin mapeo activo en ninguna vista (sin contar las de sistema)."""
    mapped = {rule.target_field for rule in rules}
    return [
        DiagnosticIssue(
            severity=IssueSeverity.MEDIUM,
            category="orphan",
            field=name,
            message=f"La columna '{name}' no tiene mapeo activo",
        )
        for name in sorted(set(live_columns))
        if name not in mapped and name not in SYSTEM_COLUMNS
    ]


def health_for(issues: Iterable[DiagnosticIssue]) -> HealthStatus:
    severities = {issue.severity for issue in issues}
    if IssueSeverity.CRITICAL in severities:
        return HealthStatus.CRITICAL
    if IssueSeverity.HIGH in severities:
        return HealthStatus.ATTENTION
    if IssueSeverity.MEDIUM in severities:
        return HealthStatus.OK
    return HealthStatus.HEALTHY


def recommendations_for(issues: List[DiagnosticIssue]) -> List[str]:
    recommendations = []
    for issue in issues:
        if issue.category == "duplicate":
            recommendations.append(
                f"Dejar un solo mapeo activo para '{issue.field}' en {issue.scope} y desactivar el resto"
            )
        elif issue.category == "divergence":
            recommendations.append(
                f"Unificar el campo origen de '{issue.field}' entre realtime y batch"
            )

    orphans = [issue.field for issue in issues if issue.category == "orphan"]
    if orphans:
        recommendations.append(
            f"Revisar {len(orphans)} columnas sin mapeo ({', '.join(orphans)}): mapearlas o documentarlas como no sincronizadas"
        )
    if not recommendations:
        recommendations.append("No se requieren acciones")
    return recommendations


def _summary(issues: List[DiagnosticIssue]) -> str:
    if not issues:
        return "Todos los mapeos estan consistentes"
    counts = {severity: 0 for severity in IssueSeverity}
    for issue in issues:
        counts[issue.severity] += 1
    parts = [f"{count} {severity.value}" for severity, count in counts.items() if count]
    return f"{len(issues)} problemas detectados ({', '.join(parts)})"


def build_report(
    rules: List[MappingRule],
    live_columns: List[str],
    now: Optional[datetime] = None,
) -> DiagnosticsReport:
    """Combina los tres chequeos en un reporte ordenado por severidad."""
    duplicates = find_duplicates(rules)
    divergences = find_divergences(rules)
    orphans = find_orphans(live_columns, rules)

    issues = sorted(
        duplicates + divergences + orphans,
        key=lambda issue: (SEVERITY_ORDER[issue.severity], issue.category, issue.field, issue.scope or ""),
    )
    statistics = {
        "active_mappings": len(rules),
        "realtime_mappings": sum(1 for r in rules if r.scope is MappingScope.REALTIME),
        "batch_mappings": sum(1 for r in rules if r.scope is MappingScope.BATCH),
        "live_columns": len(set(live_columns)),
        "duplicates": len(duplicates),
        "divergences": len(divergences),
        "orphan_columns": len(orphans),
    }
    return DiagnosticsReport(
        health=health_for(issues),
        summary=_summary(issues),
        statistics=statistics,
        issues=issues,
        recommendations=recommendations_for(issues),
        last_check=now or DateTimeUtils.now_utc(),
    )


class MappingDiagnostics:
    """Corre el diagnostico contra el almacen de mapeos y la tabla de leads viva."""

    def __init__(self, db: AsyncSession, local_table: str = "leads"):
        self.mappings = FieldMappingRepository(db)
        self.leads = LeadRepository(db, local_table)

    async def run(self) -> DiagnosticsReport:
        rules = (
            await self.mappings.active_rules(MappingScope.REALTIME)
            + await self.mappings.active_rules(MappingScope.BATCH)
        )
        live_columns = [col.name for col in await self.leads.list_columns()]
        report = build_report(rules, live_columns)
        logger.info(f"Diagnostico de mapeos: {report.health.value} - {report.summary}")
        return report
