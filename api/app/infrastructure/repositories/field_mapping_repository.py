"""
Repositorio del almacen canonico de mapeos (field_mappings).
"""
from typing import Any, Dict, List, Optional

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.application.services.field_mapping_engine import (
    suggest_transformation,
    transformation_fits,
    validate_mapping,
)
from app.domain.entities.sync import ColumnDescriptor, MappingRule, MappingValidation, SourceField
from app.infrastructure.database.models import FieldMappingModel
from app.shared.constants.sync_constants import MappingScope, Transformation
from app.shared.exceptions.domain import EntityNotFoundException, ValidationException


def to_rule(model: FieldMappingModel) -> MappingRule:
    """Convierte la fila ORM en la vista inmutable que usa el motor."""
    return MappingRule(
        id=model.id,
        scope=MappingScope(model.scope),
        source_field=model.source_field,
        target_field=model.target_field,
        source_type=model.source_type,
        target_type=model.target_type,
        transformation=model.transformation,
        value_map=model.value_map,
        priority=model.priority or 0,
    )


class FieldMappingRepository:
    """
    Gestiona la tabla field_mappings.

    Un mapeo solo se activa si pasa validate_mapping y si no hay otro mapeo
    activo para la misma columna destino dentro del mismo scope.
    Una transformacion explicita debe producir valores del tipo destino; si
    falta y los tipos la requieren, se guarda la sugerida.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, mapping_id: int) -> Optional[FieldMappingModel]:
        return await self.db.get(FieldMappingModel, mapping_id)

    async def list(self, scope: Optional[MappingScope] = None, active_only: bool = False) -> List[FieldMappingModel]:
        query = select(FieldMappingModel)
        if scope:
            query = query.where(FieldMappingModel.scope == MappingScope(scope).value)
        if active_only:
            query = query.where(FieldMappingModel.active.is_(True))
        query = query.order_by(FieldMappingModel.target_field, FieldMappingModel.priority.desc(), FieldMappingModel.id)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def active_rules(self, scope: MappingScope) -> List[MappingRule]:
        return [to_rule(model) for model in await self.list(scope, active_only=True)]

    async def create(
        self,
        scope: MappingScope,
        source_field: str,
        target_field: str,
        source_type: str = "string",
        target_type: str = "text",
        transformation: Optional[str] = None,
        value_map: Optional[Dict[str, Any]] = None,
        priority: int = 0,
        notes: Optional[str] = None,
    ) -> FieldMappingModel:
        """Crea un mapeo inactivo. Se activa explicitamente con activate()."""
        if transformation:
            Transformation(transformation)
        model = FieldMappingModel(
            scope=MappingScope(scope).value,
            source_field=source_field,
            target_field=target_field,
            source_type=source_type,
            target_type=target_type,
            transformation=transformation,
            value_map=value_map,
            priority=priority,
            active=False,
            notes=notes,
        )
        self.db.add(model)
        await self.db.flush()
        return model

    async def activate(self, mapping_id: int) -> MappingValidation:
        """
        Activa un mapeo validado.

        Raises:
            EntityNotFoundException: el mapeo no existe
            ValidationException: tipos incompatibles sin transformacion o destino duplicado
        """
        model = await self.get(mapping_id)
        if not model:
            raise EntityNotFoundException("FieldMapping", mapping_id)

        validation = validate_mapping(
            SourceField(model.source_field, model.source_type),
            ColumnDescriptor(model.target_field, model.target_type),
        )
        suggested = suggest_transformation(model.source_type, model.target_type)
        if not validation.valid and (not suggested or model.transformation != suggested.value):
            raise ValidationException(
                f"Mapeo {model.source_field} -> {model.target_field} invalido",
                field=model.target_field,
                errors=validation.errors,
            )
        if model.transformation and not transformation_fits(model.transformation, model.target_type):
            raise ValidationException(
                f"La transformacion '{model.transformation}' no produce valores para "
                f"'{model.target_field}' ({model.target_type})",
                field=model.target_field,
                errors=[f"transformation={model.transformation}"],
            )

        query = select(FieldMappingModel.id).where(
            FieldMappingModel.scope == model.scope,
            FieldMappingModel.target_field == model.target_field,
            FieldMappingModel.active.is_(True),
            FieldMappingModel.id != model.id,
        )
        conflict = (await self.db.execute(query)).scalars().first()
        if conflict is not None:
            raise ValidationException(
                f"Ya existe un mapeo activo para '{model.target_field}' en scope '{model.scope}'",
                field=model.target_field,
                errors=[f"mapping_id={conflict}"],
            )

        if suggested and not model.transformation:
            # Sin la transformacion sugerida el mapeo fallaria en cada registro
            model.transformation = suggested.value
            logger.info(f"Mapeo {model.id}: se asigna la transformacion '{suggested.value}'")
        model.active = True
        await self.db.flush()
        for warning in validation.warnings:
            logger.warning(f"Mapeo {model.id} activado con aviso: {warning}")
        return validation

    async def deactivate(self, mapping_id: int) -> FieldMappingModel:
        model = await self.get(mapping_id)
        if not model:
            raise EntityNotFoundException("FieldMapping", mapping_id)
        model.active = False
        await self.db.flush()
        return model
