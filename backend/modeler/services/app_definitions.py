from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from pydantic import ValidationError

from modeler.domain.enums import ModelType
from modeler.domain.errors import BadRequestError, InternalServerError
from modeler.models import Model
from modeler.schemas import AppDefinition, AppDefinitionRepresentation
from modeler.services.models import ModelService


logger = logging.getLogger(__name__)


def decode_app_definition(model: Model) -> AppDefinition:
    try:
        return AppDefinition.model_validate(json.loads(model.model_editor_json or "{}"))
    except (ValueError, ValidationError) as exc:
        logger.exception("app_definition_decode_failed | id=%s", model.id)
        raise InternalServerError("Could not deserialize app definition") from exc


def app_definition_representation(
    model: Model, definition: Optional[AppDefinition] = None
) -> AppDefinitionRepresentation:
    if definition is None:
        definition = decode_app_definition(model)
    base = AppDefinitionRepresentation.model_validate(model)
    return base.model_copy(update={"definition": definition})


def require_app_model(models: ModelService, model_id: str) -> Model:
    model = models.find_model(model_id)
    if model is None or model.type is not ModelType.APP:
        raise BadRequestError(f"No app definition found for id {model_id}")
    return model


@dataclass
class AppModelGraph:
    """An App model plus every model reachable from it, each visited once."""

    app: Model
    definition: AppDefinition
    diagrams: List[Model] = field(default_factory=list)
    forms: List[Model] = field(default_factory=list)
    decision_tables: List[Model] = field(default_factory=list)

    def by_type(self, model_type: ModelType) -> List[Model]:
        if model_type is ModelType.FORM:
            return self.forms
        if model_type is ModelType.DECISION_TABLE:
            return self.decision_tables
        if model_type in (ModelType.BPMN, ModelType.CMMN):
            return [m for m in self.diagrams if m.type is model_type]
        if model_type is ModelType.APP:
            return [self.app]
        raise ValueError(f"Unsupported model type: {model_type}")

    def id_to_key(self) -> Dict[ModelType, Dict[str, str]]:
        maps: Dict[ModelType, Dict[str, str]] = {t: {} for t in ModelType}
        for model in [*self.diagrams, *self.forms, *self.decision_tables]:
            maps[model.type][model.id] = model.key
        return maps


def collect_app_graph(models: ModelService, app: Model) -> AppModelGraph:
    """Walk the app's Bpmn/Cmmn entries and their relations transitively.

    Entries whose id no longer resolves to a model of the expected type are
    skipped with a warning.
    """
    definition = decode_app_definition(app)
    graph = AppModelGraph(app=app, definition=definition)
    visited: set[str] = set()

    def visit(model: Model) -> None:
        if model.id in visited:
            return
        visited.add(model.id)
        model_type = model.type
        if model_type in (ModelType.BPMN, ModelType.CMMN):
            graph.diagrams.append(model)
            for child in models.find_children_by_parent_id(model.id):
                visit(child)
        elif model_type is ModelType.FORM:
            graph.forms.append(model)
        elif model_type is ModelType.DECISION_TABLE:
            graph.decision_tables.append(model)
        elif model_type is ModelType.APP:
            logger.warning("app_graph_nested_app_ignored | app=%s id=%s", app.key, model.id)
        else:
            raise ValueError(f"Unsupported model type: {model_type}")

    for entries, expected in ((definition.models, ModelType.BPMN), (definition.cmmn_models, ModelType.CMMN)):
        for entry in entries:
            model = models.find_model(entry.id)
            if model is None or model.type is not expected:
                logger.warning(
                    "app_model_entry_dangling | app=%s id=%s key=%s type=%s", app.key, entry.id, entry.key, expected.value
                )
                continue
            visit(model)
    return graph
