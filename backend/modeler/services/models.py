from __future__ import annotations

import json
import logging
from typing import Any, Dict, Iterable, List, Optional, Set, Union

from sqlalchemy import or_
from sqlalchemy.orm import Session

from modeler.domain.enums import RELATION_CHILD_TYPES, ModelType, RelationType
from modeler.domain.errors import BadRequestError, NotFoundError
from modeler.models import Model, ModelHistory, ModelRelation
from modeler.models.common import _utcnow
from modeler.domain.references import EditorContent, referenced_ids


logger = logging.getLogger(__name__)

EditorJson = Union[str, EditorContent, None]


def _editor_json_text(editor_json: EditorJson) -> Optional[str]:
    if isinstance(editor_json, EditorContent):
        return editor_json.to_persistable_json()
    return editor_json


class ModelService:
    """Model CRUD, versioning and relation bookkeeping.

    - Every persist re-derives the parent's `ModelRelation` rows from the
      references embedded in its editor JSON; ids that do not exist in this
      store produce no relation.
    - Saving with `new_version=True` snapshots the current row into
      `model_history` before overwriting it and bumps `version`.
    - Methods only flush. Wrap calls in `modeler.core.db.transaction`.
    """

    def __init__(self, db: Session) -> None:
        self.db = db

    # Queries
    def get_model(self, model_id: str) -> Model:
        model = self.db.get(Model, model_id)
        if model is None:
            raise NotFoundError(f"No model found with id {model_id}")
        return model

    def find_model(self, model_id: Optional[str]) -> Optional[Model]:
        if not model_id:
            return None
        return self.db.get(Model, model_id)

    def list_models(self, model_type: Optional[ModelType] = None) -> List[Model]:
        q = self.db.query(Model)
        if model_type is not None:
            q = q.filter(Model.model_type == model_type.value)
        return list(q.order_by(Model.last_updated.desc(), Model.name.asc()).all())

    def find_by_key(self, key: str, model_type: ModelType) -> List[Model]:
        return list(
            self.db.query(Model).filter(Model.key == key, Model.model_type == model_type.value).all()
        )

    def get_history(self, model_id: str) -> List[ModelHistory]:
        self.get_model(model_id)
        return list(
            self.db.query(ModelHistory)
            .filter(ModelHistory.model_id == model_id)
            .order_by(ModelHistory.version.desc())
            .all()
        )

    def find_children_by_parent_id(self, parent_id: str, model_type: Optional[ModelType] = None) -> List[Model]:
        q = (
            self.db.query(Model)
            .join(ModelRelation, ModelRelation.model_id == Model.id)
            .filter(ModelRelation.parent_model_id == parent_id)
        )
        if model_type is not None:
            q = q.filter(Model.model_type == model_type.value)
        return list(q.order_by(Model.name.asc()).all())

    def find_parents_by_child_id(self, child_id: str) -> List[Model]:
        return list(
            self.db.query(Model)
            .join(ModelRelation, ModelRelation.parent_model_id == Model.id)
            .filter(ModelRelation.model_id == child_id)
            .all()
        )

    def get_relations(self, parent_id: str) -> List[ModelRelation]:
        return list(self.db.query(ModelRelation).filter(ModelRelation.parent_model_id == parent_id).all())

    # Commands
    def create_model(
        self,
        *,
        name: str,
        key: str,
        model_type: ModelType,
        description: Optional[str] = None,
        editor_json: EditorJson = None,
        thumbnail: Optional[bytes] = None,
        user_id: Optional[str] = None,
    ) -> Model:
        if not key or not key.strip():
            raise BadRequestError("Model key is required")
        if not name or not name.strip():
            raise BadRequestError("Model name is required")

        text = _editor_json_text(editor_json)
        if text is None:
            text = self.create_model_json(model_type, name=name, key=key, description=description)

        now = _utcnow()
        model = Model(
            name=name,
            key=key,
            description=description,
            model_type=model_type.value,
            version=1,
            model_editor_json=text,
            thumbnail=thumbnail,
            created=now,
            created_by=user_id,
            last_updated=now,
            last_updated_by=user_id,
        )
        self.db.add(model)
        self.db.flush()  # assign id before relations point at it
        self._persist(model)
        logger.info("model_created | id=%s key=%s type=%s", model.id, model.key, model.model_type)
        return model

    def save_model(
        self,
        model: Model,
        editor_json: EditorJson,
        *,
        thumbnail: Optional[bytes] = None,
        new_version: bool = False,
        comment: Optional[str] = None,
        user_id: Optional[str] = None,
        name: Optional[str] = None,
        key: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Model:
        text = _editor_json_text(editor_json)
        if new_version:
            self._snapshot(model)
            model.version = (model.version or 0) + 1
            model.comment = comment

        if name is not None:
            model.name = name
        if key is not None:
            model.key = key
        if description is not None:
            model.description = description
        model.model_editor_json = text
        if thumbnail is not None:
            model.thumbnail = thumbnail
        model.last_updated = _utcnow()
        model.last_updated_by = user_id

        self._persist(model)
        logger.info(
            "model_saved | id=%s key=%s version=%s new_version=%s", model.id, model.key, model.version, new_version
        )
        return model

    def create_new_version(self, model: Model, comment: Optional[str], user_id: Optional[str] = None) -> Model:
        """Snapshot `model` and bump its version without touching its content."""
        model.last_updated = _utcnow()
        model.last_updated_by = user_id
        model.comment = comment
        self._snapshot(model)
        model.version = (model.version or 0) + 1
        self.db.flush()
        logger.info("model_version_created | id=%s version=%s", model.id, model.version)
        return model

    def delete_model(self, model_id: str) -> None:
        model = self.get_model(model_id)

        # Relations in both directions go first so no edge outlives the row
        self.db.query(ModelRelation).filter(
            or_(ModelRelation.parent_model_id == model.id, ModelRelation.model_id == model.id)
        ).delete(synchronize_session="fetch")

        history = self._snapshot(model)
        history.removal_date = _utcnow()

        key = model.key
        self.db.delete(model)
        self.db.flush()
        logger.info("model_deleted | id=%s key=%s", model_id, key)

    # Defaults
    def create_model_json(
        self,
        model_type: ModelType,
        *,
        name: str,
        key: str,
        description: Optional[str] = None,
    ) -> str:
        """Default editor JSON for a brand new model of `model_type`."""
        if model_type is ModelType.FORM:
            doc: Dict[str, Any] = {"name": name, "key": key, "fields": [], "outcomes": []}
        elif model_type is ModelType.DECISION_TABLE:
            doc = {
                "name": name,
                "key": key,
                "hitIndicator": "FIRST",
                "inputExpressions": [],
                "outputExpressions": [],
                "rules": [],
                "modelVersion": "3",
            }
        elif model_type is ModelType.APP:
            doc = {"key": key, "name": name, "models": [], "cmmnModels": []}
            if description:
                doc["description"] = description
        elif model_type is ModelType.CMMN:
            doc = _canvas(
                "http://b3mn.org/stencilset/cmmn1.1#",
                {"case_id": key, "name": name},
                description,
                {
                    "resourceId": "casePlanModel",
                    "stencil": {"id": "CasePlanModel"},
                    "bounds": {"lowerRight": {"x": 758, "y": 754}, "upperLeft": {"x": 40, "y": 40}},
                },
            )
        elif model_type is ModelType.BPMN:
            doc = _canvas(
                "http://b3mn.org/stencilset/bpmn2.0#",
                {"process_id": key, "name": name},
                description,
                {
                    "resourceId": "startEvent1",
                    "stencil": {"id": "StartNoneEvent"},
                    "bounds": {"lowerRight": {"x": 130, "y": 193}, "upperLeft": {"x": 100, "y": 163}},
                },
            )
        else:
            raise ValueError(f"Unsupported model type: {model_type}")
        return json.dumps(doc)

    # Internals
    def _snapshot(self, model: Model) -> ModelHistory:
        history = ModelHistory(
            model_id=model.id,
            key=model.key,
            name=model.name,
            description=model.description,
            model_type=model.model_type,
            version=model.version,
            model_editor_json=model.model_editor_json,
            comment=model.comment,
            created=model.created,
            created_by=model.created_by,
            last_updated=model.last_updated,
            last_updated_by=model.last_updated_by,
        )
        self.db.add(history)
        return history

    def _persist(self, model: Model) -> Model:
        model_type = model.type
        document: Dict[str, Any] = {}
        if model.model_editor_json:
            try:
                document = json.loads(model.model_editor_json)
            except ValueError as exc:
                raise BadRequestError(f"Editor JSON of model {model.key} is not valid JSON") from exc

        if model_type in (ModelType.BPMN, ModelType.CMMN):
            self.db.flush()
            found = referenced_ids(document, model_type)
            for relation_type in _relation_types_for(model_type):
                self._sync_relations(model, found.get(relation_type, set()), relation_type)
        elif model_type in (ModelType.FORM, ModelType.DECISION_TABLE):
            if isinstance(document, dict) and document:
                document["name"] = model.name
                document["key"] = model.key
                model.model_editor_json = json.dumps(document)
        elif model_type is ModelType.APP:
            pass
        else:
            raise ValueError(f"Unsupported model type: {model_type}")

        self.db.flush()
        return model

    def _sync_relations(self, parent: Model, referenced: Set[str], relation_type: RelationType) -> None:
        persisted = (
            self.db.query(ModelRelation)
            .filter(
                ModelRelation.parent_model_id == parent.id,
                ModelRelation.relation_type == relation_type.value,
            )
            .all()
        )
        already: Set[str] = set()
        for rel in persisted:
            if rel.model_id in referenced:
                already.add(rel.model_id)
            else:
                self.db.delete(rel)

        expected_type = RELATION_CHILD_TYPES[relation_type].value
        for child_id in sorted(referenced - already):
            child = self.db.get(Model, child_id)
            if child is None or child.model_type != expected_type:
                continue
            self.db.add(ModelRelation(parent_model_id=parent.id, model_id=child_id, relation_type=relation_type.value))


def _relation_types_for(model_type: ModelType) -> Iterable[RelationType]:
    if model_type is ModelType.BPMN:
        return (RelationType.FORM_MODEL, RelationType.DECISION_TABLE_MODEL)
    return tuple(RelationType)


def _canvas(namespace: str, properties: Dict[str, Any], description: Optional[str], root_shape: Dict[str, Any]) -> Dict[str, Any]:
    if description:
        properties["documentation"] = description
    shape = {"childShapes": [], "dockers": [], "outgoing": [], **root_shape}
    return {
        "id": "canvas",
        "resourceId": "canvas",
        "stencilset": {"namespace": namespace},
        "properties": properties,
        "childShapes": [shape],
    }
