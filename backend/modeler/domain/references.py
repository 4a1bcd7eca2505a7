"""Cross-model reference handling inside editor JSON.

Bpmn and Cmmn editor documents embed references to other models as small
objects of the form ``{"id": ..., "name": ..., "key": ...}`` stored under a
well-known property of a shape. Ids are only meaningful inside one store, keys
are meaningful everywhere, so content crossing a store boundary goes through
two rewrites:

- ``to_key_space``: make sure every reference carries the key of its target.
- ``to_id_space``: point every reference at the target's id in *this* store.

Both rewrites are pure and idempotent. ``EditorContent`` tracks which of the
two has been applied so the store can refuse half-translated content.
"""

from __future__ import annotations

import copy
import json
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Set, Tuple

from modeler.domain.enums import ContentState, ModelType, RelationType
from modeler.domain.errors import InvalidContentStateError


@dataclass(frozen=True)
class ModelInfo:
    """What a reference needs to know about its target in the destination store."""

    id: str
    name: str
    key: str

    @classmethod
    def of(cls, model: Any) -> "ModelInfo":
        return cls(id=model.id, name=model.name, key=model.key)


@dataclass(frozen=True)
class ReferenceProperty:
    property_name: str
    target_type: ModelType
    relation_type: RelationType


FORM_REFERENCE = ReferenceProperty("formreference", ModelType.FORM, RelationType.FORM_MODEL)
DECISION_TABLE_REFERENCE = ReferenceProperty(
    "decisiontaskdecisiontablereference", ModelType.DECISION_TABLE, RelationType.DECISION_TABLE_MODEL
)
CASE_REFERENCE = ReferenceProperty("casetaskcasereference", ModelType.CMMN, RelationType.CASE_MODEL)
PROCESS_REFERENCE = ReferenceProperty("processtaskprocessreference", ModelType.BPMN, RelationType.PROCESS_MODEL)

BPMN_REFERENCES: Tuple[ReferenceProperty, ...] = (FORM_REFERENCE, DECISION_TABLE_REFERENCE)
CMMN_REFERENCES: Tuple[ReferenceProperty, ...] = (
    FORM_REFERENCE,
    DECISION_TABLE_REFERENCE,
    CASE_REFERENCE,
    PROCESS_REFERENCE,
)


def reference_properties_for(model_type: ModelType) -> Tuple[ReferenceProperty, ...]:
    """Reference properties a model of `model_type` may carry."""
    if model_type is ModelType.BPMN:
        return BPMN_REFERENCES
    if model_type is ModelType.CMMN:
        return CMMN_REFERENCES
    if model_type in (ModelType.APP, ModelType.FORM, ModelType.DECISION_TABLE):
        return ()
    raise ValueError(f"Unsupported model type: {model_type}")


def iter_shapes(editor_json: Mapping[str, Any]) -> Iterator[Dict[str, Any]]:
    """Depth-first walk over every shape nested under ``childShapes``."""
    stack: List[Any] = list(reversed(editor_json.get("childShapes") or []))
    while stack:
        shape = stack.pop()
        if not isinstance(shape, dict):
            continue
        yield shape
        children = shape.get("childShapes") or []
        stack.extend(reversed(children))


def iter_reference_nodes(
    editor_json: Mapping[str, Any],
    properties: Tuple[ReferenceProperty, ...],
) -> Iterator[Tuple[ReferenceProperty, Dict[str, Any]]]:
    for shape in iter_shapes(editor_json):
        shape_properties = shape.get("properties")
        if not isinstance(shape_properties, dict):
            continue
        for prop in properties:
            node = shape_properties.get(prop.property_name)
            if isinstance(node, dict):
                yield prop, node


def referenced_ids(editor_json: Mapping[str, Any], model_type: ModelType) -> Dict[RelationType, Set[str]]:
    """Store ids referenced by the document, grouped by relation type."""
    result: Dict[RelationType, Set[str]] = {}
    for prop, node in iter_reference_nodes(editor_json, reference_properties_for(model_type)):
        ref_id = node.get("id")
        if isinstance(ref_id, str) and ref_id:
            result.setdefault(prop.relation_type, set()).add(ref_id)
    return result


def referenced_keys(editor_json: Mapping[str, Any], model_type: ModelType) -> Dict[ModelType, Set[str]]:
    result: Dict[ModelType, Set[str]] = {}
    for prop, node in iter_reference_nodes(editor_json, reference_properties_for(model_type)):
        ref_key = node.get("key")
        if isinstance(ref_key, str) and ref_key:
            result.setdefault(prop.target_type, set()).add(ref_key)
    return result


IdToKeyMaps = Mapping[ModelType, Mapping[str, str]]
KeyToInfoMaps = Mapping[ModelType, Mapping[str, ModelInfo]]


def to_key_space(editor_json: Mapping[str, Any], model_type: ModelType, id_to_key: IdToKeyMaps) -> Dict[str, Any]:
    """Return a copy whose references carry the key of their (old) target id."""
    result = copy.deepcopy(dict(editor_json))
    for prop, node in iter_reference_nodes(result, reference_properties_for(model_type)):
        keys = id_to_key.get(prop.target_type) or {}
        ref_id = node.get("id")
        if ref_id in keys:
            node["key"] = keys[ref_id]
    return result


def to_id_space(editor_json: Mapping[str, Any], model_type: ModelType, key_to_info: KeyToInfoMaps) -> Dict[str, Any]:
    """Return a copy whose references point at the destination store's models.

    A reference whose key is unknown here keeps its key but drops the id it
    carried, since that id belongs to some other store.
    """
    result = copy.deepcopy(dict(editor_json))
    for prop, node in iter_reference_nodes(result, reference_properties_for(model_type)):
        ref_key = node.get("key")
        if not ref_key:
            continue
        info = (key_to_info.get(prop.target_type) or {}).get(ref_key)
        if info is None:
            node.pop("id", None)
            continue
        node["id"] = info.id
        node["name"] = info.name
        node["key"] = info.key
    return result


@dataclass
class EditorContent:
    """One model's editor JSON plus the identity space it currently lives in.

    Allowed transitions: RAW -> KEY_NORMALIZED -> ID_RESOLVED. RAW and
    ID_RESOLVED content may be persisted; KEY_NORMALIZED content may not.
    """

    model_type: ModelType
    document: Dict[str, Any] = field(default_factory=dict)
    state: ContentState = ContentState.RAW

    @classmethod
    def parse(cls, raw: Optional[str], model_type: ModelType) -> "EditorContent":
        return cls(model_type=model_type, document=json.loads(raw) if raw else {})

    def _transition(
        self,
        expected: ContentState,
        target: ContentState,
        rewrite: Callable[[Dict[str, Any]], Dict[str, Any]],
    ) -> "EditorContent":
        if self.state is target:
            return EditorContent(self.model_type, rewrite(self.document), target)
        if self.state is not expected:
            raise InvalidContentStateError(f"Cannot move editor content from {self.state.value} to {target.value}")
        return EditorContent(self.model_type, rewrite(self.document), target)

    def normalized(self, id_to_key: IdToKeyMaps) -> "EditorContent":
        return self._transition(
            ContentState.RAW,
            ContentState.KEY_NORMALIZED,
            lambda doc: to_key_space(doc, self.model_type, id_to_key),
        )

    def resolved(self, key_to_info: KeyToInfoMaps) -> "EditorContent":
        return self._transition(
            ContentState.KEY_NORMALIZED,
            ContentState.ID_RESOLVED,
            lambda doc: to_id_space(doc, self.model_type, key_to_info),
        )

    def require(self, state: ContentState) -> None:
        if self.state is not state:
            raise InvalidContentStateError(f"Expected {state.value} editor content, got {self.state.value}")

    def to_persistable_json(self) -> str:
        if self.state is ContentState.KEY_NORMALIZED:
            raise InvalidContentStateError("Key-normalized editor content must be resolved before it is stored")
        return json.dumps(self.document)
