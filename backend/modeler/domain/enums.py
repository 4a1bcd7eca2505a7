from __future__ import annotations

from enum import Enum


class ModelType(str, Enum):
    APP = "app"
    BPMN = "bpmn"
    CMMN = "cmmn"
    FORM = "form"
    DECISION_TABLE = "decision-table"


class RelationType(str, Enum):
    FORM_MODEL = "form-model"
    DECISION_TABLE_MODEL = "decision-table-model"
    CASE_MODEL = "case-model"
    PROCESS_MODEL = "process-model"


class ContentState(str, Enum):
    """Lifecycle of one model's editor JSON while it crosses identity spaces."""

    RAW = "raw"
    KEY_NORMALIZED = "key-normalized"
    ID_RESOLVED = "id-resolved"


# Child model type each relation points at
RELATION_CHILD_TYPES: dict[RelationType, ModelType] = {
    RelationType.FORM_MODEL: ModelType.FORM,
    RelationType.DECISION_TABLE_MODEL: ModelType.DECISION_TABLE,
    RelationType.CASE_MODEL: ModelType.CMMN,
    RelationType.PROCESS_MODEL: ModelType.BPMN,
}
