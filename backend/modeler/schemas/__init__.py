"""Pydantic schemas package.

Public re-exports keep import paths short.
"""

from .models import (
    ModelBase,
    ModelCreate,
    ModelSave,
    Model,
    ModelWithEditorJson,
    ModelHistory,
    ModelList,
)  # noqa: F401
from .app_definitions import (
    AppModelDefinition,
    AppDefinition,
    AppDefinitionRepresentation,
    AppDefinitionPublishRequest,
    AppDefinitionUpdateResult,
)  # noqa: F401
