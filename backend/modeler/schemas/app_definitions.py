"""Schemas for app definitions.

`AppDefinition` and `AppModelDefinition` mirror the editor JSON stored on
App-typed models, so they use the camelCase wire names as aliases and keep any
unknown fields intact on the way through.
"""

from __future__ import annotations

from typing import Any, Dict, Optional, List
from datetime import datetime

from pydantic import BaseModel, Field, ConfigDict

from .models import Model


class AppModelDefinition(BaseModel):
    """Snapshot reference from an app to one of its Bpmn/Cmmn models."""

    id: Optional[str] = None
    name: Optional[str] = None
    key: Optional[str] = None
    version: Optional[int] = None
    model_type: Optional[int | str] = Field(None, alias="modelType")
    description: Optional[str] = None
    last_updated: Optional[datetime] = Field(None, alias="lastUpdated")
    created_by: Optional[str] = Field(None, alias="createdBy")
    last_updated_by: Optional[str] = Field(None, alias="lastUpdatedBy")

    model_config = ConfigDict(populate_by_name=True, extra="allow", protected_namespaces=())


class AppDefinition(BaseModel):
    """Decoded editor JSON of an App model."""

    key: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None
    theme: Optional[str] = None
    icon: Optional[str] = None
    users_access: Optional[str] = Field(None, alias="usersAccess")
    groups_access: Optional[str] = Field(None, alias="groupsAccess")
    models: List[AppModelDefinition] = Field(default_factory=list)
    cmmn_models: List[AppModelDefinition] = Field(default_factory=list, alias="cmmnModels")

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    def to_editor_json(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class AppDefinitionRepresentation(Model):
    definition: Optional[AppDefinition] = None


class AppDefinitionPublishRequest(BaseModel):
    comment: Optional[str] = Field(None, description="Version comment stored with the published snapshot")


class AppDefinitionUpdateResult(BaseModel):
    app_definition: AppDefinitionRepresentation
