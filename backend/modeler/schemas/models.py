from __future__ import annotations

from typing import Optional, List
from datetime import datetime

from pydantic import BaseModel, Field, ConfigDict

from modeler.domain.enums import ModelType


class ModelBase(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    name: str = Field(..., description="Display name", max_length=400)
    key: str = Field(..., description="Stable, human-chosen identity", max_length=255)
    description: Optional[str] = Field(None, description="Model description")


class ModelCreate(ModelBase):
    model_type: ModelType = Field(..., description="Kind of model")
    model_editor_json: Optional[str] = Field(
        None, description="Initial editor JSON; a default skeleton is generated when omitted"
    )


class ModelSave(BaseModel):
    """Payload for saving editor content, optionally as a new version."""

    model_config = ConfigDict(protected_namespaces=())

    model_editor_json: str = Field(..., description="Editor JSON document")
    name: Optional[str] = Field(None, max_length=400)
    key: Optional[str] = Field(None, max_length=255)
    description: Optional[str] = None
    new_version: bool = Field(False, description="Snapshot the current content into history first")
    comment: Optional[str] = Field(None, description="Version comment")


class Model(ModelBase):
    """Schema for Model responses."""

    id: str
    model_type: ModelType
    version: int
    comment: Optional[str] = None
    created: datetime
    created_by: Optional[str] = None
    last_updated: datetime
    last_updated_by: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class ModelWithEditorJson(Model):
    model_editor_json: Optional[str] = None


class ModelHistory(BaseModel):
    id: str
    model_id: str
    key: str
    name: str
    version: int
    comment: Optional[str] = None
    last_updated: Optional[datetime] = None
    last_updated_by: Optional[str] = None
    removal_date: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True, protected_namespaces=())


class ModelList(BaseModel):
    size: int
    data: List[Model] = Field(default_factory=list)
