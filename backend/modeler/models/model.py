from __future__ import annotations

from sqlalchemy import Column, Integer, String, Text, DateTime, LargeBinary, Index

from modeler.core.db import Base
from modeler.domain.enums import ModelType
from .common import _utcnow, new_model_id


class Model(Base):
    """A persisted, versioned unit of process-design content."""

    __tablename__ = "models"

    id = Column(String(36), primary_key=True, default=new_model_id)
    key = Column(String(255), nullable=False, index=True)
    name = Column(String(400), nullable=False)
    description = Column(Text, nullable=True)
    model_type = Column(String(32), nullable=False, index=True)
    version = Column(Integer, nullable=False, default=1)
    model_editor_json = Column(Text, nullable=True)
    thumbnail = Column(LargeBinary, nullable=True)
    comment = Column(Text, nullable=True)
    created = Column(DateTime, nullable=False, default=_utcnow)
    created_by = Column(String(255), nullable=True)
    last_updated = Column(DateTime, nullable=False, default=_utcnow)
    last_updated_by = Column(String(255), nullable=True)

    @property
    def type(self) -> ModelType:
        return ModelType(self.model_type)

    def __repr__(self) -> str:  # noqa: D401
        return f"<Model(id='{self.id}', key='{self.key}', type='{self.model_type}', version={self.version})>"


class ModelHistory(Base):
    """Snapshot of a model row taken before it was versioned or removed."""

    __tablename__ = "model_history"

    id = Column(String(36), primary_key=True, default=new_model_id)
    model_id = Column(String(36), nullable=False, index=True)
    key = Column(String(255), nullable=False)
    name = Column(String(400), nullable=False)
    description = Column(Text, nullable=True)
    model_type = Column(String(32), nullable=False)
    version = Column(Integer, nullable=False)
    model_editor_json = Column(Text, nullable=True)
    comment = Column(Text, nullable=True)
    created = Column(DateTime, nullable=True)
    created_by = Column(String(255), nullable=True)
    last_updated = Column(DateTime, nullable=True)
    last_updated_by = Column(String(255), nullable=True)
    removal_date = Column(DateTime, nullable=True)

    def __repr__(self) -> str:
        return f"<ModelHistory(model_id='{self.model_id}', version={self.version})>"


Index("idx_models_type_key", Model.model_type, Model.key)
