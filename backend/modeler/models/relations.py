from __future__ import annotations

from sqlalchemy import Column, Integer, String, ForeignKey, UniqueConstraint

from modeler.core.db import Base


class ModelRelation(Base):
    """Directed edge: the parent's editor JSON references the child model."""

    __tablename__ = "model_relations"

    id = Column(Integer, primary_key=True, index=True)
    parent_model_id = Column(String(36), ForeignKey("models.id"), nullable=False, index=True)
    model_id = Column(String(36), ForeignKey("models.id"), nullable=False, index=True)
    relation_type = Column(String(64), nullable=False)

    __table_args__ = (
        UniqueConstraint("parent_model_id", "model_id", "relation_type", name="ux_model_relations_edge"),
    )

    def __repr__(self) -> str:
        return (
            f"<ModelRelation(parent='{self.parent_model_id}', child='{self.model_id}', "
            f"type='{self.relation_type}')>"
        )
