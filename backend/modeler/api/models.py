"""Models API router (thin) delegating to `ModelService`."""

from typing import List, Optional
import logging

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from modeler.api.deps import current_user_id, raise_http
from modeler.core.db import get_session, transaction
from modeler.domain.enums import ModelType
from modeler.domain.errors import BadRequestError, NotFoundError
from modeler.models import Model as ModelRow, ModelHistory as ModelHistoryRow
from modeler.schemas import (
    Model as ModelSchema,
    ModelCreate,
    ModelHistory,
    ModelList,
    ModelSave,
    ModelWithEditorJson,
)
from modeler.services import ModelService


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/models", tags=["models"])


@router.get("/", response_model=ModelList)
def list_models(
    model_type: Optional[ModelType] = Query(None, alias="modelType"),
    db: Session = Depends(get_session),
) -> ModelList:
    rows = ModelService(db).list_models(model_type)
    return ModelList(size=len(rows), data=[ModelSchema.model_validate(row) for row in rows])


@router.post("/", response_model=ModelWithEditorJson, status_code=status.HTTP_201_CREATED)
def create_model(
    payload: ModelCreate,
    db: Session = Depends(get_session),
    user_id: str = Depends(current_user_id),
) -> ModelRow:
    svc = ModelService(db)
    try:
        with transaction(db):
            model = svc.create_model(
                name=payload.name,
                key=payload.key,
                model_type=payload.model_type,
                description=payload.description,
                editor_json=payload.model_editor_json,
                user_id=user_id,
            )
    except BadRequestError as exc:
        raise_http(exc)
    db.refresh(model)
    return model


@router.get("/{model_id}", response_model=ModelWithEditorJson)
def get_model(model_id: str, db: Session = Depends(get_session)) -> ModelRow:
    try:
        return ModelService(db).get_model(model_id)
    except NotFoundError as exc:
        raise_http(exc)


@router.put("/{model_id}/editor/json", response_model=ModelWithEditorJson)
def save_model(
    model_id: str,
    payload: ModelSave,
    db: Session = Depends(get_session),
    user_id: str = Depends(current_user_id),
) -> ModelRow:
    svc = ModelService(db)
    try:
        with transaction(db):
            model = svc.save_model(
                svc.get_model(model_id),
                payload.model_editor_json,
                new_version=payload.new_version,
                comment=payload.comment,
                user_id=user_id,
                name=payload.name,
                key=payload.key,
                description=payload.description,
            )
    except (NotFoundError, BadRequestError) as exc:
        raise_http(exc)
    db.refresh(model)
    return model


@router.delete("/{model_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_model(model_id: str, db: Session = Depends(get_session)) -> None:
    try:
        with transaction(db):
            ModelService(db).delete_model(model_id)
    except NotFoundError as exc:
        raise_http(exc)
    return None


@router.get("/{model_id}/history", response_model=List[ModelHistory])
def get_model_history(model_id: str, db: Session = Depends(get_session)) -> List[ModelHistoryRow]:
    try:
        return ModelService(db).get_history(model_id)
    except NotFoundError as exc:
        raise_http(exc)
