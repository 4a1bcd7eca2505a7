"""App definition archive endpoints: export, import and publish."""

import logging

from fastapi import APIRouter, Depends, File, UploadFile
from fastapi.responses import Response
from sqlalchemy.orm import Session

from modeler.api.deps import current_user_id, raise_http
from modeler.core.db import get_session, transaction
from modeler.domain.errors import BadRequestError, InternalServerError, NotFoundError
from modeler.schemas import (
    AppDefinitionPublishRequest,
    AppDefinitionRepresentation,
    AppDefinitionUpdateResult,
)
from modeler.services import (
    AppDefinitionExportService,
    AppDefinitionImportService,
    AppDefinitionPublishService,
    ModelService,
)
from modeler.services.app_definitions import require_app_model
from modeler.services.exports import export_filename


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/app-definitions", tags=["app-definitions"])

DOMAIN_ERRORS = (BadRequestError, NotFoundError, InternalServerError)


def _attachment(content: bytes, filename: str) -> Response:
    return Response(
        content=content,
        media_type="application/zip",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/{model_id}/export")
def export_app_definition(model_id: str, db: Session = Depends(get_session)) -> Response:
    try:
        app = require_app_model(ModelService(db), model_id)
        content = AppDefinitionExportService(db).export_portable(model_id)
    except DOMAIN_ERRORS as exc:
        raise_http(exc)
    return _attachment(content, export_filename(app))


@router.get("/{model_id}/export-bar")
def export_deployable_app_definition(model_id: str, db: Session = Depends(get_session)) -> Response:
    try:
        app = require_app_model(ModelService(db), model_id)
        content = AppDefinitionExportService(db).export_deployable(model_id)
    except DOMAIN_ERRORS as exc:
        raise_http(exc)
    return _attachment(content, export_filename(app, deployable=True))


@router.post("/import", response_model=AppDefinitionRepresentation)
def import_app_definition(
    file: UploadFile = File(...),
    db: Session = Depends(get_session),
    user_id: str = Depends(current_user_id),
) -> AppDefinitionRepresentation:
    svc = AppDefinitionImportService(db, user_id=user_id)
    try:
        with transaction(db):
            return svc.import_portable(file.file, file.filename)
    except DOMAIN_ERRORS as exc:
        raise_http(exc)
    finally:
        file.file.close()


@router.post("/{model_id}/import", response_model=AppDefinitionUpdateResult)
def import_app_definition_new_version(
    model_id: str,
    file: UploadFile = File(...),
    db: Session = Depends(get_session),
    user_id: str = Depends(current_user_id),
) -> AppDefinitionUpdateResult:
    svc = AppDefinitionImportService(db, user_id=user_id)
    try:
        with transaction(db):
            representation = svc.import_new_version(file.file, file.filename, model_id)
    except DOMAIN_ERRORS as exc:
        raise_http(exc)
    finally:
        file.file.close()
    return AppDefinitionUpdateResult(app_definition=representation)


@router.post("/{model_id}/publish", response_model=AppDefinitionUpdateResult)
def publish_app_definition(
    model_id: str,
    payload: AppDefinitionPublishRequest,
    db: Session = Depends(get_session),
    user_id: str = Depends(current_user_id),
) -> AppDefinitionUpdateResult:
    svc = AppDefinitionPublishService(db)
    try:
        with transaction(db):
            representation = svc.publish_app_definition(model_id, payload.comment, user_id)
    except DOMAIN_ERRORS as exc:
        raise_http(exc)
    return AppDefinitionUpdateResult(app_definition=representation)
