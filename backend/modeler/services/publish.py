"""Push deployable archives to the engine's app repository.

Environment variables (read at publish-time):
- DEPLOYMENT_API_URL (required; e.g. http://engine:8080/flowable-rest/app-api)
- DEPLOYMENT_API_USER (optional; default "admin")
- DEPLOYMENT_API_PASSWORD (optional; default "test")
- DEPLOYMENT_API_TIMEOUT (optional; seconds, no timeout when unset)
- DEPLOYMENT_API_VERIFY_TLS (optional; default "false")
- DEPLOYMENT_TENANT_ID (optional)
"""

from __future__ import annotations

import logging
import os
from typing import Optional

import httpx
from sqlalchemy.orm import Session

from modeler.converters import ConverterSet, default_converters
from modeler.domain.errors import InternalServerError
from modeler.models import Model
from modeler.schemas import AppDefinitionRepresentation
from modeler.services.app_definitions import (
    app_definition_representation,
    collect_app_graph,
    require_app_model,
)
from modeler.services.exports import AppDefinitionExportService, export_filename
from modeler.services.models import ModelService


logger = logging.getLogger(__name__)

DEPLOYMENTS_PATH = "/app-repository/deployments"


def _get_bool(env_value: str | None, default: bool) -> bool:
    if env_value is None:
        return default
    return env_value.strip().lower() in {"1", "true", "yes", "on"}


def _get_timeout(env_value: str | None) -> Optional[float]:
    if env_value is None or not env_value.strip():
        return None
    try:
        return float(env_value)
    except ValueError:
        logger.warning("deployment_timeout_invalid | value=%s", env_value)
        return None


class AppDefinitionPublishService:
    def __init__(self, db: Session, converters: Optional[ConverterSet] = None) -> None:
        self.db = db
        self.models = ModelService(db)
        self.exports = AppDefinitionExportService(db, converters or default_converters())

    def publish_app_definition(
        self, model_id: str, comment: Optional[str], user_id: Optional[str] = None
    ) -> AppDefinitionRepresentation:
        app = require_app_model(self.models, model_id)
        self.publish(comment, app, user_id)
        return app_definition_representation(app)

    def publish(self, comment: Optional[str], app_model: Model, user_id: Optional[str] = None) -> None:
        self.models.create_new_version(app_model, comment, user_id)
        graph = collect_app_graph(self.models, app_model)
        archive = self.exports.build_deployable(graph)
        self.deploy(export_filename(app_model, deployable=True), archive, app_model)

    def deploy(self, filename: str, archive: bytes, app_model: Model) -> None:
        base_url = os.getenv("DEPLOYMENT_API_URL")
        if not base_url:
            logger.error("deployment_api_unconfigured | app=%s", app_model.key)
            raise InternalServerError("Deployment API url is not configured")

        url = base_url.rstrip("/") + DEPLOYMENTS_PATH
        params = {"deploymentKey": app_model.key, "deploymentName": app_model.name}
        tenant_id = os.getenv("DEPLOYMENT_TENANT_ID")
        if tenant_id:
            params["tenantId"] = tenant_id
        auth = (os.getenv("DEPLOYMENT_API_USER", "admin"), os.getenv("DEPLOYMENT_API_PASSWORD", "test"))

        try:
            with httpx.Client(
                verify=_get_bool(os.getenv("DEPLOYMENT_API_VERIFY_TLS"), False),
                auth=auth,
                timeout=_get_timeout(os.getenv("DEPLOYMENT_API_TIMEOUT")),
            ) as client:
                response = client.post(
                    url,
                    params=params,
                    files={"file": (filename, archive, "application/zip")},
                )
        except httpx.HTTPError as exc:
            logger.exception("deployment_failed | app=%s url=%s", app_model.key, url)
            raise InternalServerError(f"Error deploying app definition {app_model.key}") from exc

        if response.status_code != httpx.codes.CREATED:
            logger.error(
                "deployment_rejected | app=%s status=%s body=%s", app_model.key, response.status_code, response.text[:500]
            )
            raise InternalServerError(
                f"Invalid deployment response status {response.status_code} for app definition {app_model.key}"
            )
        logger.info("deployment_created | app=%s file=%s bytes=%s", app_model.key, filename, len(archive))
