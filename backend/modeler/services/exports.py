"""Archive builders for App models.

Portable archive (round trip, consumed by `AppDefinitionImportService`)::

    {appKey}.json
    bpmn-models/{key}.json | .bpmn | .png
    cmmn-models/{key}.json | .cmmn | .png
    form-models/{key}.json | .png
    decision-table-models/{key}.json | .dmn | .png

Deployable archive (flat, consumed by the engine)::

    {appKey}.app
    {sanitizedKey}.bpmn | {sanitizedKey}.cmmn
    form-{key}.form
    dmn-{key}.dmn
    event-{key}.event
    channel-{key}.channel
"""

from __future__ import annotations

import io
import json
import logging
import re
import zipfile
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from modeler.converters import (
    ChannelDefinition,
    ConverterSet,
    EventDefinition,
    NativeDiagram,
    default_converters,
    discover,
)
from modeler.domain.enums import ModelType
from modeler.domain.errors import ConversionError, InternalServerError, InvalidContentStateError
from modeler.domain.references import EditorContent
from modeler.models import Model
from modeler.services.app_definitions import AppModelGraph, collect_app_graph, require_app_model
from modeler.services.models import ModelService


logger = logging.getLogger(__name__)

MODEL_DIRECTORIES: Dict[ModelType, str] = {
    ModelType.BPMN: "bpmn-models",
    ModelType.CMMN: "cmmn-models",
    ModelType.FORM: "form-models",
    ModelType.DECISION_TABLE: "decision-table-models",
}
XML_EXTENSIONS: Dict[ModelType, str] = {
    ModelType.BPMN: "bpmn",
    ModelType.CMMN: "cmmn",
}


def sanitize_key(key: str) -> str:
    return re.sub(r"\s+", "", key)


def export_filename(app_model: Model, deployable: bool = False) -> str:
    if deployable:
        return f"{app_model.key}.bar"
    return f"{app_model.name}.zip"


def model_entry(model: Model, editor_json: Any) -> bytes:
    """Serialize one model as a portable ``.json`` entry."""
    doc = {
        "id": model.id,
        "name": model.name,
        "key": model.key,
        "description": model.description,
        "editorJson": editor_json,
    }
    return json.dumps(doc, indent=2).encode("utf-8")


class AppDefinitionExportService:
    """Builds portable and deployable archives from an App model.

    Any conversion failure aborts the build with `InternalServerError`
    naming the model; no partial archive is returned.
    """

    def __init__(self, db: Session, converters: Optional[ConverterSet] = None) -> None:
        self.db = db
        self.models = ModelService(db)
        self.converters = converters or default_converters()

    def export_portable(self, app_model_id: str) -> bytes:
        app = require_app_model(self.models, app_model_id)
        graph = collect_app_graph(self.models, app)
        id_to_key = graph.id_to_key()

        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as archive:
            archive.writestr(f"{app.key}.json", model_entry(app, graph.definition.to_editor_json()))

            for model in graph.diagrams:
                directory = MODEL_DIRECTORIES[model.type]
                content = self._normalized(model, id_to_key)
                archive.writestr(f"{directory}/{model.key}.json", model_entry(model, content.document))
                archive.writestr(f"{directory}/{model.key}.{XML_EXTENSIONS[model.type]}", self._diagram_xml(model, content))
                self._write_thumbnail(archive, directory, model)

            for model in graph.forms:
                directory = MODEL_DIRECTORIES[ModelType.FORM]
                archive.writestr(f"{directory}/{model.key}.json", model_entry(model, self._document(model)))
                self._write_thumbnail(archive, directory, model)

            for model in graph.decision_tables:
                directory = MODEL_DIRECTORIES[ModelType.DECISION_TABLE]
                document = self._document(model)
                archive.writestr(f"{directory}/{model.key}.json", model_entry(model, document))
                archive.writestr(f"{directory}/{model.key}.dmn", self._decision_table_xml(model, document))
                self._write_thumbnail(archive, directory, model)

        logger.info(
            "app_export_portable | app=%s diagrams=%s forms=%s decision_tables=%s",
            app.key,
            len(graph.diagrams),
            len(graph.forms),
            len(graph.decision_tables),
        )
        return buffer.getvalue()

    def export_deployable(self, app_model_id: str) -> bytes:
        app = require_app_model(self.models, app_model_id)
        graph = collect_app_graph(self.models, app)
        return self.build_deployable(graph)

    def build_deployable(self, graph: AppModelGraph) -> bytes:
        id_to_key = graph.id_to_key()
        definition = graph.definition
        manifest = {
            "key": graph.app.key,
            "name": graph.app.name,
            "description": graph.app.description,
            "theme": definition.theme,
            "icon": definition.icon,
            "usersAccess": definition.users_access,
            "groupsAccess": definition.groups_access,
        }

        natives: List[Tuple[Model, NativeDiagram]] = []
        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as archive:
            archive.writestr(f"{graph.app.key}.app", json.dumps(manifest, indent=2).encode("utf-8"))

            for model in graph.diagrams:
                content = self._normalized(model, id_to_key)
                native, xml = self._diagram_native_and_xml(model, content)
                natives.append((model, native))
                archive.writestr(f"{sanitize_key(model.key)}.{XML_EXTENSIONS[model.type]}", xml)

            for model in graph.forms:
                archive.writestr(f"form-{model.key}.form", json.dumps(self._document(model), indent=2).encode("utf-8"))

            for model in graph.decision_tables:
                archive.writestr(f"dmn-{model.key}.dmn", self._decision_table_xml(model, self._document(model)))

            events, channels = self._event_definitions(natives)
            for key, event in events.items():
                archive.writestr(f"event-{key}.event", self.converters.event.native_to_bytes(event))
            for key, channel in channels.items():
                archive.writestr(f"channel-{key}.channel", self.converters.channel.native_to_bytes(channel))

        logger.info(
            "app_export_deployable | app=%s diagrams=%s forms=%s decision_tables=%s events=%s channels=%s",
            graph.app.key,
            len(graph.diagrams),
            len(graph.forms),
            len(graph.decision_tables),
            len(events),
            len(channels),
        )
        return buffer.getvalue()

    # Helpers
    def _event_definitions(
        self, natives: List[Tuple[Model, NativeDiagram]]
    ) -> Tuple[Dict[str, EventDefinition], Dict[str, ChannelDefinition]]:
        events: Dict[str, EventDefinition] = {}
        channels: Dict[str, ChannelDefinition] = {}
        for model, native in natives:
            try:
                found_events, found_channels = discover([native], self.converters.event, self.converters.channel)
            except ConversionError as exc:
                logger.exception("model_events_failed | id=%s key=%s type=%s", model.id, model.key, model.model_type)
                raise InternalServerError(f"Could not generate event definitions for model {model.key}") from exc
            for key, event in found_events.items():
                events.setdefault(key, event)
            for key, channel in found_channels.items():
                channels.setdefault(key, channel)
        return events, channels

    def _document(self, model: Model) -> Dict[str, Any]:
        try:
            return json.loads(model.model_editor_json or "{}")
        except ValueError as exc:
            logger.exception("model_json_invalid | id=%s key=%s", model.id, model.key)
            raise InternalServerError(f"Could not read editor JSON of model {model.key}") from exc

    def _normalized(self, model: Model, id_to_key) -> EditorContent:
        content = EditorContent(model.type, self._document(model))
        return content.normalized(id_to_key)

    def _diagram_native_and_xml(self, model: Model, content: EditorContent) -> Tuple[NativeDiagram, bytes]:
        converter = self.converters.diagram(model.type)
        try:
            native = converter.json_to_native(content)
            return native, converter.native_to_xml(native)
        except (ConversionError, InvalidContentStateError) as exc:
            logger.exception("model_xml_failed | id=%s key=%s type=%s", model.id, model.key, model.model_type)
            raise InternalServerError(
                f"Could not generate {model.type.value.upper()} xml for model {model.key}"
            ) from exc

    def _diagram_xml(self, model: Model, content: EditorContent) -> bytes:
        return self._diagram_native_and_xml(model, content)[1]

    def _decision_table_xml(self, model: Model, document: Dict[str, Any]) -> bytes:
        try:
            dmn = self.converters.dmn
            return dmn.native_to_xml(dmn.json_to_native(document))
        except ConversionError as exc:
            logger.exception("model_xml_failed | id=%s key=%s type=%s", model.id, model.key, model.model_type)
            raise InternalServerError(f"Could not generate DMN xml for model {model.key}") from exc

    @staticmethod
    def _write_thumbnail(archive: zipfile.ZipFile, directory: str, model: Model) -> None:
        if model.thumbnail:
            archive.writestr(f"{directory}/{model.key}.png", model.thumbnail)
