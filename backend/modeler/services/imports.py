"""Portable archive import.

The archive is read once into memory, then replayed in dependency order:

1. forms
2. decision tables (migrated to the current schema first)
3. bpmn models
4. cmmn models, nested case references first
5. app manifest entries rewritten to the new model ids
6. app manifest persisted

Every model is merged onto an existing model with the same key when the
import targets an existing app, otherwise created fresh. Nothing here
commits; the caller's transaction decides whether the writes survive.
"""

from __future__ import annotations

import io
import json
import logging
import zipfile
from dataclasses import dataclass, field
from typing import IO, Any, Dict, List, Mapping, Optional, Union

from pydantic import ValidationError
from sqlalchemy.orm import Session

from modeler.converters import ConverterSet, default_converters
from modeler.domain.enums import ModelType
from modeler.domain.errors import (
    BadRequestError,
    ConversionError,
    InternalServerError,
    InvalidContentStateError,
)
from modeler.domain.references import EditorContent, ModelInfo, referenced_keys
from modeler.models import Model
from modeler.schemas import AppDefinition, AppDefinitionRepresentation
from modeler.services.decision_tables import migrate as migrate_decision_table
from modeler.services.app_definitions import (
    app_definition_representation,
    collect_app_graph,
    require_app_model,
)
from modeler.services.exports import MODEL_DIRECTORIES
from modeler.services.models import ModelService


logger = logging.getLogger(__name__)

IMPORT_COMMENT = "App definition import"

_DIRECTORY_TYPES: Dict[str, ModelType] = {directory: model_type for model_type, directory in MODEL_DIRECTORIES.items()}


@dataclass
class ArchivedModel:
    """One decoded ``.json`` entry of a portable archive."""

    path: str
    old_id: Optional[str]
    name: str
    key: str
    description: Optional[str]
    editor_json: Any


@dataclass
class ArchiveContents:
    manifest: Optional[str] = None
    entries: Dict[ModelType, Dict[str, str]] = field(default_factory=lambda: {t: {} for t in MODEL_DIRECTORIES})
    thumbnails: Dict[str, bytes] = field(default_factory=dict)


@dataclass
class ImportContext:
    """Identity bookkeeping shared by the import stages."""

    existing: Dict[ModelType, Dict[str, Model]] = field(default_factory=lambda: {t: {} for t in ModelType})
    old_id_to_key: Dict[ModelType, Dict[str, str]] = field(default_factory=lambda: {t: {} for t in ModelType})
    imported: Dict[ModelType, Dict[str, Model]] = field(default_factory=lambda: {t: {} for t in ModelType})

    def record(self, model_type: ModelType, old_id: Optional[str], model: Model) -> None:
        if old_id:
            self.imported[model_type][old_id] = model
        # Later stages merge onto models created earlier in the same import
        self.existing[model_type][model.key] = model

    def key_to_info(self) -> Dict[ModelType, Dict[str, ModelInfo]]:
        return {
            model_type: {key: ModelInfo.of(model) for key, model in by_key.items()}
            for model_type, by_key in self.existing.items()
        }


def _path_stem(path: str) -> str:
    return path.rsplit(".", 1)[0]


class AppDefinitionImportService:
    def __init__(self, db: Session, converters: Optional[ConverterSet] = None, user_id: Optional[str] = None) -> None:
        self.db = db
        self.models = ModelService(db)
        self.converters = converters or default_converters()
        self.user_id = user_id

    # Entry points
    def import_portable(
        self,
        stream: Union[IO[bytes], bytes],
        filename: Optional[str],
        existing_app_model: Optional[Model] = None,
    ) -> AppDefinitionRepresentation:
        if not filename or not filename.endswith(".zip"):
            raise BadRequestError(f"Invalid file name, only .zip files are supported not {filename}")

        contents = self._read_archive(stream)
        manifest = self._decode_manifest(contents.manifest)

        ctx = self._merge_context(existing_app_model)
        archived = {
            model_type: [self._decode_entry(path, raw) for path, raw in sorted(by_path.items())]
            for model_type, by_path in contents.entries.items()
        }
        for model_type, entries in archived.items():
            for entry in entries:
                if entry.old_id:
                    ctx.old_id_to_key[model_type][entry.old_id] = entry.key

        self._import_forms(archived[ModelType.FORM], contents.thumbnails, ctx)
        self._import_decision_tables(archived[ModelType.DECISION_TABLE], contents.thumbnails, ctx)
        self._import_diagrams(ModelType.BPMN, archived[ModelType.BPMN], contents.thumbnails, ctx)
        self._import_diagrams(ModelType.CMMN, self._case_order(archived[ModelType.CMMN]), contents.thumbnails, ctx)

        definition = self._rewrite_manifest(manifest, ctx)
        app_model = self._persist_manifest(manifest, definition, existing_app_model)
        logger.info(
            "app_import_done | app=%s id=%s version=%s merged=%s",
            app_model.key,
            app_model.id,
            app_model.version,
            existing_app_model is not None,
        )
        return app_definition_representation(app_model, definition)

    def import_new_version(
        self,
        stream: Union[IO[bytes], bytes],
        filename: Optional[str],
        app_model_id: str,
    ) -> AppDefinitionRepresentation:
        """Re-import an archive onto an existing app, merging models by key.

        Only models already reachable from that app are merge candidates.
        """
        app = require_app_model(self.models, app_model_id)
        return self.import_portable(stream, filename, existing_app_model=app)

    def _merge_context(self, existing_app_model: Optional[Model]) -> ImportContext:
        ctx = ImportContext()
        if existing_app_model is None:
            return ctx
        graph = collect_app_graph(self.models, existing_app_model)
        for model_type in (ModelType.BPMN, ModelType.CMMN, ModelType.FORM, ModelType.DECISION_TABLE):
            for model in graph.by_type(model_type):
                ctx.existing[model_type].setdefault(model.key, model)
        return ctx

    # Reading
    def _read_archive(self, stream: Union[IO[bytes], bytes]) -> ArchiveContents:
        if isinstance(stream, (bytes, bytearray)):
            stream = io.BytesIO(stream)
        contents = ArchiveContents()
        try:
            with zipfile.ZipFile(stream) as archive:
                for info in archive.infolist():
                    name = info.filename
                    if info.is_dir() or not (name.endswith(".json") or name.endswith(".png")):
                        continue
                    data = archive.read(info)
                    if name.endswith(".png"):
                        contents.thumbnails[_path_stem(name)] = data
                        continue
                    if "/" not in name:
                        contents.manifest = data.decode("utf-8")
                        continue
                    model_type = _DIRECTORY_TYPES.get(name.split("/", 1)[0])
                    if model_type is None:
                        logger.warning("app_import_entry_ignored | entry=%s", name)
                        continue
                    contents.entries[model_type][name] = data.decode("utf-8")
        except (zipfile.BadZipFile, zipfile.LargeZipFile, OSError, UnicodeDecodeError, EOFError) as exc:
            logger.exception("app_import_zip_unreadable")
            raise InternalServerError("Error reading app definition zip file") from exc

        logger.info(
            "app_import_read | manifest=%s forms=%s decision_tables=%s bpmn=%s cmmn=%s thumbnails=%s",
            contents.manifest is not None,
            len(contents.entries[ModelType.FORM]),
            len(contents.entries[ModelType.DECISION_TABLE]),
            len(contents.entries[ModelType.BPMN]),
            len(contents.entries[ModelType.CMMN]),
            len(contents.thumbnails),
        )
        return contents

    def _decode_manifest(self, raw: Optional[str]) -> ArchivedModel:
        if raw is None:
            raise BadRequestError("Could not find app definition json")
        try:
            doc = json.loads(raw)
        except ValueError as exc:
            raise BadRequestError("Error reading app definition") from exc
        if not isinstance(doc, dict) or not doc.get("key") or not doc.get("editorJson"):
            raise BadRequestError("Could not find app definition json")
        editor_json = doc["editorJson"]
        if isinstance(editor_json, str):
            try:
                editor_json = json.loads(editor_json)
            except ValueError as exc:
                raise BadRequestError("Error reading app definition") from exc
        return ArchivedModel(
            path="",
            old_id=doc.get("id"),
            name=str(doc.get("name") or doc["key"]),
            key=str(doc["key"]),
            description=doc.get("description"),
            editor_json=editor_json,
        )

    def _decode_entry(self, path: str, raw: str) -> ArchivedModel:
        try:
            doc = json.loads(raw)
            editor_json = doc["editorJson"]
            if isinstance(editor_json, str):
                editor_json = json.loads(editor_json)
            if not isinstance(editor_json, dict):
                raise ValueError("editorJson is not an object")
            return ArchivedModel(
                path=path,
                old_id=doc.get("id"),
                name=str(doc["name"]),
                key=str(doc["key"]),
                description=doc.get("description"),
                editor_json=editor_json,
            )
        except (ValueError, KeyError, TypeError) as exc:
            logger.exception("app_import_entry_unreadable | entry=%s", path)
            raise InternalServerError(f"Error reading model json for {path}") from exc

    # Stages
    def _import_forms(self, entries: List[ArchivedModel], thumbnails: Mapping[str, bytes], ctx: ImportContext) -> None:
        for entry in entries:
            model = self._merge_or_create(ModelType.FORM, entry, json.dumps(entry.editor_json), thumbnails, ctx)
            ctx.record(ModelType.FORM, entry.old_id, model)
        logger.info("app_import_stage | stage=forms count=%s", len(entries))

    def _import_decision_tables(
        self, entries: List[ArchivedModel], thumbnails: Mapping[str, bytes], ctx: ImportContext
    ) -> None:
        for entry in entries:
            document = migrate_decision_table(entry.editor_json)
            document["key"] = entry.key
            try:
                self.converters.dmn.json_to_native(document)
            except ConversionError as exc:
                logger.exception("app_import_decision_table_invalid | key=%s entry=%s", entry.key, entry.path)
                raise InternalServerError(f"Could not convert decision table {entry.key}") from exc
            model = self._merge_or_create(ModelType.DECISION_TABLE, entry, json.dumps(document), thumbnails, ctx)
            ctx.record(ModelType.DECISION_TABLE, entry.old_id, model)
        logger.info("app_import_stage | stage=decision_tables count=%s", len(entries))

    def _import_diagrams(
        self,
        model_type: ModelType,
        entries: List[ArchivedModel],
        thumbnails: Mapping[str, bytes],
        ctx: ImportContext,
    ) -> None:
        converter = self.converters.diagram(model_type)
        for entry in entries:
            content = EditorContent(model_type, entry.editor_json).normalized(ctx.old_id_to_key)
            try:
                native = converter.json_to_native(content)
                resolved = converter.native_to_json(native, ctx.key_to_info())
            except (ConversionError, InvalidContentStateError) as exc:
                logger.exception("app_import_conversion_failed | type=%s key=%s entry=%s", model_type.value, entry.key, entry.path)
                raise InternalServerError(f"Could not convert {model_type.value} model {entry.key}") from exc
            model = self._merge_or_create(model_type, entry, resolved, thumbnails, ctx)
            ctx.record(model_type, entry.old_id, model)
        logger.info("app_import_stage | stage=%s count=%s", model_type.value, len(entries))

    def _case_order(self, entries: List[ArchivedModel]) -> List[ArchivedModel]:
        """Order case models so nested case references are imported before their parents."""
        by_key = {entry.key: entry for entry in entries}
        old_ids = {entry.old_id: entry.key for entry in entries if entry.old_id}
        ordered: List[ArchivedModel] = []
        state: Dict[str, int] = {}

        def dependencies(entry: ArchivedModel) -> List[str]:
            keys = set(referenced_keys(entry.editor_json, ModelType.CMMN).get(ModelType.CMMN, set()))
            normalized = EditorContent(ModelType.CMMN, entry.editor_json).normalized({ModelType.CMMN: old_ids})
            keys |= referenced_keys(normalized.document, ModelType.CMMN).get(ModelType.CMMN, set())
            return sorted(k for k in keys if k in by_key and k != entry.key)

        def visit(entry: ArchivedModel) -> None:
            if state.get(entry.key) is not None:
                return
            state[entry.key] = 1
            for dep in dependencies(entry):
                visit(by_key[dep])
            state[entry.key] = 2
            ordered.append(entry)

        for entry in entries:
            visit(entry)
        return ordered

    def _rewrite_manifest(self, manifest: ArchivedModel, ctx: ImportContext) -> AppDefinition:
        try:
            definition = AppDefinition.model_validate(manifest.editor_json)
        except ValidationError as exc:
            logger.warning("app_import_manifest_invalid | key=%s error=%s", manifest.key, exc)
            raise BadRequestError("Error reading app definition") from exc

        for entries, model_type in ((definition.models, ModelType.BPMN), (definition.cmmn_models, ModelType.CMMN)):
            for entry in entries:
                model = ctx.imported[model_type].get(entry.id) if entry.id else None
                if model is None:
                    # entry keeps its archived values
                    logger.warning(
                        "app_import_manifest_dangling | app=%s id=%s key=%s type=%s",
                        manifest.key,
                        entry.id,
                        entry.key,
                        model_type.value,
                    )
                    continue
                entry.id = model.id
                entry.name = model.name
                entry.key = model.key
                entry.version = model.version
                entry.last_updated = model.last_updated
                entry.created_by = model.created_by
                entry.last_updated_by = model.last_updated_by
        logger.info("app_import_stage | stage=manifest_rewrite models=%s cmmn_models=%s", len(definition.models), len(definition.cmmn_models))
        return definition

    def _persist_manifest(
        self, manifest: ArchivedModel, definition: AppDefinition, existing_app_model: Optional[Model]
    ) -> Model:
        editor_json = json.dumps(definition.to_editor_json())
        if existing_app_model is not None:
            model = self.models.save_model(
                existing_app_model,
                editor_json,
                new_version=True,
                comment=IMPORT_COMMENT,
                user_id=self.user_id,
            )
        else:
            model = self.models.create_model(
                name=manifest.name,
                key=manifest.key,
                model_type=ModelType.APP,
                description=manifest.description,
                editor_json=editor_json,
                user_id=self.user_id,
            )
        logger.info("app_import_stage | stage=manifest_persist id=%s", model.id)
        return model

    def _merge_or_create(
        self,
        model_type: ModelType,
        entry: ArchivedModel,
        editor_json: Union[str, EditorContent],
        thumbnails: Mapping[str, bytes],
        ctx: ImportContext,
    ) -> Model:
        thumbnail = thumbnails.get(_path_stem(entry.path))
        existing = ctx.existing[model_type].get(entry.key)
        if existing is not None:
            return self.models.save_model(
                existing,
                editor_json,
                thumbnail=thumbnail,
                new_version=True,
                comment=IMPORT_COMMENT,
                user_id=self.user_id,
            )
        return self.models.create_model(
            name=entry.name,
            key=entry.key,
            model_type=model_type,
            description=entry.description,
            editor_json=editor_json,
            thumbnail=thumbnail,
            user_id=self.user_id,
        )

