"""Tests for AppDefinitionImportService."""

from __future__ import annotations

import io
import json
import zipfile
from typing import Any, Dict

import pytest
from sqlalchemy.orm import Session

from modeler.core.db import transaction
from modeler.domain.enums import ModelType
from modeler.domain.errors import BadRequestError, InternalServerError
from modeler.models import Model, ModelHistory
from modeler.services import AppDefinitionExportService, AppDefinitionImportService, ModelService


def build_archive(entries: Dict[str, Any]) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        for name, content in entries.items():
            if isinstance(content, (dict, list)):
                content = json.dumps(content)
            archive.writestr(name, content)
    return buffer.getvalue()


def entry(model_id: str, key: str, name: str, editor_json: Dict[str, Any]) -> Dict[str, Any]:
    return {"id": model_id, "key": key, "name": name, "description": None, "editorJson": editor_json}


def _shapes(model: Model) -> Dict[str, Any]:
    return {s["resourceId"]: s for s in json.loads(model.model_editor_json)["childShapes"]}


def _by_key(db: Session, key: str, model_type: ModelType) -> Model:
    return ModelService(db).find_by_key(key, model_type)[0]


@pytest.fixture()
def portable(db: Session, expense_app) -> bytes:
    return AppDefinitionExportService(db).export_portable(expense_app.app.id)


def test_import_into_empty_store_rebinds_references(target_db: Session, portable: bytes, expense_app):
    result = AppDefinitionImportService(target_db, user_id="dave").import_portable(portable, "expense.zip")
    target_db.commit()

    assert target_db.query(Model).count() == 4
    form = _by_key(target_db, "expenseForm", ModelType.FORM)
    table = _by_key(target_db, "expenseRules", ModelType.DECISION_TABLE)
    process = _by_key(target_db, "expenseProcess", ModelType.BPMN)

    shapes = _shapes(process)
    assert shapes["userTask1"]["properties"]["formreference"]["id"] == form.id
    assert shapes["decisionTask1"]["properties"]["decisiontaskdecisiontablereference"]["id"] == table.id
    assert {m.id for m in ModelService(target_db).find_children_by_parent_id(process.id)} == {form.id, table.id}

    assert result.key == "expenseApp"
    assert result.created_by == "dave"
    assert [m.id for m in result.definition.models] == [process.id]
    stored = json.loads(_by_key(target_db, "expenseApp", ModelType.APP).model_editor_json)
    assert stored["models"][0]["id"] == process.id
    assert stored["theme"] == "theme-1"


def test_reimport_merges_by_key_and_keeps_ids(target_db: Session, portable: bytes):
    svc = AppDefinitionImportService(target_db)
    first = svc.import_portable(portable, "expense.zip")
    target_db.commit()
    ids_before = {(m.key, m.model_type): m.id for m in target_db.query(Model).all()}

    second = svc.import_new_version(portable, "expense.zip", first.id)
    target_db.commit()

    ids_after = {(m.key, m.model_type): m.id for m in target_db.query(Model).all()}
    assert ids_after == ids_before
    assert second.id == first.id
    assert second.version == 2
    assert {m.version for m in target_db.query(Model).all()} == {2}
    assert target_db.query(ModelHistory).count() == 4

    process = _by_key(target_db, "expenseProcess", ModelType.BPMN)
    form = _by_key(target_db, "expenseForm", ModelType.FORM)
    assert _shapes(process)["userTask1"]["properties"]["formreference"]["id"] == form.id
    assert process.comment == "App definition import"


def test_fresh_import_does_not_merge(target_db: Session, portable: bytes):
    svc = AppDefinitionImportService(target_db)
    svc.import_portable(portable, "expense.zip")
    svc.import_portable(portable, "expense.zip")
    target_db.commit()
    assert target_db.query(Model).count() == 8


def test_import_onto_existing_app_merges_children(target_db: Session, portable: bytes):
    svc = AppDefinitionImportService(target_db)
    first = svc.import_portable(portable, "expense.zip")
    target_db.commit()
    app = target_db.get(Model, first.id)
    before = target_db.query(Model).count()

    svc.import_portable(portable, "expense.zip", existing_app_model=app)
    svc.import_portable(portable, "expense.zip", existing_app_model=app)
    target_db.commit()

    assert target_db.query(Model).count() == before
    assert _by_key(target_db, "expenseForm", ModelType.FORM).version == 3
    assert app.version == 3


def test_manifest_with_string_editor_json(target_db: Session):
    manifest = entry("app-old", "app", "App", json.dumps({"key": "app", "name": "App", "theme": "theme-2", "models": []}))
    result = AppDefinitionImportService(target_db).import_portable(build_archive({"app.json": manifest}), "app.zip")
    assert result.definition.theme == "theme-2"


def test_failed_diagram_stage_rolls_back_earlier_writes(target_db: Session, builders):
    process = builders.bpmn("p", "P")
    del process["childShapes"][0]["resourceId"]
    archive = build_archive(
        {
            "app.json": entry("app-old", "app", "App", {"key": "app", "name": "App", "models": []}),
            "form-models/f.json": entry("f-old", "f", "F", builders.form("f", "F")),
            "bpmn-models/p.json": entry("p-old", "p", "P", process),
        }
    )

    with pytest.raises(InternalServerError):
        with transaction(target_db):
            AppDefinitionImportService(target_db).import_portable(archive, "app.zip")

    assert target_db.query(Model).count() == 0


def test_thumbnails_are_matched_by_path(target_db: Session, builders):
    archive = build_archive(
        {
            "app.json": entry("app-old", "app", "App", {"key": "app", "name": "App", "models": [{"id": "a-bpmn", "key": "a"}]}),
            "form-models/a.json": entry("a-form", "a", "A form", builders.form("a", "A form")),
            "form-models/a.png": b"form-thumbnail",
            "bpmn-models/a.json": entry("a-bpmn", "a", "A process", builders.bpmn("a", "A process")),
            "bpmn-models/a.png": b"bpmn-thumbnail",
        }
    )

    AppDefinitionImportService(target_db).import_portable(archive, "app.zip")
    target_db.commit()

    assert _by_key(target_db, "a", ModelType.FORM).thumbnail == b"form-thumbnail"
    assert _by_key(target_db, "a", ModelType.BPMN).thumbnail == b"bpmn-thumbnail"


def test_reimport_replaces_thumbnail(target_db: Session, portable: bytes):
    svc = AppDefinitionImportService(target_db)
    first = svc.import_portable(portable, "expense.zip")
    target_db.commit()
    assert _by_key(target_db, "expenseProcess", ModelType.BPMN).thumbnail is None

    source = zipfile.ZipFile(io.BytesIO(portable))
    entries: Dict[str, Any] = {name: source.read(name) for name in source.namelist()}
    entries["bpmn-models/expenseProcess.png"] = b"new-thumbnail"
    svc.import_new_version(build_archive(entries), "expense.zip", first.id)
    target_db.commit()

    process = _by_key(target_db, "expenseProcess", ModelType.BPMN)
    assert process.thumbnail == b"new-thumbnail"
    assert process.version == 2


def test_round_trip_is_stable(db: Session, target_db: Session, portable: bytes):
    imported = AppDefinitionImportService(target_db).import_portable(portable, "expense.zip")
    target_db.commit()

    again = zipfile.ZipFile(io.BytesIO(AppDefinitionExportService(target_db).export_portable(imported.id)))
    original = zipfile.ZipFile(io.BytesIO(portable))

    assert set(again.namelist()) == set(original.namelist())
    assert again.read("bpmn-models/expenseProcess.bpmn") == original.read("bpmn-models/expenseProcess.bpmn")
    assert again.read("decision-table-models/expenseRules.dmn") == original.read("decision-table-models/expenseRules.dmn")


def test_unknown_reference_keeps_key_only(target_db: Session, builders):
    process = builders.bpmn("lonely", "Lonely")
    process["childShapes"][2]["properties"]["formreference"] = {"id": "old-form", "name": "Missing", "key": "missingForm"}
    archive = build_archive(
        {
            "lonelyApp.json": entry("app-old", "lonelyApp", "Lonely app", {"key": "lonelyApp", "name": "Lonely app", "models": [{"id": "proc-old", "key": "lonely"}]}),
            "bpmn-models/lonely.json": entry("proc-old", "lonely", "Lonely", process),
        }
    )

    result = AppDefinitionImportService(target_db).import_portable(archive, "lonely.zip")
    target_db.commit()

    model = _by_key(target_db, "lonely", ModelType.BPMN)
    assert _shapes(model)["userTask1"]["properties"]["formreference"] == {"name": "Missing", "key": "missingForm"}
    assert ModelService(target_db).get_relations(model.id) == []
    assert result.definition.models[0].id == model.id


def test_nested_case_references_are_imported_first(target_db: Session, builders):
    class Old:
        def __init__(self, id, name):
            self.id, self.name = id, name

    parent = builders.cmmn("aParent", "A parent", case=Old("b-old", "B child"))
    child = builders.cmmn("bChild", "B child")
    archive = build_archive(
        {
            "caseApp.json": entry(
                "app-old",
                "caseApp",
                "Case app",
                {"key": "caseApp", "name": "Case app", "models": [], "cmmnModels": [{"id": "a-old", "key": "aParent"}]},
            ),
            "cmmn-models/aParent.json": entry("a-old", "aParent", "A parent", parent),
            "cmmn-models/bChild.json": entry("b-old", "bChild", "B child", child),
        }
    )

    AppDefinitionImportService(target_db).import_portable(archive, "cases.zip")
    target_db.commit()

    a = _by_key(target_db, "aParent", ModelType.CMMN)
    b = _by_key(target_db, "bChild", ModelType.CMMN)
    plan = _shapes(a)["casePlanModel1"]
    case_task = plan["childShapes"][0]
    assert case_task["properties"]["casetaskcasereference"] == {"id": b.id, "name": "B child", "key": "bChild"}
    assert [m.id for m in ModelService(target_db).find_children_by_parent_id(a.id)] == [b.id]


def test_v1_decision_table_is_migrated_on_import(target_db: Session):
    legacy = {
        "name": "Legacy rules",
        "key": "legacyRules",
        "hitIndicator": "FIRST",
        "inputExpressions": [{"id": "in1", "variableId": "amount"}],
        "outputExpressions": [{"id": "out1", "variableId": "ok", "type": "boolean"}],
        "rules": [{"in1": "> 10", "out1": "true"}],
    }
    archive = build_archive(
        {
            "legacy.json": entry("app-old", "legacy", "Legacy", {"key": "legacy", "name": "Legacy", "models": []}),
            "decision-table-models/legacyRules.json": entry("dt-old", "legacyRules", "Legacy rules", legacy),
        }
    )

    AppDefinitionImportService(target_db).import_portable(archive, "legacy.zip")
    target_db.commit()

    stored = json.loads(_by_key(target_db, "legacyRules", ModelType.DECISION_TABLE).model_editor_json)
    assert stored["modelVersion"] == "3"
    assert stored["rules"] == [{"in1_operator": ">", "in1_expression": "10", "out1": "true"}]


def test_invalid_decision_table_aborts_import(target_db: Session, builders):
    broken = builders.decision_table("brokenRules", "Broken")
    broken["outputExpressions"] = []
    archive = build_archive(
        {
            "app.json": entry("app-old", "app", "App", {"key": "app", "name": "App", "models": []}),
            "decision-table-models/brokenRules.json": entry("dt-old", "brokenRules", "Broken", broken),
        }
    )
    with pytest.raises(InternalServerError) as exc:
        AppDefinitionImportService(target_db).import_portable(archive, "app.zip")
    assert str(exc.value) == "Could not convert decision table brokenRules"


def test_invalid_diagram_aborts_import(target_db: Session, builders):
    process = builders.bpmn("p", "P")
    del process["childShapes"][0]["resourceId"]
    archive = build_archive(
        {
            "app.json": entry("app-old", "app", "App", {"key": "app", "name": "App", "models": []}),
            "bpmn-models/p.json": entry("p-old", "p", "P", process),
        }
    )
    with pytest.raises(InternalServerError) as exc:
        AppDefinitionImportService(target_db).import_portable(archive, "app.zip")
    assert str(exc.value) == "Could not convert bpmn model p"


@pytest.mark.parametrize(
    "filename, content, error, message",
    [
        ("expense.txt", b"", BadRequestError, "Invalid file name, only .zip files are supported not expense.txt"),
        (None, b"", BadRequestError, "Invalid file name, only .zip files are supported not None"),
        ("expense.zip", b"not a zip at all", InternalServerError, "Error reading app definition zip file"),
        ("expense.zip", build_archive({"form-models/f.json": entry("f", "f", "F", {})}), BadRequestError, "Could not find app definition json"),
        ("expense.zip", build_archive({"app.json": "{nope"}), BadRequestError, "Error reading app definition"),
        (
            "expense.zip",
            build_archive({"app.json": entry("a", "app", "App", {"key": "app", "models": "oops"})}),
            BadRequestError,
            "Error reading app definition",
        ),
        (
            "expense.zip",
            build_archive(
                {
                    "app.json": entry("a", "app", "App", {"key": "app", "models": []}),
                    "form-models/f.json": "{broken",
                }
            ),
            InternalServerError,
            "Error reading model json for form-models/f.json",
        ),
    ],
)
def test_rejected_archives(target_db: Session, filename, content, error, message):
    with pytest.raises(error) as exc:
        AppDefinitionImportService(target_db).import_portable(content, filename)
    assert str(exc.value) == message


def test_import_new_version_requires_app(target_db: Session, portable: bytes):
    with pytest.raises(BadRequestError):
        AppDefinitionImportService(target_db).import_new_version(portable, "expense.zip", "missing")
