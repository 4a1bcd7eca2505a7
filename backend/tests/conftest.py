"""Root conftest for tests directory."""

from __future__ import annotations

import json
from types import SimpleNamespace
from typing import Any, Dict, Generator, Iterable, Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from modeler.core.db import Base
from modeler.domain.enums import ModelType
from modeler.services import ModelService


def _session() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    # Ensure models are imported
    import modeler.models  # noqa: F401
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    """Provide a test DB session."""
    yield from _session()


@pytest.fixture()
def db(db_session: Session) -> Session:
    return db_session


@pytest.fixture()
def target_db() -> Generator[Session, None, None]:
    """A second, independent store to import into."""
    yield from _session()


# Editor JSON builders

def ref(model: Any, with_key: bool = False) -> Dict[str, Any]:
    node = {"id": model.id, "name": model.name}
    if with_key:
        node["key"] = model.key
    return node


def shape(resource_id: str, stencil: str, properties: Optional[Dict[str, Any]] = None, outgoing: Iterable[str] = (), children=()) -> Dict[str, Any]:
    return {
        "resourceId": resource_id,
        "stencil": {"id": stencil},
        "properties": properties or {},
        "outgoing": [{"resourceId": rid} for rid in outgoing],
        "childShapes": list(children),
        "bounds": {"lowerRight": {"x": 100, "y": 100}, "upperLeft": {"x": 0, "y": 0}},
    }


def bpmn_document(process_id: str, name: str, form: Any = None, decision_table: Any = None, extra: Iterable[Dict[str, Any]] = ()) -> Dict[str, Any]:
    user_task_props: Dict[str, Any] = {"name": "Submit expense"}
    if form is not None:
        user_task_props["formreference"] = ref(form)
    decision_props: Dict[str, Any] = {"name": "Check rules"}
    if decision_table is not None:
        decision_props["decisiontaskdecisiontablereference"] = ref(decision_table)
    return {
        "id": "canvas",
        "resourceId": "canvas",
        "stencilset": {"namespace": "http://b3mn.org/stencilset/bpmn2.0#"},
        "properties": {"process_id": process_id, "name": name},
        "childShapes": [
            shape("startEvent1", "StartNoneEvent", outgoing=["flow1"]),
            shape("flow1", "SequenceFlow", outgoing=["userTask1"]),
            shape("userTask1", "UserTask", user_task_props, outgoing=["flow2"]),
            shape("flow2", "SequenceFlow", outgoing=["decisionTask1"]),
            shape("decisionTask1", "DecisionTask", decision_props, outgoing=["flow3"]),
            shape("flow3", "SequenceFlow", outgoing=["endEvent1"]),
            shape("endEvent1", "EndNoneEvent"),
            *extra,
        ],
    }


def cmmn_document(case_id: str, name: str, form: Any = None, process: Any = None, case: Any = None) -> Dict[str, Any]:
    children = []
    if form is not None:
        children.append(shape("humanTask1", "HumanTask", {"name": "Review", "formreference": ref(form)}))
    if process is not None:
        children.append(shape("processTask1", "ProcessTask", {"name": "Run process", "processtaskprocessreference": ref(process)}))
    if case is not None:
        children.append(shape("caseTask1", "CaseTask", {"name": "Sub case", "casetaskcasereference": ref(case)}))
    return {
        "id": "canvas",
        "resourceId": "canvas",
        "stencilset": {"namespace": "http://b3mn.org/stencilset/cmmn1.1#"},
        "properties": {"case_id": case_id, "name": name},
        "childShapes": [shape("casePlanModel1", "CasePlanModel", {"name": name}, children=children)],
    }


def form_document(key: str, name: str) -> Dict[str, Any]:
    return {"key": key, "name": name, "fields": [{"id": "amount", "type": "integer"}], "outcomes": []}


def decision_table_document(key: str, name: str) -> Dict[str, Any]:
    return {
        "key": key,
        "name": name,
        "modelVersion": "3",
        "hitIndicator": "FIRST",
        "inputExpressions": [{"id": "inputExpression1", "variableId": "amount", "type": "number", "label": "Amount"}],
        "outputExpressions": [{"id": "outputExpression1", "variableId": "approved", "type": "boolean", "label": "Approved"}],
        "rules": [
            {"inputExpression1_operator": ">", "inputExpression1_expression": "100", "outputExpression1": "false"},
            {"inputExpression1_operator": "<=", "inputExpression1_expression": "100", "outputExpression1": "true"},
        ],
    }


def app_entry(model: Any) -> Dict[str, Any]:
    return {"id": model.id, "name": model.name, "key": model.key, "version": model.version, "modelType": 0}


def app_document(key: str, name: str, models: Iterable[Any] = (), cmmn_models: Iterable[Any] = ()) -> Dict[str, Any]:
    return {
        "key": key,
        "name": name,
        "theme": "theme-1",
        "icon": "glyphicon-asterisk",
        "models": [app_entry(m) for m in models],
        "cmmnModels": [app_entry(m) for m in cmmn_models],
    }


@pytest.fixture()
def builders() -> SimpleNamespace:
    return SimpleNamespace(
        ref=ref,
        shape=shape,
        bpmn=bpmn_document,
        cmmn=cmmn_document,
        form=form_document,
        decision_table=decision_table_document,
        app=app_document,
    )


@pytest.fixture()
def expense_app(db: Session) -> SimpleNamespace:
    """An app with one process that uses a form and a decision table."""
    svc = ModelService(db)
    form = svc.create_model(
        name="Expense form",
        key="expenseForm",
        model_type=ModelType.FORM,
        editor_json=json.dumps(form_document("expenseForm", "Expense form")),
        user_id="alice",
    )
    decision_table = svc.create_model(
        name="Expense rules",
        key="expenseRules",
        model_type=ModelType.DECISION_TABLE,
        editor_json=json.dumps(decision_table_document("expenseRules", "Expense rules")),
        user_id="alice",
    )
    process = svc.create_model(
        name="Expense process",
        key="expenseProcess",
        model_type=ModelType.BPMN,
        editor_json=json.dumps(bpmn_document("expenseProcess", "Expense process", form, decision_table)),
        user_id="alice",
    )
    app = svc.create_model(
        name="Expense app",
        key="expenseApp",
        model_type=ModelType.APP,
        editor_json=json.dumps(app_document("expenseApp", "Expense app", models=[process])),
        user_id="alice",
    )
    db.commit()
    return SimpleNamespace(app=app, process=process, form=form, decision_table=decision_table)
