"""Tests for AppDefinitionPublishService (deployment endpoint mocked)."""

from __future__ import annotations

import base64
import io
import zipfile
from typing import Any, Callable, List

import httpx
import pytest
from sqlalchemy.orm import Session

from modeler.domain.errors import BadRequestError, InternalServerError
from modeler.models import ModelHistory
from modeler.services import AppDefinitionPublishService


ENGINE_URL = "http://engine.local/flowable-rest/app-api"


@pytest.fixture()
def engine(monkeypatch: pytest.MonkeyPatch) -> Callable[[Callable[[httpx.Request], httpx.Response]], List[httpx.Request]]:
    """Route deployment calls to an in-process handler; returns the captured requests."""
    monkeypatch.setenv("DEPLOYMENT_API_URL", ENGINE_URL)
    for name in ("DEPLOYMENT_API_USER", "DEPLOYMENT_API_PASSWORD", "DEPLOYMENT_TENANT_ID", "DEPLOYMENT_API_TIMEOUT"):
        monkeypatch.delenv(name, raising=False)

    def install(handler: Callable[[httpx.Request], httpx.Response]) -> List[httpx.Request]:
        seen: List[httpx.Request] = []

        def recording(request: httpx.Request) -> httpx.Response:
            request.read()
            seen.append(request)
            return handler(request)

        transport = httpx.MockTransport(recording)
        orig_client = httpx.Client

        def _client(*args: Any, **kwargs: Any) -> httpx.Client:
            kwargs["transport"] = transport
            return orig_client(*args, **kwargs)

        monkeypatch.setattr(httpx, "Client", _client)
        return seen

    return install


def test_publish_posts_deployable_archive(db: Session, expense_app, engine):
    seen = engine(lambda request: httpx.Response(201, json={"id": "deployment-1"}))

    result = AppDefinitionPublishService(db).publish_app_definition(expense_app.app.id, "first release", "erin")
    db.commit()

    assert result.version == 2
    assert result.comment == "first release"
    assert result.definition.models[0].key == "expenseProcess"
    assert db.query(ModelHistory).filter(ModelHistory.model_id == expense_app.app.id).count() == 1

    (request,) = seen
    assert request.method == "POST"
    assert request.url.path == "/flowable-rest/app-api/app-repository/deployments"
    assert request.url.params["deploymentKey"] == "expenseApp"
    assert request.url.params["deploymentName"] == "Expense app"
    assert "tenantId" not in request.url.params
    assert request.headers["authorization"] == "Basic " + base64.b64encode(b"admin:test").decode()
    body = request.content
    assert b'filename="expenseApp.bar"' in body

    start = body.index(b"PK\x03\x04")
    end = body.rindex(b"\r\n--")
    names = zipfile.ZipFile(io.BytesIO(body[start:end])).namelist()
    assert "expenseApp.app" in names
    assert "expenseProcess.bpmn" in names


def test_publish_sends_tenant_and_basic_auth(db: Session, expense_app, engine, monkeypatch):
    monkeypatch.setenv("DEPLOYMENT_TENANT_ID", "acme")
    monkeypatch.setenv("DEPLOYMENT_API_USER", "rest-admin")
    monkeypatch.setenv("DEPLOYMENT_API_PASSWORD", "secret")
    seen = engine(lambda request: httpx.Response(201))

    AppDefinitionPublishService(db).publish_app_definition(expense_app.app.id, None)

    (request,) = seen
    assert request.url.params["tenantId"] == "acme"
    assert request.headers["authorization"] == "Basic " + base64.b64encode(b"rest-admin:secret").decode()


def test_non_created_response_fails(db: Session, expense_app, engine):
    engine(lambda request: httpx.Response(500, text="engine down"))
    with pytest.raises(InternalServerError) as exc:
        AppDefinitionPublishService(db).publish_app_definition(expense_app.app.id, "retry")
    assert "500" in str(exc.value)


def test_transport_error_fails(db: Session, expense_app, engine):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    engine(handler)
    with pytest.raises(InternalServerError):
        AppDefinitionPublishService(db).publish_app_definition(expense_app.app.id, "retry")


def test_missing_deployment_url_fails(db: Session, expense_app, monkeypatch):
    monkeypatch.delenv("DEPLOYMENT_API_URL", raising=False)
    with pytest.raises(InternalServerError):
        AppDefinitionPublishService(db).publish_app_definition(expense_app.app.id, None)


def test_publish_requires_app(db: Session, expense_app, engine):
    seen = engine(lambda request: httpx.Response(201))
    with pytest.raises(BadRequestError):
        AppDefinitionPublishService(db).publish_app_definition(expense_app.form.id, None)
    assert seen == []
