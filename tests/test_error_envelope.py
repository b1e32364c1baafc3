"""Tests for the error envelope format and exception handlers.

Error responses share one shape:
{
    "status": "error",
    "error": {"code": "<stable_code>", "message": "<text>", "details": <object|null>},
    "request_id": "<id>"
}
"""

import json

import pytest
from fastapi import FastAPI, HTTPException
from fastapi.testclient import TestClient
from pydantic import ValidationError

from staffauth import app as app_module
from staffauth.api.error_handling import (
    GENERIC_ERROR_MESSAGE,
    _STATUS_TO_CODE,
    _error_code_for_status,
    _error_response,
    register_exception_handlers,
)
from staffauth.api.schemas import Envelope, ErrorBody
from staffauth.service.errors import (
    AuthenticationError,
    ConflictError,
    DependencyError,
    ForbiddenError,
)
from staffauth.service.runtime import get_runtime
from staffauth.storage.errors import ConstraintViolation, StorageUnavailable


@pytest.fixture
def failing_client():
    """App whose routes raise each kind of failure."""
    app = FastAPI()
    register_exception_handlers(app)

    @app.get("/dependency")
    async def dependency():
        raise DependencyError(dependency="postgres", cause=TimeoutError("pool timeout"))

    @app.get("/storage")
    async def storage():
        raise StorageUnavailable("redis down at 10.0.0.5", backend="redis")

    @app.get("/constraint")
    async def constraint():
        raise ConstraintViolation("email already exists", {"field": "email"})

    @app.get("/forbidden")
    async def forbidden():
        raise ForbiddenError("account inactive")

    @app.get("/unauthorized")
    async def unauthorized():
        raise AuthenticationError("token has expired", detail={"reason": "expired"})

    @app.get("/conflict")
    async def conflict():
        raise ConflictError("duplicate")

    @app.get("/gone")
    async def gone():
        raise HTTPException(status_code=404, detail="resource gone")

    @app.get("/crash")
    async def crash():
        raise RuntimeError("secret internals")

    return TestClient(app, raise_server_exceptions=False)


class TestErrorBody:
    def test_required_fields(self):
        error = ErrorBody(code="unauthorized", message="invalid credentials")
        assert error.details is None

    def test_unknown_code_rejected(self):
        with pytest.raises(ValidationError):
            ErrorBody(code="teapot", message="nope")

    def test_envelope_status_pattern(self):
        with pytest.raises(ValidationError):
            Envelope(status="maybe")

    def test_envelope_gets_request_id(self):
        assert Envelope(status="ok").request_id


class TestStatusMapping:
    @pytest.mark.parametrize("status,code", sorted(_STATUS_TO_CODE.items()))
    def test_known_statuses(self, status, code):
        assert _error_code_for_status(status) == code

    def test_unknown_status_is_server_error(self):
        assert _error_code_for_status(418) == "server_error"

    def test_error_response_shape(self):
        response = _error_response(409, "duplicate", {"reason": "already_exists"})
        body = json.loads(response.body)

        assert response.status_code == 409
        assert body["status"] == "error"
        assert body["error"] == {
            "code": "conflict",
            "message": "duplicate",
            "details": {"reason": "already_exists"},
        }
        assert body["request_id"]


class TestHandlers:
    @pytest.mark.parametrize("path", ["/dependency", "/storage", "/crash"])
    def test_internal_failures_are_generic(self, failing_client, path):
        response = failing_client.get(path)
        body = response.json()

        assert response.status_code == 500
        assert body["error"]["code"] == "server_error"
        assert body["error"]["message"] == GENERIC_ERROR_MESSAGE
        assert body["error"]["details"] is None
        for leaked in ("pool timeout", "10.0.0.5", "secret internals", "postgres"):
            assert leaked not in response.text

    def test_http_exception_is_wrapped(self, failing_client):
        response = failing_client.get("/gone")

        assert response.status_code == 404
        assert response.json()["error"] == {
            "code": "not_found",
            "message": "resource gone",
            "details": None,
        }

    def test_constraint_violation_is_conflict(self, failing_client):
        response = failing_client.get("/constraint")

        assert response.status_code == 409
        assert response.json()["error"]["details"] == {"field": "email"}

    @pytest.mark.parametrize(
        "path,status,code,details",
        [
            ("/forbidden", 403, "forbidden", None),
            ("/unauthorized", 401, "unauthorized", {"reason": "expired"}),
            ("/conflict", 409, "conflict", None),
        ],
    )
    def test_service_errors_keep_their_code(self, failing_client, path, status, code, details):
        response = failing_client.get(path)

        assert response.status_code == status
        assert response.json()["error"]["code"] == code
        assert response.json()["error"]["details"] == details


class TestStoreOutageThroughApp:
    def test_login_during_store_outage(self, monkeypatch):
        runtime = get_runtime()

        def unavailable(email):
            raise StorageUnavailable("could not connect to server", backend="postgres")

        monkeypatch.setattr(runtime.store, "find_by_email", unavailable)
        client = TestClient(app_module.app)

        response = client.post(
            "/auth/login",
            json={"email": "ana@empresa.com", "password": "123456"},
            headers={"X-Request-ID": "outage-1"},
        )

        assert response.status_code == 500
        body = response.json()
        assert body["error"]["message"] == GENERIC_ERROR_MESSAGE
        assert body["request_id"] == "outage-1"
        assert "could not connect" not in response.text

    def test_logout_when_revocation_write_fails(self, monkeypatch):
        runtime = get_runtime()
        from staffauth.storage.models import Account

        account = runtime.store.save(Account(email="ana@empresa.com", password_hash="x"))
        token = runtime.tokens.issue_access_token(account)

        async def unavailable(token, ttl_seconds):
            raise StorageUnavailable("READONLY", backend="redis")

        monkeypatch.setattr(runtime.revocations, "mark_revoked", unavailable)
        client = TestClient(app_module.app)

        response = client.post("/auth/logout", json={"token": token})

        assert response.status_code == 500
        assert response.json()["error"]["code"] == "server_error"
