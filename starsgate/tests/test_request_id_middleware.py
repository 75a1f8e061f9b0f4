import pytest
from fastapi import FastAPI, Request
from fastapi.testclient import TestClient

from starsgate.core.logging import get_request_id
from starsgate.core.middleware.request_id import RequestIdMiddleware, resolve_request_id


def _make_app():
    app = FastAPI()
    app.add_middleware(RequestIdMiddleware)

    @app.get("/")
    async def root(request: Request):
        return {
            "request_id": getattr(request.state, "request_id", None),
            "context_request_id": get_request_id(),
        }

    return app


def test_generates_request_id_when_missing():
    client = TestClient(_make_app())

    resp = client.get("/")
    assert resp.status_code == 200
    rid_header = resp.headers.get("x-request-id")
    body = resp.json()

    assert rid_header
    assert body["request_id"] == rid_header
    assert body["context_request_id"] == rid_header


def test_echoes_provided_request_id():
    client = TestClient(_make_app())

    resp = client.get("/", headers={"X-Request-Id": "test-rid-123"})

    assert resp.headers.get("x-request-id") == "test-rid-123"
    assert resp.json()["request_id"] == "test-rid-123"


def test_request_id_is_cleared_after_request():
    TestClient(_make_app()).get("/")
    assert get_request_id() is None


def test_malformed_request_id_is_replaced():
    client = TestClient(_make_app())

    resp = client.get("/", headers={"X-Request-Id": "bad id;drop"})

    rid = resp.headers.get("x-request-id")
    assert rid and rid != "bad id;drop"
    assert resp.json()["request_id"] == rid


@pytest.mark.parametrize("incoming", [None, "", "a" * 129, "abc\n", "id with spaces", "ünicode"])
def test_resolve_request_id_mints_for_unsafe_values(incoming):
    rid = resolve_request_id(incoming)
    assert rid != incoming
    assert len(rid) == 36


def test_resolve_request_id_keeps_safe_values():
    assert resolve_request_id("req-1.2:3_x") == "req-1.2:3_x"
