"""Security plumbing tests: admin auth, headers, error mapping, JSON logs."""
import json
import logging
import os

import pytest
from fastapi import Depends, FastAPI
from httpx import AsyncClient, ASGITransport

from credmarket.config import Settings
from credmarket.errors import DuplicateId, MalformedProof, NotFound, UnknownProgram, UpstreamUnavailable
from credmarket.security import (
    RequestContextFilter, apply_security, request_id_var, require_admin_key, setup_structured_logging,
)

ADMIN_HEADERS = {"X-Admin-Key": os.environ["ADMIN_API_KEY"]}

ERRORS = {
    "missing": NotFound("credential", "c1"),
    "program": UnknownProgram("gold"),
    "dup": DuplicateId("c1"),
    "proof": MalformedProof("bad signature", claim="age"),
    "upstream": UpstreamUnavailable("leaderboard", "timeout"),
}


@pytest.fixture
def app():
    app = FastAPI()
    apply_security(app, Settings())

    @app.get("/items/{item_id}")
    async def item(item_id: str):
        return {"id": item_id}

    @app.get("/boom/{kind}")
    async def boom(kind: str):
        if kind == "crash":
            raise RuntimeError("secret internals")
        raise ERRORS[kind]

    @app.post("/admin", dependencies=[Depends(require_admin_key)])
    async def admin():
        return {"ok": True}

    return app


def client(app):
    # generic 500 handler runs through ServerErrorMiddleware, which re-raises
    return AsyncClient(transport=ASGITransport(app=app, raise_app_exceptions=False), base_url="http://test")


# ─── Admin auth ────────────────────────────────────────────────────

class TestAdminAuth:
    @pytest.mark.asyncio
    async def test_missing_key(self, app):
        async with client(app) as c:
            r = await c.post("/admin")
        assert r.status_code == 401
        assert "Missing" in r.json()["detail"]

    @pytest.mark.asyncio
    async def test_bad_key(self, app):
        async with client(app) as c:
            r = await c.post("/admin", headers={"X-Admin-Key": "wrong"})
        assert r.status_code == 403

    @pytest.mark.asyncio
    async def test_good_key(self, app):
        async with client(app) as c:
            r = await c.post("/admin", headers=ADMIN_HEADERS)
        assert r.status_code == 200

    @pytest.mark.asyncio
    async def test_not_configured(self, app, monkeypatch):
        monkeypatch.delenv("ADMIN_API_KEY")
        async with client(app) as c:
            r = await c.post("/admin", headers=ADMIN_HEADERS)
        assert r.status_code == 503


# ─── Error mapping ─────────────────────────────────────────────────

class TestErrorMapping:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("kind,status,name", [
        ("missing", 404, "NotFound"),
        ("program", 404, "UnknownProgram"),
        ("dup", 409, "DuplicateId"),
        ("proof", 422, "MalformedProof"),
        ("upstream", 503, "UpstreamUnavailable"),
    ])
    async def test_status(self, app, kind, status, name):
        async with client(app) as c:
            r = await c.get(f"/boom/{kind}")
        assert r.status_code == status
        assert r.json()["error"] == name

    @pytest.mark.asyncio
    async def test_unhandled_hides_details(self, app):
        async with client(app) as c:
            r = await c.get("/boom/crash")
        assert r.status_code == 500
        assert "secret" not in r.text


# ─── Headers ───────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_security_headers_and_request_id(app):
    async with client(app) as c:
        r = await c.get("/boom/missing", headers={"X-Request-ID": "abc123"})
    assert r.headers["X-Request-ID"] == "abc123"
    assert r.headers["X-Content-Type-Options"] == "nosniff"
    assert r.headers["X-Frame-Options"] == "DENY"


# ─── Logging ───────────────────────────────────────────────────────

def test_json_log_format():
    log = setup_structured_logging("INFO")
    formatter = log.handlers[0].formatter
    token = request_id_var.set("req-42")
    try:
        record = logging.LogRecord("credmarket.store", logging.INFO, __file__, 1, "revoked", None, None)
        RequestContextFilter().filter(record)
        payload = json.loads(formatter.format(record))
    finally:
        request_id_var.reset(token)
    assert payload["level"] == "INFO"
    assert payload["message"] == "revoked"
    assert payload["request_id"] == "req-42"
    assert "timestamp" in payload


@pytest.mark.asyncio
async def test_access_log_carries_route_and_path_params(app, caplog):
    caplog.set_level(logging.INFO, logger="credmarket")
    async with client(app) as c:
        r = await c.get("/items/42", headers={"X-Request-ID": "req-7"})
    assert r.status_code == 200
    access = [rec for rec in caplog.records if rec.getMessage() == "request"]
    assert len(access) == 1
    assert access[0].route == "/items/{item_id}"
    assert access[0].item_id == "42"
    assert access[0].status == 200
    assert access[0].method == "GET"
