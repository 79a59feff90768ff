"""
Tests for the FastAPI application and its routes.
"""

from __future__ import annotations

import json
import time

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from turntable.api.app import create_app


@pytest.fixture
def client(registry):
    app = create_app(registry=registry, restore_on_startup=False)
    with TestClient(app) as c:
        yield c


def _add(client, name="q1", **extra):
    body = {"name": name, "db": "d1", "query": "SELECT 1 AS v", "period": {}}
    body.update(extra)
    return client.post("/add", json=body)


class TestCreateApp:
    def test_returns_fastapi_instance(self, registry):
        app = create_app(registry=registry, restore_on_startup=False)
        assert isinstance(app, FastAPI)
        assert app.state.registry is registry

    def test_routes_registered(self, registry):
        app = create_app(registry=registry, restore_on_startup=False)
        paths = {r.path for r in app.routes}
        assert {"/render", "/add", "/remove", "/stage", "/get", "/queries"} <= paths

    def test_cors_middleware_present(self, registry):
        app = create_app(registry=registry, restore_on_startup=False)
        assert "CORSMiddleware" in [m.cls.__name__ for m in app.user_middleware]

    def test_restore_on_startup(self, registry, settings):
        settings.query_file.write_text(
            json.dumps([["q1", {"query": {"name": "q1", "db": "d1", "query": "SELECT 1"}}]])
        )
        app = create_app(registry=registry)
        with TestClient(app) as c:
            assert c.get("/get", params={"name": "q1"}).status_code == 200


class TestAdd:
    def test_returns_definition(self, client):
        resp = _add(client)
        assert resp.status_code == 200
        body = resp.json()
        assert body["name"] == "q1"
        assert body["db"] == "d1"
        assert body["query"] == "SELECT 1 AS v"

    def test_duplicate_is_conflict(self, client, registry):
        _add(client)
        resp = _add(client, query="SELECT 2 AS v")
        assert resp.status_code == 409
        assert resp.json() == {"error": "Query by this name already exists. Remove it first."}
        assert len(registry) == 1

    def test_cron_period(self, client):
        resp = _add(client, period="0 */6 * * *")
        assert resp.json()["period"] == {"minute": [0], "hour": [0, 6, 12, 18]}

    def test_invalid_period(self, client):
        resp = _add(client, period={"minute": 75})
        assert resp.status_code == 422
        assert resp.json()["code"] == "VALIDATION"

    def test_missing_fields(self, client):
        assert client.post("/add", json={"name": "q1"}).status_code == 422

    def test_backfill(self, client, backfill_runner):
        start = int(time.time()) - 3 * 3600
        resp = _add(client, period={"minute": 0}, backfill=str(start))
        assert resp.status_code == 200
        assert backfill_runner.reports[0].total in (3, 4)


class TestRemove:
    def test_remove(self, client, registry):
        _add(client)
        resp = client.post("/remove", json={"name": "q1"})
        assert resp.status_code == 204
        assert "q1" not in registry

    def test_remove_unknown(self, client):
        assert client.post("/remove", json={"name": "nope"}).status_code == 404


class TestReads:
    def test_get(self, client):
        _add(client)
        resp = client.get("/get", params={"name": "q1"})
        assert resp.status_code == 200
        assert resp.json()["db"] == "d1"

    def test_get_by_post_body(self, client):
        _add(client)
        assert client.post("/get", json={"name": "q1"}).json()["name"] == "q1"

    def test_get_unknown(self, client):
        assert client.get("/get", params={"name": "nope"}).status_code == 404

    def test_queries(self, client):
        _add(client)
        body = client.get("/queries").json()
        assert [q["name"] for q in body["queries"]] == ["q1"]
        assert body["dbs"] == ["d1"]
        assert client.post("/queries").status_code == 200

    def test_health(self, client):
        _add(client)
        body = client.get("/health").json()
        assert body["status"] == "ok"
        assert "q1" in body["queries"]


class TestStage:
    def test_rows_as_text(self, client):
        resp = client.get("/stage", params={"db": "d1", "query": "SELECT 1 AS v"})
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/plain")
        assert resp.text == "{'v': 1}\n"

    def test_error_trace_as_body(self, client):
        resp = client.get("/stage", params={"db": "d1", "query": "SELECT * FROM missing"})
        assert resp.status_code == 200
        assert "Traceback" in resp.text


class TestRender:
    def test_after_one_tick(self, client, registry):
        _add(client)
        registry.executor.build(registry.get("q1"))().unwrap()

        resp = client.get("/render", params={"target": "q1.v", "from": "-3600"})
        assert resp.status_code == 200
        [series] = resp.json()
        assert series["target"] == "q1.v"
        assert [p[0] for p in series["datapoints"]] == [1]

    def test_multiple_targets(self, client, registry):
        for name in ("q1", "q2"):
            _add(client, name=name)
            registry.executor.build(registry.get(name))().unwrap()

        resp = client.get("/render", params=[("target", "q1.v"), ("target", "q2.v")])
        assert [s["target"] for s in resp.json()] == ["q1.v", "q2.v"]

    def test_no_rows_is_404(self, client):
        _add(client)
        assert client.get("/render", params={"target": "q1.v"}).status_code == 404

    def test_bad_target_is_422(self, client):
        assert client.get("/render", params={"target": "nofield"}).status_code == 422


class TestCors:
    def test_preflight(self, client):
        resp = client.options(
            "/add",
            headers={
                "Origin": "http://dashboard.example",
                "Access-Control-Request-Method": "POST",
                "Access-Control-Request-Headers": "Content-Type",
            },
        )
        assert resp.status_code == 200
        assert resp.headers["access-control-allow-origin"] == "http://dashboard.example"
        assert "POST" in resp.headers["access-control-allow-methods"]
