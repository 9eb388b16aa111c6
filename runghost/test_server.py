# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0
"""
Pytest tests for runghost/server.py (HTTP surface) via FastAPI's TestClient.
"""

from __future__ import annotations

import dataclasses
import json

import pytest
from fastapi.testclient import TestClient

from runghost.audit import AuditRecord
from runghost.server import APP_VERSION, create_app
from runghost.services import Services


@pytest.fixture
def workspace(tmp_path):
    root = tmp_path / "ws"
    for name, deps in (("@org/a", {"@org/b": "^1.0.0"}), ("@org/b", {})):
        d = root / name.split("/")[1]
        d.mkdir(parents=True)
        (d / "package.json").write_text(json.dumps({"name": name, "version": "1.0.0", "dependencies": deps}))
    return root


@pytest.fixture
def services(config, identity, session, workspace):
    ident = dataclasses.replace(identity, workspaces=[str(workspace)])
    cfg = dataclasses.replace(config, identities={ident.id: ident})
    svc = Services(cfg, session=session, start_audit_timer=False)
    yield svc
    svc.close()


@pytest.fixture
def client(services):
    return TestClient(create_app(services))


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"success": True, "status": "ok", "version": APP_VERSION}


# ============================================================================
# database diagnostics
# ============================================================================


def test_query_guardrail_keeps_tables(client):
    r = client.post("/database/query", json={"sql": "DROP TABLE identities"})
    assert r.status_code == 400
    assert r.json() == {"success": False, "error": "Only SELECT queries are allowed"}

    tables = client.get("/database/tables").json()
    assert tables["success"] is True
    assert "identities" in [t["name"] for t in tables["tables"]]


def test_select_prefixed_write_is_rejected_over_http(client):
    r = client.post("/database/query", json={"sql": "select 1; DROP TABLE identities"})
    assert r.status_code == 500
    assert r.json()["success"] is False
    assert r.json()["error"]

    tables = client.get("/database/tables").json()
    assert "identities" in [t["name"] for t in tables["tables"]]


def test_query_select_and_missing_sql(client):
    r = client.post("/database/query", json={"sql": "SELECT COUNT(*) AS n FROM identities"})
    body = r.json()
    assert body["success"] is True
    assert body["result"]["rows"] == [{"n": 0}]
    assert body["result"]["columns"] == ["n"]
    assert isinstance(body["result"]["executionTime"], int)

    r = client.post("/database/query", json={})
    assert r.status_code == 400
    assert r.json()["error"] == "SQL query is required"


def test_records_validation(client):
    assert client.get("/database/records").json()["error"] == "Table name is required"

    r = client.get("/database/records", params={"table": "identities;drop"})
    assert r.status_code == 400
    assert r.json()["error"] == "Invalid table name"

    r = client.get("/database/records", params={"table": "nope"})
    assert r.status_code == 404
    assert r.json()["error"] == "Table not found"

    r = client.get("/database/records", params={"table": "identities", "page": 1, "limit": 10})
    body = r.json()
    assert body["success"] is True
    assert body["records"] == []
    assert body["pagination"]["limit"] == 10


def test_reset(client, services):
    services.store.save_branch("i/r/main", "i/r", {"name": "main", "commit": {}})
    r = client.post("/database/reset")
    assert r.json()["success"] is True
    assert services.store.status()["branches"] == 0


# ============================================================================
# github
# ============================================================================


def test_identities_fetch_through_upstream(client, session):
    session.add_json("/user", {"login": "u", "avatar_url": "x"})
    session.add_json("/user/repos", [])
    body = client.get("/github/identities").json()
    assert body["success"] is True
    assert body["count"] == 1
    assert body["identities"]["i"]["identity"]["username"] == "u"
    assert "token" not in json.dumps(body["identities"]["i"]["identity"])


def test_refresh_unknown_identity_is_400(client):
    r = client.post("/github/refresh", json={"identityId": "ghost"})
    assert r.status_code == 400
    assert r.json()["error"] == 'Identity "ghost" not found in configuration'


def test_listings_and_cache_status(client, services):
    services.store.save_repository("i/r1", "i", {"id": 1, "name": "r1"})
    services.store.save_issue("i/r1/1", "i/r1", {"id": 1, "number": 1, "title": "t", "state": "open"})

    repos = client.get("/github/repositories").json()
    assert [r["name"] for r in repos["data"]] == ["r1"]
    assert len(client.get("/github/issues", params={"identityId": "i"}).json()["data"]) == 1
    assert client.get("/github/issues", params={"identityId": "other"}).json()["data"] == []
    assert client.get("/github/pull-requests").json()["data"] == []
    assert client.get("/github/releases").json()["success"] is True

    status = client.get("/cache/status").json()["data"]
    assert status["repositories"] == 1
    assert status["issues"] == 1


def test_repository_detail_upstream_failure(client, session):
    r = client.get("/github/identities/i/repositories/missing")
    assert r.status_code == 502
    assert r.json()["success"] is False


# ============================================================================
# dependencies
# ============================================================================


def test_dependencies_graph_and_refresh(client, workspace):
    body = client.get("/dependencies").json()
    assert body["success"] is True
    edges = body["graph"]["interdependencies"]
    assert edges == [{"from": "@org/a", "to": "@org/b", "version": "^1.0.0"}]

    assert client.get("/dependencies", params={"identityId": "i"}).json()["graph"]["interdependencies"] == edges
    assert client.get("/dependencies", params={"identityId": "nope"}).status_code == 400

    (workspace / "c").mkdir()
    (workspace / "c" / "package.json").write_text(json.dumps({"name": "@org/c", "dependencies": {"@org/a": "1"}}))
    stats = client.post("/dependencies/refresh").json()["stats"]
    assert stats["repositories"] == 3
    assert stats["interdependencies"] == 2


# ============================================================================
# audit
# ============================================================================


def test_audit_logs_and_stats(client, services):
    services.audit.record(AuditRecord(service="github", method="GET", url="/user", response_time_ms=10.0, response_status=200))
    services.audit.record(AuditRecord(service="registry", method="GET", url="/-/v1/search", response_time_ms=30.0, response_status=500))

    logs = client.get("/audit/logs", params={"service": "github"}).json()
    assert logs["count"] == 1
    assert logs["logs"][0]["url"] == "/user"

    stats = client.get("/audit/stats").json()["stats"]
    assert stats["totalRequests"] == 2
    assert stats["failedRequests"] == 1

    r = client.get("/audit/logs", params={"status": "bogus"})
    assert r.status_code == 400
