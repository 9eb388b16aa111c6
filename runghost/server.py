# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""
Read-only HTTP surface consumed by the dashboard.

Every response is a `{success, ...}` envelope. Input validation failures map to their own
status (400/404); any other runghost error maps to 500.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, FastAPI, Query, Request
from fastapi.responses import JSONResponse

from .audit import DEFAULT_QUERY_LIMIT, STATS_QUERY_LIMIT, AuditFilter
from .dependencies import filter_graph_for_identity
from .exceptions import QueryValidationError, RunGhostError
from .models import APIResponse
from .services import Services

logger = logging.getLogger(__name__)

APP_VERSION = "1.0.0"


def _envelope(res: APIResponse, key: Optional[str] = None, *, status_on_error: int = 500) -> Any:
    if not res.success:
        return JSONResponse(status_code=status_on_error, content=res.to_dict())
    if key is None:
        return res.to_dict()
    return {"success": True, key: res.data}


def _bad_request(message: str, status_code: int = 400, **extra: Any) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message, **extra})


def _audit_filter(
    service: Optional[str],
    method: Optional[str],
    start_date: Optional[str],
    end_date: Optional[str],
    identity_id: Optional[str],
    status: Optional[str],
    limit: int,
    offset: int,
) -> AuditFilter:
    if status not in (None, "success", "error"):
        raise QueryValidationError("status must be 'success' or 'error'")
    return AuditFilter(
        service=service,
        method=method,
        start_date=start_date,
        end_date=end_date,
        identity_id=identity_id,
        status=status,
        limit=limit,
        offset=offset,
    )


def build_router(services: Services) -> APIRouter:
    router = APIRouter()

    @router.get("/health")
    def health() -> Dict[str, Any]:
        return {"success": True, "status": "ok", "version": APP_VERSION}

    # ----------------------------------------------------------------------------------
    # database diagnostics
    # ----------------------------------------------------------------------------------

    @router.get("/database/tables")
    def database_tables() -> Dict[str, Any]:
        return {"success": True, "tables": services.store.list_tables()}

    @router.get("/database/records")
    def database_records(
        table: Optional[str] = Query(None),
        page: int = Query(1),
        limit: int = Query(50),
    ) -> Any:
        if not table:
            return _bad_request("Table name is required")
        result = services.store.read_table(table, page, limit)
        return {"success": True, **result}

    @router.post("/database/query")
    def database_query(payload: Optional[Dict[str, Any]] = Body(None)) -> Any:
        sql = (payload or {}).get("sql")
        if not sql or not isinstance(sql, str):
            return _bad_request("SQL query is required")
        t0 = time.monotonic()
        result = services.store.execute_query(sql)
        result["executionTime"] = int(round((time.monotonic() - t0) * 1000.0))
        return {"success": True, "result": result}

    @router.post("/database/reset")
    def database_reset() -> Any:
        res = services.github.reset_database()
        if not res.success:
            return _bad_request("Failed to reset database", 500, details=res.error)
        return {
            "success": True,
            "message": "Database reset successfully",
            "details": "Database file deleted and recreated with fresh schema",
        }

    # ----------------------------------------------------------------------------------
    # github
    # ----------------------------------------------------------------------------------

    @router.get("/github/identities")
    def github_identities() -> Any:
        res = services.github.get_all_identities()
        if not res.success:
            return _bad_request("Failed to fetch identities", 500, details=res.error)
        data = res.data or {}
        return {"success": True, "identities": data, "count": len(data)}

    @router.post("/github/refresh")
    def github_refresh(payload: Optional[Dict[str, Any]] = Body(None)) -> Any:
        identity_id = (payload or {}).get("identityId") or None
        result = services.github.refresh(identity_id)
        if not result.get("success"):
            return JSONResponse(status_code=400, content=result)
        return result

    @router.get("/github/repositories")
    def github_repositories() -> Any:
        return _envelope(services.github.get_all_repositories())

    @router.get("/github/issues")
    def github_issues(identity_id: Optional[str] = Query(None, alias="identityId")) -> Any:
        gh = services.github
        return _envelope(gh.get_issues_for_identity(identity_id) if identity_id else gh.get_all_issues())

    @router.get("/github/pull-requests")
    def github_pull_requests(identity_id: Optional[str] = Query(None, alias="identityId")) -> Any:
        gh = services.github
        return _envelope(gh.get_pull_requests_for_identity(identity_id) if identity_id else gh.get_all_pull_requests())

    @router.get("/github/releases")
    def github_releases() -> Any:
        return _envelope(services.github.get_all_releases())

    @router.get("/github/identities/{identity_id}/repositories/{repo_name}")
    def github_repository_detail(identity_id: str, repo_name: str, force: bool = Query(False)) -> Any:
        return _envelope(services.github.get_repository_detail(identity_id, repo_name, force=force), status_on_error=502)

    @router.get("/cache/status")
    def cache_status() -> Any:
        return _envelope(services.github.get_cache_status())

    # ----------------------------------------------------------------------------------
    # dependencies
    # ----------------------------------------------------------------------------------

    @router.get("/dependencies")
    def dependencies(identity_id: Optional[str] = Query(None, alias="identityId")) -> Any:
        graph = services.dependency_graph()
        if identity_id:
            identity = services.config.identities.get(identity_id)
            if identity is None:
                return _bad_request(f'Identity "{identity_id}" not found in configuration')
            graph = filter_graph_for_identity(graph, identity)
        return {"success": True, "graph": graph.to_dict()}

    @router.post("/dependencies/refresh")
    def dependencies_refresh() -> Any:
        graph = services.dependency_graph(force=True)
        return {"success": True, "message": "Dependency data refreshed successfully", "stats": graph.counts()}

    # ----------------------------------------------------------------------------------
    # audit
    # ----------------------------------------------------------------------------------

    @router.get("/audit/logs")
    def audit_logs(
        service: Optional[str] = None,
        method: Optional[str] = None,
        start_date: Optional[str] = Query(None, alias="startDate"),
        end_date: Optional[str] = Query(None, alias="endDate"),
        identity_id: Optional[str] = Query(None, alias="identityId"),
        status: Optional[str] = None,
        limit: int = Query(DEFAULT_QUERY_LIMIT),
        offset: int = Query(0),
    ) -> Any:
        services.audit.flush()
        flt = _audit_filter(service, method, start_date, end_date, identity_id, status, limit, offset)
        logs = services.audit.query(flt)
        return {"success": True, "logs": logs, "count": len(logs)}

    @router.get("/audit/stats")
    def audit_stats(
        service: Optional[str] = None,
        method: Optional[str] = None,
        start_date: Optional[str] = Query(None, alias="startDate"),
        end_date: Optional[str] = Query(None, alias="endDate"),
        identity_id: Optional[str] = Query(None, alias="identityId"),
        status: Optional[str] = None,
    ) -> Any:
        services.audit.flush()
        flt = _audit_filter(service, method, start_date, end_date, identity_id, status, STATS_QUERY_LIMIT, 0)
        return {"success": True, "stats": services.audit.stats(flt)}

    return router


def create_app(services: Services) -> FastAPI:
    app = FastAPI(title="runghost", version=APP_VERSION)
    app.state.services = services

    @app.exception_handler(QueryValidationError)
    async def _on_validation_error(request: Request, exc: QueryValidationError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content={"success": False, "error": str(exc)})

    @app.exception_handler(RunGhostError)
    async def _on_runghost_error(request: Request, exc: RunGhostError) -> JSONResponse:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=500, content={"success": False, "error": str(exc)})

    @app.on_event("shutdown")
    def _shutdown() -> None:
        services.close()

    app.include_router(build_router(services))
    return app
