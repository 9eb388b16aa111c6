# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""
SQLite-backed cache store for everything runghost fetches.

Every row carries `cached_at` / `expires_at` (epoch ms). Reads only return rows with
`expires_at > now`; writes are `INSERT OR REPLACE` (writer wins) with
`expires_at = now + TTL(kind) * 1000`.

Backends:
- local file `<dataDir>/runghost.db` (default)
- `database.url` (a sqlite `file:` URI) treated as externally managed: `reset_store()`
  clears rows instead of deleting the file.

All SQL goes through one connection guarded by an RLock; table/column names are
module constants or validated identifiers, values are always bound parameters.
"""

from __future__ import annotations

import json
import logging
import math
import os
import sqlite3
import time
from pathlib import Path
from threading import RLock
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from .common import iso_from_epoch_ms, utc_now_iso
from .config import CacheTimeouts, DatabaseSettings
from .exceptions import QueryValidationError, StoreError
from .models import DependencyInfo, PackageInfo, RegistryPackage, WorkspacePackage
from .schema import SCHEMA_STATEMENTS, TABLES, CacheKind, is_valid_identifier

logger = logging.getLogger(__name__)

DB_FILE_NAME = "runghost.db"
ONLY_SELECT_MESSAGE = "Only SELECT queries are allowed"


def _dumps(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"), default=str)


def _loads(text: Optional[str], default: Any = None) -> Any:
    if text is None or text == "":
        return default
    return json.loads(text)


def _bool(v: Any) -> int:
    return 1 if v else 0


def ensure_select(sql: str) -> None:
    if not str(sql or "").strip().lower().startswith("select"):
        raise QueryValidationError(ONLY_SELECT_MESSAGE)


class CacheStore:
    """Durable per-entity cache with per-kind TTLs."""

    def __init__(
        self,
        data_directory: Path,
        *,
        database: Optional[DatabaseSettings] = None,
        timeouts: Optional[CacheTimeouts] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.data_directory = Path(data_directory)
        self.database = database or DatabaseSettings()
        self.timeouts = timeouts or CacheTimeouts()
        self._clock = clock
        self.db_path: Optional[Path] = None if self.is_remote else self.data_directory / DB_FILE_NAME
        self.conn: Optional[sqlite3.Connection] = None
        self._mu = RLock()
        self._initialized = False

    @property
    def is_remote(self) -> bool:
        return bool(self.database.url)

    # ----------------------------------------------------------------------------------
    # lifecycle
    # ----------------------------------------------------------------------------------

    def _connect(self) -> sqlite3.Connection:
        if self.is_remote:
            conn = sqlite3.connect(str(self.database.url), timeout=30.0, uri=True, check_same_thread=False)
        else:
            if self.db_path is None:
                raise StoreError("Local store has no database path")
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(str(self.db_path), timeout=30.0, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    def _ready_conn(self) -> sqlite3.Connection:
        """Open + migrate on demand. Caller must hold `_mu`."""
        if self._initialized and self.conn is not None:
            return self.conn
        try:
            if self.conn is None:
                self.conn = self._connect()
            cur = self.conn.cursor()
            cur.execute("PRAGMA journal_mode=WAL;")
            cur.execute("PRAGMA synchronous=NORMAL;")
            # Child rows may be cached before their parent (e.g. a repository page opened cold).
            cur.execute("PRAGMA foreign_keys=OFF;")
            for stmt in SCHEMA_STATEMENTS:
                cur.execute(stmt)
            self.conn.commit()
        except sqlite3.Error as e:
            logger.error("Store initialization failed: %s", e)
            raise StoreError(f"Store initialization failed: {e}") from e
        self._initialized = True
        return self.conn

    def initialize(self) -> None:
        """Open the connection and create the schema. Idempotent; concurrent callers wait on one run."""
        with self._mu:
            self._ready_conn()

    def close(self) -> None:
        with self._mu:
            if self.conn is not None:
                try:
                    self.conn.close()
                except sqlite3.Error as e:
                    logger.warning("Failed to close store: %s", e)
            self.conn = None
            self._initialized = False

    # ----------------------------------------------------------------------------------
    # low-level helpers
    # ----------------------------------------------------------------------------------

    def now_ms(self) -> int:
        return int(self._clock() * 1000)

    def expires_at(self, kind: CacheKind, now_ms: Optional[int] = None) -> int:
        base = self.now_ms() if now_ms is None else now_ms
        return base + self.timeouts.seconds_for(kind) * 1000

    def _fetchall(self, sql: str, args: Sequence[Any] = ()) -> List[sqlite3.Row]:
        with self._mu:
            conn = self._ready_conn()
            try:
                return list(conn.execute(sql, tuple(args)).fetchall())
            except sqlite3.Error as e:
                raise StoreError(str(e)) from e

    def _execute(self, sql: str, args: Sequence[Any] = ()) -> int:
        with self._mu:
            conn = self._ready_conn()
            try:
                with conn:
                    cur = conn.execute(sql, tuple(args))
                return int(cur.rowcount or 0)
            except sqlite3.Error as e:
                raise StoreError(str(e)) from e

    def _upsert(self, table: str, row: Dict[str, Any], kind: CacheKind) -> None:
        bad = [n for n in [table, *row] if not is_valid_identifier(n)]
        if bad:
            raise StoreError(f"Invalid identifier(s): {', '.join(map(repr, bad))}")
        now = self.now_ms()
        values = dict(row)
        values["cached_at"] = now
        values["expires_at"] = self.expires_at(kind, now)
        cols = list(values.keys())
        sql = f"INSERT OR REPLACE INTO {table} ({', '.join(cols)}) VALUES ({', '.join('?' for _ in cols)})"
        self._execute(sql, [values[c] for c in cols])

    def _map_rows(self, rows: Iterable[sqlite3.Row], fn: Callable[[sqlite3.Row], Any], table: str) -> List[Any]:
        out: List[Any] = []
        for r in rows:
            try:
                out.append(fn(r))
            except (KeyError, IndexError, TypeError, ValueError) as e:
                logger.warning("Skipping malformed %s row %s: %s", table, r["id"] if "id" in r.keys() else "?", e)
        return out

    # ----------------------------------------------------------------------------------
    # diagnostic surface
    # ----------------------------------------------------------------------------------

    def execute_query(self, sql: str) -> Dict[str, Any]:
        return self.execute_query_with_params(sql, [])

    def execute_query_with_params(self, sql: str, args: Sequence[Any]) -> Dict[str, Any]:
        """Run one read-only SELECT. Returns {columns, rows, rowCount}."""
        ensure_select(sql)
        with self._mu:
            conn = self._ready_conn()
            try:
                conn.execute("PRAGMA query_only=ON;")
                try:
                    cur = conn.execute(sql, tuple(args or ()))
                    rows = cur.fetchall()
                    columns = [d[0] for d in (cur.description or [])]
                finally:
                    conn.execute("PRAGMA query_only=OFF;")
            except sqlite3.Error as e:
                raise StoreError(str(e)) from e
        return {
            "columns": columns,
            "rows": [dict(zip(columns, tuple(r))) for r in rows],
            "rowCount": len(rows),
        }

    def _table_columns(self, table: str) -> List[Dict[str, Any]]:
        rows = self._fetchall(f"PRAGMA table_info({table})")
        return [
            {"name": r["name"], "type": r["type"], "notnull": r["notnull"] == 1, "pk": r["pk"] == 1}
            for r in rows
        ]

    def _count(self, table: str) -> int:
        rows = self._fetchall(f"SELECT COUNT(*) AS count FROM {table}")
        return int(rows[0]["count"] or 0) if rows else 0

    def list_tables(self) -> List[Dict[str, Any]]:
        rows = self._fetchall(
            "SELECT name FROM sqlite_master WHERE type='table' AND name NOT LIKE 'sqlite_%' ORDER BY name"
        )
        out: List[Dict[str, Any]] = []
        for r in rows:
            name = str(r["name"])
            if not is_valid_identifier(name):
                logger.warning("Skipping table with unexpected name %r", name)
                continue
            out.append({"name": name, "count": self._count(name), "columns": self._table_columns(name)})
        return out

    def read_table(self, name: str, page: int = 1, page_size: int = 50) -> Dict[str, Any]:
        if not is_valid_identifier(name):
            raise QueryValidationError("Invalid table name")
        try:
            page = int(page)
            limit = int(page_size)
        except (TypeError, ValueError):
            raise QueryValidationError("Invalid page")
        if page < 1 or limit < 1:
            raise QueryValidationError("Invalid page")

        exists = self._fetchall("SELECT name FROM sqlite_master WHERE type='table' AND name = ?", [name])
        if not exists:
            raise QueryValidationError("Table not found", status_code=404)

        total = self._count(name)
        rows = self._fetchall(
            f"SELECT * FROM {name} ORDER BY rowid LIMIT ? OFFSET ?", [limit, (page - 1) * limit]
        )
        columns = self._table_columns(name)
        return {
            "table": name,
            "columns": columns,
            "records": [dict(r) for r in rows],
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "pages": int(math.ceil(total / limit)) if limit else 0,
                "hasNext": page * limit < total,
                "hasPrev": page > 1,
            },
        }

    # ----------------------------------------------------------------------------------
    # identities
    # ----------------------------------------------------------------------------------

    def get_identity(self, identity_id: str) -> Optional[Dict[str, Any]]:
        rows = self._fetchall("SELECT * FROM identities WHERE id = ? AND expires_at > ?", [identity_id, self.now_ms()])
        mapped = self._map_rows(rows, self._identity_from_row, "identities")
        return mapped[0] if mapped else None

    def save_identity(self, identity_id: str, data: Dict[str, Any]) -> None:
        ident = data.get("identity") or {}
        tags = ident.get("tags")
        self._upsert(
            "identities",
            {
                "id": identity_id,
                "name": ident.get("name") or identity_id,
                "username": ident.get("username") or "",
                "description": ident.get("description"),
                "avatar": ident.get("avatar"),
                "tags": _dumps(tags) if tags else None,
                "github_user_data": _dumps(data.get("user") or {}),
                "total_issues": int(data.get("totalIssues") or 0),
                "total_pull_requests": int(data.get("totalPullRequests") or 0),
                "total_releases": int(data.get("totalReleases") or 0),
                "stats_data": _dumps(data.get("stats") or {}),
                "last_updated": data.get("lastUpdated") or utc_now_iso(),
            },
            CacheKind.IDENTITY,
        )

    def get_all_identities(self) -> Dict[str, Dict[str, Any]]:
        rows = self._fetchall("SELECT * FROM identities WHERE expires_at > ?", [self.now_ms()])
        return {d["identity"]["id"]: d for d in self._map_rows(rows, self._identity_from_row, "identities")}

    @staticmethod
    def _identity_from_row(row: sqlite3.Row) -> Dict[str, Any]:
        return {
            "identity": {
                "id": row["id"],
                "name": row["name"],
                "username": row["username"],
                "description": row["description"],
                "avatar": row["avatar"],
                "tags": _loads(row["tags"], []),
            },
            "user": _loads(row["github_user_data"], {}),
            "repositories": [],
            "lastUpdated": row["last_updated"],
            "totalIssues": row["total_issues"],
            "totalPullRequests": row["total_pull_requests"],
            "totalReleases": row["total_releases"],
            "stats": _loads(row["stats_data"], {}),
        }

    # ----------------------------------------------------------------------------------
    # repositories
    # ----------------------------------------------------------------------------------

    def get_repository(self, repo_id: str) -> Optional[Dict[str, Any]]:
        rows = self._fetchall("SELECT * FROM repositories WHERE id = ? AND expires_at > ?", [repo_id, self.now_ms()])
        mapped = self._map_rows(rows, self._repository_from_row, "repositories")
        return mapped[0] if mapped else None

    def save_repository(self, repo_id: str, identity_id: str, repo: Dict[str, Any]) -> None:
        lic = repo.get("license")
        self._upsert(
            "repositories",
            {
                "id": repo_id,
                "identity_id": identity_id,
                "github_id": int(repo.get("id") or 0),
                "name": repo["name"],
                "full_name": repo.get("full_name") or repo["name"],
                "description": repo.get("description"),
                "private": _bool(repo.get("private")),
                "html_url": repo.get("html_url") or "",
                "clone_url": repo.get("clone_url") or "",
                "ssh_url": repo.get("ssh_url") or "",
                "language": repo.get("language"),
                "size": int(repo.get("size") or 0),
                "stargazers_count": int(repo.get("stargazers_count") or 0),
                "watchers_count": int(repo.get("watchers_count") or 0),
                "forks_count": int(repo.get("forks_count") or 0),
                "open_issues_count": int(repo.get("open_issues_count") or 0),
                "default_branch": repo.get("default_branch") or "main",
                "created_at": repo.get("created_at") or "",
                "updated_at": repo.get("updated_at") or "",
                "pushed_at": repo.get("pushed_at") or "",
                "archived": _bool(repo.get("archived")),
                "disabled": _bool(repo.get("disabled")),
                "topics": _dumps(list(repo.get("topics") or [])),
                "license_data": _dumps(lic) if lic else None,
                "last_updated": utc_now_iso(),
            },
            CacheKind.REPOSITORY,
        )

    def get_repositories_for_identity(self, identity_id: str) -> List[Dict[str, Any]]:
        rows = self._fetchall(
            "SELECT * FROM repositories WHERE identity_id = ? AND expires_at > ? ORDER BY pushed_at DESC",
            [identity_id, self.now_ms()],
        )
        return self._map_rows(rows, self._repository_from_row, "repositories")

    def get_all_repositories(self) -> List[Dict[str, Any]]:
        rows = self._fetchall("SELECT * FROM repositories WHERE expires_at > ? ORDER BY pushed_at DESC", [self.now_ms()])
        return self._map_rows(
            rows, lambda r: {**self._repository_from_row(r), "identity_id": r["identity_id"]}, "repositories"
        )

    @staticmethod
    def _repository_from_row(row: sqlite3.Row) -> Dict[str, Any]:
        return {
            "id": row["github_id"],
            "name": row["name"],
            "full_name": row["full_name"],
            "description": row["description"],
            "private": row["private"] == 1,
            "html_url": row["html_url"],
            "clone_url": row["clone_url"],
            "ssh_url": row["ssh_url"],
            "language": row["language"],
            "size": row["size"],
            "stargazers_count": row["stargazers_count"],
            "watchers_count": row["watchers_count"],
            "forks_count": row["forks_count"],
            "open_issues_count": row["open_issues_count"],
            "default_branch": row["default_branch"],
            "created_at": row["created_at"],
            "updated_at": row["updated_at"],
            "pushed_at": row["pushed_at"],
            "archived": row["archived"] == 1,
            "disabled": row["disabled"] == 1,
            "topics": _loads(row["topics"], []),
            "license": _loads(row["license_data"], None),
        }

    def get_repository_detail(self, repo_id: str) -> Optional[Dict[str, Any]]:
        repository = self.get_repository(repo_id)
        if repository is None:
            return None
        return {
            "repository": repository,
            "issues": self.get_issues_for_repository(repo_id),
            "pullRequests": self.get_pull_requests_for_repository(repo_id),
            "releases": self.get_releases_for_repository(repo_id),
            "branches": self.get_branches_for_repository(repo_id),
            "lastUpdated": utc_now_iso(),
        }

    # ----------------------------------------------------------------------------------
    # issues / pull requests / releases / branches
    # ----------------------------------------------------------------------------------

    def _children(self, table: str, repo_id: str, fn: Callable[[sqlite3.Row], Any]) -> List[Any]:
        rows = self._fetchall(
            f"SELECT * FROM {table} WHERE repository_id = ? AND expires_at > ?", [repo_id, self.now_ms()]
        )
        return self._map_rows(rows, fn, table)

    def _all_children(
        self, table: str, order_by: str, fn: Callable[[sqlite3.Row], Any], identity_id: Optional[str]
    ) -> List[Dict[str, Any]]:
        sql = (
            f"SELECT c.*, repo.identity_id AS identity_id, repo.name AS repository_name, "
            f"repo.full_name AS repository_full_name "
            f"FROM {table} c JOIN repositories repo ON c.repository_id = repo.id "
            f"WHERE c.expires_at > ?"
        )
        args: List[Any] = [self.now_ms()]
        if identity_id is not None:
            sql += " AND repo.identity_id = ?"
            args.append(identity_id)
        sql += f" ORDER BY {order_by}"

        def annotate(r: sqlite3.Row) -> Dict[str, Any]:
            return {
                **fn(r),
                "repository_id": r["repository_id"],
                "identity_id": r["identity_id"],
                "repository_name": r["repository_name"],
                "repository_full_name": r["repository_full_name"],
            }

        return self._map_rows(self._fetchall(sql, args), annotate, table)

    def get_issues_for_repository(self, repo_id: str) -> List[Dict[str, Any]]:
        return self._children("issues", repo_id, self._issue_from_row)

    def save_issue(self, issue_id: str, repo_id: str, issue: Dict[str, Any]) -> None:
        milestone = issue.get("milestone")
        self._upsert(
            "issues",
            {
                "id": issue_id,
                "repository_id": repo_id,
                "github_id": int(issue.get("id") or 0),
                "number": int(issue["number"]),
                "title": issue.get("title") or "",
                "body": issue.get("body"),
                "state": issue.get("state") or "open",
                "user_data": _dumps(issue.get("user") or {}),
                "labels_data": _dumps(issue.get("labels") or []),
                "assignees_data": _dumps(issue.get("assignees") or []),
                "milestone_data": _dumps(milestone) if milestone else None,
                "created_at": issue.get("created_at") or "",
                "updated_at": issue.get("updated_at") or "",
                "closed_at": issue.get("closed_at"),
                "html_url": issue.get("html_url") or "",
                "comments": int(issue.get("comments") or 0),
            },
            CacheKind.ISSUES,
        )

    def get_all_issues(self, identity_id: Optional[str] = None) -> List[Dict[str, Any]]:
        return self._all_children("issues", "c.updated_at DESC, c.created_at DESC", self._issue_from_row, identity_id)

    @staticmethod
    def _issue_from_row(row: sqlite3.Row) -> Dict[str, Any]:
        return {
            "id": row["github_id"],
            "number": row["number"],
            "title": row["title"],
            "body": row["body"],
            "state": row["state"],
            "user": _loads(row["user_data"], {}),
            "labels": _loads(row["labels_data"], []),
            "assignees": _loads(row["assignees_data"], []),
            "milestone": _loads(row["milestone_data"], None),
            "created_at": row["created_at"],
            "updated_at": row["updated_at"],
            "closed_at": row["closed_at"],
            "html_url": row["html_url"],
            "comments": row["comments"],
        }

    def get_pull_requests_for_repository(self, repo_id: str) -> List[Dict[str, Any]]:
        return self._children("pull_requests", repo_id, self._pull_request_from_row)

    def save_pull_request(self, pr_id: str, repo_id: str, pr: Dict[str, Any]) -> None:
        mergeable = pr.get("mergeable")
        self._upsert(
            "pull_requests",
            {
                "id": pr_id,
                "repository_id": repo_id,
                "github_id": int(pr.get("id") or 0),
                "number": int(pr["number"]),
                "title": pr.get("title") or "",
                "body": pr.get("body"),
                "state": pr.get("state") or "open",
                "user_data": _dumps(pr.get("user") or {}),
                "head_data": _dumps(pr.get("head") or {}),
                "base_data": _dumps(pr.get("base") or {}),
                "merged": _bool(pr.get("merged")),
                "mergeable": None if mergeable is None else _bool(mergeable),
                "mergeable_state": pr.get("mergeable_state") or "unknown",
                "merged_at": pr.get("merged_at"),
                "created_at": pr.get("created_at") or "",
                "updated_at": pr.get("updated_at") or "",
                "closed_at": pr.get("closed_at"),
                "html_url": pr.get("html_url") or "",
                "comments": int(pr.get("comments") or 0),
                "review_comments": int(pr.get("review_comments") or 0),
                "commits": int(pr.get("commits") or 0),
                "additions": int(pr.get("additions") or 0),
                "deletions": int(pr.get("deletions") or 0),
                "changed_files": int(pr.get("changed_files") or 0),
            },
            CacheKind.PULL_REQUESTS,
        )

    def get_all_pull_requests(self, identity_id: Optional[str] = None) -> List[Dict[str, Any]]:
        return self._all_children(
            "pull_requests", "c.updated_at DESC, c.created_at DESC", self._pull_request_from_row, identity_id
        )

    @staticmethod
    def _pull_request_from_row(row: sqlite3.Row) -> Dict[str, Any]:
        mergeable = row["mergeable"]
        return {
            "id": row["github_id"],
            "number": row["number"],
            "title": row["title"],
            "body": row["body"],
            "state": row["state"],
            "user": _loads(row["user_data"], {}),
            "head": _loads(row["head_data"], {}),
            "base": _loads(row["base_data"], {}),
            "merged": row["merged"] == 1,
            "mergeable": None if mergeable is None else mergeable == 1,
            "mergeable_state": row["mergeable_state"],
            "merged_at": row["merged_at"],
            "created_at": row["created_at"],
            "updated_at": row["updated_at"],
            "closed_at": row["closed_at"],
            "html_url": row["html_url"],
            "comments": row["comments"],
            "review_comments": row["review_comments"],
            "commits": row["commits"],
            "additions": row["additions"],
            "deletions": row["deletions"],
            "changed_files": row["changed_files"],
        }

    def get_releases_for_repository(self, repo_id: str) -> List[Dict[str, Any]]:
        return self._children("releases", repo_id, self._release_from_row)

    def save_release(self, release_id: str, repo_id: str, release: Dict[str, Any]) -> None:
        self._upsert(
            "releases",
            {
                "id": release_id,
                "repository_id": repo_id,
                "github_id": int(release.get("id") or 0),
                "tag_name": release["tag_name"],
                "target_commitish": release.get("target_commitish") or "",
                "name": release.get("name"),
                "body": release.get("body"),
                "draft": _bool(release.get("draft")),
                "prerelease": _bool(release.get("prerelease")),
                "created_at": release.get("created_at") or "",
                "published_at": release.get("published_at"),
                "author_data": _dumps(release.get("author") or {}),
                "assets_data": _dumps(release.get("assets") or []),
                "html_url": release.get("html_url") or "",
            },
            CacheKind.RELEASES,
        )

    def get_all_releases(self, identity_id: Optional[str] = None) -> List[Dict[str, Any]]:
        return self._all_children(
            "releases", "c.published_at DESC, c.created_at DESC", self._release_from_row, identity_id
        )

    @staticmethod
    def _release_from_row(row: sqlite3.Row) -> Dict[str, Any]:
        return {
            "id": row["github_id"],
            "tag_name": row["tag_name"],
            "target_commitish": row["target_commitish"],
            "name": row["name"],
            "body": row["body"],
            "draft": row["draft"] == 1,
            "prerelease": row["prerelease"] == 1,
            "created_at": row["created_at"],
            "published_at": row["published_at"],
            "author": _loads(row["author_data"], {}),
            "assets": _loads(row["assets_data"], []),
            "html_url": row["html_url"],
        }

    def get_branches_for_repository(self, repo_id: str) -> List[Dict[str, Any]]:
        return self._children("branches", repo_id, self._branch_from_row)

    def save_branch(self, branch_id: str, repo_id: str, branch: Dict[str, Any]) -> None:
        commit = branch.get("commit") or {}
        self._upsert(
            "branches",
            {
                "id": branch_id,
                "repository_id": repo_id,
                "name": branch["name"],
                "commit_sha": commit.get("sha") or "",
                "commit_url": commit.get("url") or "",
                "protected": _bool(branch.get("protected")),
            },
            CacheKind.BRANCHES,
        )

    @staticmethod
    def _branch_from_row(row: sqlite3.Row) -> Dict[str, Any]:
        return {
            "name": row["name"],
            "commit": {"sha": row["commit_sha"], "url": row["commit_url"]},
            "protected": row["protected"] == 1,
        }

    # ----------------------------------------------------------------------------------
    # registry packages
    # ----------------------------------------------------------------------------------

    def save_registry_package(self, pkg: RegistryPackage) -> None:
        self._upsert(
            "registry_packages",
            {
                "id": pkg.id,
                "scope": pkg.scope or "",
                "name": pkg.name,
                "version": pkg.version or "",
                "description": pkg.description,
                "keywords": _dumps(pkg.keywords) if pkg.keywords else None,
                "author_data": _dumps(pkg.author) if pkg.author else None,
                "maintainers_data": _dumps(pkg.maintainers) if pkg.maintainers else None,
                "repository_data": _dumps(pkg.repository) if pkg.repository else None,
                "homepage": pkg.homepage,
                "license": pkg.license,
                "published_at": pkg.published_at,
                "links_data": _dumps(pkg.links) if pkg.links else None,
                "publisher_data": _dumps(pkg.publisher) if pkg.publisher else None,
                "score_data": _dumps(pkg.score) if pkg.score else None,
                "search_score": pkg.search_score,
            },
            CacheKind.REGISTRY_PACKAGES,
        )

    def get_registry_packages_for_scope(self, scope: str) -> List[RegistryPackage]:
        rows = self._fetchall(
            "SELECT * FROM registry_packages WHERE scope = ? AND expires_at > ?", [scope, self.now_ms()]
        )
        return self._map_rows(rows, self._registry_package_from_row, "registry_packages")

    def get_all_registry_packages(self) -> List[RegistryPackage]:
        rows = self._fetchall("SELECT * FROM registry_packages WHERE expires_at > ? ORDER BY rowid", [self.now_ms()])
        return self._map_rows(rows, self._registry_package_from_row, "registry_packages")

    @staticmethod
    def _registry_package_from_row(row: sqlite3.Row) -> RegistryPackage:
        return RegistryPackage(
            scope=row["scope"],
            name=row["name"],
            version=row["version"],
            description=row["description"],
            keywords=_loads(row["keywords"], []),
            author=_loads(row["author_data"], None),
            maintainers=_loads(row["maintainers_data"], []),
            repository=_loads(row["repository_data"], None),
            homepage=row["homepage"],
            license=row["license"],
            published_at=row["published_at"],
            links=_loads(row["links_data"], None),
            publisher=_loads(row["publisher_data"], None),
            score=_loads(row["score_data"], None),
            search_score=row["search_score"],
        )

    # ----------------------------------------------------------------------------------
    # workspace packages
    # ----------------------------------------------------------------------------------

    def save_workspace_package(self, wp: WorkspacePackage) -> None:
        pkg = wp.package
        self._upsert(
            "workspace_packages",
            {
                "id": pkg.name,
                "name": pkg.name,
                "version": pkg.version or "",
                "description": pkg.description,
                "manifest_path": wp.manifest_path,
                "author_data": _dumps(pkg.author) if pkg.author else None,
                "license": pkg.license,
                "repository_data": _dumps(pkg.repository) if pkg.repository else None,
                "dependencies_data": _dumps([d.to_dict() for d in wp.runtime_deps]),
                "dev_dependencies_data": _dumps([d.to_dict() for d in wp.dev_deps]),
                "internal_dependencies_data": _dumps([d.to_dict() for d in wp.internal_deps]),
                "dependents_data": _dumps(list(wp.dependents)),
            },
            CacheKind.WORKSPACE_PACKAGES,
        )

    def get_workspace_package(self, name: str) -> Optional[WorkspacePackage]:
        rows = self._fetchall("SELECT * FROM workspace_packages WHERE name = ? AND expires_at > ?", [name, self.now_ms()])
        mapped = self._map_rows(rows, self._workspace_package_from_row, "workspace_packages")
        return mapped[0] if mapped else None

    def get_all_workspace_packages(self) -> List[WorkspacePackage]:
        rows = self._fetchall("SELECT * FROM workspace_packages WHERE expires_at > ? ORDER BY rowid", [self.now_ms()])
        return self._map_rows(rows, self._workspace_package_from_row, "workspace_packages")

    @staticmethod
    def _workspace_package_from_row(row: sqlite3.Row) -> WorkspacePackage:
        deps = lambda col: [DependencyInfo.from_dict(d) for d in _loads(row[col], [])]  # noqa: E731
        return WorkspacePackage(
            package=PackageInfo(
                name=row["name"],
                version=row["version"],
                description=row["description"],
                author=_loads(row["author_data"], None),
                license=row["license"],
                repository=_loads(row["repository_data"], None),
            ),
            manifest_path=row["manifest_path"],
            runtime_deps=deps("dependencies_data"),
            dev_deps=deps("dev_dependencies_data"),
            internal_deps=deps("internal_dependencies_data"),
            dependents=[str(x) for x in _loads(row["dependents_data"], [])],
        )

    # ----------------------------------------------------------------------------------
    # invalidation / status
    # ----------------------------------------------------------------------------------

    def clear_expired(self) -> int:
        """Delete rows whose TTL has passed. Returns the number of rows removed."""
        now = self.now_ms()
        removed = 0
        for table in TABLES:
            removed += self._execute(f"DELETE FROM {table} WHERE expires_at <= ?", [now])
        if removed:
            logger.info("Removed %d expired cache rows", removed)
        return removed

    def clear_all(self) -> None:
        for table in TABLES:
            self._execute(f"DELETE FROM {table}")

    def reset_store(self) -> None:
        """Delete and recreate a local database; clear all rows for an external one."""
        if self.is_remote:
            self.clear_all()
            return
        if self.db_path is None:
            raise StoreError("Local store has no database path")
        # Readers block on _mu for the whole close/unlink/reopen.
        with self._mu:
            self.close()
            for suffix in ("", "-wal", "-shm"):
                p = Path(f"{self.db_path}{suffix}")
                try:
                    p.unlink()
                except FileNotFoundError:
                    pass
                except OSError as e:
                    raise StoreError(f"Failed to delete {p}: {e}") from e
            self._ready_conn()

    def status(self) -> Dict[str, Any]:
        counts = {
            "identities": self._count("identities"),
            "repositories": self._count("repositories"),
            "issues": self._count("issues"),
            "pullRequests": self._count("pull_requests"),
            "releases": self._count("releases"),
            "branches": self._count("branches"),
            "registryPackages": self._count("registry_packages"),
            "workspacePackages": self._count("workspace_packages"),
        }
        union = " UNION ALL ".join(f"SELECT cached_at FROM {t}" for t in TABLES)
        rows = self._fetchall(f"SELECT MAX(cached_at) AS last_updated FROM ({union})")
        last_ms = int(rows[0]["last_updated"] or 0) if rows else 0
        size = "unknown"
        if self.db_path is not None:
            try:
                size = f"{os.path.getsize(self.db_path)} bytes"
            except OSError:
                pass
        return {
            **counts,
            "size": size,
            "lastUpdated": (
                iso_from_epoch_ms(last_ms)
                if last_ms > 0
                else "Never"
            ),
        }
