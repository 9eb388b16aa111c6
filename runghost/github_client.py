# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""
GitHub REST access and per-identity aggregation.

- `GitHubRestClient`: one per configured identity; carries the token, user agent and retry policy.
  Every call goes through `audited_request(service="github")`.
- `GitHubAggregator`: cache-first reads over `CacheStore`, normalization of upstream payloads,
  and the forced `refresh()` sweep. Public operations return `APIResponse` envelopes.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import requests

from .audit import AuditLogger, audited_request
from .common import utc_now_iso
from .config import GitHubSettings, Identity, RunGhostConfig
from .exceptions import RateLimitError, RunGhostError, UpstreamError, UpstreamNotFoundError
from .models import APIResponse
from .store import CacheStore

logger = logging.getLogger(__name__)

PER_PAGE = 100


def _parse_iso(value: Any) -> Optional[datetime]:
    s = str(value or "").strip()
    if not s:
        return None
    try:
        dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
    except ValueError:
        return None
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def humanize_since(iso_ts: Optional[str], *, now: Optional[datetime] = None) -> str:
    """'2024-01-01T00:00:00Z' -> '5 minutes ago'. Returns 'Never' for empty/unparseable input."""
    dt = _parse_iso(iso_ts)
    if dt is None:
        return "Never"
    ref = now or datetime.now(timezone.utc)
    s = int((ref - dt).total_seconds())
    if s < 45:
        return "less than a minute ago"
    m = int(round(s / 60.0))
    if m < 60:
        return "1 minute ago" if m == 1 else f"{m} minutes ago"
    h = int(round(m / 60.0))
    if h < 24:
        return "about 1 hour ago" if h == 1 else f"about {h} hours ago"
    d = int(round(h / 24.0))
    return "1 day ago" if d == 1 else f"{d} days ago"


def activity_points(updated_at: Any, *, now: Optional[datetime] = None) -> int:
    dt = _parse_iso(updated_at)
    if dt is None:
        return 0
    days = ((now or datetime.now(timezone.utc)) - dt).total_seconds() / 86400.0
    if days <= 30:
        return 10
    if days <= 90:
        return 5
    if days <= 365:
        return 1
    return 0


def calculate_stats(repos: List[Dict[str, Any]], *, now: Optional[datetime] = None) -> Dict[str, Any]:
    stats: Dict[str, Any] = {
        "totalStars": 0,
        "totalForks": 0,
        "totalSize": 0,
        "languageBreakdown": {},
        "activityScore": 0,
    }
    for repo in repos:
        stats["totalStars"] += int(repo.get("stargazers_count") or 0)
        stats["totalForks"] += int(repo.get("forks_count") or 0)
        stats["totalSize"] += int(repo.get("size") or 0)
        lang = repo.get("language")
        if lang:
            stats["languageBreakdown"][lang] = stats["languageBreakdown"].get(lang, 0) + 1
        stats["activityScore"] += activity_points(repo.get("updated_at"), now=now)
    return stats


def map_pull_request(pr: Dict[str, Any]) -> Dict[str, Any]:
    """List-endpoint PR -> stored shape. Fields the list endpoint lacks are null/zero."""
    user = pr.get("user") or {}
    head = pr.get("head") or {}
    base = pr.get("base") or {}
    head_repo = head.get("repo")
    base_repo = base.get("repo") or {}
    state = str(pr.get("state") or "open")
    return {
        "id": pr.get("id"),
        "number": pr.get("number"),
        "title": pr.get("title") or "",
        "body": pr.get("body"),
        "state": state,
        "user": {"login": user.get("login") or "", "avatar_url": user.get("avatar_url") or ""},
        "head": {
            "ref": head.get("ref"),
            "sha": head.get("sha"),
            "repo": {"name": head_repo.get("name"), "full_name": head_repo.get("full_name")} if head_repo else None,
        },
        "base": {
            "ref": base.get("ref"),
            "sha": base.get("sha"),
            "repo": {"name": base_repo.get("name"), "full_name": base_repo.get("full_name")},
        },
        "merged": bool(state == "closed" and pr.get("merged_at")),
        "mergeable": None,
        "mergeable_state": "unknown",
        "merged_at": pr.get("merged_at"),
        "created_at": pr.get("created_at"),
        "updated_at": pr.get("updated_at"),
        "closed_at": pr.get("closed_at"),
        "html_url": pr.get("html_url") or "",
        "comments": 0,
        "review_comments": 0,
        "commits": 0,
        "additions": 0,
        "deletions": 0,
        "changed_files": 0,
    }


# ======================================================================================
# REST client
# ======================================================================================


class GitHubRestClient:
    """Minimal GitHub REST client bound to one identity."""

    def __init__(
        self,
        identity: Identity,
        *,
        settings: Optional[GitHubSettings] = None,
        audit: Optional[AuditLogger] = None,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
        timeout: float = 30,
    ):
        self.identity = identity
        self.settings = settings or GitHubSettings()
        self.base_url = self.settings.api_url.rstrip("/")
        self.audit = audit
        self.session = session
        self.timeout = timeout
        self._sleep = sleep
        self.logger = logging.getLogger(self.__class__.__name__)
        self.headers = {
            "Accept": "application/vnd.github.v3+json",
            "User-Agent": self.settings.user_agent,
        }
        if identity.token:
            self.headers["Authorization"] = f"token {identity.token}"

    def _error_from_response(self, resp: requests.Response) -> UpstreamError:
        code = int(resp.status_code or 0)
        message = ""
        try:
            body = resp.json()
            if isinstance(body, dict):
                message = str(body.get("message") or "")
        except ValueError:
            message = ""
        if not message:
            message = str(resp.reason or f"HTTP {code}")
        remaining = resp.headers.get("X-RateLimit-Remaining")
        kwargs = dict(
            status_code=code,
            url=str(resp.url or ""),
            message=message,
            rate_limit_remaining=int(remaining) if remaining is not None and str(remaining).isdigit() else None,
            rate_limit_reset=resp.headers.get("X-RateLimit-Reset"),
        )
        if code == 404:
            return UpstreamNotFoundError(**kwargs)
        if code in (403, 429) and str(remaining) == "0":
            return RateLimitError(**kwargs)
        return UpstreamError(**kwargs)

    def get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """GET `<api>/<path>` and decode JSON.

        Retries transport errors and 5xx up to `max_retries` times with `retry_delay` between
        attempts. Any other non-2xx raises an UpstreamError subclass.
        """
        url = f"{self.base_url}/{path.lstrip('/')}"
        attempts = max(0, int(self.settings.max_retries)) + 1
        delay_s = max(0, int(self.settings.retry_delay_ms)) / 1000.0
        metadata = {"username": self.identity.username, "name": self.identity.name}

        for attempt in range(attempts):
            last = attempt == attempts - 1
            try:
                resp = audited_request(
                    self.audit,
                    "GET",
                    url,
                    service="github",
                    identity_id=self.identity.id,
                    metadata=metadata,
                    session=self.session,
                    headers=self.headers,
                    params=params,
                    timeout=self.timeout,
                )
            except requests.RequestException as e:
                if last:
                    raise UpstreamError(status_code=0, url=url, message=str(e) or e.__class__.__name__) from e
                self.logger.debug("GET %s failed (%s); retry %d/%d", url, e, attempt + 1, attempts - 1)
                self._sleep(delay_s)
                continue

            code = int(resp.status_code or 0)
            if code >= 500 and not last:
                self.logger.debug("GET %s -> %d; retry %d/%d", url, code, attempt + 1, attempts - 1)
                self._sleep(delay_s)
                continue
            if code >= 400:
                raise self._error_from_response(resp)
            return resp.json()
        raise UpstreamError(status_code=0, url=url, message="retries exhausted")

    def get_authenticated_user(self) -> Dict[str, Any]:
        return self.get_json("/user")

    def list_repositories(self, *, per_page: int = PER_PAGE, sort: str = "updated") -> List[Dict[str, Any]]:
        return list(self.get_json("/user/repos", {"per_page": per_page, "sort": sort}) or [])

    def get_repository(self, owner: str, repo: str) -> Dict[str, Any]:
        return self.get_json(f"/repos/{owner}/{repo}")

    def list_issues(self, owner: str, repo: str, *, state: str = "all", per_page: int = PER_PAGE) -> List[Dict[str, Any]]:
        return list(self.get_json(f"/repos/{owner}/{repo}/issues", {"state": state, "per_page": per_page}) or [])

    def list_pull_requests(self, owner: str, repo: str, *, state: str = "all", per_page: int = PER_PAGE) -> List[Dict[str, Any]]:
        return list(self.get_json(f"/repos/{owner}/{repo}/pulls", {"state": state, "per_page": per_page}) or [])

    def list_releases(self, owner: str, repo: str, *, per_page: int = PER_PAGE) -> List[Dict[str, Any]]:
        return list(self.get_json(f"/repos/{owner}/{repo}/releases", {"per_page": per_page}) or [])

    def list_branches(self, owner: str, repo: str, *, per_page: int = PER_PAGE) -> List[Dict[str, Any]]:
        return list(self.get_json(f"/repos/{owner}/{repo}/branches", {"per_page": per_page}) or [])


# ======================================================================================
# Aggregator
# ======================================================================================


def _fail(e: Exception, default: str) -> APIResponse:
    if isinstance(e, UpstreamError):
        return APIResponse.fail(
            str(e) or default,
            rate_limit_remaining=e.rate_limit_remaining,
            rate_limit_reset=e.rate_limit_reset,
        )
    return APIResponse.fail(str(e) or default)


class GitHubAggregator:
    def __init__(
        self,
        config: RunGhostConfig,
        store: CacheStore,
        audit: Optional[AuditLogger] = None,
        *,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config
        self.store = store
        self.audit = audit
        self.clients: Dict[str, GitHubRestClient] = {
            identity_id: GitHubRestClient(ident, settings=config.github, audit=audit, session=session, sleep=sleep)
            for identity_id, ident in config.identities.items()
        }

    def _identity_and_client(self, identity_id: str):
        identity = self.config.identities.get(identity_id)
        if identity is None:
            return None, None, f"Identity {identity_id} not found"
        client = self.clients.get(identity_id)
        if client is None:
            return identity, None, f"Client for identity {identity_id} not initialized"
        return identity, client, None

    # ----------------------------------------------------------------------------------
    # identities
    # ----------------------------------------------------------------------------------

    def get_all_identities(self) -> APIResponse[Dict[str, Dict[str, Any]]]:
        """Cached identities, plus a fetch for every configured identity missing from the cache."""
        try:
            identities: Dict[str, Dict[str, Any]] = {}
            for identity_id, cached in self.store.get_all_identities().items():
                identities[identity_id] = {**cached, "repositories": self.store.get_repositories_for_identity(identity_id)}
            for identity_id in self.config.identities:
                if identity_id in identities:
                    continue
                res = self.get_identity_data(identity_id)
                if res.success and res.data is not None:
                    identities[identity_id] = res.data
                else:
                    logger.warning("Identity %s unavailable: %s", identity_id, res.error)
            return APIResponse.ok(identities)
        except RunGhostError as e:
            return _fail(e, "Failed to load identities")

    def get_identity_data(self, identity_id: str, force: bool = False) -> APIResponse[Dict[str, Any]]:
        try:
            if not force:
                cached = self.store.get_identity(identity_id)
                if cached is not None:
                    return APIResponse.ok({**cached, "repositories": self.store.get_repositories_for_identity(identity_id)})

            identity, client, err = self._identity_and_client(identity_id)
            if err:
                return APIResponse.fail(err)

            user = client.get_authenticated_user()
            repos = client.list_repositories(per_page=PER_PAGE, sort="updated")
            stats = calculate_stats(repos)

            total_issues = 0
            total_prs = 0
            total_releases = 0
            for repo in repos:
                total_issues += int(repo.get("open_issues_count") or 0)
                owner = ((repo.get("owner") or {}).get("login")) or identity.username
                # A locked repository must not abort the whole identity.
                try:
                    total_prs += len(client.list_pull_requests(owner, repo["name"], state="open", per_page=1))
                except UpstreamError as e:
                    logger.debug("Skipping PR count for %s/%s: %s", owner, repo.get("name"), e)
                try:
                    total_releases += len(client.list_releases(owner, repo["name"], per_page=1))
                except UpstreamError as e:
                    logger.debug("Skipping release count for %s/%s: %s", owner, repo.get("name"), e)

            data = {
                "identity": {
                    "id": identity_id,
                    "name": identity.name,
                    "username": identity.username,
                    "description": identity.description,
                    "avatar": identity.avatar or user.get("avatar_url"),
                    "tags": list(identity.tags),
                },
                "user": user,
                "repositories": repos,
                "lastUpdated": utc_now_iso(),
                "totalIssues": total_issues,
                "totalPullRequests": total_prs,
                "totalReleases": total_releases,
                "stats": stats,
            }

            self.store.save_identity(identity_id, data)
            for repo in repos:
                self.store.save_repository(f"{identity_id}/{repo['name']}", identity_id, repo)
            return APIResponse.ok(data)
        except (RunGhostError, KeyError, ValueError) as e:
            return _fail(e, "Failed to fetch identity data")

    # ----------------------------------------------------------------------------------
    # repository detail
    # ----------------------------------------------------------------------------------

    def get_repository_detail(self, identity_id: str, repo_name: str, force: bool = False) -> APIResponse[Dict[str, Any]]:
        repo_id = f"{identity_id}/{repo_name}"
        try:
            if not force:
                cached = self.store.get_repository_detail(repo_id)
                if cached is not None:
                    return APIResponse.ok(cached)

            identity, client, err = self._identity_and_client(identity_id)
            if err:
                return APIResponse.fail(err)

            owner = identity.username
            repository = client.get_repository(owner, repo_name)
            issues = client.list_issues(owner, repo_name, state="all", per_page=PER_PAGE)
            pull_requests = [map_pull_request(pr) for pr in client.list_pull_requests(owner, repo_name, state="all", per_page=PER_PAGE)]
            releases = client.list_releases(owner, repo_name, per_page=PER_PAGE)
            branches = client.list_branches(owner, repo_name, per_page=PER_PAGE)

            self.store.save_repository(repo_id, identity_id, repository)
            for issue in issues:
                self.store.save_issue(f"{repo_id}/{issue['number']}", repo_id, issue)
            for pr in pull_requests:
                self.store.save_pull_request(f"{repo_id}/{pr['number']}", repo_id, pr)
            for release in releases:
                self.store.save_release(f"{repo_id}/{release['tag_name']}", repo_id, release)
            for branch in branches:
                self.store.save_branch(f"{repo_id}/{branch['name']}", repo_id, branch)

            return APIResponse.ok(
                {
                    "repository": repository,
                    "issues": issues,
                    "pullRequests": pull_requests,
                    "releases": releases,
                    "branches": branches,
                    "lastUpdated": utc_now_iso(),
                }
            )
        except (RunGhostError, KeyError, ValueError) as e:
            return _fail(e, "Failed to fetch repository data")

    # ----------------------------------------------------------------------------------
    # derived listings (store only)
    # ----------------------------------------------------------------------------------

    def _listing(self, fn: Callable[[], Any]) -> APIResponse:
        try:
            return APIResponse.ok(fn())
        except RunGhostError as e:
            return _fail(e, "Failed to read cache")

    def get_all_repositories(self) -> APIResponse[List[Dict[str, Any]]]:
        return self._listing(self.store.get_all_repositories)

    def get_all_releases(self) -> APIResponse[List[Dict[str, Any]]]:
        return self._listing(self.store.get_all_releases)

    def get_all_issues(self) -> APIResponse[List[Dict[str, Any]]]:
        return self._listing(self.store.get_all_issues)

    def get_all_pull_requests(self) -> APIResponse[List[Dict[str, Any]]]:
        return self._listing(self.store.get_all_pull_requests)

    def get_issues_for_identity(self, identity_id: str) -> APIResponse[List[Dict[str, Any]]]:
        return self._listing(lambda: self.store.get_all_issues(identity_id))

    def get_pull_requests_for_identity(self, identity_id: str) -> APIResponse[List[Dict[str, Any]]]:
        return self._listing(lambda: self.store.get_all_pull_requests(identity_id))

    # ----------------------------------------------------------------------------------
    # cache management
    # ----------------------------------------------------------------------------------

    def clear_cache(self) -> APIResponse[None]:
        try:
            self.store.clear_all()
            return APIResponse(success=True)
        except RunGhostError as e:
            return _fail(e, "Failed to clear cache")

    def reset_database(self) -> APIResponse[None]:
        try:
            self.store.reset_store()
            return APIResponse(success=True)
        except RunGhostError as e:
            return _fail(e, "Failed to reset database")

    def get_cache_status(self) -> APIResponse[Dict[str, Any]]:
        try:
            status = self.store.status()
        except RunGhostError as e:
            return _fail(e, "Failed to read cache status")
        last = status.get("lastUpdated")
        return APIResponse.ok({**status, "lastUpdatedRelative": humanize_since(last) if last != "Never" else "Never"})

    # ----------------------------------------------------------------------------------
    # refresh
    # ----------------------------------------------------------------------------------

    def refresh(self, identity_id: Optional[str] = None) -> Dict[str, Any]:
        """Force re-fetch of one identity (or all) including every repository's detail.

        An unknown `identity_id` is reported through the `error` key (success=False);
        per-entity failures are collected into `stats.errors`.
        """
        stats: Dict[str, Any] = {
            "identities": 0,
            "repositories": 0,
            "releases": 0,
            "issues": 0,
            "pullRequests": 0,
            "branches": 0,
            "errors": [],
        }
        if identity_id is not None and identity_id not in self.config.identities:
            return {
                "success": False,
                "error": f'Identity "{identity_id}" not found in configuration',
                "details": f"Available identities: {', '.join(self.config.identities.keys())}",
            }
        targets = [identity_id] if identity_id is not None else list(self.config.identities.keys())

        for iid in targets:
            logger.info("Refreshing identity %s", iid)
            res = self.get_identity_data(iid, force=True)
            if not res.success:
                stats["errors"].append(f"Failed to refresh identity {iid}: {res.error}")
                continue
            repos = (res.data or {}).get("repositories") or []
            stats["repositories"] += len(repos)

            for repo in repos:
                name = repo.get("name")
                try:
                    detail = self.get_repository_detail(iid, name, force=True)
                except Exception as e:  # noqa: BLE001
                    stats["errors"].append(f"Error fetching {name}: {e}")
                    continue
                if detail.success and detail.data is not None:
                    d = detail.data
                    stats["releases"] += len(d.get("releases") or [])
                    stats["issues"] += len(d.get("issues") or [])
                    stats["pullRequests"] += len(d.get("pullRequests") or [])
                    stats["branches"] += len(d.get("branches") or [])
                else:
                    stats["errors"].append(f"Failed to fetch details for {name}: {detail.error}")

        all_res = self.get_all_identities()
        if all_res.success:
            stats["identities"] = len(all_res.data or {})

        return {
            "success": True,
            "message": (
                f"GitHub data refreshed successfully for identity: {identity_id}"
                if identity_id is not None
                else "GitHub data refreshed successfully for all identities"
            ),
            "stats": stats,
            "refreshedIdentities": targets,
        }
