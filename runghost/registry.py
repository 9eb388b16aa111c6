# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""Package registry client (npm-compatible search and metadata API).

All calls go through `audited_request(service="registry")`.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, Iterable, List, Optional

import requests

from .audit import AuditLogger, audited_request
from .config import normalize_scope
from .exceptions import UpstreamError
from .models import RegistryPackage

logger = logging.getLogger(__name__)

DEFAULT_REGISTRY_URL = "https://registry.npmjs.org"
PACKAGE_PAGE_URL = "https://www.npmjs.com/package"
MAX_SCOPE_WORKERS = 8


def _as_dict(v: Any) -> Optional[Dict[str, Any]]:
    if isinstance(v, dict):
        return v
    if isinstance(v, str) and v:
        return {"name": v}
    return None


def _package_from_search_object(obj: Dict[str, Any], *, scope: str) -> RegistryPackage:
    pkg = obj.get("package") or {}
    repo = pkg.get("repository")
    return RegistryPackage(
        scope=scope,
        name=str(pkg["name"]),
        version=str(pkg.get("version") or ""),
        description=pkg.get("description"),
        keywords=[str(k) for k in (pkg.get("keywords") or [])],
        author=_as_dict(pkg.get("author")),
        maintainers=[m for m in (pkg.get("maintainers") or []) if isinstance(m, dict)],
        repository=repo if isinstance(repo, dict) else ({"url": repo} if repo else None),
        homepage=pkg.get("homepage"),
        license=pkg.get("license") if isinstance(pkg.get("license"), str) else None,
        published_at=pkg.get("date"),
        links=pkg.get("links"),
        publisher=pkg.get("publisher"),
        score=obj.get("score"),
        search_score=obj.get("searchScore"),
    )


class RegistryClient:
    def __init__(
        self,
        base_url: str = DEFAULT_REGISTRY_URL,
        *,
        audit: Optional[AuditLogger] = None,
        session: Optional[requests.Session] = None,
        timeout: float = 30,
    ):
        self.base_url = str(base_url or DEFAULT_REGISTRY_URL).rstrip("/")
        self.search_url = f"{self.base_url}/-/v1/search"
        self.audit = audit
        self.session = session
        self.timeout = timeout

    def _get(self, url: str, *, params: Optional[Dict[str, Any]] = None, metadata: Dict[str, Any]) -> requests.Response:
        return audited_request(
            self.audit,
            "GET",
            url,
            service="registry",
            metadata=metadata,
            session=self.session,
            headers={"Accept": "application/json"},
            params=params,
            timeout=self.timeout,
        )

    def _search_objects(self, text: str, *, limit: int, from_: int, metadata: Dict[str, Any]) -> List[Dict[str, Any]]:
        resp = self._get(
            self.search_url,
            params={"text": text, "size": str(int(limit)), "from": str(int(from_)), "detailed": "true"},
            metadata=metadata,
        )
        if not resp.ok:
            raise UpstreamError(
                status_code=resp.status_code,
                url=str(resp.url or self.search_url),
                message=f"Failed to search packages: {resp.reason}",
            )
        data = resp.json() or {}
        return [o for o in (data.get("objects") or []) if isinstance(o, dict) and isinstance(o.get("package"), dict)]

    def search_by_scope(self, scope: str, *, limit: int = 250, from_: int = 0) -> List[RegistryPackage]:
        """Packages published under `scope`. Failures are logged and yield []."""
        scope_n = normalize_scope(scope)
        try:
            objects = self._search_objects(
                scope_n,
                limit=limit,
                from_=from_,
                metadata={"scope": scope_n, "searchType": "packages_by_scope"},
            )
            return [
                _package_from_search_object(o, scope=scope_n)
                for o in objects
                if str(o["package"].get("name") or "").startswith(f"{scope_n}/")
            ]
        except (requests.RequestException, UpstreamError, ValueError, KeyError) as e:
            logger.warning("Registry search failed for scope %s: %s", scope_n, e)
            return []

    def get_by_scopes(self, scopes: Iterable[str]) -> Dict[str, List[RegistryPackage]]:
        """Search every scope in parallel. Keys are normalized scopes."""
        normalized: List[str] = []
        for s in scopes:
            n = normalize_scope(s)
            if n not in normalized:
                normalized.append(n)
        if not normalized:
            return {}
        workers = max(1, min(MAX_SCOPE_WORKERS, len(normalized)))
        with ThreadPoolExecutor(max_workers=workers) as ex:
            results = list(ex.map(self.search_by_scope, normalized))
        return dict(zip(normalized, results))

    def get_package_metadata(self, name: str) -> Optional[RegistryPackage]:
        """Latest-version metadata for one package; None when the registry has no such package.

        Raises UpstreamError for any other non-OK status.
        """
        resp = self._get(
            f"{self.base_url}/{name}",
            metadata={"packageName": name, "searchType": "package_metadata"},
        )
        if resp.status_code == 404:
            return None
        if not resp.ok:
            raise UpstreamError(
                status_code=resp.status_code,
                url=str(resp.url or ""),
                message=f"Failed to get package metadata: {resp.reason}",
            )

        data = resp.json() or {}
        versions = data.get("versions") or {}
        latest = (data.get("dist-tags") or {}).get("latest") or (list(versions.keys())[-1] if versions else "")
        vd = versions.get(latest) or {}

        def pick(key: str) -> Any:
            return data.get(key) or vd.get(key)

        repository = pick("repository")
        if isinstance(repository, str):
            repository = {"url": repository}
        bugs = pick("bugs")
        return RegistryPackage(
            scope=name.split("/")[0] if name.startswith("@") else "",
            name=str(data.get("name") or name),
            version=str(latest or ""),
            description=pick("description"),
            keywords=[str(k) for k in (pick("keywords") or [])],
            author=_as_dict(pick("author")),
            maintainers=[m for m in (data.get("maintainers") or []) if isinstance(m, dict)],
            repository=repository,
            homepage=pick("homepage"),
            license=pick("license") if isinstance(pick("license"), str) else None,
            published_at=(data.get("time") or {}).get(latest) if latest else None,
            links={
                "npm": f"{PACKAGE_PAGE_URL}/{name}",
                "homepage": pick("homepage"),
                "repository": (repository or {}).get("url"),
                "bugs": bugs.get("url") if isinstance(bugs, dict) else None,
            },
        )

    def search(self, query: str, *, limit: int = 20, from_: int = 0) -> List[RegistryPackage]:
        try:
            objects = self._search_objects(
                query, limit=limit, from_=from_, metadata={"query": query, "searchType": "packages_by_query"}
            )
            out: List[RegistryPackage] = []
            for o in objects:
                name = str(o["package"].get("name") or "")
                out.append(_package_from_search_object(o, scope=name.split("/")[0] if name.startswith("@") else ""))
            return out
        except (requests.RequestException, UpstreamError, ValueError, KeyError) as e:
            logger.warning("Registry search failed for query %r: %s", query, e)
            return []
