# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0
"""Shared pytest fixtures: temp data dir, store with a controllable clock, fake HTTP session."""

from __future__ import annotations

import json
import urllib.parse
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import pytest
import requests

from runghost.audit import AuditLogger
from runghost.config import Identity, RunGhostConfig, GitHubSettings
from runghost.store import CacheStore


def make_response(
    status: int = 200,
    body: Any = None,
    *,
    headers: Optional[Dict[str, str]] = None,
    url: str = "",
    reason: Optional[str] = None,
) -> requests.Response:
    r = requests.Response()
    r.status_code = int(status)
    r._content = json.dumps(body if body is not None else {}).encode("utf-8")
    r.headers["Content-Type"] = "application/json"
    r.headers["Content-Length"] = str(len(r._content))
    for k, v in (headers or {}).items():
        r.headers[k] = v
    r.url = url
    r.reason = reason or {200: "OK", 403: "Forbidden", 404: "Not Found", 500: "Internal Server Error"}.get(status, "")
    r.encoding = "utf-8"
    return r


Handler = Union[requests.Response, Callable[[str, Dict[str, Any]], requests.Response], Exception]


class FakeSession:
    """Stands in for requests.Session: routes by URL path, records every call."""

    def __init__(self) -> None:
        self.routes: Dict[Tuple[str, str], Handler] = {}
        self.calls: List[Dict[str, Any]] = []
        self.offline = False

    def add(self, path: str, handler: Handler, method: str = "GET") -> None:
        self.routes[(method.upper(), path)] = handler

    def add_json(self, path: str, body: Any, status: int = 200, headers: Optional[Dict[str, str]] = None) -> None:
        self.add(path, lambda url, params: make_response(status, body, headers=headers, url=url))

    def paths(self) -> List[str]:
        return [c["path"] for c in self.calls]

    def request(self, method, url, headers=None, params=None, json=None, timeout=None, **kwargs):
        path = urllib.parse.urlparse(url).path
        self.calls.append({"method": method, "url": url, "path": path, "params": dict(params or {}), "headers": dict(headers or {})})
        if self.offline:
            raise requests.ConnectionError(f"offline: {url}")
        handler = self.routes.get((str(method).upper(), path))
        if handler is None:
            return make_response(404, {"message": "Not Found"}, url=url)
        if isinstance(handler, Exception):
            raise handler
        if isinstance(handler, requests.Response):
            return handler
        return handler(url, dict(params or {}))


class Clock:
    def __init__(self, t: float = 1_700_000_000.0) -> None:
        self.t = t

    def __call__(self) -> float:
        return self.t

    def advance(self, seconds: float) -> None:
        self.t += seconds


@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    d = tmp_path / "data"
    d.mkdir()
    return d


@pytest.fixture
def clock() -> Clock:
    return Clock()


@pytest.fixture
def store(data_dir: Path, clock: Clock):
    s = CacheStore(data_dir, clock=clock)
    s.initialize()
    yield s
    s.close()


@pytest.fixture
def audit(data_dir: Path):
    a = AuditLogger(data_dir, start_timer=False)
    yield a
    a.close()


@pytest.fixture
def session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def identity() -> Identity:
    return Identity(
        id="i",
        name="Personal",
        username="u",
        token="ghp_secret_token_value",
        registry_scopes=["@org", "ext"],
    )


@pytest.fixture
def config(data_dir: Path, identity: Identity) -> RunGhostConfig:
    return RunGhostConfig(
        data_directory=data_dir,
        identities={identity.id: identity},
        github=GitHubSettings(max_retries=1, retry_delay_ms=0),
    )
