# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0
"""
Pytest tests for runghost/github_client.py (REST client, aggregator, refresh).

Upstream is a FakeSession; no network access.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from runghost.conftest import FakeSession, make_response
from runghost.exceptions import RateLimitError, UpstreamError
from runghost.github_client import (
    GitHubAggregator,
    GitHubRestClient,
    calculate_stats,
    humanize_since,
    map_pull_request,
)


def _iso_days_ago(days: int) -> str:
    return (datetime.now(timezone.utc) - timedelta(days=days)).strftime("%Y-%m-%dT%H:%M:%SZ")


def _repo(name: str, stars: int, days_ago: int, **kw):
    d = {
        "id": hash(name) & 0xFFFF,
        "name": name,
        "full_name": f"u/{name}",
        "owner": {"login": "u"},
        "private": False,
        "html_url": f"https://github.com/u/{name}",
        "clone_url": "",
        "ssh_url": "",
        "language": "Python",
        "size": 3,
        "stargazers_count": stars,
        "watchers_count": stars,
        "forks_count": 1,
        "open_issues_count": 1,
        "default_branch": "main",
        "created_at": "2020-01-01T00:00:00Z",
        "updated_at": _iso_days_ago(days_ago),
        "pushed_at": _iso_days_ago(days_ago),
        "archived": False,
        "disabled": False,
        "topics": [],
    }
    d.update(kw)
    return d


def _pr(number: int, state: str = "open", merged_at=None):
    return {
        "id": 1000 + number,
        "number": number,
        "title": f"PR {number}",
        "state": state,
        "user": {"login": "u", "avatar_url": "a", "id": 1},
        "head": {"ref": "feat", "sha": "s1", "repo": None},
        "base": {"ref": "main", "sha": "s0", "repo": {"name": "r2", "full_name": "u/r2", "id": 9}},
        "merged_at": merged_at,
        "created_at": "2024-01-01T00:00:00Z",
        "updated_at": "2024-01-02T00:00:00Z",
        "html_url": "https://github.com/u/r2/pull/1",
    }


@pytest.fixture
def upstream(session: FakeSession) -> FakeSession:
    session.add_json("/user", {"login": "u", "id": 1, "avatar_url": "https://avatars/u"})
    session.add_json("/user/repos", [_repo("r1", 5, 10), _repo("r2", 2, 100)])
    session.add_json("/repos/u/r1/pulls", [_pr(1)])
    session.add_json("/repos/u/r2/pulls", [_pr(2, "closed", "2024-01-03T00:00:00Z")])
    session.add_json("/repos/u/r1/releases", [{"id": 1, "tag_name": "v1", "author": {}, "assets": []}])
    session.add_json("/repos/u/r2/releases", [{"id": 2, "tag_name": "v2", "author": {}, "assets": []}])
    for name in ("r1", "r2"):
        session.add_json(f"/repos/u/{name}", _repo(name, 1, 1))
        session.add_json(f"/repos/u/{name}/issues", [{"id": 7, "number": 7, "title": "bug", "state": "open", "user": {}}])
        session.add_json(f"/repos/u/{name}/branches", [{"name": "main", "commit": {"sha": "abc", "url": "u"}, "protected": False}])
    return session


@pytest.fixture
def aggregator(config, store, audit, upstream):
    return GitHubAggregator(config, store, audit, session=upstream, sleep=lambda s: None)


# ============================================================================
# stats helpers
# ============================================================================


def test_calculate_stats_activity_buckets():
    repos = [_repo("a", 1, 5), _repo("b", 1, 60), _repo("c", 1, 200), _repo("d", 1, 400, language=None)]
    s = calculate_stats(repos)
    assert s["activityScore"] == 10 + 5 + 1 + 0
    assert s["totalStars"] == 4
    assert s["languageBreakdown"] == {"Python": 3}


def test_map_pull_request_unknown_fields():
    pr = map_pull_request(_pr(2, "closed", "2024-01-03T00:00:00Z"))
    assert pr["merged"] is True
    assert pr["mergeable"] is None
    assert pr["mergeable_state"] == "unknown"
    assert pr["head"]["repo"] is None
    assert pr["base"]["repo"] == {"name": "r2", "full_name": "u/r2"}
    assert pr["user"] == {"login": "u", "avatar_url": "a"}
    assert pr["commits"] == 0


def test_humanize_since():
    now = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
    assert humanize_since("2024-01-01T11:55:00Z", now=now) == "5 minutes ago"
    assert humanize_since("2024-01-01T11:59:50Z", now=now) == "less than a minute ago"
    assert humanize_since("2023-12-30T12:00:00Z", now=now) == "2 days ago"
    assert humanize_since(None) == "Never"


# ============================================================================
# REST client
# ============================================================================


def test_client_sends_token_and_user_agent(identity, audit, session):
    session.add_json("/user", {"login": "u"})
    c = GitHubRestClient(identity, audit=audit, session=session)
    assert c.get_authenticated_user() == {"login": "u"}
    hdrs = session.calls[0]["headers"]
    assert hdrs["Authorization"] == "token ghp_secret_token_value"
    assert hdrs["User-Agent"] == "RunGhost/1.0.0"
    audit.flush()
    (entry,) = audit.query()
    assert entry["service"] == "github"
    assert entry["identityId"] == "i"
    assert entry["metadata"] == {"username": "u", "name": "Personal"}


def test_client_retries_server_errors(identity, config, session):
    responses = [make_response(502, {"message": "bad gateway"}), make_response(200, {"login": "u"})]
    session.add("/user", lambda url, params: responses.pop(0))
    c = GitHubRestClient(identity, settings=config.github, session=session, sleep=lambda s: None)
    assert c.get_authenticated_user()["login"] == "u"
    assert session.paths() == ["/user", "/user"]


def test_client_rate_limit_error_carries_headers(identity, session):
    session.add(
        "/user",
        make_response(
            403,
            {"message": "API rate limit exceeded"},
            headers={"X-RateLimit-Remaining": "0", "X-RateLimit-Reset": "1700000000"},
        ),
    )
    c = GitHubRestClient(identity, session=session, sleep=lambda s: None)
    with pytest.raises(RateLimitError) as ei:
        c.get_authenticated_user()
    assert ei.value.rate_limit_remaining == 0
    assert ei.value.rate_limit_reset == "1700000000"
    assert str(ei.value) == "API rate limit exceeded"


def test_client_transport_error_after_retries(identity, config, session):
    session.offline = True
    c = GitHubRestClient(identity, settings=config.github, session=session, sleep=lambda s: None)
    with pytest.raises(UpstreamError):
        c.get_authenticated_user()
    assert len(session.calls) == config.github.max_retries + 1


# ============================================================================
# aggregator
# ============================================================================


def test_cold_identity_fetch_then_cached_read(aggregator, upstream):
    res = aggregator.get_identity_data("i")
    assert res.success, res.error
    data = res.data
    assert data["stats"]["totalStars"] == 7
    assert data["stats"]["activityScore"] == 11
    assert data["totalPullRequests"] == 2
    assert data["totalReleases"] == 2
    assert data["totalIssues"] == 2
    assert data["identity"]["avatar"] == "https://avatars/u"

    upstream.offline = True
    cached = aggregator.get_identity_data("i")
    assert cached.success
    assert cached.data["stats"] == data["stats"]
    assert cached.data["totalReleases"] == 2
    assert sorted(r["name"] for r in cached.data["repositories"]) == ["r1", "r2"]


def test_identity_fetch_ignores_locked_repo_counts(aggregator, upstream):
    upstream.add_json("/repos/u/r1/releases", {"message": "Forbidden"}, status=403)
    res = aggregator.get_identity_data("i")
    assert res.success
    assert res.data["totalReleases"] == 1


def test_unknown_identity_and_missing_client(aggregator):
    assert aggregator.get_identity_data("nope").error == "Identity nope not found"
    aggregator.clients.pop("i")
    assert aggregator.get_identity_data("i", force=True).error == "Client for identity i not initialized"


def test_upstream_failure_is_an_envelope(aggregator, upstream):
    upstream.add(
        "/user",
        make_response(403, {"message": "API rate limit exceeded"}, headers={"X-RateLimit-Remaining": "0", "X-RateLimit-Reset": "123"}),
    )
    res = aggregator.get_identity_data("i")
    assert res.success is False
    assert res.error == "API rate limit exceeded"
    assert res.rate_limit_remaining == 0
    assert res.rate_limit_reset == "123"


def test_repository_detail_persists_children(aggregator, store, upstream):
    res = aggregator.get_repository_detail("i", "r2")
    assert res.success, res.error
    assert res.data["pullRequests"][0]["merged"] is True
    assert [b["name"] for b in res.data["branches"]] == ["main"]

    upstream.offline = True
    cached = aggregator.get_repository_detail("i", "r2")
    assert cached.success
    assert cached.data["releases"][0]["tag_name"] == "v2"
    assert cached.data["pullRequests"][0]["mergeable"] is None
    assert store.get_issues_for_repository("i/r2")[0]["title"] == "bug"


def test_listings_read_from_store(aggregator):
    aggregator.get_identity_data("i")
    aggregator.get_repository_detail("i", "r1")
    assert {r["name"] for r in aggregator.get_all_repositories().data} == {"r1", "r2"}
    assert len(aggregator.get_issues_for_identity("i").data) == 1
    assert aggregator.get_issues_for_identity("other").data == []
    assert len(aggregator.get_pull_requests_for_identity("i").data) == 1
    assert aggregator.get_all_releases().data[0]["repository_name"] == "r1"


def test_cache_status_and_clear(aggregator):
    aggregator.get_identity_data("i")
    st = aggregator.get_cache_status().data
    assert st["identities"] == 1
    assert st["repositories"] == 2
    assert st["lastUpdatedRelative"] != "Never"
    assert aggregator.clear_cache().success
    assert aggregator.get_cache_status().data["lastUpdated"] == "Never"


# ============================================================================
# refresh
# ============================================================================


def test_refresh_with_one_bad_repo(aggregator, upstream):
    upstream.add_json("/repos/u/r1/releases", {"message": "Resource not accessible by integration"}, status=403)
    out = aggregator.refresh("i")
    assert out["success"] is True
    stats = out["stats"]
    assert len(stats["errors"]) == 1
    assert "r1" in stats["errors"][0]
    assert stats["errors"][0].startswith("Failed to fetch details for r1:")
    assert stats["repositories"] == 2
    assert stats["releases"] == 1
    assert stats["issues"] == 1
    assert stats["pullRequests"] == 1
    assert stats["branches"] == 1
    assert stats["identities"] == 1
    assert out["refreshedIdentities"] == ["i"]


def test_refresh_unknown_identity(aggregator):
    out = aggregator.refresh("ghost")
    assert out["success"] is False
    assert out["error"] == 'Identity "ghost" not found in configuration'


def test_refresh_all_bypasses_cache(aggregator, upstream):
    aggregator.get_identity_data("i")
    before = upstream.paths().count("/user")
    aggregator.refresh()
    assert upstream.paths().count("/user") == before + 1
