# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0
"""
Pytest tests for runghost/migration.py (legacy cache.json import).
"""

from __future__ import annotations

import json

from runghost.migration import NOT_NEEDED_MESSAGE, legacy_cache_path, needs_migration, run_migration


def _repo(name: str):
    return {"id": 1, "name": name, "full_name": f"u/{name}", "updated_at": "2024-01-01T00:00:00Z"}


def _identity(identity_id: str, repos):
    return {
        "data": {
            "identity": {"id": identity_id, "name": identity_id.upper(), "username": identity_id},
            "user": {"login": identity_id},
            "repositories": [_repo(r) for r in repos],
            "lastUpdated": "2024-01-01T00:00:00.000Z",
            "totalIssues": 0,
            "totalPullRequests": 0,
            "totalReleases": 0,
            "stats": {},
        },
        "timestamp": 0,
    }


def _snapshot(data_dir, payload) -> None:
    legacy_cache_path(data_dir).write_text(json.dumps(payload))


def test_migration_runs_once(data_dir, store):
    _snapshot(
        data_dir,
        {
            "identities": {"a": _identity("a", ["r1", "r2"]), "b": _identity("b", ["r3"])},
            "repositories": {
                "a/r1": {
                    "data": {
                        "repository": _repo("r1"),
                        "issues": [{"id": 5, "number": 5, "title": "bug", "state": "open"}],
                        "pullRequests": [{"id": 9, "number": 9, "state": "open", "mergeable": True}],
                        "releases": [{"id": 3, "tag_name": "v1"}],
                        "branches": [{"name": "main", "commit": {"sha": "s"}}],
                    }
                }
            },
        },
    )
    assert needs_migration(data_dir, store)

    first = run_migration(data_dir, store)
    assert first.success
    assert (first.identities_migrated, first.repositories_migrated) == (2, 3)
    assert first.errors == []
    assert first.backup_path == str(data_dir / "cache.json.backup")
    assert not legacy_cache_path(data_dir).exists()

    detail = store.get_repository_detail("a/r1")
    assert detail["issues"][0]["title"] == "bug"
    assert detail["pullRequests"][0]["mergeable"] is None
    assert [b["name"] for b in detail["branches"]] == ["main"]

    second = run_migration(data_dir, store)
    assert second.to_dict() == {
        "success": True,
        "message": NOT_NEEDED_MESSAGE,
        "identitiesMigrated": 0,
        "repositoriesMigrated": 0,
    }


def test_not_needed_when_store_has_data(data_dir, store):
    store.save_identity("x", _identity("x", [])["data"])
    _snapshot(data_dir, {"identities": {"a": _identity("a", ["r1"])}})
    res = run_migration(data_dir, store)
    assert res.message == NOT_NEEDED_MESSAGE
    assert legacy_cache_path(data_dir).exists()


def test_delete_option_removes_snapshot(data_dir, store):
    _snapshot(data_dir, {"identities": {"a": _identity("a", ["r1"])}})
    res = run_migration(data_dir, store, backup=False, delete=True)
    assert res.identities_migrated == 1
    assert res.backup_path is None
    assert not legacy_cache_path(data_dir).exists()
    assert not (data_dir / "cache.json.backup").exists()


def test_bad_entries_are_collected(data_dir, store):
    _snapshot(
        data_dir,
        {
            "identities": {"a": _identity("a", ["r1"]), "broken": {"nope": 1}},
            "repositories": {"a/r9": {"data": {"issues": []}}},
        },
    )
    res = run_migration(data_dir, store)
    assert res.success
    assert res.identities_migrated == 1
    assert len(res.errors) == 2
    assert res.errors[0].startswith("Failed to migrate identity broken")
    assert res.errors[1].startswith("Failed to migrate repository a/r9")
    assert "2 errors occurred" in res.message


def test_unreadable_snapshot_fails(data_dir, store):
    legacy_cache_path(data_dir).write_text("{truncated")
    res = run_migration(data_dir, store)
    assert res.success is False
    assert res.message.startswith("Migration failed:")
