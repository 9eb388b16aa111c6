# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0
"""
Pytest tests for runghost/workspace.py (manifest discovery + parsing).
"""

from __future__ import annotations

import json
from pathlib import Path

from runghost.config import Identity
from runghost.workspace import configured_scopes, parse_manifest, parse_workspace, scan


def _manifest(d: Path, data) -> Path:
    d.mkdir(parents=True, exist_ok=True)
    (d / "package.json").write_text(data if isinstance(data, str) else json.dumps(data))
    return d


def test_scan_skips_dependency_and_hidden_dirs(tmp_path):
    _manifest(tmp_path / "a", {"name": "a"})
    _manifest(tmp_path / "a" / "node_modules" / "dep", {"name": "dep"})
    _manifest(tmp_path / ".cache" / "x", {"name": "x"})
    _manifest(tmp_path / "b" / "nested", {"name": "nested"})
    found = scan(tmp_path)
    assert found == [tmp_path / "a", tmp_path / "b" / "nested"]


def test_scan_descends_below_a_manifest_and_includes_root(tmp_path):
    _manifest(tmp_path, {"name": "root"})
    _manifest(tmp_path / "packages" / "a", {"name": "a"})
    assert scan(tmp_path) == [tmp_path, tmp_path / "packages" / "a"]


def test_scan_depth_limit(tmp_path):
    deep = tmp_path / "1" / "2" / "3"
    _manifest(deep, {"name": "deep"})
    assert scan(tmp_path, max_depth=2) == []
    assert scan(tmp_path, max_depth=3) == [deep]


def test_scan_missing_root(tmp_path):
    assert scan(tmp_path / "nope") == []


def test_configured_scopes_normalizes_and_dedupes():
    ids = {
        "a": Identity(id="a", name="A", username="a", token="t", registry_scopes=["org", "@org", "@ext"]),
        "b": Identity(id="b", name="B", username="b", token="t", registry_scopes=["ext"]),
    }
    assert configured_scopes(ids) == ["@org", "@ext"]
    assert configured_scopes(["x", "@y"]) == ["@x", "@y"]


def test_parse_manifest_fields_and_internal_deps(tmp_path):
    d = _manifest(
        tmp_path / "a",
        {
            "name": "@org/a",
            "version": "1.2.3",
            "description": "pkg a",
            "author": "me",
            "license": "MIT",
            "repository": {"type": "git", "url": "git+https://github.com/u/a.git"},
            "dependencies": {"@org/b": "^1.0.0", "@orgs/c": "1", "left-pad": "1.0.0"},
            "devDependencies": {"@org/tools": "2"},
        },
    )
    wp = parse_manifest(d, ["org"])
    assert wp.name == "@org/a"
    assert wp.package.version == "1.2.3"
    assert wp.package.repository == "git+https://github.com/u/a.git"
    assert wp.package.license == "MIT"
    assert wp.manifest_path == str(d)
    assert [x.name for x in wp.runtime_deps] == ["@org/b", "@orgs/c", "left-pad"]
    assert [x.name for x in wp.internal_deps] == ["@org/b"]
    assert [(x.name, x.type) for x in wp.dev_deps] == [("@org/tools", "dev")]


def test_parse_manifest_rejects_bad_input(tmp_path):
    assert parse_manifest(tmp_path / "missing") is None
    assert parse_manifest(_manifest(tmp_path / "noname", {"version": "1"})) is None
    assert parse_manifest(_manifest(tmp_path / "blank", {"name": "  "})) is None
    assert parse_manifest(_manifest(tmp_path / "broken", "{not json")) is None
    assert parse_manifest(_manifest(tmp_path / "list", "[1, 2]")) is None


def test_parse_workspace_first_name_wins(tmp_path):
    r1 = tmp_path / "one"
    r2 = tmp_path / "two"
    _manifest(r1 / "a", {"name": "a", "version": "1.0.0"})
    _manifest(r2 / "a", {"name": "a", "version": "9.9.9"})
    _manifest(r2 / "b", {"name": "b"})
    _manifest(r2 / "bad", "oops")
    pkgs = parse_workspace([r1, r2])
    assert [p.name for p in pkgs] == ["a", "b"]
    assert pkgs[0].package.version == "1.0.0"
