# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0
"""
Pytest tests for runghost/config.py (discovery, merge, validation, display).
"""

from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from runghost.config import (
    CONFIG_DIR_ENV,
    config_from_dict,
    config_to_display_dict,
    find_config_dirs,
    init_config,
    load_config,
    merge_config_dicts,
)
from runghost.exceptions import ConfigError
from runghost.schema import CacheKind


@pytest.fixture(autouse=True)
def isolated_home(tmp_path, monkeypatch):
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.delenv(CONFIG_DIR_ENV, raising=False)
    return home


def _write_cfg(d: Path, data) -> Path:
    d.mkdir(parents=True, exist_ok=True)
    (d / "config.yaml").write_text(yaml.safe_dump(data))
    return d


IDENT = {"name": "Personal", "username": "u", "token": "ghp_abcdefghijkl"}


def test_merge_is_deep():
    base = {"cache": {"identityTimeout": 1, "repositoryTimeout": 2}, "port": 1}
    out = merge_config_dicts(base, {"cache": {"identityTimeout": 9}, "port": 2})
    assert out == {"cache": {"identityTimeout": 9, "repositoryTimeout": 2}, "port": 2}
    assert base["cache"]["identityTimeout"] == 1


def test_defaults():
    cfg = config_from_dict({})
    assert cfg.port == 4000
    assert cfg.host == "localhost"
    assert cfg.theme == "auto"
    assert cfg.github.max_retries == 3
    assert cfg.cache.seconds_for(CacheKind.PULL_REQUESTS) == cfg.cache.issues_timeout
    assert cfg.data_directory == Path.home() / ".runghost"


def test_nearest_config_wins(tmp_path, isolated_home):
    _write_cfg(isolated_home / ".runghost", {"port": 1111, "identities": {"home": IDENT}})
    project = tmp_path / "proj"
    _write_cfg(project / ".runghost", {"port": 2222, "identities": {"work": {**IDENT, "npmjs": {"scopes": ["@legacy"]}}}})
    sub = project / "src" / "pkg"
    sub.mkdir(parents=True)

    dirs = find_config_dirs(sub)
    assert dirs[0] == (project / ".runghost").resolve()
    assert dirs[-1] == isolated_home / ".runghost"

    cfg = load_config({"host": "0.0.0.0", "port": None}, start_dir=sub)
    assert cfg.port == 2222
    assert cfg.host == "0.0.0.0"
    assert set(cfg.identities) == {"home", "work"}
    assert cfg.identities["work"].registry_scopes == ["@legacy"]
    assert cfg.config_dir == (project / ".runghost").resolve()


def test_env_override_dir(tmp_path, monkeypatch):
    d = _write_cfg(tmp_path / "elsewhere", {"theme": "dark"})
    monkeypatch.setenv(CONFIG_DIR_ENV, str(d))
    assert load_config(start_dir=tmp_path).theme == "dark"


def test_missing_config_dir(tmp_path):
    with pytest.raises(ConfigError, match="runghost init"):
        load_config(start_dir=tmp_path)
    assert load_config(start_dir=tmp_path, require_config_dir=False).identities == {}


@pytest.mark.parametrize(
    "raw, msg",
    [
        ({"theme": "neon"}, "theme"),
        ({"port": "abc"}, "port"),
        ({"port": True}, "port"),
        ({"identities": {"x": {"name": "X", "username": "x"}}}, "identities.x.token is required"),
        ({"identities": {"x": "nope"}}, "identities.x: expected a mapping"),
        ({"identities": {"x": {**IDENT, "tags": "solo"}}}, "identities.x.tags"),
        ({"identities": ["x"]}, "identities"),
    ],
)
def test_validation_errors(raw, msg):
    with pytest.raises(ConfigError, match=msg):
        config_from_dict(raw)


def test_display_masks_tokens():
    cfg = config_from_dict({"identities": {"x": IDENT}, "database": {"url": "libsql://db", "authToken": "secret-token"}})
    shown = config_to_display_dict(cfg)
    assert shown["identities"]["x"]["token"] == "ghp_****"
    assert shown["database"]["authToken"] == "secr****"
    assert "ghp_abcdefghijkl" not in yaml.safe_dump(shown)


def test_init_config_writes_sample_once(tmp_path):
    target = tmp_path / ".runghost"
    path = init_config(target)
    cfg = load_config(start_dir=tmp_path)
    assert "example" in cfg.identities
    assert cfg.identities["example"].registry_scopes == ["@example-org", "@example-company"]

    path.write_text("port: 5000\n")
    assert init_config(target) == path
    assert path.read_text() == "port: 5000\n"
