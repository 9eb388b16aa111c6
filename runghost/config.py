# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0
"""
runghost configuration: defaults -> hierarchical `.runghost/config.yaml` files -> CLI overrides.

Discovery:
- $RUNGHOST_CONFIG_DIR (explicit override), else
- every `.runghost/` from the current directory up to `/`, plus `~/.runghost/`

Files are merged farthest-first, so the config nearest to the working directory wins.
Nested mappings (`identities`, `cache`, `github`, ...) are merged key by key.
"""

from __future__ import annotations

import copy
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .exceptions import ConfigError
from .schema import DEFAULT_TTLS, CacheKind

logger = logging.getLogger(__name__)

CONFIG_DIR_NAME = ".runghost"
CONFIG_FILE_NAME = "config.yaml"
CONFIG_DIR_ENV = "RUNGHOST_CONFIG_DIR"

VALID_THEMES = ("light", "dark", "auto")

DEFAULT_CONFIG: Dict[str, Any] = {
    "port": 4000,
    "host": "localhost",
    "dataDirectory": "~/.runghost",
    "database": {},
    "cache": {
        "identityTimeout": DEFAULT_TTLS[CacheKind.IDENTITY],
        "repositoryTimeout": DEFAULT_TTLS[CacheKind.REPOSITORY],
        "issuesTimeout": DEFAULT_TTLS[CacheKind.ISSUES],
        "releasesTimeout": DEFAULT_TTLS[CacheKind.RELEASES],
        "branchesTimeout": DEFAULT_TTLS[CacheKind.BRANCHES],
        "commitsTimeout": DEFAULT_TTLS[CacheKind.COMMITS],
        "registryPackagesTimeout": DEFAULT_TTLS[CacheKind.REGISTRY_PACKAGES],
        "workspacePackagesTimeout": DEFAULT_TTLS[CacheKind.WORKSPACE_PACKAGES],
    },
    "identities": {},
    "theme": "auto",
    "itemsPerPage": 20,
    "refreshInterval": 60,
    "github": {
        "userAgent": "RunGhost/1.0.0",
        "maxRetries": 3,
        "retryDelay": 1000,
        "apiUrl": "https://api.github.com",
    },
    "registry": {
        "url": "https://registry.npmjs.org",
    },
    "verbose": False,
    "debug": False,
}


def normalize_scope(scope: str) -> str:
    """`org` -> `@org`; `@org` unchanged."""
    s = str(scope or "").strip()
    return s if s.startswith("@") else f"@{s}"


@dataclass(frozen=True)
class Identity:
    id: str
    name: str
    username: str
    token: str = field(repr=False)
    description: Optional[str] = None
    avatar: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    workspaces: List[str] = field(default_factory=list)
    registry_scopes: List[str] = field(default_factory=list)

    def to_public_dict(self) -> Dict[str, Any]:
        """Wire/display form. Never includes the token."""
        return {
            "id": self.id,
            "name": self.name,
            "username": self.username,
            "description": self.description,
            "avatar": self.avatar,
            "tags": list(self.tags),
            "workspaces": list(self.workspaces),
            "registryScopes": list(self.registry_scopes),
        }


@dataclass(frozen=True)
class CacheTimeouts:
    """Per-kind TTLs in seconds."""

    identity_timeout: int = DEFAULT_TTLS[CacheKind.IDENTITY]
    repository_timeout: int = DEFAULT_TTLS[CacheKind.REPOSITORY]
    issues_timeout: int = DEFAULT_TTLS[CacheKind.ISSUES]
    releases_timeout: int = DEFAULT_TTLS[CacheKind.RELEASES]
    branches_timeout: int = DEFAULT_TTLS[CacheKind.BRANCHES]
    commits_timeout: int = DEFAULT_TTLS[CacheKind.COMMITS]
    registry_packages_timeout: int = DEFAULT_TTLS[CacheKind.REGISTRY_PACKAGES]
    workspace_packages_timeout: int = DEFAULT_TTLS[CacheKind.WORKSPACE_PACKAGES]

    def seconds_for(self, kind: CacheKind) -> int:
        # Pull requests share the issues TTL.
        mapping = {
            CacheKind.IDENTITY: self.identity_timeout,
            CacheKind.REPOSITORY: self.repository_timeout,
            CacheKind.ISSUES: self.issues_timeout,
            CacheKind.PULL_REQUESTS: self.issues_timeout,
            CacheKind.RELEASES: self.releases_timeout,
            CacheKind.BRANCHES: self.branches_timeout,
            CacheKind.COMMITS: self.commits_timeout,
            CacheKind.REGISTRY_PACKAGES: self.registry_packages_timeout,
            CacheKind.WORKSPACE_PACKAGES: self.workspace_packages_timeout,
        }
        return int(mapping.get(kind, self.repository_timeout))


@dataclass(frozen=True)
class DatabaseSettings:
    url: Optional[str] = None
    auth_token: Optional[str] = field(default=None, repr=False)


@dataclass(frozen=True)
class GitHubSettings:
    user_agent: str = "RunGhost/1.0.0"
    max_retries: int = 3
    retry_delay_ms: int = 1000
    api_url: str = "https://api.github.com"


@dataclass(frozen=True)
class RunGhostConfig:
    port: int = 4000
    host: str = "localhost"
    data_directory: Path = field(default_factory=lambda: Path.home() / CONFIG_DIR_NAME)
    database: DatabaseSettings = field(default_factory=DatabaseSettings)
    cache: CacheTimeouts = field(default_factory=CacheTimeouts)
    identities: Dict[str, Identity] = field(default_factory=dict)
    theme: str = "auto"
    items_per_page: int = 20
    refresh_interval: int = 60
    github: GitHubSettings = field(default_factory=GitHubSettings)
    registry_url: str = "https://registry.npmjs.org"
    verbose: bool = False
    debug: bool = False
    config_dir: Optional[Path] = None

    def all_registry_scopes(self) -> Dict[str, str]:
        """scope -> owning identity id. The first identity to claim a scope wins."""
        out: Dict[str, str] = {}
        for identity_id, ident in self.identities.items():
            for scope in ident.registry_scopes:
                out.setdefault(normalize_scope(scope), identity_id)
        return out

    def workspace_roots(self) -> List[Path]:
        roots: List[Path] = []
        for ident in self.identities.values():
            for ws in ident.workspaces:
                p = Path(ws).expanduser()
                if p not in roots:
                    roots.append(p)
        return roots


# ======================================================================================
# Discovery + merge
# ======================================================================================


def find_config_dirs(start_dir: Optional[Path] = None) -> List[Path]:
    """Return existing `.runghost/` directories, nearest first."""
    override = os.environ.get(CONFIG_DIR_ENV, "").strip()
    if override:
        p = Path(override).expanduser()
        return [p] if p.is_dir() else []

    found: List[Path] = []
    cur = Path(start_dir or Path.cwd()).resolve()
    for d in [cur, *cur.parents]:
        cand = d / CONFIG_DIR_NAME
        if cand.is_dir() and cand not in found:
            found.append(cand)

    home_cfg = Path.home() / CONFIG_DIR_NAME
    try:
        if home_cfg.is_dir() and home_cfg.resolve() not in [f.resolve() for f in found]:
            found.append(home_cfg)
    except OSError:
        pass
    return found


def merge_config_dicts(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Deep merge: mappings merge key by key, everything else is replaced."""
    out = copy.deepcopy(base)
    for k, v in (override or {}).items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = merge_config_dicts(out[k], v)
        else:
            out[k] = copy.deepcopy(v)
    return out


def _read_config_file(path: Path) -> Dict[str, Any]:
    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f)
    except FileNotFoundError:
        return {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Failed to read {path}: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"{path}: top-level value must be a mapping")
    return data


# ======================================================================================
# Validation
# ======================================================================================


def _as_int(raw: Dict[str, Any], key: str, where: str = "") -> int:
    v = raw.get(key)
    if isinstance(v, bool):
        raise ConfigError(f"{where}{key}: expected an integer, got {v!r}")
    try:
        return int(v)
    except (TypeError, ValueError):
        raise ConfigError(f"{where}{key}: expected an integer, got {v!r}")


def _as_str_list(v: Any, where: str) -> List[str]:
    if v is None:
        return []
    if not isinstance(v, list):
        raise ConfigError(f"{where}: expected a list of strings")
    return [str(x) for x in v]


def _identity_from_dict(identity_id: str, raw: Any) -> Identity:
    where = f"identities.{identity_id}"
    if not isinstance(raw, dict):
        raise ConfigError(f"{where}: expected a mapping")
    for req in ("name", "username", "token"):
        if not str(raw.get(req) or "").strip():
            raise ConfigError(f"{where}.{req} is required")

    scopes = _as_str_list(raw.get("registryScopes"), f"{where}.registryScopes")
    npmjs = raw.get("npmjs")
    if isinstance(npmjs, dict):
        for s in _as_str_list(npmjs.get("scopes"), f"{where}.npmjs.scopes"):
            if s not in scopes:
                scopes.append(s)

    return Identity(
        id=str(identity_id),
        name=str(raw["name"]),
        username=str(raw["username"]),
        token=str(raw["token"]),
        description=raw.get("description"),
        avatar=raw.get("avatar"),
        tags=_as_str_list(raw.get("tags"), f"{where}.tags"),
        workspaces=_as_str_list(raw.get("workspaces"), f"{where}.workspaces"),
        registry_scopes=scopes,
    )


def expand_data_directory(value: str) -> Path:
    s = str(value or "").strip() or "~/.runghost"
    if s.startswith("~"):
        s = str(Path.home()) + s[1:]
    return Path(s)


def config_from_dict(raw: Dict[str, Any], *, config_dir: Optional[Path] = None) -> RunGhostConfig:
    """Validate a merged raw mapping (camelCase keys) into a RunGhostConfig."""
    merged = merge_config_dicts(DEFAULT_CONFIG, raw or {})

    theme = str(merged.get("theme") or "auto")
    if theme not in VALID_THEMES:
        raise ConfigError(f"theme: expected one of {', '.join(VALID_THEMES)}, got {theme!r}")

    cache_raw = merged.get("cache") or {}
    gh_raw = merged.get("github") or {}
    db_raw = merged.get("database") or {}
    reg_raw = merged.get("registry") or {}
    idents_raw = merged.get("identities") or {}
    if not isinstance(idents_raw, dict):
        raise ConfigError("identities: expected a mapping of id -> identity")

    return RunGhostConfig(
        port=_as_int(merged, "port"),
        host=str(merged.get("host") or "localhost"),
        data_directory=expand_data_directory(merged.get("dataDirectory")),
        database=DatabaseSettings(url=db_raw.get("url") or None, auth_token=db_raw.get("authToken") or None),
        cache=CacheTimeouts(
            identity_timeout=_as_int(cache_raw, "identityTimeout", "cache."),
            repository_timeout=_as_int(cache_raw, "repositoryTimeout", "cache."),
            issues_timeout=_as_int(cache_raw, "issuesTimeout", "cache."),
            releases_timeout=_as_int(cache_raw, "releasesTimeout", "cache."),
            branches_timeout=_as_int(cache_raw, "branchesTimeout", "cache."),
            commits_timeout=_as_int(cache_raw, "commitsTimeout", "cache."),
            registry_packages_timeout=_as_int(cache_raw, "registryPackagesTimeout", "cache."),
            workspace_packages_timeout=_as_int(cache_raw, "workspacePackagesTimeout", "cache."),
        ),
        identities={str(k): _identity_from_dict(str(k), v) for k, v in idents_raw.items()},
        theme=theme,
        items_per_page=_as_int(merged, "itemsPerPage"),
        refresh_interval=_as_int(merged, "refreshInterval"),
        github=GitHubSettings(
            user_agent=str(gh_raw.get("userAgent") or "RunGhost/1.0.0"),
            max_retries=_as_int(gh_raw, "maxRetries", "github."),
            retry_delay_ms=_as_int(gh_raw, "retryDelay", "github."),
            api_url=str(gh_raw.get("apiUrl") or "https://api.github.com").rstrip("/"),
        ),
        registry_url=str(reg_raw.get("url") or "https://registry.npmjs.org").rstrip("/"),
        verbose=bool(merged.get("verbose")),
        debug=bool(merged.get("debug")),
        config_dir=config_dir,
    )


def load_config(
    cli_overrides: Optional[Dict[str, Any]] = None,
    *,
    start_dir: Optional[Path] = None,
    require_config_dir: bool = True,
) -> RunGhostConfig:
    """Load defaults -> config files (farthest first) -> CLI overrides.

    Raises ConfigError when no `.runghost/` directory is found and one is required.
    """
    dirs = find_config_dirs(start_dir)
    if not dirs and require_config_dir:
        raise ConfigError("No .runghost configuration found. Please run 'runghost init' to create one.")

    raw: Dict[str, Any] = {}
    for d in reversed(dirs):
        path = d / CONFIG_FILE_NAME
        logger.debug("Reading config %s", path)
        raw = merge_config_dicts(raw, _read_config_file(path))

    overrides = {k: v for k, v in (cli_overrides or {}).items() if v is not None}
    raw = merge_config_dicts(raw, overrides)
    return config_from_dict(raw, config_dir=dirs[0] if dirs else None)


# ======================================================================================
# init / display
# ======================================================================================

SAMPLE_CONFIG: Dict[str, Any] = {
    "port": 4000,
    "host": "localhost",
    "dataDirectory": "~/.runghost",
    "theme": "auto",
    "identities": {
        "example": {
            "name": "Example Identity",
            "username": "example-user",
            "token": "ghp_your_token_here",
            "description": "An example GitHub identity",
            "tags": ["personal", "example"],
            "workspaces": ["~/src"],
            "registryScopes": ["@example-org", "@example-company"],
        },
    },
    "verbose": False,
    "debug": False,
}


def init_config(target_dir: Optional[Path] = None) -> Path:
    """Create `<target_dir>/config.yaml` with a sample identity. Existing files are left alone."""
    d = Path(target_dir) if target_dir else Path.cwd() / CONFIG_DIR_NAME
    d.mkdir(parents=True, exist_ok=True)
    path = d / CONFIG_FILE_NAME
    if path.exists():
        logger.info("Config already exists: %s", path)
        return path
    with open(path, "w") as f:
        yaml.safe_dump(SAMPLE_CONFIG, f, sort_keys=False, default_flow_style=False)
    return path


def _mask(token: Optional[str]) -> Optional[str]:
    if not token:
        return token
    return token[:4] + "****" if len(token) > 8 else "****"


def config_to_display_dict(cfg: RunGhostConfig) -> Dict[str, Any]:
    """camelCase view of the effective config with secrets masked."""
    return {
        "port": cfg.port,
        "host": cfg.host,
        "dataDirectory": str(cfg.data_directory),
        "database": {"url": cfg.database.url, "authToken": _mask(cfg.database.auth_token)},
        "cache": {
            "identityTimeout": cfg.cache.identity_timeout,
            "repositoryTimeout": cfg.cache.repository_timeout,
            "issuesTimeout": cfg.cache.issues_timeout,
            "releasesTimeout": cfg.cache.releases_timeout,
            "branchesTimeout": cfg.cache.branches_timeout,
            "commitsTimeout": cfg.cache.commits_timeout,
            "registryPackagesTimeout": cfg.cache.registry_packages_timeout,
            "workspacePackagesTimeout": cfg.cache.workspace_packages_timeout,
        },
        "identities": {
            k: {**v.to_public_dict(), "token": _mask(v.token)} for k, v in cfg.identities.items()
        },
        "theme": cfg.theme,
        "itemsPerPage": cfg.items_per_page,
        "refreshInterval": cfg.refresh_interval,
        "github": {
            "userAgent": cfg.github.user_agent,
            "maxRetries": cfg.github.max_retries,
            "retryDelay": cfg.github.retry_delay_ms,
            "apiUrl": cfg.github.api_url,
        },
        "registry": {"url": cfg.registry_url},
        "verbose": cfg.verbose,
        "debug": cfg.debug,
        "configDirectory": str(cfg.config_dir) if cfg.config_dir else None,
    }
