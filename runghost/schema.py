# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0
"""Relational schema and cache kinds for the runghost store.

One table per cached entity, primary key = entity id, child rows keyed
`<parent_id>/<child>` and pointing at their parent through a foreign key.
Nested upstream objects live in `*_data` JSON text columns; booleans are 0/1.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Dict, List


class CacheKind(str, Enum):
    IDENTITY = "identity"
    REPOSITORY = "repository"
    ISSUES = "issues"
    RELEASES = "releases"
    BRANCHES = "branches"
    COMMITS = "commits"
    PULL_REQUESTS = "pull_requests"
    REGISTRY_PACKAGES = "registry_packages"
    WORKSPACE_PACKAGES = "workspace_packages"


# Seconds.
DEFAULT_TTLS: Dict[CacheKind, int] = {
    CacheKind.IDENTITY: 24 * 60 * 60,
    CacheKind.REPOSITORY: 6 * 60 * 60,
    CacheKind.ISSUES: 60 * 60,
    CacheKind.RELEASES: 2 * 60 * 60,
    CacheKind.BRANCHES: 30 * 60,
    CacheKind.COMMITS: 15 * 60,
    CacheKind.PULL_REQUESTS: 60 * 60,
    CacheKind.REGISTRY_PACKAGES: 24 * 60 * 60,
    CacheKind.WORKSPACE_PACKAGES: 60 * 60,
}

IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

# Children before parents: the order DELETE FROM runs in.
TABLES: List[str] = [
    "issues",
    "pull_requests",
    "releases",
    "branches",
    "repositories",
    "identities",
    "registry_packages",
    "workspace_packages",
]


def is_valid_identifier(name: str) -> bool:
    return bool(IDENTIFIER_RE.match(str(name or "")))


SCHEMA_STATEMENTS: List[str] = [
    """
    CREATE TABLE IF NOT EXISTS identities (
      id TEXT PRIMARY KEY,
      name TEXT NOT NULL,
      username TEXT NOT NULL,
      description TEXT,
      avatar TEXT,
      tags TEXT,
      github_user_data TEXT NOT NULL,
      total_issues INTEGER DEFAULT 0,
      total_pull_requests INTEGER DEFAULT 0,
      total_releases INTEGER DEFAULT 0,
      stats_data TEXT NOT NULL,
      last_updated TEXT NOT NULL,
      cached_at INTEGER NOT NULL,
      expires_at INTEGER NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS repositories (
      id TEXT PRIMARY KEY,
      identity_id TEXT NOT NULL,
      github_id INTEGER NOT NULL,
      name TEXT NOT NULL,
      full_name TEXT NOT NULL,
      description TEXT,
      private INTEGER NOT NULL,
      html_url TEXT NOT NULL,
      clone_url TEXT NOT NULL,
      ssh_url TEXT NOT NULL,
      language TEXT,
      size INTEGER NOT NULL,
      stargazers_count INTEGER NOT NULL,
      watchers_count INTEGER NOT NULL,
      forks_count INTEGER NOT NULL,
      open_issues_count INTEGER NOT NULL,
      default_branch TEXT NOT NULL,
      created_at TEXT NOT NULL,
      updated_at TEXT NOT NULL,
      pushed_at TEXT NOT NULL,
      archived INTEGER NOT NULL,
      disabled INTEGER NOT NULL,
      topics TEXT NOT NULL,
      license_data TEXT,
      last_updated TEXT NOT NULL,
      cached_at INTEGER NOT NULL,
      expires_at INTEGER NOT NULL,
      FOREIGN KEY (identity_id) REFERENCES identities(id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS issues (
      id TEXT PRIMARY KEY,
      repository_id TEXT NOT NULL,
      github_id INTEGER NOT NULL,
      number INTEGER NOT NULL,
      title TEXT NOT NULL,
      body TEXT,
      state TEXT NOT NULL CHECK (state IN ('open', 'closed')),
      user_data TEXT NOT NULL,
      labels_data TEXT NOT NULL,
      assignees_data TEXT NOT NULL,
      milestone_data TEXT,
      created_at TEXT NOT NULL,
      updated_at TEXT NOT NULL,
      closed_at TEXT,
      html_url TEXT NOT NULL,
      comments INTEGER NOT NULL,
      cached_at INTEGER NOT NULL,
      expires_at INTEGER NOT NULL,
      FOREIGN KEY (repository_id) REFERENCES repositories(id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS releases (
      id TEXT PRIMARY KEY,
      repository_id TEXT NOT NULL,
      github_id INTEGER NOT NULL,
      tag_name TEXT NOT NULL,
      target_commitish TEXT NOT NULL,
      name TEXT,
      body TEXT,
      draft INTEGER NOT NULL,
      prerelease INTEGER NOT NULL,
      created_at TEXT NOT NULL,
      published_at TEXT,
      author_data TEXT NOT NULL,
      assets_data TEXT NOT NULL,
      html_url TEXT NOT NULL,
      cached_at INTEGER NOT NULL,
      expires_at INTEGER NOT NULL,
      FOREIGN KEY (repository_id) REFERENCES repositories(id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS branches (
      id TEXT PRIMARY KEY,
      repository_id TEXT NOT NULL,
      name TEXT NOT NULL,
      commit_sha TEXT NOT NULL,
      commit_url TEXT NOT NULL,
      protected INTEGER NOT NULL,
      cached_at INTEGER NOT NULL,
      expires_at INTEGER NOT NULL,
      FOREIGN KEY (repository_id) REFERENCES repositories(id)
    )
    """,
    # mergeable is tri-state: NULL = unknown (list endpoint does not report it).
    """
    CREATE TABLE IF NOT EXISTS pull_requests (
      id TEXT PRIMARY KEY,
      repository_id TEXT NOT NULL,
      github_id INTEGER NOT NULL,
      number INTEGER NOT NULL,
      title TEXT NOT NULL,
      body TEXT,
      state TEXT NOT NULL CHECK (state IN ('open', 'closed', 'merged')),
      user_data TEXT NOT NULL,
      head_data TEXT NOT NULL,
      base_data TEXT NOT NULL,
      merged INTEGER NOT NULL,
      mergeable INTEGER,
      mergeable_state TEXT NOT NULL,
      merged_at TEXT,
      created_at TEXT NOT NULL,
      updated_at TEXT NOT NULL,
      closed_at TEXT,
      html_url TEXT NOT NULL,
      comments INTEGER NOT NULL,
      review_comments INTEGER NOT NULL,
      commits INTEGER NOT NULL,
      additions INTEGER NOT NULL,
      deletions INTEGER NOT NULL,
      changed_files INTEGER NOT NULL,
      cached_at INTEGER NOT NULL,
      expires_at INTEGER NOT NULL,
      FOREIGN KEY (repository_id) REFERENCES repositories(id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS registry_packages (
      id TEXT PRIMARY KEY,
      scope TEXT NOT NULL,
      name TEXT NOT NULL,
      version TEXT NOT NULL,
      description TEXT,
      keywords TEXT,
      author_data TEXT,
      maintainers_data TEXT,
      repository_data TEXT,
      homepage TEXT,
      license TEXT,
      published_at TEXT,
      links_data TEXT,
      publisher_data TEXT,
      score_data TEXT,
      search_score REAL,
      cached_at INTEGER NOT NULL,
      expires_at INTEGER NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS workspace_packages (
      id TEXT PRIMARY KEY,
      name TEXT NOT NULL,
      version TEXT NOT NULL,
      description TEXT,
      manifest_path TEXT NOT NULL,
      author_data TEXT,
      license TEXT,
      repository_data TEXT,
      dependencies_data TEXT NOT NULL,
      dev_dependencies_data TEXT NOT NULL,
      internal_dependencies_data TEXT NOT NULL,
      dependents_data TEXT NOT NULL,
      cached_at INTEGER NOT NULL,
      expires_at INTEGER NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_identities_cached_at ON identities(cached_at)",
    "CREATE INDEX IF NOT EXISTS idx_identities_expires_at ON identities(expires_at)",
    "CREATE INDEX IF NOT EXISTS idx_repositories_identity_id ON repositories(identity_id)",
    "CREATE INDEX IF NOT EXISTS idx_repositories_cached_at ON repositories(cached_at)",
    "CREATE INDEX IF NOT EXISTS idx_repositories_expires_at ON repositories(expires_at)",
    "CREATE INDEX IF NOT EXISTS idx_issues_repository_id ON issues(repository_id)",
    "CREATE INDEX IF NOT EXISTS idx_issues_cached_at ON issues(cached_at)",
    "CREATE INDEX IF NOT EXISTS idx_issues_expires_at ON issues(expires_at)",
    "CREATE INDEX IF NOT EXISTS idx_releases_repository_id ON releases(repository_id)",
    "CREATE INDEX IF NOT EXISTS idx_releases_cached_at ON releases(cached_at)",
    "CREATE INDEX IF NOT EXISTS idx_releases_expires_at ON releases(expires_at)",
    "CREATE INDEX IF NOT EXISTS idx_branches_repository_id ON branches(repository_id)",
    "CREATE INDEX IF NOT EXISTS idx_branches_cached_at ON branches(cached_at)",
    "CREATE INDEX IF NOT EXISTS idx_branches_expires_at ON branches(expires_at)",
    "CREATE INDEX IF NOT EXISTS idx_pull_requests_repository_id ON pull_requests(repository_id)",
    "CREATE INDEX IF NOT EXISTS idx_pull_requests_cached_at ON pull_requests(cached_at)",
    "CREATE INDEX IF NOT EXISTS idx_pull_requests_expires_at ON pull_requests(expires_at)",
    "CREATE INDEX IF NOT EXISTS idx_registry_packages_scope ON registry_packages(scope)",
    "CREATE INDEX IF NOT EXISTS idx_registry_packages_cached_at ON registry_packages(cached_at)",
    "CREATE INDEX IF NOT EXISTS idx_registry_packages_expires_at ON registry_packages(expires_at)",
    "CREATE INDEX IF NOT EXISTS idx_workspace_packages_name ON workspace_packages(name)",
    "CREATE INDEX IF NOT EXISTS idx_workspace_packages_cached_at ON workspace_packages(cached_at)",
    "CREATE INDEX IF NOT EXISTS idx_workspace_packages_expires_at ON workspace_packages(expires_at)",
]
