# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""One-shot import of the legacy `<dataDir>/cache.json` snapshot into the cache store.

Snapshot shape:
  {
    "identities":   {"<id>":        {"data": <IdentityData>,     ...}},
    "repositories": {"<id>/<repo>": {"data": <RepositoryDetail>, ...}}
  }
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from .exceptions import RunGhostError
from .github_client import map_pull_request
from .store import CacheStore

logger = logging.getLogger(__name__)

LEGACY_CACHE_FILE_NAME = "cache.json"
NOT_NEEDED_MESSAGE = "Migration not needed. Database already has data or no old cache file found."


@dataclass
class MigrationResult:
    success: bool
    message: str
    identities_migrated: int = 0
    repositories_migrated: int = 0
    errors: List[str] = field(default_factory=list)
    backup_path: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "success": self.success,
            "message": self.message,
            "identitiesMigrated": self.identities_migrated,
            "repositoriesMigrated": self.repositories_migrated,
        }
        if self.errors:
            out["errors"] = list(self.errors)
        if self.backup_path:
            out["backupPath"] = self.backup_path
        return out


def legacy_cache_path(data_directory: Path) -> Path:
    return Path(data_directory) / LEGACY_CACHE_FILE_NAME


def needs_migration(data_directory: Path, store: CacheStore) -> bool:
    if not legacy_cache_path(data_directory).is_file():
        return False
    status = store.status()
    return status["identities"] == 0 and status["repositories"] == 0


def _entry_data(entry: Any) -> Dict[str, Any]:
    if not isinstance(entry, dict) or not isinstance(entry.get("data"), dict):
        raise ValueError("entry has no 'data' object")
    return entry["data"]


def run_migration(
    data_directory: Path,
    store: CacheStore,
    *,
    backup: bool = True,
    delete: bool = False,
) -> MigrationResult:
    """Import the legacy snapshot once, then back it up (default) or delete it.

    Per-entity failures are collected into `errors` and do not stop the run.
    """
    path = legacy_cache_path(data_directory)
    try:
        if not needs_migration(data_directory, store):
            return MigrationResult(success=True, message=NOT_NEEDED_MESSAGE)
        with open(path, "r", encoding="utf-8") as f:
            snapshot = json.load(f)
    except (OSError, ValueError, RunGhostError) as e:
        return MigrationResult(success=False, message=f"Migration failed: {e}", errors=[str(e)])

    errors: List[str] = []
    identities_migrated = 0
    repositories_migrated = 0

    for identity_id, entry in (snapshot.get("identities") or {}).items():
        try:
            data = _entry_data(entry)
            store.save_identity(identity_id, data)
            for repo in data.get("repositories") or []:
                store.save_repository(f"{identity_id}/{repo['name']}", identity_id, repo)
                repositories_migrated += 1
            identities_migrated += 1
        except (KeyError, TypeError, ValueError, RunGhostError) as e:
            errors.append(f"Failed to migrate identity {identity_id}: {e}")

    for repo_key, entry in (snapshot.get("repositories") or {}).items():
        try:
            detail = _entry_data(entry)
            identity_id, _, repo_name = str(repo_key).partition("/")
            repo_id = f"{identity_id}/{repo_name}"
            if store.get_repository(repo_id) is None:
                store.save_repository(repo_id, identity_id, detail["repository"])
            for issue in detail.get("issues") or []:
                store.save_issue(f"{repo_id}/{issue['number']}", repo_id, issue)
            for pr in detail.get("pullRequests") or []:
                store.save_pull_request(f"{repo_id}/{pr['number']}", repo_id, map_pull_request(pr))
            for release in detail.get("releases") or []:
                store.save_release(f"{repo_id}/{release['tag_name']}", repo_id, release)
            for branch in detail.get("branches") or []:
                store.save_branch(f"{repo_id}/{branch['name']}", repo_id, branch)
        except (KeyError, TypeError, ValueError, RunGhostError) as e:
            errors.append(f"Failed to migrate repository {repo_key}: {e}")

    backup_path: Optional[str] = None
    try:
        if backup:
            dst = Path(f"{path}.backup")
            os.replace(path, dst)
            backup_path = str(dst)
            logger.info("Old cache file backed up to: %s", dst)
        elif delete:
            path.unlink()
            logger.info("Old cache file deleted")
    except OSError as e:
        errors.append(f"Failed to handle old cache file: {e}")

    message = (
        f"Migration completed successfully! Migrated {identities_migrated} identities "
        f"and {repositories_migrated} repositories."
    )
    if errors:
        message += f" However, {len(errors)} errors occurred during migration."
    return MigrationResult(
        success=True,
        message=message,
        identities_migrated=identities_migrated,
        repositories_migrated=repositories_migrated,
        errors=errors,
        backup_path=backup_path,
    )
