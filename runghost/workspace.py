# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""Local workspace scanning: find `package.json` manifests and parse them."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from .config import Identity, normalize_scope
from .models import DependencyInfo, PackageInfo, WorkspacePackage

logger = logging.getLogger(__name__)

MANIFEST_FILE_NAME = "package.json"
MAX_SCAN_DEPTH = 10
SKIP_DIR_NAMES = frozenset({"node_modules", "dist", "build", "coverage", ".next"})


def _skip_dir(name: str) -> bool:
    return name.startswith(".") or name in SKIP_DIR_NAMES


def scan(root: Union[str, Path], *, max_depth: int = MAX_SCAN_DEPTH) -> List[Path]:
    """Pre-order walk of `root`; return every directory holding a `package.json`.

    Descent continues below a reported directory. Hidden and build/dependency
    directories are never entered.
    """
    root_p = Path(root).expanduser()
    found: List[Path] = []

    def walk(d: Path, depth: int) -> None:
        if depth > max_depth:
            return
        if (d / MANIFEST_FILE_NAME).is_file():
            found.append(d)
        try:
            children = sorted(c for c in d.iterdir() if c.is_dir() and not _skip_dir(c.name))
        except OSError as e:
            logger.warning("Cannot list %s: %s", d, e)
            return
        for child in children:
            walk(child, depth + 1)

    if not root_p.is_dir():
        logger.warning("Workspace root does not exist: %s", root_p)
        return found
    walk(root_p, 0)
    return found


def configured_scopes(identities: Union[Mapping[str, Identity], Iterable[str]]) -> List[str]:
    """Normalized scopes from an identity map, or from a plain iterable of scopes."""
    raw: List[str] = []
    if isinstance(identities, Mapping):
        for ident in identities.values():
            raw.extend(ident.registry_scopes)
    else:
        raw.extend(identities)
    out: List[str] = []
    for s in raw:
        n = normalize_scope(s)
        if n != "@" and n not in out:
            out.append(n)
    return out


def _deps(raw: Any, kind: str) -> List[DependencyInfo]:
    if not isinstance(raw, dict):
        return []
    return [DependencyInfo(name=str(k), version=str(v), type=kind) for k, v in raw.items()]


def parse_manifest(
    directory: Union[str, Path],
    identities: Union[Mapping[str, Identity], Iterable[str]] = (),
) -> Optional[WorkspacePackage]:
    """Parse `<directory>/package.json`. Returns None when missing, unnamed or unparseable."""
    d = Path(directory)
    path = d / MANIFEST_FILE_NAME
    if not path.is_file():
        return None
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        logger.warning("Error parsing %s: %s", path, e)
        return None
    if not isinstance(data, dict):
        logger.warning("Error parsing %s: top level is not an object", path)
        return None

    name = str(data.get("name") or "").strip()
    if not name:
        logger.info("Skipping package with no name at %s", d)
        return None

    repo = data.get("repository")
    if isinstance(repo, dict):
        repo = repo.get("url")
    lic = data.get("license")

    runtime = _deps(data.get("dependencies"), "runtime")
    scopes = configured_scopes(identities)
    internal = [dep for dep in runtime if dep.name.startswith("@") and any(dep.name.startswith(f"{s}/") for s in scopes)]

    return WorkspacePackage(
        package=PackageInfo(
            name=name,
            version=str(data.get("version") or ""),
            description=data.get("description") or "",
            author=data.get("author"),
            license=lic if isinstance(lic, str) else None,
            repository=str(repo) if repo else None,
        ),
        manifest_path=str(d),
        runtime_deps=runtime,
        dev_deps=_deps(data.get("devDependencies"), "dev"),
        internal_deps=internal,
    )


def parse_workspace(
    roots: Iterable[Union[str, Path]],
    identities: Union[Mapping[str, Identity], Iterable[str]] = (),
) -> List[WorkspacePackage]:
    """Scan every root and parse each manifest. The first package with a given name wins."""
    seen: Dict[str, WorkspacePackage] = {}
    scopes = configured_scopes(identities)
    for root in roots:
        for d in scan(root):
            wp = parse_manifest(d, scopes)
            if wp is None:
                continue
            if wp.name in seen:
                logger.info("Skipping duplicate package %s at %s", wp.name, d)
                continue
            seen[wp.name] = wp
    return list(seen.values())
