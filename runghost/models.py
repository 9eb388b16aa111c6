# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0
"""
Typed records shared by the store, the registry client and the dependency graph.

GitHub payloads (users, repositories, issues, ...) stay plain dicts shaped like the
REST API; only the records we build ourselves get dataclasses here.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Generic, List, Optional, TypeVar

T = TypeVar("T")


@dataclass
class APIResponse(Generic[T]):
    """Result envelope: failures are data, not exceptions."""

    success: bool
    data: Optional[T] = None
    error: Optional[str] = None
    rate_limit_remaining: Optional[int] = None
    rate_limit_reset: Optional[str] = None

    @classmethod
    def ok(cls, data: T) -> "APIResponse[T]":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str, *, rate_limit_remaining: Optional[int] = None, rate_limit_reset: Optional[str] = None) -> "APIResponse[T]":
        return cls(
            success=False,
            error=error,
            rate_limit_remaining=rate_limit_remaining,
            rate_limit_reset=rate_limit_reset,
        )

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"success": self.success}
        if self.data is not None:
            out["data"] = self.data
        if self.error is not None:
            out["error"] = self.error
        if self.rate_limit_remaining is not None:
            out["rateLimitRemaining"] = self.rate_limit_remaining
        if self.rate_limit_reset is not None:
            out["rateLimitReset"] = self.rate_limit_reset
        return out


@dataclass(frozen=True)
class DependencyInfo:
    name: str
    version: str
    type: str = "runtime"  # "runtime" | "dev"

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "version": self.version, "type": self.type}

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "DependencyInfo":
        return cls(name=str(d["name"]), version=str(d.get("version") or ""), type=str(d.get("type") or "runtime"))


@dataclass
class PackageInfo:
    name: str
    version: str
    description: Optional[str] = None
    author: Any = None
    license: Optional[str] = None
    repository: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "version": self.version,
            "description": self.description,
            "author": self.author,
            "license": self.license,
            "repository": self.repository,
        }


@dataclass
class WorkspacePackage:
    """A parsed `package.json` found in the local workspace."""

    package: PackageInfo
    manifest_path: str
    runtime_deps: List[DependencyInfo] = field(default_factory=list)
    dev_deps: List[DependencyInfo] = field(default_factory=list)
    internal_deps: List[DependencyInfo] = field(default_factory=list)
    dependents: List[str] = field(default_factory=list)

    @property
    def name(self) -> str:
        return self.package.name

    def to_dict(self) -> Dict[str, Any]:
        return {
            "package": self.package.to_dict(),
            "dependencies": [d.to_dict() for d in self.runtime_deps],
            "devDependencies": [d.to_dict() for d in self.dev_deps],
            "internalDependencies": [d.to_dict() for d in self.internal_deps],
            "dependents": list(self.dependents),
            "manifestPath": self.manifest_path,
        }


@dataclass
class RegistryPackage:
    scope: str
    name: str
    version: str
    description: Optional[str] = None
    keywords: List[str] = field(default_factory=list)
    author: Optional[Dict[str, Any]] = None
    maintainers: List[Dict[str, Any]] = field(default_factory=list)
    repository: Optional[Dict[str, Any]] = None
    homepage: Optional[str] = None
    license: Optional[str] = None
    published_at: Optional[str] = None
    links: Optional[Dict[str, Any]] = None
    publisher: Optional[Dict[str, Any]] = None
    score: Optional[Dict[str, Any]] = None
    # Captured from search results; not used for ranking yet.
    search_score: Optional[float] = None

    @property
    def id(self) -> str:
        return f"{self.scope}/{self.name}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scope": self.scope,
            "name": self.name,
            "version": self.version,
            "description": self.description,
            "keywords": list(self.keywords),
            "author": self.author,
            "maintainers": list(self.maintainers),
            "repository": self.repository,
            "homepage": self.homepage,
            "license": self.license,
            "publishedAt": self.published_at,
            "links": self.links,
            "publisher": self.publisher,
            "score": self.score,
            "searchScore": self.search_score,
        }
