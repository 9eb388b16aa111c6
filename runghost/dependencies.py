# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""
Enhanced dependency graph: local workspace packages joined with registry-published packages.

The graph is `nodes` (workspace packages by name) plus `edges` (internal dependencies between
workspace packages). `dependents` is never stored on a node as an owning reference; it is
derived from `edges` when the graph is rendered or persisted.

Caching:
- workspace packages: reuse the store's rows unless forced or empty; otherwise scan and persist.
- registry packages: same policy, fetched per configured scope through the registry client.
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from .config import Identity, normalize_scope
from .models import RegistryPackage, WorkspacePackage
from .registry import RegistryClient
from .store import CacheStore
from .workspace import parse_workspace

logger = logging.getLogger(__name__)

UNKNOWN_IDENTITY = "unknown"


@dataclass(frozen=True)
class Interdependency:
    source: str
    target: str
    version: str

    def to_dict(self) -> Dict[str, Any]:
        return {"from": self.source, "to": self.target, "version": self.version}


@dataclass(frozen=True)
class CrossDependency:
    source: str
    target: str
    version: str
    to_scope: str

    def to_dict(self) -> Dict[str, Any]:
        return {"from": self.source, "to": self.target, "version": self.version, "toScope": self.to_scope}


@dataclass
class RegistryScope:
    scope: str
    packages: List[RegistryPackage]
    identity_id: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scope": self.scope,
            "packages": [p.to_dict() for p in self.packages],
            "identityId": self.identity_id,
        }


@dataclass
class EnhancedGraph:
    nodes: Dict[str, WorkspacePackage] = field(default_factory=dict)
    edges: List[Interdependency] = field(default_factory=list)
    organizations: Dict[str, List[str]] = field(default_factory=dict)
    registry_scopes: List[RegistryScope] = field(default_factory=list)
    registry_packages: List[RegistryPackage] = field(default_factory=list)
    cross_dependencies: List[CrossDependency] = field(default_factory=list)

    def dependents_of(self, name: str) -> List[str]:
        out: List[str] = []
        for e in self.edges:
            if e.target == name and e.source not in out:
                out.append(e.source)
        return out

    @property
    def repositories(self) -> List[WorkspacePackage]:
        """Workspace packages with `dependents` materialized from the edges."""
        return [dataclasses.replace(wp, dependents=self.dependents_of(name)) for name, wp in self.nodes.items()]

    def counts(self) -> Dict[str, int]:
        return {
            "repositories": len(self.nodes),
            "registryPackages": len(self.registry_packages),
            "registryScopes": len(self.registry_scopes),
            "interdependencies": len(self.edges),
            "crossDependencies": len(self.cross_dependencies),
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "repositories": [wp.to_dict() for wp in self.repositories],
            "organizations": {k: list(v) for k, v in self.organizations.items()},
            "interdependencies": [e.to_dict() for e in self.edges],
            "registryScopes": [s.to_dict() for s in self.registry_scopes],
            "registryPackages": [p.to_dict() for p in self.registry_packages],
            "crossDependencies": [c.to_dict() for c in self.cross_dependencies],
        }


def scope_owners(identities: Mapping[str, Identity]) -> Dict[str, str]:
    """Normalized scope -> identity id. The first identity to list a scope keeps it."""
    out: Dict[str, str] = {}
    for identity_id, ident in identities.items():
        for s in ident.registry_scopes:
            n = normalize_scope(s)
            if n != "@":
                out.setdefault(n, identity_id)
    return out


def _resolve_owner(owners: Mapping[str, str], scope: str) -> str:
    return owners.get(scope) or owners.get(scope.lstrip("@")) or UNKNOWN_IDENTITY


def build_graph(
    packages: Iterable[WorkspacePackage],
    registry_packages: Iterable[RegistryPackage],
    owners: Mapping[str, str],
) -> EnhancedGraph:
    """Pure join step: no I/O."""
    graph = EnhancedGraph()
    for wp in packages:
        if wp.name and wp.name not in graph.nodes:
            graph.nodes[wp.name] = wp

    for name, wp in graph.nodes.items():
        for dep in wp.internal_deps:
            if dep.name in graph.nodes:
                graph.edges.append(Interdependency(source=name, target=dep.name, version=dep.version))
        if name.startswith("@"):
            org = name.split("/")[0]
            bucket = graph.organizations.setdefault(org, [])
            if name not in bucket:
                bucket.append(name)

    pkgs = list(registry_packages)
    graph.registry_packages = pkgs
    for scope in owners:
        graph.registry_scopes.append(
            RegistryScope(
                scope=scope,
                packages=[p for p in pkgs if p.scope == scope],
                identity_id=_resolve_owner(owners, scope),
            )
        )

    by_name = {p.name: p for p in pkgs}
    for name, wp in graph.nodes.items():
        for dep in wp.runtime_deps:
            hit = by_name.get(dep.name)
            if hit is not None:
                graph.cross_dependencies.append(
                    CrossDependency(source=name, target=dep.name, version=dep.version, to_scope=hit.scope)
                )
    return graph


def build_cached(
    root_paths: Iterable[Union[str, Path]],
    identities: Mapping[str, Identity],
    store: CacheStore,
    registry: Optional[RegistryClient] = None,
    *,
    force: bool = False,
) -> EnhancedGraph:
    """Build the enhanced graph, reusing cached workspace and registry packages unless `force`."""
    cached_ws = [] if force else store.get_all_workspace_packages()
    fresh_ws = not cached_ws
    if fresh_ws:
        logger.info("Scanning workspace packages")
        workspace_packages = parse_workspace(root_paths, identities)
    else:
        logger.info("Using %d cached workspace packages", len(cached_ws))
        workspace_packages = cached_ws

    owners = scope_owners(identities)
    cached_reg = [] if force else store.get_all_registry_packages()
    if cached_reg:
        registry_packages = cached_reg
    else:
        registry_packages = []
        if owners and registry is not None:
            logger.info("Fetching registry packages for scopes: %s", ", ".join(owners))
            for scope, pkgs in registry.get_by_scopes(list(owners)).items():
                for p in pkgs:
                    store.save_registry_package(p)
                    registry_packages.append(p)
                logger.info("Cached %d packages for scope %s", len(pkgs), scope)

    graph = build_graph(workspace_packages, registry_packages, owners)

    if fresh_ws:
        for wp in graph.repositories:
            store.save_workspace_package(wp)

    logger.info(
        "Dependency graph: %d packages, %d registry packages, %d internal edges, %d cross edges",
        len(graph.nodes),
        len(graph.registry_packages),
        len(graph.edges),
        len(graph.cross_dependencies),
    )
    return graph


def identity_scope_forms(identity: Identity) -> List[str]:
    out: List[str] = []
    for s in identity.registry_scopes:
        for form in (s, normalize_scope(s), s.lstrip("@")):
            if form and form != "@" and form not in out:
                out.append(form)
    return out


def filter_graph_for_identity(graph: EnhancedGraph, identity: Identity) -> EnhancedGraph:
    """Subgraph owned by one identity (by scope prefix, or manifest path containing its id)."""
    scopes = identity_scope_forms(identity)
    iid = identity.id

    def owned(name: str) -> bool:
        return any(name.startswith(s) for s in scopes)

    nodes = {n: wp for n, wp in graph.nodes.items() if owned(n) or iid in wp.manifest_path}
    out = EnhancedGraph(
        nodes=nodes,
        edges=[e for e in graph.edges if owned(e.source) or owned(e.target) or iid in (e.source, e.target)],
        registry_packages=[
            p for p in graph.registry_packages if owned(p.name) or p.scope in scopes or p.name == iid
        ],
        registry_scopes=[s for s in graph.registry_scopes if s.identity_id == iid],
        cross_dependencies=[
            c for c in graph.cross_dependencies if owned(c.source) or owned(c.target) or iid in (c.source, c.target)
        ],
    )
    for org, names in graph.organizations.items():
        kept = [n for n in names if n in nodes]
        if kept:
            out.organizations[org] = kept
    return out
