# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""Process-wide service handles (store, audit sink, upstream clients), created lazily."""

from __future__ import annotations

import logging
from pathlib import Path
from threading import Lock
from typing import List, Optional

import requests

from .audit import AuditLogger
from .config import RunGhostConfig
from .dependencies import EnhancedGraph, build_cached
from .github_client import GitHubAggregator
from .registry import RegistryClient
from .store import CacheStore

logger = logging.getLogger(__name__)


class Services:
    """Owns one store, one audit sink and the clients built on top of them."""

    def __init__(
        self,
        config: RunGhostConfig,
        *,
        session: Optional[requests.Session] = None,
        start_audit_timer: bool = True,
    ):
        self.config = config
        self.session = session
        self._start_audit_timer = start_audit_timer
        self._mu = Lock()
        self._store: Optional[CacheStore] = None
        self._audit: Optional[AuditLogger] = None
        self._github: Optional[GitHubAggregator] = None
        self._registry: Optional[RegistryClient] = None

    @property
    def data_directory(self) -> Path:
        return Path(self.config.data_directory)

    @property
    def store(self) -> CacheStore:
        with self._mu:
            if self._store is None:
                self._store = CacheStore(
                    self.data_directory, database=self.config.database, timeouts=self.config.cache
                )
            return self._store

    @property
    def audit(self) -> AuditLogger:
        with self._mu:
            if self._audit is None:
                self._audit = AuditLogger(self.data_directory, start_timer=self._start_audit_timer)
            return self._audit

    @property
    def github(self) -> GitHubAggregator:
        store, audit = self.store, self.audit
        with self._mu:
            if self._github is None:
                self._github = GitHubAggregator(self.config, store, audit, session=self.session)
            return self._github

    @property
    def registry(self) -> RegistryClient:
        audit = self.audit
        with self._mu:
            if self._registry is None:
                self._registry = RegistryClient(self.config.registry_url, audit=audit, session=self.session)
            return self._registry

    def workspace_roots(self) -> List[Path]:
        return self.config.workspace_roots() or [Path.cwd()]

    def dependency_graph(self, *, force: bool = False) -> EnhancedGraph:
        return build_cached(self.workspace_roots(), self.config.identities, self.store, self.registry, force=force)

    def close(self) -> None:
        """Flush the audit buffer and release the store handle."""
        with self._mu:
            audit, store = self._audit, self._store
            self._audit = None
            self._store = None
            self._github = None
            self._registry = None
        if audit is not None:
            audit.close()
        if store is not None:
            store.close()


_services: Optional[Services] = None
_services_mu = Lock()


def get_services(config: Optional[RunGhostConfig] = None) -> Services:
    """Return the process-wide Services, creating it from `config` on first use."""
    global _services
    with _services_mu:
        if _services is None:
            if config is None:
                raise RuntimeError("services not initialized; pass a config on first use")
            _services = Services(config)
        return _services


def reset_services() -> None:
    """Close and forget the process-wide Services (used on shutdown and by tests)."""
    global _services
    with _services_mu:
        svc, _services = _services, None
    if svc is not None:
        svc.close()
