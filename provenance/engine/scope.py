"""Per-repository lifetime of the content index and snapshot store."""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING

from provenance.engine.content_index import ContentIndex
from provenance.engine.matcher import LineMatcher
from provenance.engine.snapshot_store import SnapshotStore
from provenance.utils.logging import get_logger

if TYPE_CHECKING:
    from provenance.models.config import EngineConfig

logger = get_logger("engine.scope")


class RepositoryScope:
    """The mutable state the engine keeps for one repository."""

    def __init__(self, repository: str, config: EngineConfig) -> None:
        self.repository = repository
        self.index = ContentIndex(repository, context_window=config.context_window)
        self.store = SnapshotStore(repository, retention_seconds=config.retention_seconds)
        self.matcher = LineMatcher(self.index)
        self.closed = False

    def close(self) -> None:
        """Cancel in-flight work and release cached snapshots."""
        self.store.clear()
        self.closed = True


class ScopeRegistry:
    """Creates repository scopes on first use and tears them down explicitly."""

    def __init__(self, config: EngineConfig) -> None:
        self.config = config
        self._scopes: dict[str, RepositoryScope] = {}
        self._lock = threading.Lock()

    def __enter__(self) -> ScopeRegistry:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close_all()

    def __contains__(self, repository: str) -> bool:
        return repository in self._scopes

    def scope(self, repository: str) -> RepositoryScope:
        """Return the scope of a repository, creating it if needed."""
        with self._lock:
            scope = self._scopes.get(repository)
            if scope is None:
                scope = RepositoryScope(repository, self.config)
                self._scopes[repository] = scope
                logger.info("Opened repository scope", extra={"repository": repository})
            return scope

    def close(self, repository: str) -> None:
        """Tear down one repository's scope; a later `scope()` starts fresh."""
        with self._lock:
            scope = self._scopes.pop(repository, None)
        if scope is not None:
            scope.close()
            logger.info("Closed repository scope", extra={"repository": repository})

    def close_all(self) -> None:
        with self._lock:
            scopes = list(self._scopes.values())
            self._scopes.clear()
        for scope in scopes:
            scope.close()
