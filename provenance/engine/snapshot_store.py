"""Cache of per-file survival results keyed by PR, path and repository HEAD."""

from __future__ import annotations

import threading
import time
from concurrent.futures import Future
from dataclasses import dataclass
from typing import TYPE_CHECKING

from provenance.utils.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable, Collection

    from provenance.models.line_detail import PRFileDetail

logger = get_logger("engine.snapshot_store")


class AnalysisCancelled(Exception):
    """Raised inside a computation whose PR was removed while it ran."""

    pass


class CancelToken:
    """Cooperative cancellation flag shared by the computations of one PR."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        """Abort the current computation if cancellation was requested.

        Raises:
            AnalysisCancelled: If the token was cancelled.
        """
        if self._event.is_set():
            raise AnalysisCancelled("Analysis cancelled")


@dataclass(frozen=True)
class SnapshotKey:
    """Identity of a snapshot: which PR, which file, against which repository HEAD."""

    pr_id: str
    file_path: str
    head_sha: str


@dataclass(frozen=True)
class Snapshot:
    """An immutable matcher result.

    `diff_sha` identifies the PR diff the result was computed from (the PR
    head at ingestion time), so a force-push never serves a stale result.
    """

    key: SnapshotKey
    diff_sha: str
    detail: PRFileDetail
    created_at: float


class SnapshotStore:
    """Snapshot cache for one repository.

    At most one computation per (key, diff) runs at a time; concurrent
    requesters wait for the running one. Entries are never modified after
    they are written.
    """

    def __init__(
        self,
        repository: str,
        retention_seconds: float,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.repository = repository
        self.retention_seconds = retention_seconds
        self._clock = clock
        self._entries: dict[tuple[SnapshotKey, str], Snapshot] = {}
        self._in_flight: dict[tuple[SnapshotKey, str], Future[Snapshot]] = {}
        self._tokens: dict[str, CancelToken] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: SnapshotKey, diff_sha: str) -> Snapshot | None:
        """Return the stored snapshot for a key and diff, if any."""
        with self._lock:
            return self._entries.get((key, diff_sha))

    def is_valid(self, pr_id: str, file_path: str, head_sha: str, diff_sha: str) -> bool:
        """Pull-based freshness check: is there a result for this HEAD and diff?"""
        return self.get(SnapshotKey(pr_id, file_path, head_sha), diff_sha) is not None

    def snapshots_for(self, pr_id: str) -> list[Snapshot]:
        """All stored snapshots of a PR, oldest first."""
        with self._lock:
            found = [s for (k, _), s in self._entries.items() if k.pr_id == pr_id]
        return sorted(found, key=lambda s: (s.created_at, s.key.file_path, s.key.head_sha))

    def get_or_compute(
        self,
        key: SnapshotKey,
        diff_sha: str,
        compute: Callable[[CancelToken], PRFileDetail],
    ) -> Snapshot:
        """Return the cached snapshot, or compute and store it.

        Args:
            key: Snapshot identity.
            diff_sha: Signature of the PR diff the caller analyses.
            compute: Produces the file detail; receives the PR's cancel token.

        Returns:
            The snapshot for `key` and `diff_sha`.

        Raises:
            AnalysisCancelled: If the PR was cancelled during the computation.
            Exception: Whatever `compute` raised; nothing is stored in that case.
        """
        slot = (key, diff_sha)

        with self._lock:
            cached = self._entries.get(slot)
            if cached is not None:
                return cached

            running = self._in_flight.get(slot)
            if running is None:
                future: Future[Snapshot] = Future()
                self._in_flight[slot] = future
                token = self._tokens.setdefault(key.pr_id, CancelToken())

        if running is not None:
            logger.debug(
                "Waiting for in-flight computation",
                extra={"pr_id": key.pr_id, "file_path": key.file_path},
            )
            return running.result()

        try:
            detail = compute(token)
            token.raise_if_cancelled()
        except BaseException as e:
            with self._lock:
                self._in_flight.pop(slot, None)
            future.set_exception(e)
            raise

        snapshot = Snapshot(key=key, diff_sha=diff_sha, detail=detail, created_at=self._clock())

        with self._lock:
            self._in_flight.pop(slot, None)
            stored = not token.cancelled
            if stored:
                self._entries[slot] = snapshot

        if not stored:
            error = AnalysisCancelled(f"Analysis of PR {key.pr_id} cancelled")
            future.set_exception(error)
            raise error

        future.set_result(snapshot)
        return snapshot

    def cancel(self, pr_id: str) -> None:
        """Cancel running computations of a PR and drop its snapshots."""
        with self._lock:
            token = self._tokens.pop(pr_id, None)
            if token is not None:
                token.cancel()
            dropped = self._drop_locked(lambda k: k.pr_id == pr_id)

        logger.info(
            "Cancelled PR analysis",
            extra={"repository": self.repository, "pr_id": pr_id, "dropped": dropped},
        )

    def invalidate_pr(self, pr_id: str) -> int:
        """Drop every snapshot of a PR, e.g. after its branch was force-pushed.

        Returns:
            Number of snapshots removed.
        """
        with self._lock:
            return self._drop_locked(lambda k: k.pr_id == pr_id)

    def evict_expired(self, open_pr_ids: Collection[str], now: float | None = None) -> int:
        """Evict snapshots of non-open PRs older than the retention horizon.

        Open PRs are never evicted; evicted entries are recomputed on demand.

        Returns:
            Number of snapshots removed.
        """
        cutoff = (self._clock() if now is None else now) - self.retention_seconds
        with self._lock:
            expired = [
                slot
                for slot, snapshot in self._entries.items()
                if snapshot.created_at < cutoff and slot[0].pr_id not in open_pr_ids
            ]
            for slot in expired:
                del self._entries[slot]

        if expired:
            logger.info(
                "Evicted expired snapshots",
                extra={"repository": self.repository, "count": len(expired)},
            )
        return len(expired)

    def clear(self) -> None:
        """Cancel everything in flight and drop all snapshots."""
        with self._lock:
            for token in self._tokens.values():
                token.cancel()
            self._tokens.clear()
            self._entries.clear()

    def _drop_locked(self, predicate: Callable[[SnapshotKey], bool]) -> int:
        doomed = [slot for slot in self._entries if predicate(slot[0])]
        for slot in doomed:
            del self._entries[slot]
        return len(doomed)
