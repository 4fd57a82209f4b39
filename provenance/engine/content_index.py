"""Per-repository index from normalized line content to the commits that introduced it."""

from __future__ import annotations

import hashlib
import threading
from collections.abc import Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime  # noqa: TC003
from typing import TYPE_CHECKING

from provenance.utils.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator, Sequence

logger = get_logger("engine.content_index")


@dataclass(frozen=True)
class Origin:
    """Who introduced a line, in which commit and through which PR."""

    commit_sha: str
    committed_at: datetime
    pr_id: str | None = None
    pr_number: int | None = None
    pr_url: str | None = None
    author_login: str | None = None
    author_name: str | None = None


def normalize_whitespace(content: str) -> str:
    """Whitespace-insensitive form of a line: runs of whitespace collapse, ends are stripped."""
    return " ".join(content.split())


def fingerprint(content: str, before: Sequence[str] = (), after: Sequence[str] = ()) -> str:
    """Hash a line together with its surrounding context.

    With empty context this is the bare fingerprint of the line alone.
    """
    parts = [normalize_whitespace(c) for c in before]
    parts.append("\x1e" + normalize_whitespace(content))
    parts.extend(normalize_whitespace(c) for c in after)
    return hashlib.sha1("\x1f".join(parts).encode("utf-8")).hexdigest()


def _tie_break_key(origin: Origin) -> tuple[float, float, str]:
    # Most recent first, then lowest PR number, then lowest SHA
    pr_number = origin.pr_number if origin.pr_number is not None else float("inf")
    return (-origin.committed_at.timestamp(), pr_number, origin.commit_sha)


class ContentIndex:
    """Content-addressed origin index for one repository.

    Every introduced line is stored under two fingerprints: one including
    `context_window` neighbouring lines on each side, which separates
    duplicates living in different surroundings, and a bare one used when the
    surroundings have since changed. Writers are serialized; readers see
    immutable tuples and never block.
    """

    def __init__(self, repository: str, context_window: int = 1) -> None:
        self.repository = repository
        self.context_window = context_window
        self._entries: dict[str, tuple[Origin, ...]] = {}
        self._seen: set[tuple[str | None, str, str]] = set()
        self._write_lock = threading.Lock()
        self._file_locks: dict[str, threading.Lock] = {}
        self._file_locks_guard = threading.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def context(
        self,
        lines: Mapping[int, str] | Sequence[str],
        line_number: int,
    ) -> tuple[list[str], list[str]]:
        """Neighbouring lines of a 1-based `line_number`.

        `lines` is either a full file (a sequence, index 0 is line 1) or a
        partial mapping of line number to content; neighbours a mapping does
        not know are left out.
        """
        if isinstance(lines, Mapping):
            get = lines.get
        else:
            file_lines = lines

            def get(number: int) -> str | None:
                return file_lines[number - 1] if 1 <= number <= len(file_lines) else None

        window = range(1, self.context_window + 1)
        before = [c for c in (get(line_number - k) for k in reversed(window)) if c is not None]
        after = [c for c in (get(line_number + k) for k in window) if c is not None]
        return before, after

    def add(
        self,
        content: str,
        origin: Origin,
        before: Sequence[str] = (),
        after: Sequence[str] = (),
    ) -> bool:
        """Record that `origin` introduced `content`.

        Idempotent per (PR, commit, fingerprint).

        Returns:
            True if anything new was recorded.
        """
        if not normalize_whitespace(content):
            return False

        keys = {fingerprint(content), fingerprint(content, before, after)}
        added = False

        with self._write_lock:
            for key in keys:
                marker = (origin.pr_id, origin.commit_sha, key)
                if marker in self._seen:
                    continue
                self._seen.add(marker)
                existing = self._entries.get(key, ())
                self._entries[key] = tuple(
                    sorted((*existing, origin), key=lambda o: (o.committed_at, o.commit_sha))
                )
                added = True

        return added

    def origins(
        self,
        content: str,
        before: Sequence[str] = (),
        after: Sequence[str] = (),
    ) -> tuple[Origin, ...]:
        """All recorded origins for a line, oldest first; contextual match preferred."""
        contextual = self._entries.get(fingerprint(content, before, after), ())
        if contextual:
            return contextual
        return self._entries.get(fingerprint(content), ())

    def lookup(
        self,
        content: str,
        before: Sequence[str] = (),
        after: Sequence[str] = (),
        is_reachable: Callable[[str], bool] | None = None,
        exclude_pr_id: str | None = None,
    ) -> Origin | None:
        """Resolve the most likely origin of a current line.

        Candidates reachable from the current HEAD are preferred when any is;
        among those the most recent commit wins, and equal recency falls back
        to the earliest PR number.

        Args:
            content: The current line.
            before: Lines preceding it in the current file.
            after: Lines following it in the current file.
            is_reachable: Predicate telling whether a commit is in HEAD's ancestry.
            exclude_pr_id: Ignore origins from this PR.

        Returns:
            The chosen origin, or None for baseline content.
        """
        candidates = [o for o in self.origins(content, before, after) if o.pr_id != exclude_pr_id]
        if not candidates and (before or after):
            candidates = [o for o in self.origins(content) if o.pr_id != exclude_pr_id]
        if not candidates:
            return None

        if is_reachable is not None:
            reachable = [o for o in candidates if is_reachable(o.commit_sha)]
            candidates = reachable or candidates

        candidates.sort(key=_tie_break_key)
        best = candidates[0]

        if len(candidates) > 1 and candidates[1].committed_at == best.committed_at:
            logger.debug(
                "Ambiguous attribution resolved by PR number",
                extra={
                    "repository": self.repository,
                    "chosen_pr": best.pr_number,
                    "candidates": len(candidates),
                },
            )

        return best

    @contextmanager
    def file_lock(self, file_path: str) -> Iterator[None]:
        """Serialize lookups for one file while other files proceed."""
        with self._file_locks_guard:
            lock = self._file_locks.setdefault(file_path, threading.Lock())
        with lock:
            yield
