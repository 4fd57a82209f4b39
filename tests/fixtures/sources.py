"""In-memory content source for engine tests."""

from __future__ import annotations

import threading

from provenance.ingest.github import ContentSource, ContentUnavailableError, GitHubToolError

REPO = "acme/widgets"
PR_HEAD = "a" * 40
BASE_HEAD = "b" * 40


class InMemorySource(ContentSource):
    """ContentSource backed by dictionaries.

    `files` maps (repository, path, ref) to content; `heads` maps
    (repository, branch) to a SHA. `failures` makes the next N fetches of a
    path raise ContentUnavailableError.
    """

    def __init__(self) -> None:
        self.files: dict[tuple[str, str, str], str] = {}
        self.heads: dict[tuple[str, str], str] = {}
        self.failures: dict[str, int] = {}
        self.fetches: list[tuple[str, str, str]] = []
        self._lock = threading.Lock()

    def put(self, repository: str, path: str, ref: str, content: str) -> None:
        self.files[(repository, path, ref)] = content

    def head_sha(self, repository: str, branch: str) -> str:
        try:
            return self.heads[(repository, branch)]
        except KeyError as e:
            raise GitHubToolError(f"Unknown branch {repository}@{branch}") from e

    def get_file_content(self, repository: str, file_path: str, ref: str) -> str | None:
        with self._lock:
            self.fetches.append((repository, file_path, ref))
            remaining = self.failures.get(file_path, 0)
            if remaining:
                self.failures[file_path] = remaining - 1
                raise ContentUnavailableError(f"Temporary failure fetching {file_path}")
        return self.files.get((repository, file_path, ref))
