"""GitHub access for pull request metadata, commits and file contents."""

from __future__ import annotations

import base64
import binascii
import os
from abc import ABC, abstractmethod
from datetime import UTC
from pathlib import Path

from github import Auth, Github, GithubException, GithubIntegration

from provenance.models.commit import Commit
from provenance.models.file_diff import FileDiff, FileStatus
from provenance.models.pull_request import PRState, PullRequest
from provenance.utils.logging import get_logger

logger = get_logger("ingest.github")


class GitHubToolError(Exception):
    """Error raised by GitHub access helpers."""

    pass


class ContentUnavailableError(GitHubToolError):
    """A file blob could not be fetched (transient or permanent)."""

    pass


def _get_private_key() -> str:
    """Get the GitHub App private key from environment.

    Raises:
        GitHubToolError: If private key is not configured.
    """
    key = os.environ.get("GITHUB_PRIVATE_KEY")
    if key:
        return key

    key_path = os.environ.get("GITHUB_PRIVATE_KEY_PATH")
    if key_path:
        try:
            return Path(key_path).read_text()
        except OSError as e:
            raise GitHubToolError(f"Failed to read private key from {key_path}: {e}") from e

    raise GitHubToolError(
        "GitHub private key not configured. "
        "Set GITHUB_PRIVATE_KEY or GITHUB_PRIVATE_KEY_PATH environment variable."
    )


def create_github_client(installation_id: int | None = None) -> Github:
    """Create an authenticated GitHub client.

    A `GITHUB_TOKEN` is used when set; otherwise the client authenticates as
    a GitHub App installation (`GITHUB_APP_ID` plus private key).

    Args:
        installation_id: The GitHub App installation ID, for App auth.

    Returns:
        Authenticated Github client.

    Raises:
        GitHubToolError: If no usable credentials are configured.
    """
    token = os.environ.get("GITHUB_TOKEN")
    if token:
        return Github(auth=Auth.Token(token))

    app_id = os.environ.get("GITHUB_APP_ID")
    if not app_id:
        raise GitHubToolError("Neither GITHUB_TOKEN nor GITHUB_APP_ID environment variable set")

    if installation_id is None:
        raise GitHubToolError("installation_id is required for GitHub App authentication")

    private_key = _get_private_key()
    try:
        auth = Auth.AppAuth(int(app_id), private_key)
        return GithubIntegration(auth=auth).get_github_for_installation(installation_id)
    except (GithubException, ValueError) as e:
        raise GitHubToolError(f"Failed to create GitHub client: {e}") from e


class ContentSource(ABC):
    """Where the engine reads the current state of a repository from."""

    @abstractmethod
    def head_sha(self, repository: str, branch: str) -> str:
        """SHA of the tip of `branch`."""

    @abstractmethod
    def get_file_content(self, repository: str, file_path: str, ref: str) -> str | None:
        """Text of `file_path` at `ref`, or None when the file does not exist there.

        Raises:
            ContentUnavailableError: If the content could not be fetched.
        """


class GitHubSource(ContentSource):
    """ContentSource and ingestion feed backed by the GitHub REST API."""

    def __init__(self, client: Github) -> None:
        self.client = client

    def head_sha(self, repository: str, branch: str) -> str:
        try:
            return self.client.get_repo(repository).get_branch(branch).commit.sha
        except GithubException as e:
            raise GitHubToolError(f"Failed to resolve {repository}@{branch}: {e}") from e

    def get_file_content(self, repository: str, file_path: str, ref: str) -> str | None:
        try:
            repo = self.client.get_repo(repository)
            content = repo.get_contents(file_path, ref=ref)
        except GithubException as e:
            if e.status == 404:
                return None
            raise ContentUnavailableError(
                f"Failed to fetch '{file_path}' at '{ref}': {e}"
            ) from e

        if isinstance(content, list):
            raise GitHubToolError(f"'{file_path}' is a directory, not a file")

        encoding, data = content.encoding, content.content
        if encoding == "none":
            # Files over 1 MB come without inline content; read the blob instead
            try:
                blob = repo.get_git_blob(content.sha)
            except GithubException as e:
                raise ContentUnavailableError(
                    f"Failed to fetch blob of '{file_path}' at '{ref}': {e}"
                ) from e
            encoding, data = blob.encoding, blob.content

        if encoding != "base64":
            return data

        try:
            return base64.b64decode(data).decode("utf-8", errors="replace")
        except (binascii.Error, ValueError) as e:
            raise ContentUnavailableError(f"Undecodable content for '{file_path}': {e}") from e

    def fetch_pull_request(self, repository: str, pr_number: int) -> PullRequest:
        """Fetch a pull request's metadata.

        Raises:
            GitHubToolError: If the PR cannot be fetched.
        """
        try:
            pr = self.client.get_repo(repository).get_pull(pr_number)
        except GithubException as e:
            if e.status == 404:
                raise GitHubToolError(f"PR #{pr_number} not found in {repository}") from e
            raise GitHubToolError(f"GitHub API error: {e}") from e

        if pr.merged:
            state = PRState.MERGED
        elif pr.state == "closed":
            state = PRState.CLOSED
        else:
            state = PRState.OPEN

        return PullRequest(
            id=str(pr.id),
            pr_number=pr.number,
            url=pr.html_url,
            title=pr.title,
            author=pr.user.login,
            author_full_name=pr.user.name,
            repo_full_name=repository,
            state=state,
            merged=pr.merged,
            head_sha=pr.head.sha,
            base_branch=pr.base.ref,
            additions=pr.additions,
            deletions=pr.deletions,
            changed_files=pr.changed_files,
            created_at=pr.created_at.astimezone(UTC),
        )

    def list_pr_files(self, repository: str, pr_number: int) -> list[FileDiff]:
        """List all files changed in a pull request.

        Raises:
            GitHubToolError: If files cannot be fetched.
        """
        try:
            pr = self.client.get_repo(repository).get_pull(pr_number)
            files = [
                FileDiff(
                    filename=f.filename,
                    status=FileStatus.from_github(f.status),
                    additions=f.additions,
                    deletions=f.deletions,
                    patch=f.patch,
                    previous_filename=f.previous_filename,
                    sha=f.sha,
                    blob_url=f.blob_url,
                )
                for f in pr.get_files()
            ]
        except GithubException as e:
            raise GitHubToolError(f"Failed to list PR files: {e}") from e

        logger.info(
            "Listed PR files",
            extra={"pr_number": pr_number, "repository": repository, "file_count": len(files)},
        )
        return files

    def list_pr_commits(self, repository: str, pr_number: int) -> list[Commit]:
        """List a pull request's commits in order, with their per-file patches.

        Raises:
            GitHubToolError: If commits cannot be fetched.
        """
        try:
            pr = self.client.get_repo(repository).get_pull(pr_number)
            commits = []
            for c in pr.get_commits():
                git_author = c.commit.author
                commits.append(
                    Commit(
                        sha=c.sha,
                        committed_at=git_author.date.astimezone(UTC),
                        author_login=c.author.login if c.author else None,
                        author_name=git_author.name,
                        patches={f.filename: f.patch for f in c.files},
                    )
                )
        except GithubException as e:
            raise GitHubToolError(f"Failed to list PR commits: {e}") from e

        logger.info(
            "Listed PR commits",
            extra={"pr_number": pr_number, "repository": repository, "commit_count": len(commits)},
        )
        return commits
