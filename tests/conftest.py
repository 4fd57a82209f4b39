"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import os
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any
from unittest.mock import MagicMock

import pytest

from provenance.models.commit import Commit
from provenance.models.config import EngineConfig
from provenance.models.pull_request import PullRequest
from provenance.service import ProvenanceService
from tests.fixtures.sources import BASE_HEAD, PR_HEAD, REPO, InMemorySource
from tests.fixtures.webhook_payloads import create_ping_payload, create_pr_payload

if TYPE_CHECKING:
    from collections.abc import Generator


@pytest.fixture(autouse=True)
def reset_env() -> Generator[None]:
    """Reset environment variables after each test."""
    original_env = os.environ.copy()
    yield
    os.environ.clear()
    os.environ.update(original_env)


@pytest.fixture
def mock_env() -> dict[str, str]:
    """Standard environment variables for testing."""
    return {
        "GITHUB_TOKEN": "ghp_test_token",
        "LOG_LEVEL": "DEBUG",
    }


@pytest.fixture
def set_mock_env(mock_env: dict[str, str]) -> Generator[None]:
    """Set mock environment variables for a test."""
    for key, value in mock_env.items():
        os.environ[key] = value
    yield


@pytest.fixture
def sample_pr_payload() -> dict[str, Any]:
    """Sample GitHub PR webhook payload."""
    return create_pr_payload(repository=REPO, pr_number=7, author="alice")


@pytest.fixture
def sample_ping_payload() -> dict[str, Any]:
    """Sample GitHub ping webhook payload."""
    return create_ping_payload()


@pytest.fixture
def mock_github_client() -> MagicMock:
    """Mock GitHub client."""
    client = MagicMock()
    client.get_repo.return_value = MagicMock()
    return client


@pytest.fixture
def engine_config() -> EngineConfig:
    """Engine configuration with instant retries."""
    return EngineConfig(fetch_max_retries=2, fetch_base_delay=0.0, max_workers=2)


@pytest.fixture
def source() -> InMemorySource:
    """Empty in-memory content source with a known main branch."""
    src = InMemorySource()
    src.heads[(REPO, "main")] = BASE_HEAD
    return src


@pytest.fixture
def service(source: InMemorySource, engine_config: EngineConfig) -> Generator[ProvenanceService]:
    """Provenance service over the in-memory source."""
    svc = ProvenanceService(source, config=engine_config, sleep=lambda _: None)
    yield svc
    svc.close()


@pytest.fixture
def pull_request() -> PullRequest:
    """An open PR by alice."""
    return PullRequest(
        id="1001",
        pr_number=7,
        url=f"https://github.com/{REPO}/pull/7",
        title="Add increment",
        author="alice",
        author_full_name="Alice Liddell",
        repo_full_name=REPO,
        head_sha=PR_HEAD,
        created_at=datetime(2024, 3, 1, 10, 0, tzinfo=UTC),
    )


@pytest.fixture
def pr_commit() -> Commit:
    """The single commit of the sample PR."""
    return Commit(
        sha=PR_HEAD,
        committed_at=datetime(2024, 3, 1, 11, 0, tzinfo=UTC),
        author_login="alice",
        author_name="alice-git",
    )
