"""Engine configuration model."""

from __future__ import annotations

from dataclasses import dataclass, fields
from typing import Any

from provenance.utils.retry import RetryConfig

# Keys accepted in .provenance.yml, mapped to EngineConfig field names
CONFIG_KEYS = {
    "max_changed_lines": "max_changed_lines",
    "context_window": "context_window",
    "retention_days": "retention_days",
    "report_timeout": "report_timeout_seconds",
    "max_workers": "max_workers",
    "fetch_retries": "fetch_max_retries",
    "fetch_base_delay": "fetch_base_delay",
    "default_branch": "default_branch",
}


@dataclass(frozen=True)
class EngineConfig:
    """Tunables for ingestion, matching, caching and reporting."""

    max_changed_lines: int = 5000
    context_window: int = 1
    retention_days: int = 30
    report_timeout_seconds: float = 10.0
    max_workers: int = 4
    fetch_max_retries: int = 3
    fetch_base_delay: float = 0.5
    default_branch: str = "main"

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if self.max_changed_lines <= 0:
            raise ValueError(
                f"max_changed_lines must be positive, got {self.max_changed_lines}"
            )

        if not 0 <= self.context_window <= 10:
            raise ValueError(f"context_window must be between 0 and 10, got {self.context_window}")

        if self.retention_days <= 0:
            raise ValueError(f"retention_days must be positive, got {self.retention_days}")

        if self.report_timeout_seconds <= 0:
            raise ValueError(
                f"report_timeout_seconds must be positive, got {self.report_timeout_seconds}"
            )

        if not 1 <= self.max_workers <= 64:
            raise ValueError(f"max_workers must be between 1 and 64, got {self.max_workers}")

        if self.fetch_max_retries < 0:
            raise ValueError(
                f"fetch_max_retries must be non-negative, got {self.fetch_max_retries}"
            )

        if not self.default_branch:
            raise ValueError("default_branch cannot be empty")

    @property
    def retention_seconds(self) -> float:
        """Snapshot retention horizon in seconds."""
        return self.retention_days * 86400.0

    @property
    def fetch_retry(self) -> RetryConfig:
        """Retry policy for blob fetches."""
        return RetryConfig(max_retries=self.fetch_max_retries, base_delay=self.fetch_base_delay)

    @classmethod
    def from_repo_config(cls, config: dict[str, Any]) -> EngineConfig:
        """Build a configuration from a parsed .provenance.yml mapping.

        Args:
            config: Configuration dictionary.

        Returns:
            EngineConfig instance.

        Raises:
            ValueError: If a key is unknown or a value is invalid.
        """
        unknown = sorted(set(config) - set(CONFIG_KEYS))
        if unknown:
            raise ValueError(f"Unknown configuration keys: {', '.join(unknown)}")

        defaults = {f.name: f.default for f in fields(cls)}
        values = {CONFIG_KEYS[key]: value for key, value in config.items()}
        return cls(**{**defaults, **values})

    @classmethod
    def default(cls) -> EngineConfig:
        """Create a default configuration."""
        return cls()
