"""Aggregator configuration.

Values come from keyword arguments or from ``ORDA_*`` environment
variables via ``AggregatorConfig.from_env()``.

Environment Variables:
    ORDA_MAX_CONCURRENT_PROVIDERS: Provider crawls running in parallel (default: 8)
    ORDA_MAX_CONCURRENT_FETCHES: Fetches in flight per provider (default: 4)
    ORDA_REQUEST_TIMEOUT: Per-request timeout in seconds (default: 30)
    ORDA_MAX_RETRIES: Attempts per request (default: 3)
    ORDA_BASE_DELAY / ORDA_MAX_DELAY: Backoff bounds in seconds
    ORDA_ACCESS_STRATEGIES: Comma-separated supported access strategies (default: open)
    ORDA_FETCH_DEFINITIONS: Fetch resource definitions (default: false)
    ORDA_TOMBSTONE_GRACE_DAYS: Tombstone retention after removalDate (default: 31)
    ORDA_STORAGE_BACKEND: memory | sqlite (default: memory)
    ORDA_STORAGE_PATH: SQLite file (default: orda_state.db)
"""

from __future__ import annotations

import os
import random
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Literal

from orda.models.constants import (
    DEFAULT_BASE_DELAY,
    DEFAULT_MAX_CONCURRENT_FETCHES,
    DEFAULT_MAX_CONCURRENT_PROVIDERS,
    DEFAULT_MAX_DELAY,
    DEFAULT_MAX_RETRIES,
    DEFAULT_REQUEST_TIMEOUT,
    TOMBSTONE_GRACE_DAYS,
)

StorageBackend = Literal["memory", "sqlite"]

DEFAULT_STORAGE_PATH = "orda_state.db"
_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})


@dataclass
class RetryConfig:
    """Retry and backoff settings for provider fetches.

    Attributes:
        max_retries: Maximum attempts per request (default: 3)
        base_delay: Base delay in seconds for exponential backoff (default: 1.0)
        max_delay: Maximum delay in seconds for a single backoff (default: 60.0)
        jitter: Whether to add random jitter to backoff delays (default: True)
    """

    max_retries: int = DEFAULT_MAX_RETRIES
    base_delay: float = DEFAULT_BASE_DELAY
    max_delay: float = DEFAULT_MAX_DELAY
    jitter: bool = True

    def backoff(self, attempt: int) -> float:
        """Delay before the next attempt: ``base_delay * 2**attempt``, capped, plus jitter.

        Args:
            attempt: Zero-based attempt number (0 = first retry)
        """
        delay = min(self.base_delay * (2**attempt), self.max_delay)
        if self.jitter:
            delay += random.uniform(0, delay * 0.1)  # nosec B311
        return float(delay)


@dataclass
class AggregatorConfig:
    """Settings for the crawl orchestrator, merge engine and graph store."""

    max_concurrent_providers: int = DEFAULT_MAX_CONCURRENT_PROVIDERS
    max_concurrent_fetches: int = DEFAULT_MAX_CONCURRENT_FETCHES
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    retry: RetryConfig = field(default_factory=RetryConfig)
    supported_access_strategies: tuple[str, ...] = ("open",)
    fetch_resource_definitions: bool = False
    tombstone_grace_days: int = TOMBSTONE_GRACE_DAYS
    storage_backend: StorageBackend = "memory"
    storage_path: str = DEFAULT_STORAGE_PATH

    def __post_init__(self) -> None:
        if self.max_concurrent_providers < 1:
            raise ValueError("max_concurrent_providers must be at least 1")
        if self.max_concurrent_fetches < 1:
            raise ValueError("max_concurrent_fetches must be at least 1")
        if self.tombstone_grace_days < 0:
            raise ValueError("tombstone_grace_days must not be negative")
        if self.storage_backend not in ("memory", "sqlite"):
            raise ValueError(
                f"storage_backend must be 'memory' or 'sqlite', got {self.storage_backend!r}"
            )

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> AggregatorConfig:
        """Build a config from ``ORDA_*`` environment variables.

        Raises:
            ValueError: If a variable holds a value of the wrong type
        """
        env = os.environ if environ is None else environ

        def _int(name: str, default: int) -> int:
            return int(env.get(name, default))

        def _float(name: str, default: float) -> float:
            return float(env.get(name, default))

        strategies = env.get("ORDA_ACCESS_STRATEGIES")
        return cls(
            max_concurrent_providers=_int(
                "ORDA_MAX_CONCURRENT_PROVIDERS", DEFAULT_MAX_CONCURRENT_PROVIDERS
            ),
            max_concurrent_fetches=_int(
                "ORDA_MAX_CONCURRENT_FETCHES", DEFAULT_MAX_CONCURRENT_FETCHES
            ),
            request_timeout=_float("ORDA_REQUEST_TIMEOUT", DEFAULT_REQUEST_TIMEOUT),
            retry=RetryConfig(
                max_retries=_int("ORDA_MAX_RETRIES", DEFAULT_MAX_RETRIES),
                base_delay=_float("ORDA_BASE_DELAY", DEFAULT_BASE_DELAY),
                max_delay=_float("ORDA_MAX_DELAY", DEFAULT_MAX_DELAY),
            ),
            supported_access_strategies=(
                tuple(s.strip() for s in strategies.split(",") if s.strip())
                if strategies
                else ("open",)
            ),
            fetch_resource_definitions=(
                env.get("ORDA_FETCH_DEFINITIONS", "").lower() in _TRUE_VALUES
            ),
            tombstone_grace_days=_int("ORDA_TOMBSTONE_GRACE_DAYS", TOMBSTONE_GRACE_DAYS),
            storage_backend=env.get("ORDA_STORAGE_BACKEND", "memory"),  # type: ignore[arg-type]
            storage_path=env.get("ORDA_STORAGE_PATH", DEFAULT_STORAGE_PATH),
        )
