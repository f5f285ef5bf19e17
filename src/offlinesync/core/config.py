"""Shared configuration classes for offlinesync.

This module defines configuration classes used by the engine, the CLI and
the reference server.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from typing import Any

from offlinesync.core.types import ConflictPolicy, CreateConflictPolicy


@dataclass
class ServerConfig:
    """Configuration for connecting to the remote authority.

    Attributes:
        server_url: Base URL of the server (e.g., "https://records.example.com").
        token: Bearer token sent with every request (empty = no auth header).
        timeout: Per-request timeout in seconds.
        verify_ssl: Whether to verify SSL certificates (default True).
    """

    server_url: str
    token: str = ""
    timeout: float = 30.0
    verify_ssl: bool = True

    def __post_init__(self) -> None:
        """Normalize server URL."""
        self.server_url = self.server_url.rstrip("/")

    @property
    def health_url(self) -> str:
        """URL of the reachability probe endpoint."""
        return f"{self.server_url}/health"

    @property
    def is_secure(self) -> bool:
        """Check if using HTTPS.

        Returns:
            True if server uses HTTPS.
        """
        return self.server_url.startswith("https://")


@dataclass
class EngineConfig:
    """Tunables for the sync engine.

    Attributes:
        max_attempts: Transport failures before an operation is marked failed.
        initial_backoff: Delay before the first retry, in seconds.
        max_backoff: Upper bound on the retry delay, in seconds.
        backoff_multiplier: Growth factor between retries.
        max_concurrency: Entities synced in parallel during a cycle.
        max_queue_size: Maximum queued operations (0 = unlimited).
        auto_sync_interval: Seconds between automatic cycles while online (0 = off).
        probe_interval: Seconds between reachability probes (0 = off).
        auto_merge: Apply field-disjoint updates without raising a conflict.
        create_conflict_policy: Handling of creates that hit an existing entity.
        conflict_policy: Automatic settlement of revision conflicts (manual = ask).
    """

    max_attempts: int = 5
    initial_backoff: float = 1.0
    max_backoff: float = 60.0
    backoff_multiplier: float = 2.0
    max_concurrency: int = 4
    max_queue_size: int = 0
    auto_sync_interval: float = 300.0
    probe_interval: float = 30.0
    auto_merge: bool = True
    create_conflict_policy: CreateConflictPolicy = CreateConflictPolicy.MANUAL
    conflict_policy: ConflictPolicy = ConflictPolicy.MANUAL

    def __post_init__(self) -> None:
        """Coerce and validate values."""
        self.create_conflict_policy = CreateConflictPolicy(self.create_conflict_policy)
        self.conflict_policy = ConflictPolicy(self.conflict_policy)
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        if self.max_queue_size < 0:
            raise ValueError("max_queue_size cannot be negative")
        if self.initial_backoff < 0 or self.max_backoff < self.initial_backoff:
            raise ValueError("backoff bounds are inconsistent")
        if self.backoff_multiplier < 1:
            raise ValueError("backoff_multiplier must be >= 1")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EngineConfig:
        """Build from a config file section, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})
