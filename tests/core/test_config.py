"""Tests for core configuration classes."""

from __future__ import annotations

import pytest

from offlinesync.core.config import EngineConfig, ServerConfig
from offlinesync.core.types import ConflictPolicy, CreateConflictPolicy


class TestServerConfig:
    """Tests for ServerConfig class."""

    def test_init_basic(self) -> None:
        """Should initialize with required fields."""
        config = ServerConfig(server_url="https://example.com", token="test-token")
        assert config.server_url == "https://example.com"
        assert config.token == "test-token"
        assert config.timeout == 30.0
        assert config.verify_ssl is True

    def test_token_optional(self) -> None:
        """Token defaults to empty (no auth header)."""
        assert ServerConfig(server_url="http://localhost:8000").token == ""

    def test_url_trailing_slash_removed(self) -> None:
        """Should strip trailing slash from server URL."""
        config = ServerConfig(server_url="https://example.com/")
        assert config.server_url == "https://example.com"

    def test_health_url(self) -> None:
        """Health URL is derived from the base URL."""
        config = ServerConfig(server_url="http://localhost:8000/")
        assert config.health_url == "http://localhost:8000/health"

    def test_is_secure(self) -> None:
        """HTTPS URLs are secure, HTTP ones are not."""
        assert ServerConfig(server_url="https://example.com").is_secure is True
        assert ServerConfig(server_url="http://localhost:8000").is_secure is False


class TestEngineConfig:
    """Tests for EngineConfig class."""

    def test_defaults(self) -> None:
        """Defaults match the documented tunables."""
        config = EngineConfig()
        assert config.max_attempts == 5
        assert config.initial_backoff == 1.0
        assert config.max_backoff == 60.0
        assert config.backoff_multiplier == 2.0
        assert config.max_concurrency == 4
        assert config.max_queue_size == 0
        assert config.auto_merge is True
        assert config.create_conflict_policy is CreateConflictPolicy.MANUAL
        assert config.conflict_policy is ConflictPolicy.MANUAL

    def test_policy_coerced_from_string(self) -> None:
        """String policies from config files become enum members."""
        config = EngineConfig(create_conflict_policy="keep-remote")  # type: ignore[arg-type]
        assert config.create_conflict_policy is CreateConflictPolicy.KEEP_REMOTE

    def test_from_dict_ignores_unknown_keys(self) -> None:
        """Unknown keys in the config file are ignored."""
        config = EngineConfig.from_dict({"max_attempts": 3, "colour": "blue"})
        assert config.max_attempts == 3

    @pytest.mark.parametrize(
        "values",
        [
            {"max_attempts": 0},
            {"max_concurrency": 0},
            {"max_queue_size": -1},
            {"initial_backoff": 10.0, "max_backoff": 5.0},
            {"backoff_multiplier": 0.5},
        ],
    )
    def test_invalid_values_rejected(self, values: dict[str, float]) -> None:
        """Inconsistent tunables raise ValueError."""
        with pytest.raises(ValueError):
            EngineConfig(**values)  # type: ignore[arg-type]

    def test_invalid_policy_rejected(self) -> None:
        """Unknown create-conflict policies raise ValueError."""
        with pytest.raises(ValueError):
            EngineConfig.from_dict({"create_conflict_policy": "coin-flip"})

    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            ("client-wins", ConflictPolicy.CLIENT_WINS),
            ("server-wins", ConflictPolicy.SERVER_WINS),
            ("merge", ConflictPolicy.MERGE),
        ],
    )
    def test_conflict_policy_from_dict(self, value: str, expected: ConflictPolicy) -> None:
        """Revision-conflict policies load from config files."""
        config = EngineConfig.from_dict({"conflict_policy": value})
        assert config.conflict_policy is expected

    def test_invalid_conflict_policy_rejected(self) -> None:
        """Unknown revision-conflict policies raise ValueError."""
        with pytest.raises(ValueError):
            EngineConfig(conflict_policy="last-write-wins")  # type: ignore[arg-type]
