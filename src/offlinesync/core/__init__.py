"""Core module - Shared configuration and enums."""

from offlinesync.core.config import EngineConfig, ServerConfig
from offlinesync.core.types import (
    ConflictPolicy,
    CreateConflictPolicy,
    OperationKind,
    OperationState,
    Resolution,
    ResolutionChoice,
    SyncState,
)

__all__ = [
    # Config
    "EngineConfig",
    "ServerConfig",
    # Types
    "ConflictPolicy",
    "CreateConflictPolicy",
    "OperationKind",
    "OperationState",
    "Resolution",
    "ResolutionChoice",
    "SyncState",
]
