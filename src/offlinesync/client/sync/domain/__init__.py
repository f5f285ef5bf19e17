"""Domain modules for sync business rules.

This package centralizes business logic for the sync system:
- detection: Conflict detection decision table
- merge: Patch application and field diffs

Architecture:
    domain/ contains pure business logic without I/O.
    Implementation details (queue updates, API calls) stay in engine.py.
"""

from offlinesync.client.sync.domain.detection import (
    ConflictDetector,
    Detection,
    DetectionOutcome,
)
from offlinesync.client.sync.domain.merge import (
    SERVER_METADATA_FIELDS,
    apply_patch,
    changed_fields,
    default_merge,
    patch_fields,
)

__all__ = [
    # detection
    "ConflictDetector",
    "Detection",
    "DetectionOutcome",
    # merge
    "SERVER_METADATA_FIELDS",
    "apply_patch",
    "changed_fields",
    "default_merge",
    "patch_fields",
]
