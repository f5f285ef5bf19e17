"""Field-level helpers for patches and merges.

Records are flat JSON objects; a patch is a partial record whose keys
replace the same keys in the base. Nested objects are replaced whole.
"""

from __future__ import annotations

from typing import Any

# Fields owned by the server that a merge must never take from the local side
SERVER_METADATA_FIELDS = frozenset({"id", "createdAt", "created_at"})


def apply_patch(
    base: dict[str, Any] | None,
    patch: dict[str, Any] | None,
) -> dict[str, Any]:
    """Return ``base`` with ``patch`` applied (neither input is modified)."""
    merged = dict(base or {})
    merged.update(patch or {})
    return merged


def changed_fields(
    before: dict[str, Any] | None,
    after: dict[str, Any] | None,
) -> set[str]:
    """Fields whose value differs between two versions (added and removed count)."""
    before = before or {}
    after = after or {}
    return {
        key
        for key in before.keys() | after.keys()
        if key not in before or key not in after or before[key] != after[key]
    }


def patch_fields(patch: dict[str, Any] | None) -> set[str]:
    """Fields touched by a patch."""
    return set(patch or {})


def default_merge(
    local: dict[str, Any] | None,
    remote: dict[str, Any] | None,
) -> dict[str, Any]:
    """Suggested merge: remote value overlaid with local changes.

    Server metadata (ids, creation timestamps) always comes from the remote
    side. UIs offer this as the starting point of a manual merge.
    """
    remote = remote or {}
    merged = apply_patch(remote, local)
    for key in SERVER_METADATA_FIELDS & remote.keys():
        merged[key] = remote[key]
    return merged
