"""Pydantic schemas for API request/response models."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from offlinesync.server.database import load_data
from offlinesync.server.models import Record

# === Record schemas ===


class RecordCreateRequest(BaseModel):
    """Request body for record creation."""

    entity_id: str = Field(min_length=1)
    payload: dict[str, Any]
    operation_id: str | None = None  # Idempotency key


class RecordUpdateRequest(BaseModel):
    """Request body for a partial record update."""

    base_revision: int
    payload: dict[str, Any]
    operation_id: str | None = None


class RecordDeleteRequest(BaseModel):
    """Request body for record deletion."""

    base_revision: int
    operation_id: str | None = None


class RecordResponse(BaseModel):
    """Record data in responses."""

    entity_type: str
    entity_id: str
    data: dict[str, Any]
    revision: int
    last_operation: str | None
    created_at: str
    updated_at: str


class ChangedFieldsResponse(BaseModel):
    """Fields written after a given revision."""

    since: int
    fields: list[str]


# === Health schema ===


class HealthResponse(BaseModel):
    """Health check response."""

    status: str


# === Converters ===


def record_to_response(record: Record) -> RecordResponse:
    """Convert Record to response model."""
    return RecordResponse(
        entity_type=record.entity_type,
        entity_id=record.entity_id,
        data=load_data(record),
        revision=record.revision,
        last_operation=record.last_operation,
        created_at=record.created_at.isoformat(),
        updated_at=record.updated_at.isoformat(),
    )
