"""Record API routes with optimistic concurrency."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status

from offlinesync.server.api.deps import get_db, verify_token
from offlinesync.server.database import (
    ConflictError,
    Database,
    InvalidPayloadError,
    RecordNotFoundError,
)
from offlinesync.server.schemas import (
    ChangedFieldsResponse,
    RecordCreateRequest,
    RecordDeleteRequest,
    RecordResponse,
    RecordUpdateRequest,
    record_to_response,
)

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/records",
    tags=["records"],
    dependencies=[Depends(verify_token)],
)


def _conflict(e: ConflictError) -> HTTPException:
    """409 carrying the current record so clients can resolve without a re-read."""
    current: dict[str, Any] | None = None
    if e.current is not None:
        current = record_to_response(e.current).model_dump()
    logger.info("Rejected stale write: %s", e)
    return HTTPException(
        status_code=status.HTTP_409_CONFLICT,
        detail={"error": "revision-mismatch", "message": str(e), "current": current},
    )


@router.get("/{entity_type}/{entity_id}", response_model=RecordResponse)
def get_record(
    entity_type: str,
    entity_id: str,
    db: Database = Depends(get_db),
) -> RecordResponse:
    """Get a record with its current revision."""
    record = db.get_record(entity_type, entity_id)
    if record is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Record not found: {entity_type}/{entity_id}",
        )
    return record_to_response(record)


@router.post(
    "/{entity_type}",
    response_model=RecordResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_record(
    entity_type: str,
    request: RecordCreateRequest,
    db: Database = Depends(get_db),
) -> RecordResponse:
    """Create a record."""
    try:
        record = db.create_record(
            entity_type=entity_type,
            entity_id=request.entity_id,
            payload=request.payload,
            operation_id=request.operation_id,
        )
    except ConflictError as e:
        raise _conflict(e) from e
    except InvalidPayloadError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e),
        ) from e
    return record_to_response(record)


@router.patch("/{entity_type}/{entity_id}", response_model=RecordResponse)
def update_record(
    entity_type: str,
    entity_id: str,
    request: RecordUpdateRequest,
    db: Database = Depends(get_db),
) -> RecordResponse:
    """Apply a partial update with conflict detection."""
    try:
        record = db.update_record(
            entity_type=entity_type,
            entity_id=entity_id,
            base_revision=request.base_revision,
            payload=request.payload,
            operation_id=request.operation_id,
        )
    except ConflictError as e:
        raise _conflict(e) from e
    except RecordNotFoundError as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(e),
        ) from e
    except InvalidPayloadError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e),
        ) from e
    return record_to_response(record)


@router.delete("/{entity_type}/{entity_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_record(
    entity_type: str,
    entity_id: str,
    request: RecordDeleteRequest,
    db: Database = Depends(get_db),
) -> Response:
    """Delete a record with conflict detection."""
    try:
        db.delete_record(
            entity_type=entity_type,
            entity_id=entity_id,
            base_revision=request.base_revision,
            operation_id=request.operation_id,
        )
    except ConflictError as e:
        raise _conflict(e) from e
    except RecordNotFoundError as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(e),
        ) from e
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{entity_type}/{entity_id}/changes", response_model=ChangedFieldsResponse)
def get_changed_fields(
    entity_type: str,
    entity_id: str,
    since: int = Query(..., ge=0, description="Revision the client last saw."),
    db: Database = Depends(get_db),
) -> ChangedFieldsResponse:
    """List fields written after a revision.

    Clients use this to tell whether a stale update only touches fields
    nobody else changed.
    """
    fields = db.changed_fields_since(entity_type, entity_id, since)
    if fields is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Record not found: {entity_type}/{entity_id}",
        )
    return ChangedFieldsResponse(since=since, fields=sorted(fields))
