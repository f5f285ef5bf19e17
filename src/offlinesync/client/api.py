"""HTTP client for the remote authority.

This module provides:
- RemoteAuthority: Protocol the sync engine talks to
- RemoteClient: httpx-based implementation for the REST layout below
- RemoteRecord: Record value + revision returned by the server
- APIError and subclasses: Error taxonomy used by the engine

REST layout:
    GET    /api/records/{type}/{id}                -> record | 404
    POST   /api/records/{type}                     -> 201 record | 409
    PATCH  /api/records/{type}/{id}                -> record | 409 | 404
    DELETE /api/records/{type}/{id}                -> 204 | 409 | 404
    GET    /api/records/{type}/{id}/changes?since= -> {"fields": [...]} | 404
    GET    /health

Every write carries ``operation_id`` (the idempotency key) and, for update
and delete, ``base_revision``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Protocol
from urllib.parse import quote

import httpx

from offlinesync.core.config import ServerConfig

logger = logging.getLogger(__name__)


class APIError(Exception):
    """Base exception for API errors."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class AuthenticationError(APIError):
    """Authentication failed."""


class NotFoundError(APIError):
    """Resource not found."""


class TransportError(APIError):
    """Network failure, timeout or server-side error. Safe to retry."""


class ValidationRejectedError(APIError):
    """The server refused the payload. Retrying cannot succeed."""


class RevisionMismatchError(APIError):
    """The record changed since the revision the write was based on.

    Attributes:
        current: The record as it is now on the server (None if deleted)
    """

    def __init__(
        self,
        message: str,
        current: RemoteRecord | None = None,
        status_code: int | None = 409,
    ) -> None:
        super().__init__(message, status_code)
        self.current = current


@dataclass
class RemoteRecord:
    """Record as held by the remote authority."""

    entity_type: str
    entity_id: str
    data: dict[str, Any]
    revision: int
    last_operation: str | None = None  # Idempotency key of the last applied write

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RemoteRecord:
        """Create from API response dictionary."""
        return cls(
            entity_type=data["entity_type"],
            entity_id=data["entity_id"],
            data=dict(data.get("data") or {}),
            revision=int(data["revision"]),
            last_operation=data.get("last_operation"),
        )


class RemoteAuthority(Protocol):
    """What the sync engine needs from the remote authority."""

    async def get(self, entity_type: str, entity_id: str) -> RemoteRecord | None: ...

    async def create(
        self,
        entity_type: str,
        entity_id: str,
        payload: dict[str, Any],
        idempotency_key: str,
    ) -> RemoteRecord: ...

    async def update(
        self,
        entity_type: str,
        entity_id: str,
        base_revision: int,
        payload: dict[str, Any],
        idempotency_key: str,
    ) -> RemoteRecord: ...

    async def delete(
        self,
        entity_type: str,
        entity_id: str,
        base_revision: int,
        idempotency_key: str,
    ) -> bool: ...

    async def changed_fields(
        self,
        entity_type: str,
        entity_id: str,
        since_revision: int,
    ) -> set[str] | None: ...

    async def health_check(self) -> bool: ...


def _detail(response: httpx.Response) -> Any:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(body, dict) and "detail" in body:
        return body["detail"]
    return body


def _record_path(entity_type: str, entity_id: str | None = None) -> str:
    path = f"/api/records/{quote(entity_type, safe='')}"
    if entity_id is not None:
        path += f"/{quote(entity_id, safe='')}"
    return path


class RemoteClient:
    """Async HTTP client for the remote authority."""

    def __init__(
        self,
        config: ServerConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            config: Server configuration with URL, token and timeout.
            transport: Optional httpx transport (tests, ASGI apps).
        """
        self._config = config
        headers = {"Authorization": f"Bearer {config.token}"} if config.token else {}
        self._client = httpx.AsyncClient(
            base_url=config.server_url,
            timeout=config.timeout,
            headers=headers,
            verify=config.verify_ssl,
            transport=transport,
        )

    @property
    def config(self) -> ServerConfig:
        return self._config

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> RemoteClient:
        """Context manager entry."""
        return self

    async def __aexit__(self, *args: object) -> None:
        """Context manager exit."""
        await self.close()

    def _handle_response(self, response: httpx.Response) -> httpx.Response:
        """Handle API response and raise appropriate exceptions."""
        status = response.status_code
        if status < 400:
            return response

        detail = _detail(response)
        if status in (401, 403):
            raise AuthenticationError("Invalid or expired token", status)
        if status == 404:
            raise NotFoundError(str(detail), 404)
        if status == 409:
            current = None
            if isinstance(detail, dict):
                if detail.get("current"):
                    current = RemoteRecord.from_dict(detail["current"])
                message = str(detail.get("error", "revision-mismatch"))
            else:
                message = str(detail)
            raise RevisionMismatchError(message, current)
        if status in (400, 422):
            raise ValidationRejectedError(str(detail), status)
        if status >= 500:
            raise TransportError(f"Server error {status}: {detail}", status)
        raise APIError(str(detail), status)

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Send a request, mapping httpx failures onto TransportError."""
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise TransportError(f"{method} {url} timed out") from e
        except httpx.RequestError as e:
            raise TransportError(f"{method} {url} failed: {e}") from e
        return self._handle_response(response)

    # === Health check ===

    async def health_check(self) -> bool:
        """Check if the server is reachable and healthy.

        Returns:
            True if server is healthy.
        """
        try:
            response = await self._client.get("/health")
            return response.status_code == 200
        except httpx.RequestError:
            return False

    # === Record operations ===

    async def get(self, entity_type: str, entity_id: str) -> RemoteRecord | None:
        """Get the current value and revision of a record.

        Returns:
            The record, or None if it does not exist (or was deleted).
        """
        try:
            response = await self._request("GET", _record_path(entity_type, entity_id))
        except NotFoundError:
            return None
        return RemoteRecord.from_dict(response.json())

    async def create(
        self,
        entity_type: str,
        entity_id: str,
        payload: dict[str, Any],
        idempotency_key: str,
    ) -> RemoteRecord:
        """Create a record.

        Raises:
            RevisionMismatchError: If the record already exists.
            ValidationRejectedError: If the payload is refused.
            TransportError: On network failure.
        """
        response = await self._request(
            "POST",
            _record_path(entity_type),
            json={
                "entity_id": entity_id,
                "payload": payload,
                "operation_id": idempotency_key,
            },
        )
        return RemoteRecord.from_dict(response.json())

    async def update(
        self,
        entity_type: str,
        entity_id: str,
        base_revision: int,
        payload: dict[str, Any],
        idempotency_key: str,
    ) -> RemoteRecord:
        """Apply a partial update on top of ``base_revision``.

        Raises:
            RevisionMismatchError: If the record moved past base_revision.
            NotFoundError: If the record does not exist.
            ValidationRejectedError: If the payload is refused.
            TransportError: On network failure.
        """
        response = await self._request(
            "PATCH",
            _record_path(entity_type, entity_id),
            json={
                "base_revision": base_revision,
                "payload": payload,
                "operation_id": idempotency_key,
            },
        )
        return RemoteRecord.from_dict(response.json())

    async def delete(
        self,
        entity_type: str,
        entity_id: str,
        base_revision: int,
        idempotency_key: str,
    ) -> bool:
        """Delete a record if it is still at ``base_revision``.

        Returns:
            True if deleted, False if it was already gone.

        Raises:
            RevisionMismatchError: If the record moved past base_revision.
        """
        try:
            await self._request(
                "DELETE",
                _record_path(entity_type, entity_id),
                json={"base_revision": base_revision, "operation_id": idempotency_key},
            )
        except NotFoundError:
            return False
        return True

    async def changed_fields(
        self,
        entity_type: str,
        entity_id: str,
        since_revision: int,
    ) -> set[str] | None:
        """Fields changed on the server after ``since_revision``.

        Returns:
            Set of field names, or None if the server cannot report a diff.
        """
        try:
            response = await self._request(
                "GET",
                f"{_record_path(entity_type, entity_id)}/changes",
                params={"since": str(since_revision)},
            )
        except NotFoundError:
            return None
        except APIError as e:
            if e.status_code == 501:
                return None
            raise
        return set(response.json().get("fields", []))
