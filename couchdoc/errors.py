# SPDX-License-Identifier: MIT
# Copyright (c) 2025 couchdoc contributors

"""Exception hierarchy for CouchDB document operations."""

from http import HTTPStatus
from typing import Any, Callable, Optional, TypeVar

T = TypeVar("T")

# Bulk and _find responses report errors by name rather than HTTP status
_ERROR_NAME_STATUS = {
    "bad_request": HTTPStatus.BAD_REQUEST,
    "unauthorized": HTTPStatus.UNAUTHORIZED,
    "forbidden": HTTPStatus.FORBIDDEN,
    "not_found": HTTPStatus.NOT_FOUND,
    "conflict": HTTPStatus.CONFLICT,
    "file_exists": HTTPStatus.PRECONDITION_FAILED,
    "invalid_json": HTTPStatus.BAD_REQUEST,
    "too_large": HTTPStatus.REQUEST_ENTITY_TOO_LARGE,
}


def _as_status(code: int) -> int:
    try:
        return HTTPStatus(code)
    except ValueError:
        return int(code)


def _phrase(code: int) -> str:
    try:
        return HTTPStatus(code).phrase
    except ValueError:
        return f"HTTP {code}"


class CouchError(Exception):
    """Base exception for CouchDB errors."""

    @property
    def status(self) -> Optional[int]:
        """HTTP status carried by the error, if any."""
        return None

    def is_not_found(self) -> bool:
        return self.status == HTTPStatus.NOT_FOUND

    def is_conflict(self) -> bool:
        return self.status == HTTPStatus.CONFLICT


class OperationFailedError(CouchError):
    """Exception raised when CouchDB rejects a request.

    Attributes:
        message: Reason reported by the server
        doc_id: Document identity, when one was reported (bulk writes)
    """

    def __init__(self, message: str, status: int, doc_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self._status = _as_status(status)
        self.doc_id = doc_id

    @property
    def status(self) -> int:
        return self._status

    def __str__(self) -> str:
        if self.doc_id:
            return f"{self.doc_id} -> {int(self._status)}: {self.message}"
        return f"{int(self._status)}: {self.message}"

    @classmethod
    def from_response_body(
        cls, status: int, body: Any, doc_id: Optional[str] = None
    ) -> "OperationFailedError":
        """Build an error from a CouchDB error body ({"error": ..., "reason": ...}).

        Args:
            status: HTTP status of the response
            body: Decoded response body (may be None or any JSON value)
            doc_id: Document identity the request targeted

        Returns:
            OperationFailedError describing the rejection
        """
        message = _phrase(status)
        if isinstance(body, dict):
            message = body.get("reason") or body.get("error") or message
        return cls(str(message), status, doc_id=doc_id)

    @classmethod
    def from_error_name(
        cls, error: str, reason: Optional[str] = None, doc_id: Optional[str] = None
    ) -> "OperationFailedError":
        """Build an error from a named per-item error such as "conflict"."""
        status = _ERROR_NAME_STATUS.get(error, HTTPStatus.INTERNAL_SERVER_ERROR)
        return cls(reason or error, status, doc_id=doc_id)


class TransportError(OperationFailedError):
    """Exception raised when the server could not be reached or timed out."""
    pass


class InvalidEncodingError(CouchError):
    """Exception raised when a body cannot be decoded into the expected shape."""
    pass


class MalformedAddressError(CouchError):
    """Exception raised when a caller-supplied location is not a valid address."""
    pass


class DesignResourceError(CouchError):
    """Exception raised when a view or index resource cannot be materialized."""
    pass


def into_option(func: Callable[..., T], *args: Any, **kwargs: Any) -> Optional[T]:
    """Call ``func`` and turn a not-found failure into ``None``.

    Every other failure propagates unchanged.

    Example:
        >>> doc = into_option(db.get, "maybe-missing")
    """
    try:
        return func(*args, **kwargs)
    except CouchError as e:
        if e.is_not_found():
            return None
        raise
