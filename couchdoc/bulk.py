# SPDX-License-Identifier: MIT
# Copyright (c) 2025 couchdoc contributors

"""Reconciliation of ``_bulk_docs`` responses with the submitted documents.

CouchDB answers a bulk write with one entry per submitted document, in
submission order. Entries are matched by position, never by identity: a
single submission may legitimately contain the same identity twice.
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional, Sequence

from pydantic import BaseModel, ConfigDict, ValidationError

from .codec import encode_document
from .document import identity_of
from .errors import InvalidEncodingError, OperationFailedError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WriteResult:
    """Identity and revision assigned by a successful write."""

    id: str
    rev: str


class BulkItemResponse(BaseModel):
    """One entry of a ``_bulk_docs`` response."""

    model_config = ConfigDict(extra="allow")

    id: Optional[str] = None
    rev: Optional[str] = None
    ok: Optional[bool] = None
    error: Optional[str] = None
    reason: Optional[str] = None


@dataclass(frozen=True)
class BulkOutcome:
    """Outcome of one document in a bulk write.

    Attributes:
        index: Position of the document in the submitted sequence
        result: Identity and new revision, when the write succeeded
        error: Failure reported for this document, when it did not
    """

    index: int
    result: Optional[WriteResult] = None
    error: Optional[OperationFailedError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def id(self) -> Optional[str]:
        if self.result is not None:
            return self.result.id
        return self.error.doc_id if self.error is not None else None

    def unwrap(self) -> WriteResult:
        """Return the write result or raise the recorded failure."""
        if self.error is not None:
            raise self.error
        return self.result


def prepare_bulk_payload(docs: Sequence[Any]) -> dict[str, Any]:
    """Build the ``_bulk_docs`` request body.

    A document without identity is a creation; its revision is never sent
    because the server mints both on first write.
    """
    wire_docs = []
    for doc in docs:
        has_id = bool(identity_of(doc).get_id())
        wire_docs.append(encode_document(doc, include_rev=has_id))
    return {"docs": wire_docs}


def parse_bulk_response(body: Any) -> list[BulkItemResponse]:
    """Validate a raw ``_bulk_docs`` response body.

    Raises:
        InvalidEncodingError: If the body is not a list of bulk entries
    """
    if not isinstance(body, list):
        raise InvalidEncodingError(
            f"Expected a list from _bulk_docs, got {type(body).__name__}"
        )
    try:
        return [BulkItemResponse.model_validate(item) for item in body]
    except ValidationError as e:
        raise InvalidEncodingError(f"Invalid _bulk_docs entry: {e}") from e


def reconcile_bulk(docs: Sequence[Any], responses: Sequence[BulkItemResponse]) -> list[BulkOutcome]:
    """Merge a bulk write response back into the submitted documents.

    Successful entries write the new revision into their document, and the
    server-assigned identity too when the document had none. Failed entries
    leave their document untouched.

    Args:
        docs: Documents in the order they were submitted
        responses: Server entries in the same order

    Returns:
        One BulkOutcome per submitted document, in submission order

    Raises:
        InvalidEncodingError: If the response length does not match the submission
    """
    if len(docs) != len(responses):
        raise InvalidEncodingError(
            f"_bulk_docs returned {len(responses)} entries for {len(docs)} documents"
        )

    outcomes: list[BulkOutcome] = []
    for index, (doc, response) in enumerate(zip(docs, responses)):
        if response.error is not None:
            error = OperationFailedError.from_error_name(
                response.error, response.reason, doc_id=response.id
            )
            logger.debug("BulkReconciler: item %d failed: %s", index, error)
            outcomes.append(BulkOutcome(index=index, error=error))
            continue

        if not response.id or not response.rev:
            error = OperationFailedError.from_error_name(
                "unknown_error", "bulk entry carries neither a revision nor an error", doc_id=response.id
            )
            outcomes.append(BulkOutcome(index=index, error=error))
            continue

        identity = identity_of(doc)
        if not identity.get_id():
            identity.set_id(response.id)
        identity.set_rev(response.rev)
        outcomes.append(BulkOutcome(index=index, result=WriteResult(id=response.id, rev=response.rev)))

    return outcomes
