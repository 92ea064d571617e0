# SPDX-License-Identifier: MIT
# Copyright (c) 2025 couchdoc contributors

"""Document collections assembled from multi-document responses."""

import logging
from dataclasses import dataclass, field
from typing import Any, Generic, Iterable, Iterator, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, ValidationError

from .codec import decode_document
from .document import ID_FIELD, INTERNAL_PREFIX
from .errors import InvalidEncodingError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class DocRow(BaseModel):
    """One row of an ``_all_docs`` style response."""

    model_config = ConfigDict(extra="allow")

    id: Optional[str] = None
    key: Any = None
    value: Any = None
    error: Optional[str] = None
    doc: Any = None


class AllDocsResponse(BaseModel):
    """Envelope of an ``_all_docs`` style response."""

    model_config = ConfigDict(extra="allow")

    total_rows: Optional[int] = None
    offset: Optional[int] = None
    rows: list[DocRow] = []


def parse_all_docs(body: Any) -> AllDocsResponse:
    """Validate a raw ``_all_docs`` body.

    Raises:
        InvalidEncodingError: If the body is not a valid ``_all_docs`` envelope
    """
    try:
        return AllDocsResponse.model_validate(body)
    except ValidationError as e:
        raise InvalidEncodingError(f"Invalid _all_docs response: {e}") from e


def _is_internal(raw_doc: Any) -> bool:
    if not isinstance(raw_doc, dict):
        return False
    doc_id = raw_doc.get(ID_FIELD)
    return isinstance(doc_id, str) and doc_id.startswith(INTERNAL_PREFIX)


@dataclass
class ResultCollection(Generic[T]):
    """Ordered documents returned by a multi-document call.

    Attributes:
        rows: Documents in server order
        total_rows: Number of documents actually kept in ``rows``
        offset: Pagination start reported by the server
        bookmark: Continuation token for Mango queries
    """

    rows: list[T] = field(default_factory=list)
    total_rows: int = 0
    offset: Optional[int] = None
    bookmark: Optional[str] = None

    @classmethod
    def from_response(cls, response: AllDocsResponse, doc_type: Type[T] = dict) -> "ResultCollection[T]":
        """Assemble a collection from an ``_all_docs`` style response.

        Rows carrying an error, rows without a document, design/local
        documents and documents that do not decode into ``doc_type`` are left
        out. ``total_rows`` counts what is kept, not what the server reported.

        Args:
            response: Parsed response envelope
            doc_type: Type each document is decoded into

        Returns:
            ResultCollection of the kept documents
        """
        items: list[T] = []
        for row in response.rows:
            if row.error is not None:
                continue
            if row.doc is None or _is_internal(row.doc):
                continue
            try:
                items.append(decode_document(doc_type, row.doc))
            except InvalidEncodingError as e:
                logger.debug("ResultCollection: dropped row %s: %s", row.id, e)

        return cls(rows=items, total_rows=len(items), offset=response.offset)

    @classmethod
    def from_documents(cls, docs: Iterable[T], bookmark: Optional[str] = None) -> "ResultCollection[T]":
        """Wrap already materialized documents."""
        items = list(docs)
        return cls(rows=items, total_rows=len(items), offset=0, bookmark=bookmark)

    @classmethod
    def from_values(
        cls, values: Iterable[Any], doc_type: Type[T] = dict, bookmark: Optional[str] = None
    ) -> "ResultCollection[T]":
        """Decode raw documents, dropping the ones that do not fit ``doc_type``."""
        items: list[T] = []
        for value in values:
            try:
                items.append(decode_document(doc_type, value))
            except InvalidEncodingError as e:
                logger.debug("ResultCollection: dropped value: %s", e)
        return cls(rows=items, total_rows=len(items), offset=0, bookmark=bookmark)

    def __len__(self) -> int:
        return len(self.rows)

    def __iter__(self) -> Iterator[T]:
        return iter(self.rows)

    def __getitem__(self, index: int) -> T:
        return self.rows[index]
