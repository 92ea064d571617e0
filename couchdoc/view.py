# SPDX-License-Identifier: MIT
# Copyright (c) 2025 couchdoc contributors

"""View query parameters and decoding of view responses.

View rows are decoded against three caller-chosen types: one for keys, one
for values and one for the documents embedded by ``include_docs``. Reduce
functions and ``emit(key, null)`` produce rows whose value is null or absent;
those decode into ``None`` and therefore only fit value types accepting it
(``Any``, ``Optional[...]``).
"""

import json
from dataclasses import dataclass, field
from typing import Any, Generic, Iterator, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, ValidationError

from .codec import decode_document, decode_value
from .errors import InvalidEncodingError

K = TypeVar("K")
V = TypeVar("V")
D = TypeVar("D")

# Options CouchDB expects JSON-encoded in the query string
_JSON_OPTIONS = ("key", "startkey", "endkey", "start_key", "end_key")


class QueryParams(BaseModel):
    """Options for ``_all_docs`` and view queries.

    ``None`` means "let the server decide". ``keys`` is sent in a POST body,
    everything else in the query string.
    """

    model_config = ConfigDict(extra="forbid")

    key: Any = None
    keys: Optional[list[Any]] = None
    startkey: Any = None
    endkey: Any = None
    startkey_docid: Optional[str] = None
    endkey_docid: Optional[str] = None
    inclusive_end: Optional[bool] = None
    descending: Optional[bool] = None
    skip: Optional[int] = None
    limit: Optional[int] = None
    include_docs: Optional[bool] = None
    conflicts: Optional[bool] = None
    reduce: Optional[bool] = None
    group: Optional[bool] = None
    group_level: Optional[int] = None
    sorted: Optional[bool] = None
    stable: Optional[bool] = None
    update: Optional[str] = None
    update_seq: Optional[bool] = None

    @classmethod
    def from_keys(cls, keys: list[Any], **kwargs: Any) -> "QueryParams":
        return cls(keys=list(keys), **kwargs)

    def to_query(self) -> dict[str, str]:
        """Render every set option except ``keys`` as query string parameters."""
        params: dict[str, str] = {}
        for name, value in self.model_dump(exclude_none=True, exclude={"keys"}).items():
            if name in _JSON_OPTIONS or not isinstance(value, str):
                params[name] = json.dumps(value)
            else:
                params[name] = value
        return params

    def to_body(self) -> Optional[dict[str, Any]]:
        """Request body for the query, or None when a GET suffices."""
        if self.keys is None:
            return None
        return {"keys": self.keys}


class ViewResponse(BaseModel):
    """Envelope of a view response; rows stay raw until decoded."""

    model_config = ConfigDict(extra="allow")

    total_rows: Optional[int] = None
    offset: Optional[int] = None
    rows: list[dict[str, Any]] = []


@dataclass
class QueryRow(Generic[K, V, D]):
    """One key/value row of a view, with the document when requested."""

    key: K
    value: V
    id: Optional[str] = None
    doc: Optional[D] = None


@dataclass
class QueryResult(Generic[K, V, D]):
    """Decoded view response.

    Unlike ResultCollection nothing is filtered out, so ``total_rows`` is the
    count reported by the server.
    """

    rows: list[QueryRow[K, V, D]] = field(default_factory=list)
    total_rows: Optional[int] = None
    offset: Optional[int] = None

    def __len__(self) -> int:
        return len(self.rows)

    def __iter__(self) -> Iterator[QueryRow[K, V, D]]:
        return iter(self.rows)

    def __getitem__(self, index: int) -> QueryRow[K, V, D]:
        return self.rows[index]


def decode_row(
    raw: dict[str, Any], key_type: Any = Any, value_type: Any = Any, doc_type: Type[D] = dict
) -> QueryRow:
    """Decode a single view row.

    Raises:
        InvalidEncodingError: If the key, value or document does not fit its type
    """
    key = decode_value(key_type, raw.get("key"), what="key")
    value = decode_value(value_type, raw.get("value"), what="value")
    row_id = raw.get("id")
    doc = None
    raw_doc = raw.get("doc")
    if raw_doc is not None:
        doc = decode_document(doc_type, raw_doc)
    return QueryRow(key=key, value=value, id=row_id if isinstance(row_id, str) else None, doc=doc)


def decode_query_response(
    body: Any, key_type: Any = Any, value_type: Any = Any, doc_type: Type[D] = dict
) -> QueryResult:
    """Decode a view response body.

    A row that does not decode fails the whole response: the types are the
    caller's declared expectation, so a mismatch is reported, not skipped.

    Raises:
        InvalidEncodingError: If the envelope or any row does not decode
    """
    try:
        response = ViewResponse.model_validate(body)
    except ValidationError as e:
        raise InvalidEncodingError(f"Invalid view response: {e}") from e

    rows = []
    for index, raw in enumerate(response.rows):
        try:
            rows.append(decode_row(raw, key_type, value_type, doc_type))
        except InvalidEncodingError as e:
            raise InvalidEncodingError(f"View row {index} ({raw.get('id')}): {e}") from e

    return QueryResult(rows=rows, total_rows=response.total_rows, offset=response.offset)
