# SPDX-License-Identifier: MIT
# Copyright (c) 2025 couchdoc contributors

"""Translation between caller documents and CouchDB wire documents.

This is the only place that knows the canonical ``_id``/``_rev`` field names.
Outgoing documents get their identity and revision from the DocumentIdentity
accessors; incoming documents are validated into the caller's type with
pydantic and then receive the wire identity and revision through the same
accessors, whatever field names the caller's type uses.
"""

import functools
import logging
from typing import Any, Type, TypeVar

from pydantic import TypeAdapter, ValidationError
from pydantic_core import PydanticSerializationError

from .document import ID_FIELD, REV_FIELD, identity_of, supports_identity
from .errors import InvalidEncodingError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@functools.lru_cache(maxsize=256)
def type_adapter(target: Any) -> TypeAdapter:
    """Return a cached pydantic TypeAdapter for ``target``."""
    return TypeAdapter(target)


def encode_document(doc: Any, include_rev: bool = True) -> dict[str, Any]:
    """Serialize a document into its CouchDB wire form.

    Args:
        doc: Document to serialize (mapping, pydantic model, dataclass, ...)
        include_rev: Whether to send the document's revision

    Returns:
        JSON-compatible dictionary with ``_id``/``_rev`` set from the document's
        identity accessors and left out when empty

    Raises:
        InvalidEncodingError: If the document does not serialize to a JSON object
    """
    identity = identity_of(doc)
    try:
        body = type_adapter(type(doc)).dump_python(doc, mode="json", by_alias=True)
    except (PydanticSerializationError, ValueError, TypeError) as e:
        raise InvalidEncodingError(f"Cannot serialize {type(doc).__name__}: {e}") from e

    if not isinstance(body, dict):
        raise InvalidEncodingError(
            f"Documents must serialize to a JSON object, got {type(body).__name__}"
        )

    wire: dict[str, Any] = {}
    doc_id = identity.get_id()
    rev = identity.get_rev()
    if doc_id:
        wire[ID_FIELD] = doc_id
    if rev and include_rev:
        wire[REV_FIELD] = rev
    for key, value in body.items():
        if key not in (ID_FIELD, REV_FIELD):
            wire[key] = value
    return wire


def decode_document(doc_type: Type[T], raw: Any) -> T:
    """Validate a wire document into ``doc_type``.

    The wire ``_id``/``_rev`` are written into the result through its identity
    accessors, so types keeping identity under custom field names always see
    the server's values.

    Raises:
        InvalidEncodingError: If ``raw`` does not validate against ``doc_type``
    """
    try:
        doc = type_adapter(doc_type).validate_python(raw)
    except ValidationError as e:
        raise InvalidEncodingError(
            f"Cannot decode document into {getattr(doc_type, '__name__', doc_type)}: {e}"
        ) from e

    if isinstance(raw, dict) and supports_identity(doc):
        identity = identity_of(doc)
        doc_id = raw.get(ID_FIELD)
        rev = raw.get(REV_FIELD)
        if isinstance(doc_id, str):
            identity.set_id(doc_id)
        if isinstance(rev, str):
            identity.set_rev(rev)
    return doc


def decode_value(target: Any, raw: Any, what: str = "value") -> Any:
    """Validate a non-document JSON value (view keys and values) into ``target``.

    Raises:
        InvalidEncodingError: If ``raw`` does not validate against ``target``
    """
    try:
        return type_adapter(target).validate_python(raw)
    except ValidationError as e:
        raise InvalidEncodingError(f"Cannot decode {what} {raw!r}: {e}") from e
