# SPDX-License-Identifier: MIT
# Copyright (c) 2025 couchdoc contributors

"""Document identity contract for typed and untyped CouchDB documents.

CouchDB keeps a document's identity in ``_id`` and its revision in ``_rev``.
Application types are free to store them elsewhere: anything exposing the
``DocumentIdentity`` accessors can be written and read, and plain mappings are
handled through ``UntypedDocumentAdapter``.

Example:
    >>> @couch_document(id_field="my_id", rev_field="my_rev")
    ... class Person(BaseModel):
    ...     my_id: str = ""
    ...     my_rev: str = ""
    ...     name: str
"""

from collections.abc import Mapping, MutableMapping
from typing import Any, Callable, Optional, Protocol, runtime_checkable

ID_FIELD = "_id"
REV_FIELD = "_rev"

# Identities starting with this prefix belong to design and local documents
INTERNAL_PREFIX = "_"

_JSON_SCALARS = (str, int, float, bool, type(None))


@runtime_checkable
class DocumentIdentity(Protocol):
    """Accessors a document representation exposes for its identity and revision."""

    def get_id(self) -> str:
        ...

    def get_rev(self) -> str:
        ...

    def set_id(self, doc_id: str) -> None:
        ...

    def set_rev(self, rev: str) -> None:
        ...

    def merge_ids(self, other: Any) -> None:
        """Copy identity and revision from ``other`` into this document."""
        ...


class UntypedDocumentAdapter:
    """DocumentIdentity over a dynamically typed JSON value.

    Reads return an empty string when the canonical field is missing or is not
    a string. Writes go straight into the wrapped mapping; values that are not
    mutable mappings cannot carry identity, so writes to them are ignored.
    """

    __slots__ = ("value",)

    def __init__(self, value: Any):
        self.value = value

    def _read(self, field_name: str) -> str:
        if isinstance(self.value, Mapping):
            found = self.value.get(field_name)
            if isinstance(found, str):
                return found
        return ""

    def _write(self, field_name: str, field_value: str) -> None:
        if isinstance(self.value, MutableMapping):
            self.value[field_name] = field_value

    def get_id(self) -> str:
        return self._read(ID_FIELD)

    def get_rev(self) -> str:
        return self._read(REV_FIELD)

    def set_id(self, doc_id: str) -> None:
        self._write(ID_FIELD, doc_id)

    def set_rev(self, rev: str) -> None:
        self._write(REV_FIELD, rev)

    def merge_ids(self, other: Any) -> None:
        source = identity_of(other)
        self.set_id(source.get_id())
        self.set_rev(source.get_rev())

    def __repr__(self) -> str:
        return f"UntypedDocumentAdapter({self.value!r})"


def supports_identity(doc: Any) -> bool:
    """Return True if ``doc`` can be handled by ``identity_of``."""
    return isinstance(doc, (DocumentIdentity, Mapping, list) + _JSON_SCALARS)


def identity_of(doc: Any) -> DocumentIdentity:
    """Return the identity accessors for ``doc``.

    Args:
        doc: A DocumentIdentity implementation or a JSON value

    Returns:
        ``doc`` itself when it implements the accessors, otherwise an
        UntypedDocumentAdapter wrapping it

    Raises:
        TypeError: If ``doc`` neither implements the accessors nor is a JSON value
    """
    if isinstance(doc, UntypedDocumentAdapter):
        return doc
    if isinstance(doc, DocumentIdentity):
        return doc
    if isinstance(doc, (Mapping, list) + _JSON_SCALARS):
        return UntypedDocumentAdapter(doc)
    raise TypeError(
        f"{type(doc).__name__} does not expose get_id/get_rev/set_id/set_rev/merge_ids; "
        "decorate it with @couch_document or pass a mapping"
    )


def couch_document(
    cls: Optional[type] = None, *, id_field: str = "id", rev_field: str = "rev"
) -> Any:
    """Class decorator generating DocumentIdentity accessors.

    The generated accessors read and write the attributes named by
    ``id_field`` and ``rev_field``. Accessors the class already defines are
    left alone.

    Args:
        cls: Class to decorate (when used without arguments)
        id_field: Attribute holding the document identity
        rev_field: Attribute holding the document revision

    Returns:
        The decorated class, or a decorator when called with keyword arguments only
    """

    def _reader(field_name: str) -> Callable[[Any], str]:
        def read(self: Any) -> str:
            value = getattr(self, field_name, "")
            return value if isinstance(value, str) else ""
        return read

    def _writer(field_name: str) -> Callable[[Any, str], None]:
        def write(self: Any, value: str) -> None:
            setattr(self, field_name, value)
        return write

    def merge_ids(self: Any, other: Any) -> None:
        source = identity_of(other)
        self.set_id(source.get_id())
        self.set_rev(source.get_rev())

    def wrap(target: type) -> type:
        accessors = {
            "get_id": _reader(id_field),
            "get_rev": _reader(rev_field),
            "set_id": _writer(id_field),
            "set_rev": _writer(rev_field),
            "merge_ids": merge_ids,
        }
        for name, func in accessors.items():
            if name not in target.__dict__:
                func.__name__ = name
                func.__qualname__ = f"{target.__qualname__}.{name}"
                setattr(target, name, func)
        return target

    if cls is None:
        return wrap
    return wrap(cls)
