# SPDX-License-Identifier: MIT
# Copyright (c) 2025 couchdoc contributors

"""couchdoc: typed document access for CouchDB.

Maps caller documents, typed or untyped, onto CouchDB's document API:
single and bulk writes, retrieval, views, Mango queries and batched
full-database reads.
"""

__version__ = "0.1.0"

from .bulk import BulkOutcome, WriteResult
from .client import Client
from .collection import ResultCollection
from .config import CouchConfig
from .database import Database
from .document import DocumentIdentity, UntypedDocumentAdapter, couch_document, identity_of
from .errors import (
    CouchError,
    DesignResourceError,
    InvalidEncodingError,
    MalformedAddressError,
    OperationFailedError,
    TransportError,
    into_option,
)
from .factory import build_transport, create_transport
from .find import FindQuery
from .http_transport import HttpTransport
from .inmemory_transport import InMemoryTransport
from .transport import Transport, TransportResponse
from .view import QueryParams, QueryResult, QueryRow

__all__ = [
    # Version
    "__version__",
    # Entry points
    "Client",
    "Database",
    "CouchConfig",
    "create_transport",
    "build_transport",
    # Documents
    "DocumentIdentity",
    "UntypedDocumentAdapter",
    "couch_document",
    "identity_of",
    # Results
    "ResultCollection",
    "WriteResult",
    "BulkOutcome",
    "QueryParams",
    "QueryResult",
    "QueryRow",
    "FindQuery",
    # Transports
    "Transport",
    "TransportResponse",
    "HttpTransport",
    "InMemoryTransport",
    # Exceptions
    "CouchError",
    "OperationFailedError",
    "TransportError",
    "InvalidEncodingError",
    "MalformedAddressError",
    "DesignResourceError",
    "into_option",
]
