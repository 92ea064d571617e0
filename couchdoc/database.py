# SPDX-License-Identifier: MIT
# Copyright (c) 2025 couchdoc contributors

"""Document operations on a single CouchDB database."""

import logging
import queue
import threading
from http import HTTPStatus
from typing import Any, Callable, Iterator, Optional, Sequence, Type, TypeVar, Union
from urllib.parse import quote

from .bulk import BulkOutcome, WriteResult, parse_bulk_response, prepare_bulk_payload, reconcile_bulk
from .codec import decode_document, encode_document
from .collection import AllDocsResponse, ResultCollection, parse_all_docs
from .config import DEFAULT_PAGE_SIZE
from .document import identity_of
from .errors import (
    DesignResourceError,
    InvalidEncodingError,
    MalformedAddressError,
    OperationFailedError,
    into_option,
)
from .find import FindQuery, FindResult
from .transport import Transport, TransportResponse
from .view import QueryParams, QueryResult, decode_query_response

logger = logging.getLogger(__name__)

T = TypeVar("T")

PageSink = Union["queue.Queue[Optional[ResultCollection[Any]]]", Callable[[ResultCollection[Any]], Optional[bool]]]

# Errors a view server reports when a design document cannot be built
_VIEW_BUILD_ERRORS = ("compilation_error", "os_process_error", "invalid_design_doc")

_HANDOFF_POLL_SECONDS = 0.1


def _write_result(body: Any) -> WriteResult:
    if not isinstance(body, dict) or not isinstance(body.get("id"), str) or not isinstance(body.get("rev"), str):
        raise InvalidEncodingError(f"Write response lacks id/rev: {body!r}")
    return WriteResult(id=body["id"], rev=body["rev"])


class Database:
    """Handle on one CouchDB database.

    Documents are plain mappings by default; pass ``doc_type`` to read them as
    pydantic models, dataclasses or any type pydantic can validate. Writes
    update the identity and revision of the document passed in and return
    them as a WriteResult.
    """

    def __init__(self, transport: Transport, name: str, page_size: int = DEFAULT_PAGE_SIZE):
        """Initialize database handle.

        Args:
            transport: Transport used for every request
            name: Database name (not validated here, see Client.db)
            page_size: Default page size for batched retrieval
        """
        self.transport = transport
        self.name = name
        self.page_size = page_size
        self._base = quote(name, safe="")

    def __repr__(self) -> str:
        return f"Database({self.name!r})"

    def _doc_path(self, doc_id: str) -> str:
        if not doc_id:
            raise MalformedAddressError("Document identity must not be empty")
        return f"{self._base}/{quote(doc_id, safe='')}"

    def _view_path(self, design: str, view: str) -> str:
        return f"{self._base}/_design/{quote(design, safe='')}/_view/{quote(view, safe='')}"

    def _request(
        self,
        method: str,
        path: str,
        body: Any = None,
        params: Optional[dict[str, str]] = None,
        doc_id: Optional[str] = None,
    ) -> TransportResponse:
        """Send a request and raise OperationFailedError on a non-2xx answer."""
        response = self.transport.send(method, path, body=body, params=params)
        if not response.ok:
            raise OperationFailedError.from_response_body(response.status, response.body, doc_id=doc_id)
        return response

    # -------------------------------------------------------------------------
    # Single document operations

    def create(self, doc: Any) -> WriteResult:
        """Create a new document.

        The server assigns an identity when the document has none. Any revision
        the document carries is ignored: the server mints the first one.

        Args:
            doc: Document to create; updated in place with identity and revision

        Returns:
            WriteResult with the stored identity and revision

        Raises:
            OperationFailedError: If the server rejects the document (409 if it exists)
        """
        identity = identity_of(doc)
        doc_id = identity.get_id()
        body = encode_document(doc, include_rev=False)
        if doc_id:
            response = self._request("PUT", self._doc_path(doc_id), body=body, doc_id=doc_id)
        else:
            response = self._request("POST", self._base, body=body)

        result = _write_result(response.body)
        if not doc_id:
            identity.set_id(result.id)
        identity.set_rev(result.rev)
        logger.debug("Database: created document %s in %s (rev %s)", result.id, self.name, result.rev)
        return result

    def save(self, doc: Any) -> WriteResult:
        """Update an existing document.

        The document must carry the revision currently stored on the server.

        Args:
            doc: Document to save; its revision is updated in place

        Returns:
            WriteResult with the new revision

        Raises:
            MalformedAddressError: If the document has no identity
            OperationFailedError: 409 if the revision is missing or stale
        """
        identity = identity_of(doc)
        doc_id = identity.get_id()
        path = self._doc_path(doc_id)
        if not identity.get_rev():
            raise OperationFailedError("Document update conflict.", HTTPStatus.CONFLICT, doc_id=doc_id)
        response = self._request("PUT", path, body=encode_document(doc), doc_id=doc_id)

        result = _write_result(response.body)
        identity.set_rev(result.rev)
        logger.debug("Database: saved document %s in %s (rev %s)", doc_id, self.name, result.rev)
        return result

    def upsert(self, doc: Any) -> WriteResult:
        """Save a document over whatever revision the server holds, creating it if absent."""
        identity = identity_of(doc)
        doc_id = identity.get_id()
        if not doc_id:
            return self.create(doc)

        current = into_option(self.get, doc_id, doc_type=type(doc))
        if current is None:
            return self.create(doc)
        identity.merge_ids(current)
        return self.save(doc)

    def remove(self, doc: Any) -> bool:
        """Delete a document at its current revision.

        Returns:
            True if the document was deleted, False if the server refused
            (missing document, stale revision, ...)

        Raises:
            TransportError: If the server could not be reached
        """
        identity = identity_of(doc)
        doc_id = identity.get_id()
        rev = identity.get_rev()
        if not doc_id or not rev:
            logger.warning("Database: cannot remove a document without identity and revision")
            return False

        response = self.transport.send("DELETE", self._doc_path(doc_id), params={"rev": rev})
        if response.ok:
            logger.debug("Database: removed document %s from %s", doc_id, self.name)
            return True
        logger.warning(
            "Database: removing %s from %s failed: %s",
            doc_id,
            self.name,
            OperationFailedError.from_response_body(response.status, response.body, doc_id=doc_id),
        )
        return False

    def get(self, doc_id: str, doc_type: Type[T] = dict) -> T:
        """Retrieve a document by its identity.

        Raises:
            OperationFailedError: 404 if the document does not exist
            InvalidEncodingError: If the document does not fit ``doc_type``
        """
        response = self._request("GET", self._doc_path(doc_id), doc_id=doc_id)
        return decode_document(doc_type, response.body)

    def exists(self, doc_id: str) -> bool:
        """Return True if a document with this identity exists."""
        response = self.transport.send("HEAD", self._doc_path(doc_id))
        if response.ok:
            return True
        if response.status == HTTPStatus.NOT_FOUND:
            return False
        raise OperationFailedError.from_response_body(response.status, response.body, doc_id=doc_id)

    # -------------------------------------------------------------------------
    # Bulk operations

    def bulk_docs(self, docs: Sequence[Any]) -> list[BulkOutcome]:
        """Create or update many documents in one request.

        Documents with an identity and revision are updates, the others are
        creations. Each document receives its new identity/revision in place
        when its write succeeds.

        Args:
            docs: Documents to write

        Returns:
            One BulkOutcome per document, in the same order

        Raises:
            OperationFailedError: If the request as a whole is rejected
            InvalidEncodingError: If the response cannot be matched to the documents
        """
        if not docs:
            return []
        response = self._request("POST", f"{self._base}/_bulk_docs", body=prepare_bulk_payload(docs))
        outcomes = reconcile_bulk(docs, parse_bulk_response(response.body))
        failed = sum(1 for outcome in outcomes if not outcome.ok)
        logger.debug("Database: bulk wrote %d documents to %s (%d failed)", len(docs), self.name, failed)
        return outcomes

    def bulk_upsert(self, docs: Sequence[Any]) -> list[BulkOutcome]:
        """Bulk write after replacing each identified document's revision with the server's."""
        ids = [identity_of(doc).get_id() for doc in docs]
        known = [doc_id for doc_id in ids if doc_id]
        current: dict[str, str] = {}
        if known:
            response = self._request(
                "POST", f"{self._base}/_all_docs", body={"keys": known}
            )
            for row in parse_all_docs(response.body).rows:
                if row.error is None and row.id and isinstance(row.value, dict):
                    rev = row.value.get("rev")
                    if isinstance(rev, str) and not row.value.get("deleted"):
                        current[row.id] = rev

        for doc, doc_id in zip(docs, ids):
            if doc_id in current:
                identity_of(doc).set_rev(current[doc_id])
        return self.bulk_docs(docs)

    def get_bulk(self, ids: Sequence[str], doc_type: Type[T] = dict) -> ResultCollection[T]:
        """Retrieve several documents; missing ones are left out of the result."""
        return self.get_all(QueryParams.from_keys(list(ids)), doc_type=doc_type)

    def get_all(self, params: Optional[QueryParams] = None, doc_type: Type[T] = dict) -> ResultCollection[T]:
        """Retrieve documents through ``_all_docs``.

        Design and local documents are never included.
        """
        params = (params or QueryParams()).model_copy(update={"include_docs": True})
        response = self._all_docs(params)
        return ResultCollection.from_response(response, doc_type)

    def _all_docs(self, params: QueryParams) -> AllDocsResponse:
        body = params.to_body()
        method = "POST" if body is not None else "GET"
        response = self._request(method, f"{self._base}/_all_docs", body=body, params=params.to_query())
        return parse_all_docs(response.body)

    def query_many_all_docs(self, queries: Sequence[QueryParams], doc_type: Any = dict) -> list[QueryResult]:
        """Run several ``_all_docs`` queries in one request.

        Rows are returned as the server sends them, design documents included.

        Args:
            queries: One set of options per query
            doc_type: Type of documents embedded with include_docs

        Returns:
            One QueryResult per query, in the order of ``queries``

        Raises:
            OperationFailedError: If the server rejects the request
            InvalidEncodingError: If the response does not hold one result per query
        """
        body = {"queries": [params.model_dump(exclude_none=True) for params in queries]}
        response = self._request("POST", f"{self._base}/_all_docs/queries", body=body)
        results = response.body.get("results") if isinstance(response.body, dict) else None
        if not isinstance(results, list) or len(results) != len(queries):
            raise InvalidEncodingError(f"Unexpected _all_docs/queries response from {self.name}")
        return [decode_query_response(result, Any, Any, doc_type) for result in results]

    # -------------------------------------------------------------------------
    # Batched retrieval

    def iter_all_batched(
        self,
        page_size: int = 0,
        skip: int = 0,
        doc_type: Type[T] = dict,
        cancel: Optional[threading.Event] = None,
    ) -> Iterator[ResultCollection[T]]:
        """Yield every document of the database, one page per request.

        The next page is requested only when the previous one has been
        consumed, so abandoning the iterator stops the requests.
        Setting ``cancel`` stops them as well, checked before every request.

        Args:
            page_size: Rows per request; 0 uses the database's default page size
            skip: Number of rows to skip before the first page
            doc_type: Type each document is decoded into
            cancel: Event that stops the iteration before the next request

        Yields:
            ResultCollection pages in increasing offset order
        """
        limit = page_size or self.page_size
        offset = skip
        while cancel is None or not cancel.is_set():
            response = self._all_docs(QueryParams(include_docs=True, limit=limit, skip=offset))
            received = len(response.rows)
            if received == 0:
                return

            page = ResultCollection.from_response(response, doc_type)
            if page.offset is None:
                page.offset = offset
            if page.total_rows:
                logger.debug("Database: fetched page of %d documents at offset %d from %s", page.total_rows, page.offset, self.name)
                yield page

            offset += received
            if received < limit:
                return

    def get_all_batched(
        self,
        sink: PageSink,
        page_size: int = 0,
        skip: int = 0,
        doc_type: Type[T] = dict,
        cancel: Optional[threading.Event] = None,
    ) -> int:
        """Stream every document of the database to ``sink``, one page at a time.

        ``sink`` is either a queue, which receives the pages followed by a
        ``None`` end marker, or a callable, which may return False to stop
        the transfer. Setting ``cancel`` also stops it; no page is requested
        once it is set.

        A queue consumer that may stop reading early must pass a bounded
        queue together with ``cancel``. With an unbounded queue, or without
        ``cancel``, the producer keeps requesting pages until the database is
        exhausted.

        Args:
            sink: Queue or callable receiving ResultCollection pages
            page_size: Rows per request; 0 uses the database's default page size
            skip: Number of rows to skip before the first page
            doc_type: Type each document is decoded into
            cancel: Event the consumer sets to stop the producer

        Returns:
            Number of documents delivered

        Raises:
            CouchError: If a page request fails; the queue still receives its end marker
        """
        delivered = 0
        pages = self.iter_all_batched(page_size=page_size, skip=skip, doc_type=doc_type, cancel=cancel)
        try:
            for page in pages:
                if isinstance(sink, queue.Queue):
                    if not self._hand_off(sink, page, cancel):
                        break
                elif sink(page) is False:
                    delivered += page.total_rows
                    break
                delivered += page.total_rows
        finally:
            pages.close()
            if isinstance(sink, queue.Queue):
                self._hand_off(sink, None, cancel)

        logger.debug("Database: delivered %d documents from %s", delivered, self.name)
        return delivered

    @staticmethod
    def _hand_off(sink: queue.Queue, item: Any, cancel: Optional[threading.Event]) -> bool:
        """Put ``item`` on a bounded queue, giving up once ``cancel`` is set."""
        if cancel is None:
            sink.put(item)
            return True
        while True:
            try:
                sink.put(item, timeout=_HANDOFF_POLL_SECONDS)
                return True
            except queue.Full:
                if cancel.is_set():
                    return False

    # -------------------------------------------------------------------------
    # Queries

    def find(self, query: FindQuery, doc_type: Type[T] = dict) -> ResultCollection[T]:
        """Run a Mango query.

        Documents that do not decode into ``doc_type`` are left out. The
        returned collection carries the bookmark for the next page.

        Raises:
            OperationFailedError: If the server rejects the query
        """
        response = self._request("POST", f"{self._base}/_find", body=query.to_body())
        try:
            result = FindResult.model_validate(response.body)
        except ValueError as e:
            raise InvalidEncodingError(f"Invalid _find response: {e}") from e
        if result.error:
            raise OperationFailedError.from_error_name(result.error, result.reason)
        if result.warning:
            logger.debug("Database: _find on %s warned: %s", self.name, result.warning)
        return ResultCollection.from_values(result.docs or [], doc_type, bookmark=result.bookmark)

    def query(
        self,
        design: str,
        view: str,
        params: Optional[QueryParams] = None,
        key_type: Any = Any,
        value_type: Any = Any,
        doc_type: Any = dict,
    ) -> QueryResult:
        """Query a view.

        Keys and embedded documents must fit ``key_type`` and ``doc_type``.
        Null or absent values decode to None, so views emitting null values
        need a ``value_type`` accepting None (``Any``, ``Optional[...]``).

        Args:
            design: Design document name, without "_design/"
            view: View name
            params: View options
            key_type: Type of row keys
            value_type: Type of row values
            doc_type: Type of documents embedded with include_docs

        Returns:
            QueryResult with the decoded rows

        Raises:
            DesignResourceError: If the design document or view is missing or cannot be built
            OperationFailedError: If the server rejects the query
            InvalidEncodingError: If a row does not fit the requested types
        """
        params = params or QueryParams()
        response = self.transport.send(
            "POST" if params.keys is not None else "GET",
            self._view_path(design, view),
            body=params.to_body(),
            params=params.to_query(),
        )
        if not response.ok:
            error = OperationFailedError.from_response_body(response.status, response.body)
            error_name = response.body.get("error") if isinstance(response.body, dict) else None
            if response.status == HTTPStatus.NOT_FOUND or error_name in _VIEW_BUILD_ERRORS:
                raise DesignResourceError(f"View {design}/{view} in {self.name} unavailable: {error.message}") from error
            raise error
        return decode_query_response(response.body, key_type, value_type, doc_type)

    def query_raw(self, design: str, view: str, params: Optional[QueryParams] = None) -> QueryResult:
        """Query a view without typing keys, values or documents."""
        return self.query(design, view, params, key_type=Any, value_type=Any, doc_type=Any)
