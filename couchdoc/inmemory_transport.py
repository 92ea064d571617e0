# SPDX-License-Identifier: MIT
# Copyright (c) 2025 couchdoc contributors

"""In-memory CouchDB emulation for testing and local development.

Implements the part of CouchDB's HTTP API this package talks to: single
document reads and writes, ``_bulk_docs``, ``_all_docs``, ``_find`` and
views. Views are Python map functions registered with ``register_view``; they
yield ``(key, value)`` pairs for each document, like ``emit`` does in a
JavaScript view. Databases spring into existence on first use.
"""

import copy
import json
import logging
import threading
import uuid
from collections import defaultdict
from http import HTTPStatus
from typing import Any, Callable, Iterable, Optional, Union
from urllib.parse import unquote

from .transport import Transport, TransportResponse

logger = logging.getLogger(__name__)

MapFunction = Callable[[dict[str, Any]], Iterable[tuple[Any, Any]]]
ReduceFunction = Union[str, Callable[[list[Any]], Any]]

_JSON_PARAMS = ("key", "keys", "startkey", "endkey", "start_key", "end_key", "limit", "skip",
                "descending", "include_docs", "reduce", "group", "group_level", "inclusive_end")


def _collate(value: Any) -> tuple:
    """Sort key following CouchDB's collation order for JSON types."""
    if value is None:
        return (0,)
    if isinstance(value, bool):
        return (1, value)
    if isinstance(value, (int, float)):
        return (2, value)
    if isinstance(value, str):
        return (3, value)
    if isinstance(value, list):
        return (4, tuple(_collate(item) for item in value))
    if isinstance(value, dict):
        return (5, tuple((k, _collate(v)) for k, v in value.items()))
    return (6, repr(value))


def _error(status: int, error: str, reason: str) -> TransportResponse:
    return TransportResponse(status=status, body={"error": error, "reason": reason})


def _matches(doc: dict[str, Any], selector: dict[str, Any]) -> bool:
    """Evaluate a simple Mango selector (field conditions joined by AND)."""
    for field_name, condition in selector.items():
        present = field_name in doc
        value = doc.get(field_name)
        if not isinstance(condition, dict):
            if not present or value != condition:
                return False
            continue
        for op, operand in condition.items():
            if op == "$eq":
                ok = present and value == operand
            elif op == "$ne":
                ok = value != operand
            elif op == "$exists":
                ok = present == bool(operand)
            elif op == "$in":
                ok = present and value in operand
            elif op in ("$gt", "$gte", "$lt", "$lte"):
                if not present:
                    return False
                left, right = _collate(value), _collate(operand)
                ok = {
                    "$gt": left > right,
                    "$gte": left >= right,
                    "$lt": left < right,
                    "$lte": left <= right,
                }[op]
            else:
                raise ValueError(f"unsupported operator {op}")
            if not ok:
                return False
    return True


class InMemoryTransport(Transport):
    """Transport answering requests from in-process dictionaries."""

    def __init__(self):
        self.databases: dict[str, dict[str, dict[str, Any]]] = defaultdict(dict)
        self.views: dict[tuple[str, str, str], tuple[MapFunction, Optional[ReduceFunction]]] = {}
        self.requests: list[tuple[str, str]] = []
        self._lock = threading.Lock()

    def register_view(
        self,
        database: str,
        design: str,
        view: str,
        map_fn: MapFunction,
        reduce_fn: Optional[ReduceFunction] = None,
    ) -> None:
        """Define a view.

        Args:
            database: Database name
            design: Design document name (without the "_design/" prefix)
            view: View name
            map_fn: Function yielding (key, value) pairs for a document
            reduce_fn: "_count", "_sum" or a function reducing a list of values
        """
        self.views[(database, design, view)] = (map_fn, reduce_fn)
        design_id = f"_design/{design}"
        with self._lock:
            if design_id not in self.databases[database]:
                self._write(database, {"_id": design_id, "language": "python"})
        logger.debug("InMemoryTransport: registered view %s/%s in %s", design, view, database)

    def clear_all(self) -> None:
        """Drop every database and view."""
        with self._lock:
            self.databases.clear()
            self.views.clear()
            self.requests.clear()

    def send(
        self,
        method: str,
        path: str,
        body: Any = None,
        params: Optional[dict[str, str]] = None,
    ) -> TransportResponse:
        segments = [unquote(segment) for segment in path.strip("/").split("/")]
        options = self._decode_params(params or {})
        body = copy.deepcopy(body)
        with self._lock:
            self.requests.append((method, path))
            return self._route(method, segments, body, options)

    @staticmethod
    def _decode_params(params: dict[str, str]) -> dict[str, Any]:
        decoded = {}
        for name, value in params.items():
            decoded[name] = json.loads(value) if name in _JSON_PARAMS else value
        return decoded

    def _route(self, method: str, segments: list[str], body: Any, options: dict[str, Any]) -> TransportResponse:
        database, rest = segments[0], segments[1:]
        if not rest:
            if method == "POST":
                return self._write(database, body or {})
            if method in ("GET", "HEAD"):
                docs = self.databases[database]
                return TransportResponse(HTTPStatus.OK, {"db_name": database, "doc_count": len(docs)})
            return _error(HTTPStatus.METHOD_NOT_ALLOWED, "method_not_allowed", "Only GET,HEAD,POST allowed")

        if rest[0] == "_bulk_docs" and method == "POST":
            return self._bulk_docs(database, body)
        if rest == ["_all_docs", "queries"] and method == "POST":
            return self._all_docs_queries(database, body)
        if rest[0] == "_all_docs" and method in ("GET", "POST"):
            if isinstance(body, dict) and "keys" in body:
                options["keys"] = body["keys"]
            return self._all_docs(database, options)
        if rest[0] == "_find" and method == "POST":
            return self._find(database, body)
        if rest[0] == "_design" and len(rest) == 4 and rest[2] == "_view":
            if isinstance(body, dict) and "keys" in body:
                options["keys"] = body["keys"]
            return self._query_view(database, rest[1], rest[3], options)
        if rest[0] == "_design" and len(rest) == 2:
            return self._document(method, database, f"_design/{rest[1]}", body, options)
        if len(rest) == 1:
            return self._document(method, database, rest[0], body, options)
        return _error(HTTPStatus.NOT_FOUND, "not_found", "missing")

    def _document(self, method: str, database: str, doc_id: str, body: Any, options: dict[str, Any]) -> TransportResponse:
        docs = self.databases[database]
        if method in ("GET", "HEAD"):
            if doc_id not in docs:
                return _error(HTTPStatus.NOT_FOUND, "not_found", "missing")
            return TransportResponse(HTTPStatus.OK, copy.deepcopy(docs[doc_id]))
        if method == "PUT":
            doc = dict(body or {})
            doc["_id"] = doc_id
            return self._write(database, doc)
        if method == "DELETE":
            if doc_id not in docs:
                return _error(HTTPStatus.NOT_FOUND, "not_found", "missing")
            return self._write(database, {"_id": doc_id, "_rev": options.get("rev"), "_deleted": True})
        return _error(HTTPStatus.METHOD_NOT_ALLOWED, "method_not_allowed", f"{method} not allowed")

    def _write(self, database: str, doc: dict[str, Any]) -> TransportResponse:
        docs = self.databases[database]
        doc_id = doc.get("_id") or uuid.uuid4().hex
        current = docs.get(doc_id)
        rev = doc.get("_rev")
        current_rev = current["_rev"] if current else None
        if doc.get("_deleted") and current is None:
            return _error(HTTPStatus.NOT_FOUND, "not_found", "missing")
        if rev != current_rev:
            return _error(HTTPStatus.CONFLICT, "conflict", "Document update conflict.")

        generation = int(current_rev.split("-", 1)[0]) + 1 if current_rev else 1
        new_rev = f"{generation}-{uuid.uuid4().hex}"
        if doc.get("_deleted"):
            del docs[doc_id]
        else:
            stored = copy.deepcopy(doc)
            stored["_id"] = doc_id
            stored["_rev"] = new_rev
            docs[doc_id] = stored
        return TransportResponse(HTTPStatus.CREATED, {"ok": True, "id": doc_id, "rev": new_rev})

    def _bulk_docs(self, database: str, body: Any) -> TransportResponse:
        if not isinstance(body, dict) or not isinstance(body.get("docs"), list):
            return _error(HTTPStatus.BAD_REQUEST, "bad_request", "POST body must include `docs` parameter.")
        results = []
        for doc in body["docs"]:
            response = self._write(database, doc)
            if response.status == HTTPStatus.CREATED:
                results.append({"ok": True, "id": response.body["id"], "rev": response.body["rev"]})
            else:
                results.append({"id": doc.get("_id"), **response.body})
        return TransportResponse(HTTPStatus.CREATED, results)

    def _all_docs(self, database: str, options: dict[str, Any]) -> TransportResponse:
        docs = self.databases[database]
        include_docs = bool(options.get("include_docs"))

        def row(doc_id: str) -> dict[str, Any]:
            doc = docs[doc_id]
            entry = {"id": doc_id, "key": doc_id, "value": {"rev": doc["_rev"]}}
            if include_docs:
                entry["doc"] = copy.deepcopy(doc)
            return entry

        if "key" in options:
            rows = [row(options["key"])] if options["key"] in docs else []
        elif "keys" in options:
            rows = [row(k) if k in docs else {"key": k, "error": "not_found"} for k in options["keys"]]
        else:
            ids = sorted(docs, reverse=bool(options.get("descending")))
            startkey = options.get("startkey", options.get("start_key"))
            endkey = options.get("endkey", options.get("end_key"))
            if startkey is not None:
                ids = [i for i in ids if (i >= startkey if not options.get("descending") else i <= startkey)]
            if endkey is not None:
                ids = [i for i in ids if (i <= endkey if not options.get("descending") else i >= endkey)]
            rows = [row(i) for i in ids]

        skip = int(options.get("skip") or 0)
        rows = rows[skip:]
        if options.get("limit") is not None:
            rows = rows[: int(options["limit"])]
        return TransportResponse(HTTPStatus.OK, {"total_rows": len(docs), "offset": skip, "rows": rows})

    def _all_docs_queries(self, database: str, body: Any) -> TransportResponse:
        if not isinstance(body, dict) or not isinstance(body.get("queries"), list):
            return _error(HTTPStatus.BAD_REQUEST, "bad_request", "`queries` member must be an array.")
        results = []
        for query in body["queries"]:
            if not isinstance(query, dict):
                return _error(HTTPStatus.BAD_REQUEST, "bad_request", "Each query must be an object.")
            results.append(self._all_docs(database, dict(query)).body)
        return TransportResponse(HTTPStatus.OK, {"results": results})

    def _find(self, database: str, body: Any) -> TransportResponse:
        if not isinstance(body, dict) or not isinstance(body.get("selector"), dict):
            return _error(HTTPStatus.BAD_REQUEST, "bad_request", "`selector` must be a JSON object")
        candidates = [
            doc for doc_id, doc in sorted(self.databases[database].items())
            if not doc_id.startswith("_design/")
        ]
        try:
            found = [doc for doc in candidates if _matches(doc, body["selector"])]
        except ValueError as e:
            return _error(HTTPStatus.BAD_REQUEST, "invalid_operator", str(e))

        for sort_entry in reversed(body.get("sort") or []):
            field_name, direction = (sort_entry, "asc") if isinstance(sort_entry, str) else next(iter(sort_entry.items()))
            found.sort(key=lambda d: _collate(d.get(field_name)), reverse=direction == "desc")

        start = int(body.get("skip") or 0)
        if body.get("bookmark"):
            if not str(body["bookmark"]).isdigit():
                return _error(HTTPStatus.BAD_REQUEST, "invalid_bookmark", "Invalid bookmark value")
            start = int(body["bookmark"])
        limit = int(body.get("limit") or 25)
        page = found[start: start + limit]

        fields = body.get("fields")
        if fields:
            page = [{k: v for k, v in doc.items() if k in fields} for doc in page]
        return TransportResponse(
            HTTPStatus.OK,
            {"docs": copy.deepcopy(page), "bookmark": str(start + len(page))},
        )

    def _query_view(self, database: str, design: str, view: str, options: dict[str, Any]) -> TransportResponse:
        definition = self.views.get((database, design, view))
        if definition is None:
            reason = "missing_named_view" if f"_design/{design}" in self.databases[database] else "missing"
            return _error(HTTPStatus.NOT_FOUND, "not_found", reason)
        map_fn, reduce_fn = definition

        docs = self.databases[database]
        mapped = []
        for doc_id in sorted(docs):
            if doc_id.startswith("_design/"):
                continue
            for key, value in map_fn(copy.deepcopy(docs[doc_id])):
                mapped.append({"id": doc_id, "key": key, "value": value})
        mapped.sort(key=lambda r: (_collate(r["key"]), r["id"]))
        total_rows = len(mapped)

        if "key" in options:
            mapped = [r for r in mapped if r["key"] == options["key"]]
        elif "keys" in options:
            mapped = [r for k in options["keys"] for r in mapped if r["key"] == k]
        if options.get("startkey") is not None:
            mapped = [r for r in mapped if _collate(r["key"]) >= _collate(options["startkey"])]
        if options.get("endkey") is not None:
            mapped = [r for r in mapped if _collate(r["key"]) <= _collate(options["endkey"])]
        if options.get("descending"):
            mapped.reverse()

        include_docs = bool(options.get("include_docs"))
        use_reduce = reduce_fn is not None and options.get("reduce", True) and not include_docs
        if use_reduce:
            return TransportResponse(HTTPStatus.OK, {"rows": self._reduce(mapped, reduce_fn, options)})

        skip = int(options.get("skip") or 0)
        mapped = mapped[skip:]
        if options.get("limit") is not None:
            mapped = mapped[: int(options["limit"])]
        if include_docs:
            for r in mapped:
                r["doc"] = copy.deepcopy(docs.get(r["id"]))
        return TransportResponse(HTTPStatus.OK, {"total_rows": total_rows, "offset": skip, "rows": mapped})

    @staticmethod
    def _reduce(rows: list[dict[str, Any]], reduce_fn: ReduceFunction, options: dict[str, Any]) -> list[dict[str, Any]]:
        def apply(values: list[Any]) -> Any:
            if reduce_fn == "_count":
                return len(values)
            if reduce_fn == "_sum":
                return sum(values)
            return reduce_fn(values)

        if not (options.get("group") or options.get("group_level")):
            return [{"key": None, "value": apply([r["value"] for r in rows])}]

        level = options.get("group_level")
        grouped: dict[str, list[Any]] = {}
        keys: dict[str, Any] = {}
        for r in rows:
            key = r["key"]
            if level and isinstance(key, list):
                key = key[: int(level)]
            marker = json.dumps(key, sort_keys=True)
            keys.setdefault(marker, key)
            grouped.setdefault(marker, []).append(r["value"])
        return [{"key": keys[m], "value": apply(values)} for m, values in grouped.items()]
