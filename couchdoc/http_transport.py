# SPDX-License-Identifier: MIT
# Copyright (c) 2025 couchdoc contributors

"""HTTP transport to a CouchDB server, built on requests."""

import logging
from http import HTTPStatus
from typing import Any, Optional
from urllib.parse import urlsplit

import requests

from .config import CouchConfig
from .errors import InvalidEncodingError, MalformedAddressError, TransportError
from .transport import Transport, TransportResponse

logger = logging.getLogger(__name__)


class HttpTransport(Transport):
    """Transport sending requests to CouchDB over HTTP(S)."""

    @classmethod
    def from_config(cls, config: CouchConfig) -> "HttpTransport":
        """Create an HttpTransport from configuration.

        Args:
            config: CouchConfig with url, username, password and timeout_seconds

        Returns:
            Configured HttpTransport instance
        """
        return cls(
            url=config.url,
            username=config.username,
            password=config.password,
            timeout_seconds=config.timeout_seconds,
        )

    def __init__(
        self,
        url: str,
        username: Optional[str] = None,
        password: Optional[str] = None,
        timeout_seconds: float = 30.0,
        session: Optional[requests.Session] = None,
    ):
        """Initialize HTTP transport.

        Args:
            url: Server root, e.g. "http://localhost:5984"
            username: Basic auth user (optional)
            password: Basic auth password (optional)
            timeout_seconds: Per-request timeout
            session: Session to reuse (a new one is created if omitted)

        Raises:
            MalformedAddressError: If url is not an http(s) URL with a host
        """
        parts = urlsplit(url or "")
        if parts.scheme not in ("http", "https") or not parts.netloc:
            raise MalformedAddressError(f"Invalid CouchDB url: {url!r}")

        self.url = url.rstrip("/") + "/"
        self.timeout_seconds = timeout_seconds
        self.session = session or requests.Session()
        if username and password:
            self.session.auth = (username, password)
        self.session.headers.update({"Accept": "application/json"})
        logger.info("HttpTransport: using CouchDB at %s://%s", parts.scheme, parts.hostname)

    def send(
        self,
        method: str,
        path: str,
        body: Any = None,
        params: Optional[dict[str, str]] = None,
    ) -> TransportResponse:
        url = self.url + path.lstrip("/")
        try:
            response = self.session.request(
                method,
                url,
                json=body,
                params=params,
                timeout=self.timeout_seconds,
            )
        except requests.Timeout as e:
            logger.error("HttpTransport: %s %s timed out", method, path)
            raise TransportError(f"Request timed out: {e}", HTTPStatus.GATEWAY_TIMEOUT) from e
        except requests.ConnectionError as e:
            logger.error("HttpTransport: cannot reach %s", self.url)
            raise TransportError(f"Connection failed: {e}", HTTPStatus.SERVICE_UNAVAILABLE) from e
        except requests.RequestException as e:
            status = getattr(e.response, "status_code", None) or HTTPStatus.NOT_IMPLEMENTED
            raise TransportError(str(e), status) from e

        logger.debug("HttpTransport: %s %s -> %s", method, path, response.status_code)

        if method == "HEAD" or not response.content:
            return TransportResponse(status=response.status_code)
        try:
            return TransportResponse(status=response.status_code, body=response.json())
        except ValueError as e:
            raise InvalidEncodingError(f"Response to {method} {path} is not JSON: {e}") from e

    def close(self) -> None:
        self.session.close()
