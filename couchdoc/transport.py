# SPDX-License-Identifier: MIT
# Copyright (c) 2025 couchdoc contributors

"""Abstract transport interface between the document layer and CouchDB."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional


@dataclass(frozen=True)
class TransportResponse:
    """Raw status and decoded JSON body of a CouchDB response."""

    status: int
    body: Any = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


class Transport(ABC):
    """Abstract base class for request/response transports."""

    @abstractmethod
    def send(
        self,
        method: str,
        path: str,
        body: Any = None,
        params: Optional[dict[str, str]] = None,
    ) -> TransportResponse:
        """Send one request and return the server's answer.

        Args:
            method: HTTP method (GET, PUT, POST, DELETE, HEAD)
            path: Path relative to the server root, e.g. "mydb/doc-1"
            body: JSON-compatible request body, if any
            params: Query string parameters, if any

        Returns:
            TransportResponse with the status and decoded body, whatever the status

        Raises:
            TransportError: If the server could not be reached or timed out
            InvalidEncodingError: If the response body is not valid JSON
        """
        pass

    def close(self) -> None:
        """Release any resources held by the transport."""
        pass
