# SPDX-License-Identifier: MIT
# Copyright (c) 2025 couchdoc contributors

"""Client configuration with environment variable fallback."""

import os
from dataclasses import dataclass
from typing import Any, Optional

DEFAULT_URL = "http://localhost:5984"
DEFAULT_PAGE_SIZE = 1000


def _default(value: Any, env_var: str, fallback: Any) -> Any:
    """Pick an explicit value, then the environment variable, then the fallback."""
    if value is not None:
        return value
    env_value = os.getenv(env_var)
    if env_value is not None and env_value != "":
        return env_value
    return fallback


@dataclass
class CouchConfig:
    """Connection settings for a CouchDB server.

    Attributes:
        url: Server root URL
        username: Basic auth user, if any
        password: Basic auth password, if any
        timeout_seconds: Per-request timeout
        page_size: Default page size for batched retrieval
        transport_type: "http" or "inmemory"
    """

    url: str = DEFAULT_URL
    username: Optional[str] = None
    password: Optional[str] = None
    timeout_seconds: float = 30.0
    page_size: int = DEFAULT_PAGE_SIZE
    transport_type: str = "http"

    def __post_init__(self) -> None:
        if self.page_size <= 0:
            raise ValueError(f"page_size must be positive, got {self.page_size}")
        if self.timeout_seconds <= 0:
            raise ValueError(f"timeout_seconds must be positive, got {self.timeout_seconds}")

    @classmethod
    def from_env(cls, **overrides: Any) -> "CouchConfig":
        """Build a configuration from COUCHDB_* environment variables.

        Explicit keyword arguments take precedence over environment variables.

        Environment variables:
            COUCHDB_URL, COUCHDB_USER, COUCHDB_PASSWORD, COUCHDB_TIMEOUT,
            COUCHDB_PAGE_SIZE, COUCHDB_TRANSPORT

        Raises:
            ValueError: If a numeric variable cannot be parsed
        """
        return cls(
            url=_default(overrides.get("url"), "COUCHDB_URL", DEFAULT_URL),
            username=_default(overrides.get("username"), "COUCHDB_USER", None),
            password=_default(overrides.get("password"), "COUCHDB_PASSWORD", None),
            timeout_seconds=float(_default(overrides.get("timeout_seconds"), "COUCHDB_TIMEOUT", 30.0)),
            page_size=int(_default(overrides.get("page_size"), "COUCHDB_PAGE_SIZE", DEFAULT_PAGE_SIZE)),
            transport_type=str(_default(overrides.get("transport_type"), "COUCHDB_TRANSPORT", "http")).lower(),
        )
