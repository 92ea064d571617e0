# SPDX-License-Identifier: MIT
# Copyright (c) 2025 couchdoc contributors

"""Factory for creating transport instances based on configuration."""

import logging
from typing import Any, Callable, Optional

from .config import CouchConfig
from .http_transport import HttpTransport
from .inmemory_transport import InMemoryTransport
from .transport import Transport

logger = logging.getLogger(__name__)


def _build_http(config: CouchConfig) -> Transport:
    return HttpTransport.from_config(config)


def _build_inmemory(config: CouchConfig) -> Transport:
    return InMemoryTransport()


_DRIVERS: dict[str, Callable[[CouchConfig], Transport]] = {
    "http": _build_http,
    "inmemory": _build_inmemory,
}


def build_transport(config: CouchConfig) -> Transport:
    """Create the transport selected by ``config.transport_type``.

    Raises:
        ValueError: If the transport type is unknown
    """
    driver = _DRIVERS.get(config.transport_type)
    if driver is None:
        raise ValueError(
            f"Unknown transport type: {config.transport_type}. "
            f"Supported types: {', '.join(sorted(_DRIVERS))}"
        )
    logger.debug("build_transport: building %s transport", config.transport_type)
    return driver(config)


def create_transport(transport_type: Optional[str] = None, **kwargs: Any) -> Transport:
    """Create a transport instance.

    Args:
        transport_type: "http" or "inmemory". Falls back to COUCHDB_TRANSPORT,
                        then "http".
        **kwargs: CouchConfig fields (url, username, password, timeout_seconds);
                  omitted fields come from COUCHDB_* environment variables.

    Returns:
        Transport instance

    Raises:
        ValueError: If the transport type is unknown
    """
    return build_transport(CouchConfig.from_env(transport_type=transport_type, **kwargs))
