# SPDX-License-Identifier: MIT
# Copyright (c) 2025 couchdoc contributors

"""Entry point binding a transport to named databases."""

import logging
import re
from typing import Optional

from .config import DEFAULT_PAGE_SIZE, CouchConfig
from .database import Database
from .errors import MalformedAddressError
from .factory import build_transport
from .transport import Transport

logger = logging.getLogger(__name__)

# CouchDB's rule for user database names
_DB_NAME = re.compile(r"^[a-z][a-z0-9_$()+/-]*$")
_SYSTEM_DATABASES = ("_users", "_replicator", "_global_changes")


class Client:
    """CouchDB client handing out Database handles.

    Example:
        >>> client = Client.from_config()
        >>> db = client.db("notes")
        >>> db.create({"title": "hello"})
    """

    @classmethod
    def from_config(cls, config: Optional[CouchConfig] = None) -> "Client":
        """Create a client from configuration.

        Args:
            config: CouchConfig to use; read from the environment if omitted

        Returns:
            Client over the configured transport

        Raises:
            ValueError: If the configured transport type is unknown
        """
        config = config or CouchConfig.from_env()
        return cls(build_transport(config), page_size=config.page_size)

    def __init__(self, transport: Transport, page_size: int = DEFAULT_PAGE_SIZE):
        self.transport = transport
        self.page_size = page_size

    def db(self, name: str) -> Database:
        """Return a handle on database ``name``.

        Raises:
            MalformedAddressError: If ``name`` is not a valid database name
        """
        if not isinstance(name, str) or not (_DB_NAME.match(name) or name in _SYSTEM_DATABASES):
            raise MalformedAddressError(f"Invalid database name: {name!r}")
        return Database(self.transport, name, page_size=self.page_size)

    def close(self) -> None:
        """Release the underlying transport."""
        self.transport.close()
        logger.debug("Client: closed transport")

    def __enter__(self) -> "Client":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
