# SPDX-License-Identifier: MIT
# Copyright (c) 2025 couchdoc contributors

"""Shared fixtures for couchdoc tests."""

import pytest

from couchdoc import Client, InMemoryTransport


def pytest_configure(config):
    config.addinivalue_line("markers", "integration: tests requiring a live CouchDB server")


@pytest.fixture
def transport():
    """Fresh in-memory CouchDB."""
    return InMemoryTransport()


@pytest.fixture
def client(transport):
    return Client(transport)


@pytest.fixture
def db(client):
    return client.db("testdb")
