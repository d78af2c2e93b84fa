"""Shared test fixtures — seeded store injection and settings."""

from __future__ import annotations

import pytest

from lease_mcp.config import Settings
from lease_mcp.data.ratebook import set_store
from lease_mcp.data.seed import seed_demo_data
from lease_mcp.data.store import SqliteRateStore


@pytest.fixture()
def seeded_store() -> SqliteRateStore:
    """In-memory store pre-loaded with the demo ratebooks and snapshots."""
    store = SqliteRateStore(":memory:")
    seed_demo_data(store)
    return store


@pytest.fixture(autouse=True)
def _inject_test_store(seeded_store: SqliteRateStore):
    """Give every test a fresh, isolated, seeded in-memory rate store."""
    set_store(seeded_store)
    yield
    set_store(None)


@pytest.fixture()
def settings() -> Settings:
    return Settings(fetch_timeout_seconds=2.0)
