"""Rate store facade — delegates to a :class:`SqliteRateStore` singleton.

Tool modules import ``get_store`` from here rather than constructing stores,
so tests can swap in a fresh in-memory store with ``set_store``.
"""

from __future__ import annotations

import os

from lease_mcp.config import load_settings
from lease_mcp.data.store import SqliteRateStore
from lease_mcp.models import RateRecord

_store: SqliteRateStore | None = None

_DEFAULT_DB_PATH = os.path.join(os.path.dirname(__file__), "ratebook.db")


def get_store() -> SqliteRateStore:
    """Return the active store singleton, creating + seeding if needed."""
    global _store  # noqa: PLW0603
    if _store is None:
        db_path = load_settings().db_path or _DEFAULT_DB_PATH
        store = SqliteRateStore(db_path)
        if store.count_rates() == 0:
            from lease_mcp.data.seed import seed_demo_data
            seed_demo_data(store)
        _store = store
    return _store


def set_store(store: SqliteRateStore | None) -> None:
    """Inject a store instance for testing."""
    global _store  # noqa: PLW0603
    _store = store


def latest_rates(contract_type: str | None = None) -> list[RateRecord]:
    """Latest-import rates, optionally for one contract code."""
    return get_store().fetch_latest_rates(contract_type)
