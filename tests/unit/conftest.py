"""Unit-test conftest: DB isolation safety net.

Provides an ``autouse`` fixture that prevents any unit test from
accidentally opening a real Postgres connection. Unit tests run against
the in-memory stores; anything that reaches ``keygate.storage`` gets a
clear error instead of hanging on a connection attempt.

Tests that intentionally need a database live in ``tests/integration/``
and are unaffected.
"""

from __future__ import annotations

import pytest

import keygate.storage as _storage_mod


def _install_db_guard(monkeypatch: pytest.MonkeyPatch) -> None:
    """Install guard functions that prevent real DB access in unit tests."""

    def _guarded_get_engine(settings=None):
        raise RuntimeError(
            "Unit test attempted a real DB connection via get_engine(). "
            "Use the in-memory stores or tests/integration/ for DB tests."
        )

    def _guarded_get_session_factory(settings=None):
        raise RuntimeError(
            "Unit test attempted a real DB connection via get_session_factory(). "
            "Pass a mocked session_factory or use tests/integration/ for DB tests."
        )

    def _guarded_get_session():
        raise RuntimeError(
            "Unit test attempted a real DB connection via get_session(). "
            "Use the in-memory stores or tests/integration/ for DB tests."
        )

    monkeypatch.setattr(_storage_mod, "get_engine", _guarded_get_engine)
    monkeypatch.setattr(_storage_mod, "get_session_factory", _guarded_get_session_factory)
    monkeypatch.setattr(_storage_mod, "get_session", _guarded_get_session)


@pytest.fixture(autouse=True)
def _isolate_db(monkeypatch: pytest.MonkeyPatch) -> None:
    """Reset storage singletons and make every accessor raise."""
    monkeypatch.setattr(_storage_mod, "_engine", None)
    monkeypatch.setattr(_storage_mod, "_session_factory", None)
    _install_db_guard(monkeypatch)
