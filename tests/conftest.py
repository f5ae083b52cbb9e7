"""Shared test fixtures for Keygate.

Provides common fixtures used across unit and integration tests.
"""

from datetime import UTC, datetime

import pytest

from keygate.clock import FrozenClock
from keygate.settings import Settings
from tests.helpers.auth import TEST_ORIGIN, TEST_RP_ID, make_test_settings
from tests.helpers.software_authenticator import SoftwareAuthenticator

# =============================================================================
# SETTINGS
# =============================================================================


@pytest.fixture
def test_settings() -> Settings:
    """Provide test settings with safe defaults (in-memory credential store)."""
    return make_test_settings()


# =============================================================================
# TIME AND AUTHENTICATORS
# =============================================================================


@pytest.fixture
def clock() -> FrozenClock:
    """A clock that only moves when a test advances it."""
    return FrozenClock(datetime(2026, 1, 15, 9, 0, tzinfo=UTC))


@pytest.fixture
def authenticator() -> SoftwareAuthenticator:
    """A fresh software authenticator (ES256, counter starts at 0)."""
    return SoftwareAuthenticator()


@pytest.fixture
def origin() -> str:
    return TEST_ORIGIN


@pytest.fixture
def rp_id() -> str:
    return TEST_RP_ID
