"""Shared fixtures."""

import pytest

from reservio.api.auth import jwks_cache


@pytest.fixture(autouse=True)
def _reset_jwks_cache():
    """Every test starts with an empty JWKS cache."""
    jwks_cache.clear()
    yield
    jwks_cache.clear()
