"""
Pytest configuration and path setup
Adds project root to Python path and provides shared fixtures
"""
import sys
import os

import pytest

# Add project root to Python path
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
sys.path.insert(0, project_root)

FAST_KDF_ITERATIONS = 1_000


@pytest.fixture
def fast_kdf(monkeypatch):
    """Cut PBKDF2 cost for tests that do not check the production iteration count."""
    monkeypatch.setattr("src.crypto_engine.KDF_ITERATIONS", FAST_KDF_ITERATIONS)
    return FAST_KDF_ITERATIONS


@pytest.fixture
def alice():
    return "alice@example.com"
