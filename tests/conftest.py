"""
pytest configuration and fixtures for ionstream tests.

Provides reusable fixtures for:
- Hand-assembled binary streams
- Shared symbol table catalogs
- Hypothesis property-based testing configuration
"""

import os

import pytest
from hypothesis import settings, Verbosity, Phase

from ionstream.symbols import Catalog, SharedSymbolTable

# Default profile: balanced speed and coverage
settings.register_profile(
    "default",
    max_examples=100,
    deadline=None,  # Disable deadline for slow interpreters
)

# CI profile: more thorough testing
settings.register_profile(
    "ci",
    max_examples=500,
    deadline=None,
    suppress_health_check=[],
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
)

# Dev profile: fast iteration
settings.register_profile(
    "dev",
    max_examples=10,
    deadline=None,
)

# Debug profile: verbose output
settings.register_profile(
    "debug",
    max_examples=10,
    verbosity=Verbosity.verbose,
    deadline=None,
)

settings.load_profile(os.environ.get("HYPOTHESIS_PROFILE", "default"))


IVM = b'\xe0\x01\x00\xea'


@pytest.fixture
def ivm():
    """The Ion 1.0 binary version marker."""
    return IVM


@pytest.fixture
def binary():
    """
    Build a binary stream from fragments, prefixed with the version marker.

    Usage:
        def test_int(binary):
            data = binary(b'\\x21\\x05')
    """
    def build(*fragments: bytes) -> bytes:
        return IVM + b''.join(fragments)
    return build


@pytest.fixture
def sensor_table():
    return SharedSymbolTable('com.example.sensors', 1, ['temperature', 'humidity', 'pressure'])


@pytest.fixture
def catalog(sensor_table):
    return Catalog([sensor_table])


# Markers for test categorization
def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "compliance: marks tests that pin down exact wire bytes"
    )
