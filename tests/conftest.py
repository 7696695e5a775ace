"""
Shared fixtures for billing tests.
"""

import pytest

from fakes import FakeClock
from wallet_guard.core.audit import AuditLogger
from wallet_guard.storage.memory import InMemoryStore


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def audit(store):
    return AuditLogger(store)


@pytest.fixture
def clock():
    return FakeClock()
