"""
Shared fixtures for the cashflow engine tests.

Test strategy:
1. Unit tests for pure components (models, generator, validator)
2. Flow tests against the in-memory storage backend
3. No network and no real database
"""

import asyncio
from datetime import date
from uuid import uuid4

import pytest

from cashflow_engine.audit import AuditLogger
from cashflow_engine.config import MaterializationSettings, StorageSettings
from cashflow_engine.services.storage import InMemoryAuditStorage, InMemoryFinanceStorage


TODAY = date(2024, 3, 15)


@pytest.fixture
def run():
    """Run a coroutine to completion."""
    return asyncio.run


@pytest.fixture
def owner_id():
    return uuid4()


@pytest.fixture
def storage():
    return InMemoryFinanceStorage()


@pytest.fixture
def audit_storage():
    return InMemoryAuditStorage()


@pytest.fixture
def captured_events():
    return []


@pytest.fixture
def audit_logger(audit_storage, captured_events):
    return AuditLogger(audit_storage, listeners=[captured_events.append])


@pytest.fixture
def clock():
    return lambda: TODAY


@pytest.fixture
def fast_storage_settings():
    """Retry settings without backoff delays."""
    return StorageSettings(
        retry_attempts=3,
        retry_min_wait_seconds=0,
        retry_max_wait_seconds=0,
    )


@pytest.fixture
def materialization_settings():
    return MaterializationSettings(write_batch_size=2)
