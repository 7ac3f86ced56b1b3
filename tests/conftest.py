"""
Pytest Configuration and Fixtures
"""

import os
import sys
import pytest
from datetime import datetime, timedelta, timezone

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(os.path.dirname(__file__)), 'src'))

from shaghaf.core.pricing import DEFAULT_POLICY
from shaghaf.persistence import (
    ClientRepository,
    Database,
    InvoiceRepository,
    ProductRecord,
    ProductRepository,
    SessionRepository,
)
from shaghaf.sessions import SessionOrchestrator

T0 = datetime(2026, 3, 1, 10, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Deterministic clock; call it for the current time, advance it by hand."""

    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: int) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def policy():
    """40 / 30 / 100 EGP in piastres."""
    return DEFAULT_POLICY


@pytest.fixture
def temp_db(tmp_path):
    """Create a temporary database for testing."""
    db = Database(f"sqlite:///{tmp_path / 'shaghaf-test.db'}")
    db.initialize()
    yield db
    db.close()


@pytest.fixture
def clients(temp_db):
    return ClientRepository(temp_db)


@pytest.fixture
def products(temp_db):
    return ProductRepository(temp_db)


@pytest.fixture
def invoices(temp_db):
    return InvoiceRepository(temp_db)


@pytest.fixture
def sessions(temp_db):
    return SessionRepository(temp_db)


@pytest.fixture
def orchestrator(policy, clients, products, invoices, sessions, clock):
    return SessionOrchestrator(
        policy=policy,
        clients=clients,
        products=products,
        invoices=invoices,
        sessions=sessions,
        clock=clock,
    )


@pytest.fixture
def coffee(products):
    """A product priced at 10.00 with 5 units in stock."""
    return products.create(ProductRecord(
        id="PRD-COFFEE",
        name="Turkish coffee",
        price=1000,
        stock_quantity=5,
        min_stock_level=2,
        category="drinks",
        unit="cup",
    ))


@pytest.fixture
def api_env(tmp_path, monkeypatch):
    """Environment for an API test app backed by a fresh database file."""
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'shaghaf-api.db'}")
    monkeypatch.setenv("API_KEY", "test-key-12345")
    monkeypatch.setenv("LOG_LEVEL", "WARNING")
    return {"X-API-Key": "test-key-12345"}
