import os
from datetime import datetime

import pytest

from envpersist.db import models
from envpersist.db.database import SQLITE_MEMORY_URL, DatabaseSettings
from envpersist.db.registry import PersistenceContextRegistry

os.environ.setdefault("PYTEST_RUNNING", "1")

# Fixed timestamps so rows seeded in both backends compare equal
FIXED_TS = datetime(2024, 1, 15, 9, 30, 0)


def _sqlite_settings(*labels):
    return DatabaseSettings.from_urls({label: SQLITE_MEMORY_URL for label in labels})


@pytest.fixture
def registry():
    """Registry with independent in-memory dev and prod databases."""
    reg = PersistenceContextRegistry(_sqlite_settings("dev", "prod"))
    yield reg
    reg.dispose()


@pytest.fixture
def live_registry(registry):
    """Registry with both contexts already created, so label switches clear nothing."""
    registry.get_context("dev")
    registry.get_context("prod")
    return registry


@pytest.fixture
def prod_only_registry():
    reg = PersistenceContextRegistry(_sqlite_settings("prod"))
    yield reg
    reg.dispose()


@pytest.fixture
def make_company():
    def _make(label="Acme", **kwargs):
        kwargs.setdefault("email", f"{(label or 'blank').strip().lower() or 'blank'}@example.com")
        kwargs.setdefault("created_at", FIXED_TS)
        kwargs.setdefault("updated_at", FIXED_TS)
        return models.Company(label=label, **kwargs)
    return _make


@pytest.fixture
def make_shop():
    def _make(label="Main Shop", company=None, **kwargs):
        kwargs.setdefault("created_at", FIXED_TS)
        kwargs.setdefault("updated_at", FIXED_TS)
        return models.Shop(label=label, company=company, **kwargs)
    return _make


@pytest.fixture
def make_customer():
    def _make(number="C-0001", company=None, shop=None, branch=None, **kwargs):
        kwargs.setdefault("last_name", "Doe")
        kwargs.setdefault("first_name", "Jane")
        return models.Customer(number=number, company=company, shop=shop, branch=branch, **kwargs)
    return _make


@pytest.fixture
def seed(registry):
    """Commit entities into the backend for ``label`` and return them."""
    def _seed(label, *entities):
        with registry.using(label) as context:
            for entity in entities:
                context.add(entity)
            context.commit()
        return entities[0] if len(entities) == 1 else entities
    return _seed
