"""Pytest configuration and shared fixtures."""
import os

# Must be set before lendingdesk.core.config is imported
os.environ["ENVIRONMENT"] = "test"
os.environ["STORAGE_BACKEND"] = "memory"
os.environ["BCRYPT_ROUNDS"] = "4"

import pytest
from fastapi.testclient import TestClient

from lendingdesk.core.auth import create_session_token
from lendingdesk.infrastructure.memory import MemoryLibraryStore
from lendingdesk.infrastructure.store import get_store
from lendingdesk.services.catalog import CatalogService
from lendingdesk.services.identity import IdentityService
from lendingdesk.services.ledger import LedgerService
from lendingdesk.services.lending import LendingService

PASSWORD = "correct-horse-battery"


@pytest.fixture
def store():
    """Fresh in-memory store per test."""
    return MemoryLibraryStore()


@pytest.fixture
def identities(store):
    return IdentityService(store)


@pytest.fixture
def catalog(store):
    return CatalogService(store)


@pytest.fixture
def lending(store):
    return LendingService(store)


@pytest.fixture
def ledger(store):
    return LedgerService(store)


@pytest.fixture
def student(identities):
    """Registered student member."""
    return identities.register_user("ayesha", PASSWORD)


@pytest.fixture
def other_student(identities):
    return identities.register_user("bilal", PASSWORD, "student")


@pytest.fixture
def teacher(identities):
    return identities.register_user("ms_khan", PASSWORD, "teacher")


@pytest.fixture
def admin(identities):
    return identities.register_user("root", PASSWORD, "admin")


@pytest.fixture
def dune(catalog, student):
    """An Available book registered by the student."""
    return catalog.register("Dune", "Herbert", actor=student)


@pytest.fixture
def app(store):
    """The FastAPI app wired to the per-test store."""
    from main import app as fastapi_app

    fastapi_app.dependency_overrides[get_store] = lambda: store
    yield fastapi_app
    fastapi_app.dependency_overrides.clear()


@pytest.fixture
def test_client(app):
    """Unauthenticated test client."""
    return TestClient(app)


@pytest.fixture
def client_for(app):
    """Factory for a client carrying a bearer session for an identity."""
    def make(identity):
        client = TestClient(app)
        client.headers["Authorization"] = f"Bearer {create_session_token(identity)}"
        return client

    return make
