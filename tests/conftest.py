"""Shared fixtures for the storefront tests.

Everything runs against the in-memory document store; password hashing uses
a single PBKDF2 iteration to keep the suite fast.
"""

from __future__ import annotations

from collections.abc import Callable, Generator

import pytest
from fastapi.testclient import TestClient

from auth import AuthCoordinator, ProfileStore
from config import Settings
from database import MemoryDocumentStore
from errors import BackendError
from identity import IdentityProvider
from main import create_app
from schemas import Product, SignupRequest


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def store() -> MemoryDocumentStore:
    return MemoryDocumentStore("test")


@pytest.fixture
def provider(store: MemoryDocumentStore) -> IdentityProvider:
    return IdentityProvider(store, hash_iterations=1)


@pytest.fixture
def profiles() -> ProfileStore:
    return ProfileStore()


@pytest.fixture
def coordinator(provider: IdentityProvider, store: MemoryDocumentStore, profiles: ProfileStore) -> AuthCoordinator:
    return AuthCoordinator("session-1", provider, store, profiles)


@pytest.fixture
def make_product() -> Callable[..., Product]:
    def _make(product_id: str = "p1", price: float = 10.0, title: str | None = None, **extra) -> Product:
        return Product(
            id=product_id,
            title=title or f"Product {product_id}",
            price=price,
            category=extra.pop("category", "misc"),
            **extra,
        )

    return _make


@pytest.fixture
def signup_form() -> SignupRequest:
    return SignupRequest(
        email="ada@example.com",
        password="secret-pw",
        name="Ada Lovelace",
        username="ada",
        age=36,
        address="12 Analytical Row",
        city="London",
        state="LDN",
        zipcode="10001",
    )


@pytest.fixture
def settings() -> Settings:
    return Settings(log_json=False, password_hash_iterations=1)


@pytest.fixture
def client(settings: Settings, store: MemoryDocumentStore) -> Generator[TestClient, None, None]:
    app = create_app(settings=settings, store=store)
    with TestClient(app) as test_client:
        yield test_client


class FailingStore(MemoryDocumentStore):
    """Memory store whose writes to the named collections are rejected."""

    def __init__(self, *collections: str):
        super().__init__("failing")
        self.failing = set(collections)
        self.write_attempts = 0

    async def create_document(self, collection, data):
        if collection in self.failing:
            self.write_attempts += 1
            raise BackendError("Backend request failed", details={"op": "create_document", "error": "unavailable"})
        return await super().create_document(collection, data)

    async def get_document(self, collection, doc_id):
        if collection in self.failing:
            raise BackendError("Backend request failed", details={"op": "get_document", "error": "unavailable"})
        return await super().get_document(collection, doc_id)


@pytest.fixture
def failing_store_factory() -> Callable[..., FailingStore]:
    return FailingStore
