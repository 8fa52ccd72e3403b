# tests/conftest.py
import os

# Settings are read when main.py is imported, so the environment comes first.
os.environ["JWT_ISSUER"] = "marketing-forms-test"
os.environ["JWT_AUDIENCE"] = "marketing-forms-clients"
os.environ["JWT_SIGNING_KEY"] = "test-signing-key-0123456789abcdef0123456789"
os.environ["API_KEYS"] = '["test-api-key", "second-api-key"]'
os.environ["CACHE_BACKEND"] = "memory"
os.environ["CORS_ORIGINS"] = '["*"]'
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["LOG_FORMAT"] = "console"

from uuid import UUID

import pytest
from fastapi.testclient import TestClient

from core.cache import CacheService, MemoryCacheBackend
from core.config import Settings
from models.marketing_forms import StoredForm
from services.connectors import InMemoryFormConnector
from services.slugs import SlugCodec, SlugMappingStore

NEWSLETTER_ID = UUID("3f2b8c1e-6d4a-4e9b-9a51-0c7d2e8f1a42")
MUELLER_ID = UUID("a9e4d7b2-1c35-4f8e-8b60-5d2c9e7f3b18")
DRAFT_ID = UUID("0b6f1e3a-92d8-4c47-a1f5-7e3d8c2b9a60")


class FakeClock:
    """Manually advanced clock for expiry tests."""

    def __init__(self, start: float = 1_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class CountingConnector(InMemoryFormConnector):
    """In-memory connector that records how often it is queried."""

    def __init__(self, forms=()):
        super().__init__(forms)
        self.calls = []

    async def list_live_forms(self):
        self.calls.append(("list",))
        return await super().list_live_forms()

    async def find_live_form_by_id(self, form_id):
        self.calls.append(("id", form_id))
        return await super().find_live_form_by_id(form_id)

    async def find_live_form_by_name(self, name):
        self.calls.append(("name", name))
        return await super().find_live_form_by_name(name)


class FailingConnector(InMemoryFormConnector):
    async def list_live_forms(self):
        raise ConnectionError("CRM unreachable: secret-host:443")

    async def find_live_form_by_name(self, name):
        raise ConnectionError("CRM unreachable: secret-host:443")


def sample_forms():
    return [
        StoredForm(id=NEWSLETTER_ID, name="Newsletter Signup",
                   html_content="<html><body><form>newsletter</form></body></html>"),
        StoredForm(id=MUELLER_ID, name="Müller Event Registration",
                   html_content="<html><body><form>event</form></body></html>"),
        StoredForm(id=DRAFT_ID, name="Spring Campaign Draft",
                   html_content="<html><body>draft</body></html>", status="draft"),
    ]


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def settings():
    return Settings()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def memory_cache(settings, clock):
    return CacheService(MemoryCacheBackend(clock=clock), settings)


@pytest.fixture
def slug_codec():
    return SlugCodec(SlugMappingStore())


@pytest.fixture
def connector():
    return CountingConnector(sample_forms())


@pytest.fixture
def client(connector):
    from core.container import container
    from main import app

    container.reset_singletons()
    with container.form_connector.override(connector):
        with TestClient(app, raise_server_exceptions=False) as test_client:
            yield test_client
    container.reset_singletons()


@pytest.fixture
def auth_headers(client):
    response = client.post("/token", json={"apiKey": "test-api-key"})
    assert response.status_code == 200
    return {"Authorization": f"Bearer {response.json()['token']}"}
