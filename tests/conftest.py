"""
Pytest configuration and shared fixtures.

Test environment variables are set here, before any app module is
imported, and the settings cache is cleared so they take effect.
"""

import os
import tempfile

import httpx
import pytest

_DB_DIR = tempfile.mkdtemp(prefix="whatsapp-bridge-tests-")

os.environ["VERIFY_TOKEN"] = "test-verify-token"
os.environ["WHATSAPP_TOKEN"] = "test-access-token"
os.environ["PHONE_NUMBER_ID"] = "778752671981810"
os.environ["API_VERSION"] = "v22.0"
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_DB_DIR, 'test.db')}"
os.environ["LOG_LEVEL"] = "WARNING"

from app.config import get_settings  # noqa: E402
get_settings.cache_clear()

from fastapi.testclient import TestClient  # noqa: E402

from app.main import app, get_platform_client  # noqa: E402
from app.platform_client import PlatformClient  # noqa: E402
from app.storage import Base, MessageStore  # noqa: E402


TEST_VERIFY_TOKEN = os.environ["VERIFY_TOKEN"]
TEST_PHONE_NUMBER_ID = os.environ["PHONE_NUMBER_ID"]


class FakeGraphAPI:
    """Records Graph API send calls and answers with a canned response."""

    def __init__(self):
        self.requests = []
        self.status_code = 200
        self.json = {"messages": [{"id": "wamid.abc"}]}
        self.error = None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return httpx.Response(self.status_code, json=self.json)


@pytest.fixture
def graph_api() -> FakeGraphAPI:
    return FakeGraphAPI()


@pytest.fixture
def platform_client(graph_api) -> PlatformClient:
    client = PlatformClient.from_settings(get_settings(), transport=httpx.MockTransport(graph_api))
    yield client
    client.close()


@pytest.fixture(scope="function")
def client(platform_client):
    """Test client with a fresh database and a mocked Graph API."""
    app.dependency_overrides[get_platform_client] = lambda: platform_client

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
    # Lifespan has disposed the app's pool; drop tables with a short-lived engine
    cleanup = MessageStore(get_settings().database_url)
    Base.metadata.drop_all(bind=cleanup.engine)
    cleanup.dispose()


@pytest.fixture
def store(client) -> MessageStore:
    """The MessageStore owned by the running app."""
    return app.state.store


def notification(*messages, display_phone_number="15557654321", field="messages"):
    """Build a single-entry, single-change WhatsApp Business notification."""
    value = {"messaging_product": "whatsapp", "messages": list(messages)}
    if display_phone_number is not None:
        value["metadata"] = {
            "display_phone_number": display_phone_number,
            "phone_number_id": TEST_PHONE_NUMBER_ID,
        }
    return {
        "object": "whatsapp_business_account",
        "entry": [{"id": "WABA_ID", "changes": [{"field": field, "value": value}]}],
    }


def text_message(message_id, body="hi", sender="15551234567", timestamp="1700000000"):
    return {
        "from": sender,
        "id": message_id,
        "timestamp": timestamp,
        "type": "text",
        "text": {"body": body},
    }
