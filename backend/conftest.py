"""
Pytest fixtures: an in-memory document store, a recording messenger and
an engine wired the way the bot wires it.
"""
import asyncio

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from stockbot.api.deps import get_bot_gateway, get_settings, get_store
from stockbot.core.config import Settings
from stockbot.core.rate_limiter import rate_limiter
from stockbot.db.init_db import init_db
from stockbot.main import app
from stockbot.services.inventory import InventoryRepository
from stockbot.services.screenshots import ScreenshotRepository
from stockbot.store.document_store import DocumentStore
from stockbot.telegram.engine import ConversationEngine
from stockbot.telegram.notifications import NotificationDispatcher
from stockbot.telegram.sessions import SessionStore

ADMIN = "100"
STAFF = "200"
STRANGER = "999"


def run(coro):
    return asyncio.run(coro)


class FakeMessenger:
    """Records every outgoing message instead of talking to Telegram."""

    def __init__(self):
        self.sent = []
        self.fail_for = set()

    async def send_message(self, chat_id, text, reply_markup=None):
        self._record(chat_id, "message", text=text, reply_markup=reply_markup)

    async def send_photo(self, chat_id, photo, caption=None, reply_markup=None):
        self._record(chat_id, "photo", photo=photo, caption=caption, reply_markup=reply_markup)

    def _record(self, chat_id, kind, **fields):
        if str(chat_id) in self.fail_for:
            raise RuntimeError(f"chat {chat_id} unreachable")
        self.sent.append({"chat_id": str(chat_id), "kind": kind, **fields})

    def to(self, chat_id, kind=None):
        return [m for m in self.sent if m["chat_id"] == str(chat_id) and (kind is None or m["kind"] == kind)]

    def last_text(self, chat_id):
        texts = [m.get("text") or m.get("caption") for m in self.to(chat_id)]
        return texts[-1] if texts else None


class FakeGateway:
    def __init__(self):
        self.sent = []
        self.fail = False
        self.files = {}

    async def send_message(self, chat_id, text):
        if self.fail:
            raise RuntimeError("telegram down")
        self.sent.append((str(chat_id), text))

    async def resolve_file_url(self, file_id):
        if file_id not in self.files:
            raise RuntimeError("file not found")
        return self.files[file_id]


@pytest.fixture()
def store():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(bind=engine)
    yield DocumentStore(sessionmaker(autocommit=False, autoflush=False, bind=engine))
    engine.dispose()


@pytest.fixture()
def config():
    s = Settings()
    s.ADMIN_CHATS = {"alice": ADMIN}
    s.STAFF_CHAT_IDS = [STAFF]
    s.SALE_QUANTITY_POLICY = "local"
    s.SALE_DEFAULT_LOCATION = "market"
    s.BYORDER_LIMIT = 10
    return s


@pytest.fixture()
def inventory(store):
    return InventoryRepository(store)


@pytest.fixture()
def screenshots(store):
    return ScreenshotRepository(store)


@pytest.fixture()
def messenger():
    return FakeMessenger()


@pytest.fixture()
def notifier(messenger, config):
    return NotificationDispatcher(messenger, config.admin_chat_ids)


@pytest.fixture()
def engine(store, inventory, screenshots, notifier, config):
    return ConversationEngine(SessionStore(), store, inventory, screenshots, notifier, config)


@pytest.fixture()
def sofa(inventory):
    """A product with 10 in store and 2 in the market. Returns its key."""
    return inventory.create(
        {
            "name": "Sofa",
            "code": "S-1",
            "costPrice": "100",
            "sellingPrice": "150",
            "amountInStore": "10",
            "amountInMarket": "2",
            "image": "file-sofa",
        },
        created_by=ADMIN,
    )


@pytest.fixture(autouse=True)
def reset_rate_limiter():
    rate_limiter.clients.clear()
    yield
    rate_limiter.clients.clear()


@pytest.fixture()
def gateway():
    return FakeGateway()


@pytest.fixture()
def client(store, config, gateway):
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_settings] = lambda: config
    app.dependency_overrides[get_bot_gateway] = lambda: gateway
    yield TestClient(app)
    app.dependency_overrides.clear()
