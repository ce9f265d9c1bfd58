import json

import pytest
from fastapi.testclient import TestClient

from app import create_app
from config import Settings
from notifier import NotifierError

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32


class FakeNotifier:
    """Records notifications in memory for test assertions."""

    def __init__(self):
        self.sent_messages: list[str] = []
        self.attempts = 0
        self.should_succeed = True
        self.failure_reason = "Telegram delivery failed"
        self.closed = False

    def configure(self, should_succeed: bool = True, failure_reason: str = "Telegram delivery failed"):
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason

    async def send(self, text: str):
        self.attempts += 1
        if not self.should_succeed:
            raise NotifierError(self.failure_reason)
        self.sent_messages.append(text)

    async def close(self):
        self.closed = True


@pytest.fixture()
def settings(tmp_path):
    return Settings(
        _env_file=None,
        DATA_DIR=tmp_path,
        STATIC_DIR=tmp_path,
        NOTIFY_MAX_ATTEMPTS=3,
        NOTIFY_BACKOFF_BASE=0,
    )


@pytest.fixture()
def notifier():
    return FakeNotifier()


@pytest.fixture()
def app(settings, notifier):
    return create_app(settings, notifier=notifier)


@pytest.fixture()
def client(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture()
def seed_products(settings):
    """Write a catalog before the app starts."""

    def _seed(products):
        (settings.data_dir / "products.json").write_text(json.dumps(products), encoding="utf-8")

    return _seed


def read_json(settings, name):
    return json.loads((settings.data_dir / name).read_text(encoding="utf-8"))


def valid_order(**overrides):
    order = {
        "customerName": "Ali Hassan",
        "phone": "07701234567",
        "governorate": "Baghdad",
        "area": "Karrada",
        "items": "Shirt x1, Cap x2",
        "total": 25000,
    }
    order.update(overrides)
    return order
