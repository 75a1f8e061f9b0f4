# starsgate/conftest.py
import json
import time
from typing import Dict, List, Optional
from urllib.parse import urlencode

import pytest
from fastapi.testclient import TestClient

from starsgate.core.config import Settings
from starsgate.core.errors import UpstreamUnavailableError
from starsgate.features.entitlements.store import InMemoryEntitlementStore
from starsgate.features.identity.service import sign_claims
from starsgate.main import create_app


BOT_TOKEN = "123456:TEST-BOT-TOKEN"
WEBHOOK_SECRET = "whsec-test"
ADMIN_KEY = "admin-test-key"


def _sign_init_data(
    user_id: Optional[int] = 42,
    *,
    secret: str = BOT_TOKEN,
    auth_date: Optional[int] = None,
    extra: Optional[Dict[str, str]] = None,
) -> str:
    """Build an initData string signed the way Telegram signs it."""
    claims = {
        "auth_date": str(auth_date if auth_date is not None else int(time.time())),
        "query_id": "AAHdF6IQAAAAAN0XohDhrOrc",
    }
    if user_id is not None:
        claims["user"] = json.dumps({"id": user_id, "first_name": "Test"}, separators=(",", ":"))
    if extra:
        claims.update(extra)
    claims["hash"] = sign_claims(secret, dict(claims))
    return urlencode(claims)


class FakeProvider:
    """Records Bot API calls instead of sending them."""

    def __init__(self, link: str = "https://t.me/$invoice-test", fail: bool = False):
        self.link = link
        self.fail = fail
        self.invoice_calls: List[Dict[str, object]] = []
        self.pre_checkout_answers: List[Dict[str, object]] = []

    async def create_invoice_link(self, *, title, description, payload, currency, prices) -> str:
        if self.fail:
            raise UpstreamUnavailableError("Telegram createInvoiceLink failed")
        self.invoice_calls.append(
            {"title": title, "description": description, "payload": payload, "currency": currency, "prices": prices}
        )
        return self.link

    async def answer_pre_checkout_query(self, pre_checkout_query_id, *, ok, error_message=None) -> None:
        if self.fail:
            raise UpstreamUnavailableError("Telegram answerPreCheckoutQuery failed")
        self.pre_checkout_answers.append(
            {"id": pre_checkout_query_id, "ok": ok, "error_message": error_message}
        )


class FakeGenerator:
    def __init__(self, text: str = "Описание изделия"):
        self.text = text
        self.calls: List[Dict[str, object]] = []

    async def generate(self, image: bytes, mime_type: str, user_text: str = "") -> str:
        self.calls.append({"size": len(image), "mime_type": mime_type, "user_text": user_text})
        return self.text


@pytest.fixture
def test_settings():
    """Settings isolated from the process environment and .env."""
    return Settings(
        _env_file=None,
        ENV="test",
        DATABASE_URL=None,
        TELEGRAM_BOT_TOKEN=BOT_TOKEN,
        TELEGRAM_WEBHOOK_SECRET=WEBHOOK_SECRET,
        ADMIN_KEY=ADMIN_KEY,
        GROQ_API_KEY=None,
        ENTITLEMENT_PRICE_STARS=10,
    )


@pytest.fixture
def store():
    return InMemoryEntitlementStore()


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def generator():
    return FakeGenerator()


@pytest.fixture
def app(test_settings, store, provider, generator, monkeypatch):
    monkeypatch.delenv("SKIP_ENV_VALIDATION", raising=False)
    return create_app(test_settings, store=store, provider=provider, generator=generator)


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def make_init_data():
    """Factory for signed initData strings (see _sign_init_data)."""
    return _sign_init_data
