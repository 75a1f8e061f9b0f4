"""Tests for the Telegram Bot API client (httpx.MockTransport)."""

import json

import httpx
import pytest

from starsgate.core.errors import ConfigurationError, UpstreamUnavailableError
from starsgate.features.billing.telegram_provider import TelegramProvider

TOKEN = "123456:TEST-BOT-TOKEN"


def _provider(handler):
    return TelegramProvider(TOKEN, api_base="https://api.telegram.test", timeout=1.0, transport=httpx.MockTransport(handler))


def test_missing_token_is_configuration_error():
    with pytest.raises(ConfigurationError):
        TelegramProvider(None)


@pytest.mark.asyncio
async def test_create_invoice_link_posts_to_bot_method():
    seen = {}

    def handler(request: httpx.Request):
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"ok": True, "result": "https://t.me/$abc"})

    link = await _provider(handler).create_invoice_link(
        title="t", description="d", payload="p", currency="XTR", prices=[{"label": "x", "amount": 10}]
    )

    assert link == "https://t.me/$abc"
    assert seen["url"] == f"https://api.telegram.test/bot{TOKEN}/createInvoiceLink"
    assert seen["body"]["currency"] == "XTR"
    assert seen["body"]["prices"] == [{"label": "x", "amount": 10}]


@pytest.mark.asyncio
async def test_api_error_becomes_upstream_unavailable():
    def handler(request):
        return httpx.Response(400, json={"ok": False, "description": "Bad Request: CURRENCY_INVALID"})

    with pytest.raises(UpstreamUnavailableError):
        await _provider(handler).create_invoice_link(
            title="t", description="d", payload="p", currency="XTR", prices=[]
        )


@pytest.mark.asyncio
async def test_ok_false_with_200_becomes_upstream_unavailable():
    def handler(request):
        return httpx.Response(200, json={"ok": False})

    with pytest.raises(UpstreamUnavailableError):
        await _provider(handler).create_invoice_link(
            title="t", description="d", payload="p", currency="XTR", prices=[]
        )


@pytest.mark.asyncio
async def test_non_json_response_becomes_upstream_unavailable():
    def handler(request):
        return httpx.Response(502, text="<html>Bad Gateway</html>")

    with pytest.raises(UpstreamUnavailableError):
        await _provider(handler).create_invoice_link(
            title="t", description="d", payload="p", currency="XTR", prices=[]
        )


@pytest.mark.asyncio
async def test_network_error_becomes_upstream_unavailable():
    def handler(request):
        raise httpx.ConnectTimeout("timed out", request=request)

    with pytest.raises(UpstreamUnavailableError):
        await _provider(handler).answer_pre_checkout_query("q1", ok=True)


@pytest.mark.asyncio
async def test_missing_link_in_result_becomes_upstream_unavailable():
    def handler(request):
        return httpx.Response(200, json={"ok": True, "result": ""})

    with pytest.raises(UpstreamUnavailableError):
        await _provider(handler).create_invoice_link(
            title="t", description="d", payload="p", currency="XTR", prices=[]
        )


@pytest.mark.asyncio
async def test_answer_pre_checkout_includes_error_only_when_rejecting():
    bodies = []

    def handler(request):
        bodies.append(json.loads(request.content))
        return httpx.Response(200, json={"ok": True, "result": True})

    provider = _provider(handler)
    await provider.answer_pre_checkout_query("q1", ok=True, error_message="ignored")
    await provider.answer_pre_checkout_query("q2", ok=False, error_message="nope")

    assert bodies[0] == {"pre_checkout_query_id": "q1", "ok": True}
    assert bodies[1] == {"pre_checkout_query_id": "q2", "ok": False, "error_message": "nope"}
