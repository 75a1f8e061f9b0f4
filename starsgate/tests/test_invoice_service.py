"""Tests for invoice issuance and payload authentication."""

import json

import pytest

from starsgate.core.errors import ConfigurationError, InvoicePayloadInvalidError, UpstreamUnavailableError
from starsgate.features.billing.invoices import MAX_PAYLOAD_BYTES, InvoiceService

SECRET = "123456:TEST-BOT-TOKEN"


def _service(provider, secret=SECRET):
    return InvoiceService(
        provider,
        secret,
        title="Доступ",
        description="Доступ к генератору",
        currency="XTR",
        label="Доступ к боту",
    )


def test_missing_secret_is_configuration_error(provider):
    with pytest.raises(ConfigurationError):
        _service(provider, secret=None)


def test_issue_produces_verifiable_payload(provider):
    service = _service(provider)
    invoice = service.issue("42", 10)

    parsed = service.parse_payload(invoice.to_payload())
    assert parsed.identity == "42"
    assert parsed.amount == 10
    assert parsed.correlation_token == invoice.correlation_token


def test_payload_fits_telegram_limit(provider):
    invoice = _service(provider).issue("9" * 19, 100000)
    assert len(invoice.to_payload().encode("utf-8")) <= MAX_PAYLOAD_BYTES


def test_correlation_tokens_are_unique(provider):
    service = _service(provider)
    tokens = {service.issue("42", 10).correlation_token for _ in range(50)}
    assert len(tokens) == 50


@pytest.mark.asyncio
async def test_create_invoice_calls_provider(provider):
    service = _service(provider)
    link = await service.create_invoice("42", 10)

    assert link == provider.link
    call = provider.invoice_calls[0]
    assert call["currency"] == "XTR"
    assert call["prices"] == [{"label": "Доступ к боту", "amount": 10}]
    assert call["title"] == "Доступ"
    assert service.parse_payload(call["payload"]).identity == "42"


@pytest.mark.asyncio
async def test_create_invoice_propagates_upstream_failure(provider):
    provider.fail = True
    with pytest.raises(UpstreamUnavailableError):
        await _service(provider).create_invoice("42", 10)


def test_payload_with_swapped_identity_is_rejected(provider):
    service = _service(provider)
    data = json.loads(service.issue("42", 10).to_payload())
    data["u"] = "43"

    with pytest.raises(InvoicePayloadInvalidError):
        service.parse_payload(json.dumps(data))


def test_payload_with_changed_amount_is_rejected(provider):
    service = _service(provider)
    data = json.loads(service.issue("42", 10).to_payload())
    data["a"] = 1

    with pytest.raises(InvoicePayloadInvalidError):
        service.parse_payload(json.dumps(data))


def test_payload_signed_with_other_secret_is_rejected(provider):
    foreign = _service(provider, secret="other-secret").issue("42", 10).to_payload()
    with pytest.raises(InvoicePayloadInvalidError):
        _service(provider).parse_payload(foreign)


@pytest.mark.parametrize(
    "raw",
    [
        None,
        "",
        "not json",
        "[]",
        '{"u":"42","a":10}',
        '{"u":"42","a":10,"c":"nodot"}',
        '{"u":"42","a":10,"c":"a.b.c"}',
        '{"u":"42","a":true,"c":"AAAAAAAAAAAAAAAAAAAAAA.AAAA"}',
        '{"u":"x","a":10,"c":"AAAAAAAAAAAAAAAAAAAAAA.AAAA"}',
        '{"u":"42","a":10,"c":"!!!.AAAA"}',
        '{"u":"²","a":10,"c":"AAAAAAAAAAAAAAAAAAAAAA.AAAA"}',
        '{"a":10,"c":"AAAAAAAAAAAAAAAAAAAAAA.\\ud800","u":"42"}',
        '{"a":10,"c":"\\ud800.AAAA","u":"42"}',
        5,
        {"u": "42", "a": 10},
        b'{"u":"42"}',
    ],
)
def test_malformed_payloads_are_rejected(provider, raw):
    with pytest.raises(InvoicePayloadInvalidError):
        _service(provider).parse_payload(raw)
