"""Tests for the entitlement gate state machine and paid-hint cache."""

import threading

import pytest

from starsgate.core.errors import AuthInvalidError, UpstreamUnavailableError
from starsgate.features.billing.invoices import InvoiceService
from starsgate.features.gate.service import EntitlementGate, GateState, PaidHintCache
from starsgate.features.identity.service import IdentityVerifier

SECRET = "123456:TEST-BOT-TOKEN"


@pytest.fixture
def invoices(provider):
    return InvoiceService(provider, SECRET, title="t", description="d", currency="XTR", label="l")


@pytest.fixture
def gate(store, invoices):
    return EntitlementGate(IdentityVerifier(SECRET), store, invoices, price=10)


def test_unpaid_identity_checks_unpaid(gate, make_init_data):
    result = gate.check(make_init_data(42))

    assert result.state is GateState.UNPAID
    assert result.identity == "42"
    assert result.has_paid is False


def test_paid_identity_checks_paid(gate, store, make_init_data):
    store.mark_paid("42")
    assert gate.check(make_init_data(42)).has_paid is True


def test_paid_state_is_per_identity(gate, store, make_init_data):
    store.mark_paid("42")
    assert gate.check(make_init_data(43)).has_paid is False


def test_claimed_identity_must_match_envelope(gate, make_init_data):
    with pytest.raises(AuthInvalidError) as exc:
        gate.check(make_init_data(42), claimed_identity=43)
    assert exc.value.reason == "claimed_identity_mismatch"


def test_matching_claimed_identity_is_accepted(gate, make_init_data):
    assert gate.check(make_init_data(42), claimed_identity="42").identity == "42"


def test_invalid_envelope_is_rejected(gate, make_init_data):
    with pytest.raises(AuthInvalidError):
        gate.check(make_init_data(42, secret="wrong"))


@pytest.mark.asyncio
async def test_request_invoice_for_unpaid_identity(gate, provider, make_init_data):
    result = await gate.request_invoice(make_init_data(42))

    assert result.state is GateState.INVOICE_CREATED
    assert result.invoice_link == provider.link
    assert provider.invoice_calls[0]["prices"][0]["amount"] == 10


@pytest.mark.asyncio
async def test_request_invoice_when_already_paid_skips_provider(gate, store, provider, make_init_data):
    store.mark_paid("42")

    result = await gate.request_invoice(make_init_data(42))

    assert result.state is GateState.PAID
    assert result.invoice_link is None
    assert provider.invoice_calls == []


@pytest.mark.asyncio
async def test_request_invoice_upstream_failure_propagates(gate, provider, make_init_data):
    provider.fail = True
    with pytest.raises(UpstreamUnavailableError):
        await gate.request_invoice(make_init_data(42))


def test_client_paid_report_alone_does_not_grant(gate, store, make_init_data):
    result = gate.invoice_closed(make_init_data(42), "paid")

    assert result.state is GateState.INVOICE_CREATED
    assert result.has_paid is False
    assert store.get("42") is None


def test_paid_report_after_webhook_resolves_paid(gate, store, make_init_data):
    store.mark_paid("42")
    assert gate.invoice_closed(make_init_data(42), "paid").state is GateState.PAID


@pytest.mark.parametrize(
    "status,expected",
    [
        ("cancelled", GateState.CANCELLED),
        ("failed", GateState.FAILED),
        ("pending", GateState.INVOICE_CREATED),
        ("bogus", GateState.FAILED),
    ],
)
def test_invoice_closed_statuses(gate, make_init_data, status, expected):
    assert gate.invoice_closed(make_init_data(42), status).state is expected


def test_cancelled_after_settlement_still_paid(gate, store, make_init_data):
    store.mark_paid("42")
    assert gate.invoice_closed(make_init_data(42), "cancelled").state is GateState.PAID


def test_hint_cache_only_filled_after_store_confirms(store, invoices, make_init_data):
    hints = PaidHintCache()
    gate = EntitlementGate(IdentityVerifier(SECRET), store, invoices, price=10, hint_cache=hints)

    gate.check(make_init_data(42))
    assert hints.is_paid("42") is False

    store.mark_paid("42")
    gate.check(make_init_data(42))
    assert hints.is_paid("42") is True


def test_hint_cache_expires():
    now = [1000.0]
    hints = PaidHintCache(ttl_seconds=10, clock=lambda: now[0])
    hints.remember("42")

    assert hints.is_paid("42") is True
    now[0] += 11
    assert hints.is_paid("42") is False
    assert len(hints) == 0


def test_hint_cache_is_bounded():
    hints = PaidHintCache(ttl_seconds=60, max_entries=2)
    for identity in ("1", "2", "3"):
        hints.remember(identity)

    assert len(hints) == 2
    assert hints.is_paid("1") is False
    assert hints.is_paid("3") is True


def test_hint_cache_disabled_with_zero_ttl():
    hints = PaidHintCache(ttl_seconds=0)
    hints.remember("42")
    assert hints.is_paid("42") is False


@pytest.mark.asyncio
async def test_request_invoice_reads_store_off_the_event_loop(store, invoices, make_init_data):
    seen = []

    class RecordingStore:
        def get(self, identity):
            seen.append(threading.get_ident())
            return store.get(identity)

        def mark_paid(self, identity, **kwargs):
            return store.mark_paid(identity, **kwargs)

    gate = EntitlementGate(IdentityVerifier(SECRET), RecordingStore(), invoices, price=10)

    result = await gate.request_invoice(make_init_data(42))

    assert result.state is GateState.INVOICE_CREATED
    assert seen
    assert threading.get_ident() not in seen


def test_non_numeric_claimed_identity_is_unauthorized(gate, make_init_data):
    with pytest.raises(AuthInvalidError):
        gate.check(make_init_data(42), claimed_identity="²")
