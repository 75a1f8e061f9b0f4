"""
Entitlement gate: the façade every client-facing payment call goes through.

States: checking -> {unpaid, paid}; unpaid -> invoice_created ->
{paid, cancelled, failed}. The store written by the webhook is the only
source of truth; a client's "paid" callback just triggers a re-check.
"""

import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Union

from fastapi.concurrency import run_in_threadpool

from starsgate.core.errors import AuthInvalidError
from starsgate.features.billing.invoices import InvoiceService
from starsgate.features.entitlements.store import EntitlementStore
from starsgate.features.identity.service import IdentityVerifier, normalize_identity


logger = logging.getLogger(__name__)


class GateState(str, Enum):
    CHECKING = "checking"
    UNPAID = "unpaid"
    INVOICE_CREATED = "invoice_created"
    PAID = "paid"
    CANCELLED = "cancelled"
    FAILED = "failed"


class InvoiceStatus(str, Enum):
    """Status reported by the Mini App openInvoice callback."""
    PAID = "paid"
    CANCELLED = "cancelled"
    FAILED = "failed"
    PENDING = "pending"


@dataclass(frozen=True)
class GateResult:
    state: GateState
    identity: str
    invoice_link: Optional[str] = None

    @property
    def has_paid(self) -> bool:
        return self.state is GateState.PAID


class PaidHintCache:
    """Bounded TTL cache of identities the store has confirmed as paid.

    Only ever holds True for an identity, and is only consulted after the
    caller's envelope verified to that same identity.
    """

    def __init__(self, ttl_seconds: float = 3600, max_entries: int = 10000, clock: Callable[[], float] = time.monotonic):
        self._ttl = ttl_seconds
        self._max_entries = max_entries
        self._clock = clock
        self._entries: "OrderedDict[str, float]" = OrderedDict()
        self._lock = threading.Lock()

    def remember(self, identity: str) -> None:
        if self._ttl <= 0 or self._max_entries <= 0:
            return
        with self._lock:
            self._entries[identity] = self._clock() + self._ttl
            self._entries.move_to_end(identity)
            while len(self._entries) > self._max_entries:
                self._entries.popitem(last=False)

    def is_paid(self, identity: str) -> bool:
        with self._lock:
            expires = self._entries.get(identity)
            if expires is None:
                return False
            if expires < self._clock():
                del self._entries[identity]
                return False
            return True

    def __len__(self) -> int:
        return len(self._entries)


class EntitlementGate:
    """verify identity -> check entitlement -> mint invoice -> resolve."""

    def __init__(
        self,
        verifier: IdentityVerifier,
        store: EntitlementStore,
        invoices: InvoiceService,
        *,
        price: int,
        hint_cache: Optional[PaidHintCache] = None,
    ):
        self._verifier = verifier
        self._store = store
        self._invoices = invoices
        self._price = price
        self._hints = hint_cache if hint_cache is not None else PaidHintCache()

    def _verify(self, envelope: str, claimed_identity: Union[int, str, None] = None) -> str:
        identity = self._verifier.verify(envelope)
        if claimed_identity is not None and normalize_identity(claimed_identity) != identity:
            raise AuthInvalidError("claimed_identity_mismatch")
        return identity

    def _is_paid(self, identity: str) -> bool:
        if self._hints.is_paid(identity):
            return True
        grant = self._store.get(identity)
        if grant is not None and grant.paid:
            self._hints.remember(identity)
            return True
        return False

    def check(self, envelope: str, claimed_identity: Union[int, str, None] = None) -> GateResult:
        """Resolve the paid state for the envelope's identity."""
        identity = self._verify(envelope, claimed_identity)
        state = GateState.PAID if self._is_paid(identity) else GateState.UNPAID
        return GateResult(state=state, identity=identity)

    async def request_invoice(self, envelope: str, claimed_identity: Union[int, str, None] = None) -> GateResult:
        """Mint an invoice link unless the identity has already paid.

        Raises:
            AuthInvalidError: envelope untrusted or identity mismatch
            UpstreamUnavailableError: Telegram could not create the link
        """
        identity = self._verify(envelope, claimed_identity)
        # Store calls may block on database I/O
        if await run_in_threadpool(self._is_paid, identity):
            return GateResult(state=GateState.PAID, identity=identity)
        link = await self._invoices.create_invoice(identity, self._price)
        return GateResult(state=GateState.INVOICE_CREATED, identity=identity, invoice_link=link)

    def invoice_closed(self, envelope: str, status: Union[InvoiceStatus, str]) -> GateResult:
        """Handle the openInvoice callback.

        A "paid" report is only a hint: the result is PAID once the webhook
        has written the store, otherwise it stays INVOICE_CREATED and the
        client polls again.
        """
        identity = self._verify(envelope)
        try:
            status = InvoiceStatus(status)
        except ValueError:
            status = InvoiceStatus.FAILED

        if self._is_paid(identity):
            return GateResult(state=GateState.PAID, identity=identity)
        if status in (InvoiceStatus.PAID, InvoiceStatus.PENDING):
            logger.info("gate.awaiting_settlement", extra={"identity": identity, "action": status.value})
            return GateResult(state=GateState.INVOICE_CREATED, identity=identity)
        if status is InvoiceStatus.CANCELLED:
            return GateResult(state=GateState.CANCELLED, identity=identity)
        return GateResult(state=GateState.FAILED, identity=identity)
