"""
Invoice issuance for the one-time generator entitlement.

The invoice record is never stored. Its durable form is the payload string
Telegram echoes back byte-for-byte in pre_checkout_query and
successful_payment updates:

    {"a":<amount>,"c":"<nonce>.<tag>","u":"<identity>"}

tag = HMAC-SHA256(derive_key(secret, "InvoicePayload"), "identity|amount|nonce"),
truncated to 16 bytes. Nonce and tag are base64url without padding. A client
can neither pick the identity nor the price of a payload it did not get from us.
"""
import base64
import binascii
import hashlib
import hmac
import json
import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from starsgate.core.errors import ConfigurationError, InvoicePayloadInvalidError
from starsgate.features.billing.provider import PaymentProvider
from starsgate.features.identity.service import derive_key, normalize_identity


logger = logging.getLogger(__name__)

PAYLOAD_KEY_LABEL = "InvoicePayload"
NONCE_BYTES = 16
TAG_BYTES = 16
MAX_PAYLOAD_BYTES = 128  # Telegram limit for invoice payloads


@dataclass(frozen=True)
class Invoice:
    """A payment intent for one identity at one price."""
    correlation_token: str
    identity: str
    amount: int
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_payload(self) -> str:
        return json.dumps(
            {"a": self.amount, "c": self.correlation_token, "u": self.identity},
            separators=(",", ":"),
            sort_keys=True,
        )


def _b64(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _unb64(text: str) -> bytes:
    return base64.urlsafe_b64decode(text + "=" * (-len(text) % 4))


class InvoiceService:
    """Mint invoice links whose payloads can later be authenticated."""

    def __init__(
        self,
        provider: PaymentProvider,
        signing_secret: Optional[str],
        *,
        title: str,
        description: str,
        currency: str = "XTR",
        label: str = "Access",
    ):
        if not signing_secret:
            raise ConfigurationError("invoice signing secret not configured")
        self._provider = provider
        self._key = derive_key(signing_secret, PAYLOAD_KEY_LABEL)
        self.title = title
        self.description = description
        self.currency = currency
        self.label = label

    def _tag(self, identity: str, amount: int, nonce: str) -> str:
        message = f"{identity}|{amount}|{nonce}".encode("utf-8")
        return _b64(hmac.new(self._key, message, hashlib.sha256).digest()[:TAG_BYTES])

    def issue(self, identity: str, amount: int) -> Invoice:
        """Mint a fresh invoice record (no upstream call)."""
        nonce = _b64(secrets.token_bytes(NONCE_BYTES))
        token = f"{nonce}.{self._tag(identity, amount, nonce)}"
        invoice = Invoice(correlation_token=token, identity=identity, amount=amount)
        if len(invoice.to_payload().encode("utf-8")) > MAX_PAYLOAD_BYTES:
            raise ValueError("invoice payload exceeds Telegram limit")
        return invoice

    async def create_invoice(self, identity: str, amount: int) -> str:
        """
        Create a payable invoice link for an already verified identity.

        Returns:
            Invoice link URL

        Raises:
            UpstreamUnavailableError: If Telegram is unreachable or refuses
        """
        invoice = self.issue(identity, amount)
        link = await self._provider.create_invoice_link(
            title=self.title,
            description=self.description,
            payload=invoice.to_payload(),
            currency=self.currency,
            prices=[{"label": self.label, "amount": amount}],
        )
        logger.info("invoice.created", extra={"identity": identity, "action": "invoice_created"})
        return link

    def parse_payload(self, raw: Optional[str]) -> Invoice:
        """
        Decode and authenticate a payload returned by Telegram.

        Raises:
            InvoicePayloadInvalidError: malformed, unsigned or tampered payload
        """
        if not isinstance(raw, str) or not raw:
            raise InvoicePayloadInvalidError("payload is not a string")
        try:
            data = json.loads(raw)
        except ValueError:
            raise InvoicePayloadInvalidError("payload is not JSON")
        if not isinstance(data, dict):
            raise InvoicePayloadInvalidError("payload is not an object")

        identity = normalize_identity(data.get("u"))
        amount = data.get("a")
        token = data.get("c")
        if identity is None or not isinstance(amount, int) or isinstance(amount, bool):
            raise InvoicePayloadInvalidError("payload fields missing")
        if not isinstance(token, str) or token.count(".") != 1:
            raise InvoicePayloadInvalidError("correlation token malformed")

        nonce, tag = token.split(".")
        if not (nonce.isascii() and tag.isascii()):
            raise InvoicePayloadInvalidError("correlation token malformed")
        try:
            if len(_unb64(nonce)) != NONCE_BYTES:
                raise InvoicePayloadInvalidError("correlation token malformed")
        except (binascii.Error, ValueError):
            raise InvoicePayloadInvalidError("correlation token malformed")

        expected = self._tag(identity, amount, nonce)
        if not hmac.compare_digest(expected.encode("ascii"), tag.encode("utf-8")):
            raise InvoicePayloadInvalidError("correlation token signature mismatch")

        return Invoice(correlation_token=token, identity=identity, amount=amount)
