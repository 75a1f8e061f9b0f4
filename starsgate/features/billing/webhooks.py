"""
Telegram payment webhook processing.

Security contract:
- Optional secret header (X-Telegram-Bot-Api-Secret-Token) is checked in
  constant time before the body is parsed; mismatch -> 403
- Entitlement is granted only on successful_payment whose signed payload
  names the same identity as the authenticated sender (message.from.id)
  and whose amount and currency match the payload
- pre_checkout_query never mutates entitlement state
- Every other anomaly is logged and acknowledged (Telegram redelivers
  anything that is not 2xx)
"""
import hmac
import logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from fastapi.concurrency import run_in_threadpool

from starsgate.core.errors import (
    MESSAGES,
    InvoicePayloadInvalidError,
    PayloadIdentityMismatchError,
    UpstreamUnavailableError,
    WebhookUnauthorizedError,
)
from starsgate.features.billing.invoices import Invoice, InvoiceService
from starsgate.features.billing.provider import PaymentProvider
from starsgate.features.entitlements.store import EntitlementStore
from starsgate.features.identity.service import normalize_identity


logger = logging.getLogger(__name__)

SECRET_HEADER = "x-telegram-bot-api-secret-token"


@dataclass
class WebhookOutcome:
    """Result of processing one Telegram update."""
    action: str  # pre_checkout_approved | pre_checkout_rejected | granted | duplicate | rejected | ignored
    update_id: Optional[int] = None
    identity: Optional[str] = None
    reason: Optional[str] = None


def _sender_identity(obj: Mapping[str, Any]) -> Optional[str]:
    sender = obj.get("from")
    if not isinstance(sender, dict):
        return None
    return normalize_identity(sender.get("id"))


class WebhookProcessor:
    """Idempotent handler for pre-checkout and settlement updates."""

    def __init__(
        self,
        store: EntitlementStore,
        invoices: InvoiceService,
        provider: PaymentProvider,
        *,
        webhook_secret: Optional[str] = None,
    ):
        self._store = store
        self._invoices = invoices
        self._provider = provider
        self._webhook_secret = webhook_secret or None

    def authorize(self, headers: Mapping[str, str]) -> None:
        """Check the shared secret header when one is configured.

        Raises:
            WebhookUnauthorizedError: header missing or wrong
        """
        if not self._webhook_secret:
            return
        provided = None
        for key, value in headers.items():
            if key.lower() == SECRET_HEADER:
                provided = value
                break
        if provided is None or not hmac.compare_digest(
            provided.encode("utf-8"), self._webhook_secret.encode("utf-8")
        ):
            logger.warning("webhook.unauthorized", extra={"error_code": "webhook_unauthorized"})
            raise WebhookUnauthorizedError()

    async def process(self, update: Any) -> WebhookOutcome:
        """Dispatch one Telegram update. Never raises for payload anomalies."""
        if not isinstance(update, dict):
            logger.warning("webhook.ignored: body is not an object")
            return WebhookOutcome(action="ignored", reason="not_an_object")

        update_id = update.get("update_id")
        query = update.get("pre_checkout_query")
        if isinstance(query, dict):
            return await self._handle_pre_checkout(update_id, query)

        message = update.get("message")
        if isinstance(message, dict) and isinstance(message.get("successful_payment"), dict):
            return await run_in_threadpool(self._handle_successful_payment, update_id, message)

        logger.info("webhook.ignored", extra={"action": "ignored"})
        return WebhookOutcome(action="ignored", update_id=update_id, reason="unrecognized_update")

    def _check_payload(self, raw_payload: Optional[str], payer: Optional[str]) -> Invoice:
        invoice = self._invoices.parse_payload(raw_payload)
        if payer is None or payer != invoice.identity:
            raise PayloadIdentityMismatchError(payer or "<missing>", invoice.identity)
        return invoice

    async def _handle_pre_checkout(self, update_id: Optional[int], query: Dict[str, Any]) -> WebhookOutcome:
        query_id = query.get("id")
        payer = _sender_identity(query)
        try:
            invoice = self._check_payload(query.get("invoice_payload"), payer)
            approved, reason = True, None
        except (InvoicePayloadInvalidError, PayloadIdentityMismatchError) as e:
            invoice, approved, reason = None, False, e.code
            logger.warning(
                "webhook.pre_checkout_rejected",
                extra={"identity": payer, "error_code": e.code, "error_reason": e.message},
            )

        if query_id:
            try:
                await self._provider.answer_pre_checkout_query(
                    str(query_id),
                    ok=approved,
                    error_message=None if approved else MESSAGES["pre_checkout_rejected"],
                )
            except UpstreamUnavailableError:
                # Telegram cancels the checkout on its own after its timeout
                logger.error("webhook.pre_checkout_answer_failed", extra={"identity": payer})
        else:
            logger.warning("webhook.pre_checkout_without_id", extra={"identity": payer})

        return WebhookOutcome(
            action="pre_checkout_approved" if approved else "pre_checkout_rejected",
            update_id=update_id,
            identity=invoice.identity if invoice else payer,
            reason=reason,
        )

    def _handle_successful_payment(self, update_id: Optional[int], message: Dict[str, Any]) -> WebhookOutcome:
        payment = message["successful_payment"]
        payer = _sender_identity(message)
        try:
            invoice = self._check_payload(payment.get("invoice_payload"), payer)
        except (InvoicePayloadInvalidError, PayloadIdentityMismatchError) as e:
            logger.error(
                "webhook.settlement_rejected",
                extra={"identity": payer, "error_code": e.code, "error_reason": e.message},
            )
            return WebhookOutcome(action="rejected", update_id=update_id, identity=payer, reason=e.code)

        currency = payment.get("currency")
        total = payment.get("total_amount")
        if currency != self._invoices.currency or total != invoice.amount:
            logger.error(
                "webhook.settlement_rejected",
                extra={
                    "identity": invoice.identity,
                    "error_code": "amount_mismatch",
                    "error_reason": f"got {total} {currency}, expected {invoice.amount} {self._invoices.currency}",
                },
            )
            return WebhookOutcome(action="rejected", update_id=update_id, identity=invoice.identity, reason="amount_mismatch")

        charge_id = payment.get("telegram_payment_charge_id")
        # Read only labels the outcome; the grant itself is the atomic upsert
        already = self._store.get(invoice.identity)
        grant = self._store.mark_paid(invoice.identity, source="webhook", charge_id=charge_id)
        duplicate = already is not None and already.paid
        logger.info(
            "webhook.settled",
            extra={"identity": grant.identity, "action": "duplicate" if duplicate else "granted"},
        )
        return WebhookOutcome(
            action="duplicate" if duplicate else "granted",
            update_id=update_id,
            identity=grant.identity,
        )
