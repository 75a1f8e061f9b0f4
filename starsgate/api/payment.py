"""
Payment API routes.

Surface:
- POST /payment/create-invoice: Mint a Telegram Stars invoice link
- POST /payment/check-payment-status: Verified paid state
- POST /payment/invoice-closed: Resolve the openInvoice callback
- GET  /payment/status: Identity-only paid lookup (lower trust)
- POST /payment/webhook: Telegram payment updates
- POST /payment/confirm: Manual grant by an operator
"""
import json
import logging
from typing import Optional, Union

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, ConfigDict, Field

from starsgate.core.admin_auth import AdminActor, require_admin
from starsgate.core.errors import ValidationError
from starsgate.core.logging import log_event
from starsgate.features.gate.service import EntitlementGate
from starsgate.features.identity.service import normalize_identity


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payment", tags=["payment"])


class EnvelopeRequest(BaseModel):
    """Client call authenticated by Telegram initData."""
    model_config = ConfigDict(populate_by_name=True)

    user_id: Optional[Union[int, str]] = Field(default=None, alias="userId")
    init_data: str = Field(alias="initData", min_length=1)


class InvoiceResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    invoice_link: Optional[str] = Field(default=None, alias="invoiceLink")
    has_paid: bool = Field(alias="hasPaid")


class PaymentStatusResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    has_paid: bool = Field(alias="hasPaid")


class InvoiceClosedRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    init_data: str = Field(alias="initData", min_length=1)
    status: str = Field(min_length=1)


class InvoiceClosedResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    has_paid: bool = Field(alias="hasPaid")
    state: str


class ConfirmRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: Union[int, str] = Field(alias="userId")


def _gate(request: Request) -> EntitlementGate:
    return request.app.state.gate


@router.post("/create-invoice", response_model=InvoiceResponse, response_model_by_alias=True)
async def create_invoice(body: EnvelopeRequest, request: Request):
    """
    Create a Telegram Stars invoice link for the verified user.

    Returns:
        {"invoiceLink": "https://t.me/$...", "hasPaid": false}
        {"invoiceLink": null, "hasPaid": true} when already paid

    Errors:
        401: initData invalid or userId does not match it
        503: Telegram unavailable (retryable)
    """
    result = await _gate(request).request_invoice(body.init_data, body.user_id)
    return InvoiceResponse(invoice_link=result.invoice_link, has_paid=result.has_paid)


@router.post("/check-payment-status", response_model=PaymentStatusResponse, response_model_by_alias=True)
def check_payment_status(body: EnvelopeRequest, request: Request):
    """Verified paid state: {"hasPaid": bool}."""
    result = _gate(request).check(body.init_data, body.user_id)
    return PaymentStatusResponse(has_paid=result.has_paid)


@router.post("/invoice-closed", response_model=InvoiceClosedResponse, response_model_by_alias=True)
def invoice_closed(body: InvoiceClosedRequest, request: Request):
    """
    Resolve the Mini App openInvoice callback.

    "paid" from the client only triggers a re-check of the store; hasPaid
    becomes true once the settlement webhook has landed.
    """
    result = _gate(request).invoice_closed(body.init_data, body.status)
    return InvoiceClosedResponse(has_paid=result.has_paid, state=result.state.value)


@router.get("/status")
def payment_status(request: Request, user_id: Optional[str] = Query(default=None, alias="userId")):
    """
    Identity-only paid lookup: {"isPaid": bool}.

    Read-only and unauthenticated; disabled with PUBLIC_STATUS_ENABLED=false.
    """
    if not request.app.state.settings.PUBLIC_STATUS_ENABLED:
        raise HTTPException(status_code=404, detail="Not Found")
    identity = normalize_identity(user_id)
    if identity is None:
        raise ValidationError("userId is required")
    grant = request.app.state.store.get(identity)
    return {"isPaid": bool(grant and grant.paid)}


@router.post("/webhook")
async def handle_webhook(request: Request):
    """
    Handle Telegram payment updates.

    Checks the secret header (if configured) before reading the body,
    then processes pre_checkout_query / successful_payment.

    Returns:
        {"ok": true} for every processed or ignored update

    Errors:
        403: secret header missing or wrong
    """
    processor = request.app.state.webhooks
    processor.authorize(request.headers)

    body = await request.body()
    try:
        update = json.loads(body or b"null")
    except ValueError:
        logger.warning("webhook.body_unparseable", extra={"error_code": "invalid_json"})
        return {"ok": True}

    outcome = await processor.process(update)
    log_event(
        "info",
        "webhook.processed",
        identity=outcome.identity,
        event_type=outcome.action,
        extra={"update_id": outcome.update_id, "reason": outcome.reason},
    )
    return {"ok": True}


@router.post("/confirm")
def confirm_payment(body: ConfirmRequest, request: Request, actor: AdminActor = Depends(require_admin)):
    """
    Manually grant the entitlement (support cases, lost webhooks).

    Requires X-Admin-Key. Idempotent like every other grant.
    """
    identity = normalize_identity(body.user_id)
    if identity is None:
        raise ValidationError("userId is required")
    grant = request.app.state.store.mark_paid(identity, source="admin")
    log_event(
        "info",
        "payment.manual_confirm",
        identity=identity,
        event_type="admin_grant",
        extra={"actor": actor.actor_id, "source": grant.source},
    )
    return {"success": True, "hasPaid": grant.paid}
