"""
Payment provider protocol.

Defines the interface for the upstream payment platform (Telegram Bot API).
This allows swapping the transport without changing business logic.
"""
from typing import Protocol, List, Dict, Optional


class PaymentProvider(Protocol):
    """
    Protocol for payment providers.

    Implementations must handle:
    - Invoice link creation
    - Pre-checkout query answers
    """

    async def create_invoice_link(
        self,
        *,
        title: str,
        description: str,
        payload: str,
        currency: str,
        prices: List[Dict[str, object]],
    ) -> str:
        """
        Create a payable invoice link.

        Args:
            title: Product name shown to the user
            description: Product description shown to the user
            payload: Opaque payload echoed back in payment updates (1-128 bytes)
            currency: Currency code ("XTR" for Telegram Stars)
            prices: Price breakdown, e.g. [{"label": "Access", "amount": 10}]

        Returns:
            Invoice link URL

        Raises:
            UpstreamUnavailableError: If the platform is unreachable or refuses
        """
        ...

    async def answer_pre_checkout_query(
        self,
        pre_checkout_query_id: str,
        *,
        ok: bool,
        error_message: Optional[str] = None,
    ) -> None:
        """
        Approve or reject a pending checkout.

        Raises:
            UpstreamUnavailableError: If the platform is unreachable or refuses
        """
        ...
