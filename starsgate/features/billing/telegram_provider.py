"""
Telegram Bot API payments client.

Implements PaymentProvider over HTTPS with httpx.
Every call has a bounded timeout; failures surface as UpstreamUnavailableError.
"""
import logging
from typing import Any, Dict, List, Optional

import httpx

from starsgate.core.errors import ConfigurationError, UpstreamUnavailableError


logger = logging.getLogger(__name__)

DEFAULT_API_BASE = "https://api.telegram.org"
DEFAULT_TIMEOUT_SECONDS = 10.0


class TelegramProvider:
    """Telegram implementation of PaymentProvider protocol."""

    def __init__(
        self,
        bot_token: Optional[str],
        *,
        api_base: str = DEFAULT_API_BASE,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize Telegram provider.

        Args:
            bot_token: Bot token issued by @BotFather
            api_base: Bot API base URL
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        if not bot_token:
            raise ConfigurationError("TELEGRAM_BOT_TOKEN not configured")
        self._bot_token = bot_token
        self._api_base = api_base.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    def _method_url(self, method: str) -> str:
        return f"{self._api_base}/bot{self._bot_token}/{method}"

    async def _call(self, method: str, params: Dict[str, Any]) -> Any:
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(self._method_url(method), json=params)
        except httpx.HTTPError as e:
            # The URL carries the bot token; log the method name only
            logger.error("telegram.%s unreachable: %s", method, type(e).__name__)
            raise UpstreamUnavailableError(f"Telegram {method} unreachable") from e

        try:
            data = response.json()
        except ValueError:
            data = {}

        if response.status_code >= 300 or not data.get("ok"):
            logger.error(
                "telegram.%s failed: status=%s description=%s",
                method,
                response.status_code,
                data.get("description"),
            )
            raise UpstreamUnavailableError(f"Telegram {method} failed")

        return data.get("result")

    async def create_invoice_link(
        self,
        *,
        title: str,
        description: str,
        payload: str,
        currency: str,
        prices: List[Dict[str, object]],
    ) -> str:
        """Call createInvoiceLink and return the link."""
        result = await self._call(
            "createInvoiceLink",
            {
                "title": title,
                "description": description,
                "payload": payload,
                "currency": currency,
                "prices": prices,
            },
        )
        if not isinstance(result, str) or not result:
            raise UpstreamUnavailableError("Telegram createInvoiceLink returned no link")
        return result

    async def answer_pre_checkout_query(
        self,
        pre_checkout_query_id: str,
        *,
        ok: bool,
        error_message: Optional[str] = None,
    ) -> None:
        """Call answerPreCheckoutQuery."""
        params: Dict[str, Any] = {"pre_checkout_query_id": pre_checkout_query_id, "ok": ok}
        if not ok and error_message:
            params["error_message"] = error_message
        await self._call("answerPreCheckoutQuery", params)
