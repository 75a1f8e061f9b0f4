import logging
import os
import time
from contextlib import asynccontextmanager
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from starsgate import __version__
from starsgate.core.config import Settings, validate_config
from starsgate.core.errors import (
    AppError,
    app_error_handler,
    http_error_handler,
    unhandled_exception_handler,
    validation_error_handler,
)
from starsgate.core.logging import configure_logging
from starsgate.core.middleware.request_id import RequestIdMiddleware
from starsgate.core.validation import validate_env
from starsgate.api import generate, health, payment
from starsgate.features.billing.invoices import InvoiceService
from starsgate.features.billing.provider import PaymentProvider
from starsgate.features.billing.telegram_provider import TelegramProvider
from starsgate.features.billing.webhooks import WebhookProcessor
from starsgate.features.entitlements.store import EntitlementStore, build_store
from starsgate.features.gate.service import EntitlementGate, PaidHintCache
from starsgate.features.generation.service import DescriptionGenerator, GroqDescriptionGenerator
from starsgate.features.identity.service import IdentityVerifier


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger = logging.getLogger("starsgate")
    logger.info("Starting starsgate...")
    app.state.startup_time = time.time()
    try:
        yield
    finally:
        logging.getLogger("starsgate").info("Stopping starsgate...")


def create_app(
    settings_obj: Optional[Settings] = None,
    *,
    store: Optional[EntitlementStore] = None,
    provider: Optional[PaymentProvider] = None,
    generator: Optional[DescriptionGenerator] = None,
) -> FastAPI:
    """Build the application.

    Components are constructed from settings unless passed in; tests inject
    fakes for the store, the Telegram provider and the generator.

    Raises:
        ConfigurationError: missing bot token / secret or invalid settings
    """
    if settings_obj is None:
        if "PYTEST_CURRENT_TEST" not in os.environ:
            load_dotenv()
        settings_obj = Settings()

    configure_logging(settings_obj.ENV)
    validate_env(settings_obj=settings_obj)
    validate_config(settings_obj)

    if store is None:
        store = build_store(settings_obj)
    if provider is None:
        provider = TelegramProvider(
            settings_obj.TELEGRAM_BOT_TOKEN,
            api_base=settings_obj.TELEGRAM_API_BASE,
            timeout=settings_obj.TELEGRAM_TIMEOUT_SECONDS,
        )
    if generator is None and settings_obj.GROQ_API_KEY:
        generator = GroqDescriptionGenerator(settings_obj.GROQ_API_KEY, model=settings_obj.GROQ_MODEL)

    secret = settings_obj.integrity_secret
    verifier = IdentityVerifier(secret, max_age_seconds=settings_obj.INIT_DATA_MAX_AGE_SECONDS)
    invoices = InvoiceService(
        provider,
        secret,
        title=settings_obj.INVOICE_TITLE,
        description=settings_obj.INVOICE_DESCRIPTION,
        currency=settings_obj.INVOICE_CURRENCY,
        label=settings_obj.INVOICE_LABEL,
    )
    hints = PaidHintCache(
        ttl_seconds=settings_obj.PAID_HINT_TTL_SECONDS,
        max_entries=settings_obj.PAID_HINT_MAX_ENTRIES,
    )

    app = FastAPI(title="starsgate", version=__version__, lifespan=lifespan)
    app.state.settings = settings_obj
    app.state.store = store
    app.state.provider = provider
    app.state.generator = generator
    app.state.gate = EntitlementGate(
        verifier,
        store,
        invoices,
        price=settings_obj.ENTITLEMENT_PRICE_STARS,
        hint_cache=hints,
    )
    app.state.webhooks = WebhookProcessor(
        store,
        invoices,
        provider,
        webhook_secret=settings_obj.TELEGRAM_WEBHOOK_SECRET,
    )

    # Middlewares
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings_obj.cors_origins,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(HTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.include_router(payment.router)
    app.include_router(generate.router)
    app.include_router(health.router)

    return app


def run() -> None:
    """Console entry point: serve the app with uvicorn."""
    import uvicorn

    uvicorn.run(
        create_app(),
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
    )
