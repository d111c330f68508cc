"""Lightweight HTTP server for checkout, portal and Stripe webhook endpoints."""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional

import stripe
from aiohttp import web

from healtone.config import AppConfig
from healtone.db.pool import close_pool, create_pool
from healtone.db.store import SubscriptionStore
from healtone.payments.checkout import (
    CheckoutRequestError,
    create_checkout_url,
    create_portal_url,
)
from healtone.payments.processor import StripeProcessor
from healtone.payments.webhooks import handle_webhook, security_logger

logger = logging.getLogger(__name__)


async def _read_json_object(request: web.Request) -> dict:
    try:
        body = await request.json()
    except ValueError:
        # JSONDecodeError and UnicodeDecodeError alike
        raise CheckoutRequestError("Invalid JSON body")
    if not isinstance(body, dict):
        raise CheckoutRequestError("Request body must be a JSON object")
    return body


def _stripe_error_response(e: stripe.StripeError, context: str) -> web.Response:
    """Pass the upstream message through; client-side Stripe errors stay 4xx."""
    logger.error(f"{context} error: {e.user_message or e}")
    status = 400 if isinstance(e, stripe.InvalidRequestError) else 500
    return web.json_response({"error": e.user_message or str(e)}, status=status)


async def health(request: web.Request) -> web.Response:
    """Handle GET /health (liveness only)."""
    return web.json_response(
        {"status": "OK", "time": datetime.now(timezone.utc).isoformat()}
    )


async def checkout_session_endpoint(request: web.Request) -> web.Response:
    """Handle POST /create-checkout-session."""
    try:
        body = await _read_json_object(request)
        url = await create_checkout_url(
            body, request.app["processor"], request.app["config"]
        )
    except CheckoutRequestError as e:
        return web.json_response({"error": str(e)}, status=400)
    except stripe.StripeError as e:
        return _stripe_error_response(e, "Checkout")

    return web.json_response({"url": url})


async def portal_session_endpoint(request: web.Request) -> web.Response:
    """Handle POST /create-portal-session."""
    try:
        body = await _read_json_object(request)
        url = await create_portal_url(
            body, request.app["processor"], request.app["config"]
        )
    except CheckoutRequestError as e:
        return web.json_response({"error": str(e)}, status=400)
    except stripe.StripeError as e:
        return _stripe_error_response(e, "Portal")

    return web.json_response({"url": url})


async def webhook_endpoint(request: web.Request) -> web.Response:
    """Handle POST /webhook.

    The body is read as raw bytes; signature verification needs it unparsed.
    """
    sig_header = request.headers.get("Stripe-Signature")
    if not sig_header:
        security_logger.warning("Webhook request without Stripe-Signature header")
        return web.Response(status=400, text="Missing signature")

    payload = await request.read()

    return await handle_webhook(
        payload, sig_header, request.app["processor"], request.app["store"]
    )


def cors_middleware(allowed_origin: str):
    """Allow the configured client origin and answer preflight requests."""

    @web.middleware
    async def middleware(request: web.Request, handler) -> web.StreamResponse:
        if request.method == "OPTIONS":
            response = web.Response(status=204)
            response.headers["Access-Control-Allow-Methods"] = "GET, POST, OPTIONS"
            response.headers["Access-Control-Allow-Headers"] = (
                request.headers.get("Access-Control-Request-Headers", "Content-Type")
            )
        else:
            response = await handler(request)
        response.headers["Access-Control-Allow-Origin"] = allowed_origin
        response.headers["Vary"] = "Origin"
        return response

    return middleware


async def create_app(
    config: AppConfig,
    processor: StripeProcessor,
    store: SubscriptionStore,
) -> web.Application:
    """Create aiohttp application with all routes.

    Args:
        config: Application configuration
        processor: Stripe access shared by every request
        store: Subscription datastore shared by every request

    Returns:
        Configured aiohttp Application
    """
    app = web.Application(middlewares=[cors_middleware(config.client_url)])
    app.router.add_get("/health", health)
    app.router.add_post("/create-checkout-session", checkout_session_endpoint)
    app.router.add_post("/create-portal-session", portal_session_endpoint)
    app.router.add_post("/webhook", webhook_endpoint)

    app["config"] = config
    app["processor"] = processor
    app["store"] = store

    return app


async def run_server(
    config: AppConfig,
    shutdown_event: Optional[asyncio.Event] = None,
) -> None:
    """Run the HTTP server until shutdown signal.

    Owns the pool for its lifetime: builds it with the store and Stripe
    processor once, serves until the shutdown event is set, then closes it.

    Args:
        config: Application configuration
        shutdown_event: Optional event to signal shutdown
    """
    pool = await create_pool(config)
    store = SubscriptionStore(pool)
    processor = StripeProcessor(
        config.stripe_secret.get_secret_value(),
        config.stripe_webhook_secret.get_secret_value(),
    )
    app = await create_app(config, processor, store)

    runner = web.AppRunner(app)
    await runner.setup()

    try:
        site = web.TCPSite(runner, "0.0.0.0", config.port)
        await site.start()

        logger.info(f"Server running on port {config.port}")

        if shutdown_event:
            await shutdown_event.wait()
        else:
            await asyncio.Event().wait()

        logger.info("Shutting down server...")
    finally:
        await runner.cleanup()
        await close_pool(pool)
