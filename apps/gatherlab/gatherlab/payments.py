from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from typing import List, Optional

import stripe

from gatherlab.config import Config
from gatherlab.errors import BadRequest, Unauthorized
from gatherlab.models import LineItem

logger = logging.getLogger(__name__)

CHECKOUT_COMPLETED = "checkout.session.completed"


@dataclass
class CheckoutCompleted:
    session_id: int
    payment_intent: Optional[str]
    payment_status: Optional[str]

    @property
    def paid(self) -> bool:
        return self.payment_status == "paid"


def _line_item(item: LineItem) -> dict:
    return {
        "quantity": item.quantity,
        "price_data": {
            "currency": "usd",
            "unit_amount": item.unit_price * 100,
            "product_data": {"name": item.name},
        },
    }


def _create_session(**params):
    return stripe.checkout.Session.create(api_key=Config.STRIPE_SECRET_KEY, **params)


async def create_checkout(
    session_id: int,
    customer_email: Optional[str],
    line_items: List[LineItem],
    return_url: str,
) -> str:
    """Create an embedded checkout session and return its client secret."""
    expires_at = int(time.time()) + Config.CHECKOUT_EXPIRY_MINUTES * 60
    params = {
        "ui_mode": "embedded",
        "mode": "payment",
        "client_reference_id": str(session_id),
        "line_items": [_line_item(item) for item in line_items],
        "return_url": return_url,
        "expires_at": expires_at,
    }
    if customer_email:
        params["customer_email"] = customer_email

    checkout = await asyncio.wait_for(
        asyncio.to_thread(_create_session, **params),
        Config.HTTP_TIMEOUT,
    )
    logger.info("Created checkout %s for rsvp session %s", checkout.id, session_id)
    return checkout.client_secret


def verify_webhook(payload: bytes, signature: Optional[str]) -> dict:
    """Check the ``Stripe-Signature`` header and return the decoded event."""
    if not signature:
        raise Unauthorized("Missing webhook signature")
    try:
        stripe.WebhookSignature.verify_header(
            payload.decode("utf-8"),
            signature,
            Config.STRIPE_WEBHOOK_KEY,
            Config.STRIPE_WEBHOOK_TOLERANCE or None,
        )
    except stripe.SignatureVerificationError:
        logger.warning("Rejected webhook with invalid signature")
        raise Unauthorized("Invalid webhook signature")

    try:
        return json.loads(payload)
    except ValueError:
        raise BadRequest("InvalidPayload")


def parse_checkout_completed(event: dict) -> Optional[CheckoutCompleted]:
    if event.get("type") != CHECKOUT_COMPLETED:
        return None
    obj = (event.get("data") or {}).get("object") or {}
    reference = obj.get("client_reference_id")
    try:
        session_id = int(reference)
    except (TypeError, ValueError):
        logger.warning("Checkout completed with unusable client_reference_id %r", reference)
        return None
    return CheckoutCompleted(
        session_id=session_id,
        payment_intent=obj.get("payment_intent"),
        payment_status=obj.get("payment_status"),
    )
