# payments/processor.py
# ============================================================================
# HANDMADE STORE BACKEND — PAYMENT PROCESSOR ADAPTER (Stripe)
# ============================================================================
# Two capabilities are needed from the processor: open a hosted checkout
# session for an order, and authenticate an incoming webhook payload.
# ============================================================================

import json
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Any, Dict, NamedTuple, Optional

import stripe
import structlog

from config import settings
from errors import Internal, InvalidSignature, ValidationFailed
from payments.pricing import to_minor_units
from schemas.store import Order

logger = structlog.get_logger(component="payment_processor")


class PaymentSession(NamedTuple):
    id: str
    url: Optional[str]


class IPaymentProcessor(ABC):
    """Payment processor interface"""

    @abstractmethod
    async def create_checkout_session(
        self,
        order: Order,
        shipping: Decimal,
        customer_email: Optional[str] = None,
    ) -> PaymentSession:
        """Open a hosted payment session; order.id travels as metadata."""
        pass

    @abstractmethod
    def verify_webhook(self, payload: bytes, signature: str, secret: str) -> Dict[str, Any]:
        """Return the decoded event or raise InvalidSignature."""
        pass


class StripePaymentProcessor(IPaymentProcessor):
    """Stripe Checkout + webhook signature verification"""

    def __init__(
        self,
        api_key: Optional[str] = None,
        currency: Optional[str] = None,
        app_url: Optional[str] = None,
        tolerance: Optional[int] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.STRIPE_SECRET_KEY
        self.currency = currency or settings.CURRENCY
        self.app_url = (app_url or settings.APP_URL).rstrip("/")
        self.tolerance = tolerance if tolerance is not None else settings.STRIPE_WEBHOOK_TOLERANCE

    def _line_items(self, order: Order) -> list:
        items = [
            {
                "price_data": {
                    "currency": self.currency,
                    "product_data": {"name": item.product_name},
                    "unit_amount": to_minor_units(item.price),
                },
                "quantity": item.quantity,
            }
            for item in order.items
        ]
        if order.tax > 0:
            items.append({
                "price_data": {
                    "currency": self.currency,
                    "product_data": {"name": "Sales tax"},
                    "unit_amount": to_minor_units(order.tax),
                },
                "quantity": 1,
            })
        return items

    async def create_checkout_session(
        self,
        order: Order,
        shipping: Decimal,
        customer_email: Optional[str] = None,
    ) -> PaymentSession:
        metadata = {"order_id": order.id}
        try:
            session = stripe.checkout.Session.create(
                api_key=self.api_key,
                mode="payment",
                customer_email=customer_email,
                line_items=self._line_items(order),
                shipping_options=[{
                    "shipping_rate_data": {
                        "type": "fixed_amount",
                        "fixed_amount": {
                            "amount": to_minor_units(shipping),
                            "currency": self.currency,
                        },
                        "display_name": "Free shipping" if shipping == 0 else "Standard shipping",
                    },
                }],
                success_url=(
                    f"{self.app_url}/checkout/success"
                    f"?session_id={{CHECKOUT_SESSION_ID}}&order_id={order.id}"
                ),
                cancel_url=f"{self.app_url}/checkout",
                metadata=metadata,
                payment_intent_data={"metadata": metadata},
                idempotency_key=f"checkout_{order.id}",
            )
        except stripe.StripeError as e:
            logger.error("session_create_failed", order_id=order.id,
                         error=str(e), error_type=type(e).__name__)
            raise Internal("Payment processor unavailable")

        logger.info("session_created", order_id=order.id, session_id=session.id)
        return PaymentSession(id=session.id, url=session.url)

    def verify_webhook(self, payload: bytes, signature: str, secret: str) -> Dict[str, Any]:
        body = payload.decode("utf-8") if isinstance(payload, bytes) else payload
        try:
            stripe.WebhookSignature.verify_header(body, signature, secret, self.tolerance)
        except stripe.SignatureVerificationError as e:
            logger.warning("webhook_signature_invalid", error=str(e))
            raise InvalidSignature()

        try:
            return json.loads(body)
        except ValueError:
            logger.warning("webhook_payload_invalid")
            raise ValidationFailed("Webhook payload is not valid JSON")
