# payments/reconciler.py
# ============================================================================
# HANDMADE STORE BACKEND — PAYMENT NOTIFICATION RECONCILER
# ============================================================================
# The only code that moves orders out of PENDING and the only code that
# decrements stock. Processors deliver at least once, so every handler is a
# guarded compare-and-set against the order repository:
#
#   checkout.session.completed      commit_payment: PROCESSING + stock, once
#   payment_intent.succeeded        PENDING -> PROCESSING
#   payment_intent.payment_failed   PENDING -> CANCELLED
#   checkout.session.expired        PENDING -> CANCELLED
#
# Anything else is acknowledged and ignored.
# ============================================================================

from typing import Any, Awaitable, Callable, Dict, Optional

import structlog

from config import settings
from errors import InvalidSignature, MissingSecret
from payments.processor import IPaymentProcessor, StripePaymentProcessor
from schemas.store import Order, OrderStatus
from storage.repositories import (
    InMemoryOrderRepository,
    InMemoryProductRepository,
    IOrderRepository,
    IProductRepository,
)

WebhookHandler = Callable[[Dict[str, Any], Any], Awaitable[None]]


class WebhookRouter:
    """Maps processor event types to handlers"""

    def __init__(self):
        self._handlers: Dict[str, WebhookHandler] = {}
        self._logger = structlog.get_logger(component="webhook_router")

    def register(self, event_type: str):
        """Decorator to register handler for event type"""
        def decorator(handler: WebhookHandler):
            self._handlers[event_type] = handler
            return handler
        return decorator

    async def route(self, event: Dict[str, Any], log) -> bool:
        """Dispatch an event. Returns False when no handler exists."""
        event_type = event.get("type", "unknown")
        handler = self._handlers.get(event_type)
        if handler is None:
            log.info("webhook_ignored", reason="unhandled_event_type")
            return False
        await handler(event, log)
        return True


def _object(event: Dict[str, Any]) -> Dict[str, Any]:
    return (event.get("data") or {}).get("object") or {}


def _ref(value: Any) -> Optional[str]:
    """Expandable processor field: plain id or nested object."""
    if isinstance(value, dict):
        return value.get("id")
    return value


class PaymentReconciler:
    """
    Folds verified payment notifications into order state.

    Example:
        reconciler = PaymentReconciler(orders, products, StripePaymentProcessor())
        ack = await reconciler.process_webhook(raw_body, signature_header)
    """

    def __init__(
        self,
        orders: Optional[IOrderRepository] = None,
        products: Optional[IProductRepository] = None,
        processor: Optional[IPaymentProcessor] = None,
        webhook_secret: Optional[str] = None,
    ):
        self.orders = orders or InMemoryOrderRepository()
        self.products = products or InMemoryProductRepository()
        self.processor = processor or StripePaymentProcessor()
        self.webhook_secret = (
            webhook_secret if webhook_secret is not None else settings.STRIPE_WEBHOOK_SECRET
        )
        self._logger = structlog.get_logger(component="reconciler")

        self.router = WebhookRouter()
        self._register_handlers()

    # =========================================================================
    # ENTRY POINT
    # =========================================================================

    async def process_webhook(self, payload: bytes, signature: Optional[str]) -> Dict[str, bool]:
        if not signature:
            self._logger.warning("webhook_signature_missing")
            raise InvalidSignature("Missing stripe-signature header")

        if not self.webhook_secret:
            self._logger.error("webhook_secret_missing")
            raise MissingSecret()

        # Nothing below runs for a payload that fails verification
        event = self.processor.verify_webhook(payload, signature, self.webhook_secret)

        log = self._logger.bind(event_id=event.get("id"), event_type=event.get("type"))
        log.info("webhook_received")
        await self.router.route(event, log)
        return {"received": True}

    def _register_handlers(self):
        self.router.register("checkout.session.completed")(self._on_session_completed)
        self.router.register("checkout.session.expired")(self._on_session_expired)
        self.router.register("payment_intent.succeeded")(self._on_payment_succeeded)
        self.router.register("payment_intent.payment_failed")(self._on_payment_failed)

    # =========================================================================
    # HANDLERS
    # =========================================================================

    async def _on_session_completed(self, event: Dict[str, Any], log):
        session = _object(event)
        order_id = (session.get("metadata") or {}).get("order_id")
        if not order_id:
            log.warning("session_without_order", session_id=session.get("id"))
            return

        log = log.bind(order_id=order_id)
        commit = await self.orders.commit_payment(
            order_id, _ref(session.get("payment_intent")), self.products
        )
        if commit is None:
            await self._log_unclaimed(order_id, log)
            return

        order = commit.order
        log.info("order_paid", status=order.status.value, items=len(order.items))
        for item, result in zip(order.items, commit.decrements):
            if result is None:
                log.error("stock_product_missing", product_id=item.product_id)
            elif result.oversold:
                # Accepted risk of decrement-on-confirm; surfaced, never masked
                log.warning("stock_oversold", product_id=item.product_id,
                            requested=result.requested, applied=result.applied)
            else:
                log.info("stock_decremented", product_id=item.product_id,
                         quantity=result.applied, remaining=result.remaining)

    async def _log_unclaimed(self, order_id: str, log):
        existing = await self.orders.get(order_id)
        if existing is None:
            log.warning("order_not_found")
        elif existing.status == OrderStatus.CANCELLED and not existing.stock_committed:
            log.error("payment_for_cancelled_order", status=existing.status.value)
        else:
            log.info("payment_already_reconciled", status=existing.status.value)

    async def _on_session_expired(self, event: Dict[str, Any], log):
        session = _object(event)
        order = await self.orders.get_by_session(session.get("id", ""))
        if order is None:
            log.info("expired_session_untracked", session_id=session.get("id"))
            return
        await self._cancel_pending(order, log.bind(order_id=order.id), reason="session_expired")

    async def _on_payment_succeeded(self, event: Dict[str, Any], log):
        intent = _object(event)
        order = await self._find_by_intent(intent)
        if order is None:
            log.warning("order_not_found_for_intent", payment_intent_id=intent.get("id"))
            return

        log = log.bind(order_id=order.id)
        updated = await self.orders.transition(
            order.id, [OrderStatus.PENDING], OrderStatus.PROCESSING,
            payment_intent_id=intent.get("id"),
        )
        if updated is None:
            log.info("payment_success_noop", status=order.status.value)
        else:
            log.info("order_status_changed", previous=OrderStatus.PENDING.value,
                     status=updated.status.value)

    async def _on_payment_failed(self, event: Dict[str, Any], log):
        intent = _object(event)
        order = await self._find_by_intent(intent)
        if order is None:
            log.warning("order_not_found_for_intent", payment_intent_id=intent.get("id"))
            return
        await self._cancel_pending(
            order, log.bind(order_id=order.id), reason="payment_failed",
            payment_intent_id=intent.get("id"),
        )

    # =========================================================================
    # HELPERS
    # =========================================================================

    async def _find_by_intent(self, intent: Dict[str, Any]) -> Optional[Order]:
        """
        Stored payment reference first, then the order id the checkout session
        copied into the intent metadata. Orders that never received a session
        reference are not eligible.
        """
        intent_id = intent.get("id")
        if intent_id:
            order = await self.orders.get_by_payment_intent(intent_id)
            if order is not None:
                return order

        order_id = (intent.get("metadata") or {}).get("order_id")
        if not order_id:
            return None
        order = await self.orders.get(order_id)
        if order is None or not order.payment_session_id:
            return None
        return order

    async def _cancel_pending(
        self, order: Order, log, reason: str, payment_intent_id: Optional[str] = None
    ):
        # Once an order is PROCESSING fulfillment owns it; failures are only logged
        updated = await self.orders.transition(
            order.id, [OrderStatus.PENDING], OrderStatus.CANCELLED,
            payment_intent_id=payment_intent_id,
        )
        if updated is None:
            log.info("cancel_ignored", reason=reason, status=order.status.value)
        else:
            log.info("order_cancelled", reason=reason)
