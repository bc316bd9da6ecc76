# payments/checkout.py
# ============================================================================
# HANDMADE STORE BACKEND — CHECKOUT VALIDATOR & ORDER CREATOR
# ============================================================================
# Untrusted cart -> authoritative lookup -> stock check -> pricing ->
# PENDING order -> processor session -> session reference on the order.
#
# Stock is never touched here. It is decremented only by payment
# reconciliation once the processor confirms the payment.
# ============================================================================

from collections import OrderedDict
from typing import Dict, Optional

import structlog

from config import DEFAULT_PRICING, PricingPolicy
from errors import EmptyCart, InsufficientStock, InvalidOrInactiveProduct, Unauthorized
from payments.pricing import calculate_totals
from payments.processor import IPaymentProcessor, StripePaymentProcessor
from schemas.store import (
    CheckoutRequest,
    CheckoutResult,
    Order,
    OrderItem,
    OrderStatus,
    Product,
    new_id,
)
from services.auth import Identity
from storage.repositories import (
    InMemoryOrderRepository,
    InMemoryProductRepository,
    IOrderRepository,
    IProductRepository,
)


class CheckoutService:
    """
    Turns a client cart into a priced, persisted order and a payment session.

    Example:
        service = CheckoutService(products, orders, StripePaymentProcessor())
        result = await service.create_checkout(identity, request)
        # client redirects to result.checkout_url
    """

    def __init__(
        self,
        products: Optional[IProductRepository] = None,
        orders: Optional[IOrderRepository] = None,
        processor: Optional[IPaymentProcessor] = None,
        pricing: PricingPolicy = DEFAULT_PRICING,
    ):
        self.products = products or InMemoryProductRepository()
        self.orders = orders or InMemoryOrderRepository()
        self.processor = processor or StripePaymentProcessor()
        self.pricing = pricing
        self._logger = structlog.get_logger(component="checkout")

    async def create_checkout(
        self, identity: Optional[Identity], request: CheckoutRequest
    ) -> CheckoutResult:
        if identity is None:
            raise Unauthorized()
        if not request.items:
            raise EmptyCart()

        log = self._logger.bind(user_id=identity.user_id)

        # Duplicate lines for the same product are merged
        quantities: Dict[str, int] = OrderedDict()
        for line in request.items:
            quantities[line.product_id] = quantities.get(line.product_id, 0) + line.quantity

        # Step 1: authoritative lookup, one batch
        found = await self.products.get_many(quantities.keys())
        catalog: Dict[str, Product] = {p.id: p for p in found if p.is_active}
        if len(catalog) != len(quantities):
            rejected = [pid for pid in quantities if pid not in catalog]
            log.warning("checkout_invalid_products", product_ids=rejected)
            raise InvalidOrInactiveProduct(rejected)

        # Step 2: point-in-time stock check, no reservation
        for product_id, quantity in quantities.items():
            product = catalog[product_id]
            if quantity > product.stock:
                log.info("checkout_insufficient_stock", product_id=product_id,
                         available=product.stock, requested=quantity)
                raise InsufficientStock(product.id, product.name, product.stock, quantity)

        # Step 3: pricing from stored prices only
        totals = calculate_totals(
            ((catalog[pid].price, qty) for pid, qty in quantities.items()),
            self.pricing,
        )

        # Step 4: persist PENDING order with frozen unit prices
        order_id = new_id()
        order = Order(
            id=order_id,
            user_id=identity.user_id,
            items=[
                OrderItem(
                    order_id=order_id,
                    product_id=pid,
                    product_name=catalog[pid].name,
                    quantity=qty,
                    price=catalog[pid].price,
                )
                for pid, qty in quantities.items()
            ],
            subtotal=totals.subtotal,
            shipping=totals.shipping,
            tax=totals.tax,
            total=totals.total,
            status=OrderStatus.PENDING,
            shipping_address=request.shipping_address,
            billing_address=request.billing_address,
        )
        order = await self.orders.create(order)
        log.info("order_created", order_id=order.id, items=len(order.items),
                 subtotal=str(totals.subtotal), total=str(totals.total))

        # Step 5: processor session. A failure here leaves an unpaid PENDING
        # order with no session reference, which reconciliation never matches.
        session = await self.processor.create_checkout_session(
            order, totals.shipping, identity.email
        )
        await self.orders.attach_payment_session(order.id, session.id)
        log.info("checkout_created", order_id=order.id, session_id=session.id)

        return CheckoutResult(
            order_id=order.id,
            session_id=session.id,
            checkout_url=session.url,
            total=order.total,
        )
