# api/dependencies.py
# ============================================================================
# HANDMADE STORE BACKEND — SERVICE WIRING + SHARED DEPENDENCIES
# ============================================================================

from typing import Optional

import structlog
from fastapi import Depends, Request, Response

from config import DEFAULT_PRICING, RATE_LIMITS, PricingPolicy, settings
from errors import RateLimited
from payments.checkout import CheckoutService
from payments.processor import IPaymentProcessor, StripePaymentProcessor
from payments.reconciler import PaymentReconciler
from services.auth import Identity, get_identity
from services.rate_limiter import (
    RateLimiter,
    get_client_identifier,
    rate_limit_headers,
)
from storage.repositories import (
    ICategoryRepository,
    InMemoryCategoryRepository,
    InMemoryOrderRepository,
    InMemoryProductRepository,
    IOrderRepository,
    IProductRepository,
)

logger = structlog.get_logger(component="api")


class Services:
    """Everything a request handler needs, built once per app."""

    def __init__(
        self,
        products: IProductRepository,
        categories: ICategoryRepository,
        orders: IOrderRepository,
        processor: Optional[IPaymentProcessor] = None,
        rate_limiter: Optional[RateLimiter] = None,
        webhook_secret: Optional[str] = None,
        pricing: PricingPolicy = DEFAULT_PRICING,
        storage_backend: str = "memory",
    ):
        self.products = products
        self.categories = categories
        self.orders = orders
        self.processor = processor or StripePaymentProcessor()
        self.rate_limiter = rate_limiter or RateLimiter()
        self.storage_backend = storage_backend

        self.checkout = CheckoutService(products, orders, self.processor, pricing)
        self.reconciler = PaymentReconciler(orders, products, self.processor, webhook_secret)

    @classmethod
    def in_memory(cls, **kwargs) -> "Services":
        return cls(
            products=kwargs.pop("products", None) or InMemoryProductRepository(),
            categories=kwargs.pop("categories", None) or InMemoryCategoryRepository(),
            orders=kwargs.pop("orders", None) or InMemoryOrderRepository(),
            storage_backend="memory",
            **kwargs,
        )

    @classmethod
    def postgres(cls, **kwargs) -> "Services":
        from storage.postgres import (
            PostgresCategoryRepository,
            PostgresOrderRepository,
            PostgresProductRepository,
        )
        return cls(
            products=PostgresProductRepository(),
            categories=PostgresCategoryRepository(),
            orders=PostgresOrderRepository(),
            storage_backend="postgres",
            **kwargs,
        )

    @classmethod
    def from_settings(cls) -> "Services":
        if settings.STORAGE_BACKEND == "postgres":
            return cls.postgres()
        if settings.STORAGE_BACKEND != "memory":
            logger.warning("unknown_storage_backend", backend=settings.STORAGE_BACKEND,
                           fallback="memory")
        return cls.in_memory()


def get_services(request: Request) -> Services:
    return request.app.state.services


# =============================================================================
# RATE LIMITING
# =============================================================================

def rate_limit(rule_name: str):
    """Dependency factory enforcing RATE_LIMITS[rule_name] per caller."""
    rule = RATE_LIMITS[rule_name]

    async def enforce(
        request: Request,
        response: Response,
        identity: Optional[Identity] = Depends(get_identity),
    ) -> None:
        limiter = get_services(request).rate_limiter
        identifier = get_client_identifier(request, identity.user_id if identity else None)
        result = await limiter.check(identifier, rule)
        headers = rate_limit_headers(result)

        if not result.success:
            logger.warning("rate_limited", identifier=identifier, rule=rule_name,
                           path=request.url.path)
            raise RateLimited(headers=headers)

        response.headers.update(headers)

    return enforce
