# storage/repositories.py
# ============================================================================
# HANDMADE STORE BACKEND — REPOSITORY INTERFACES + IN-MEMORY IMPLEMENTATIONS
# ============================================================================
# Interfaces are what checkout, reconciliation and the API depend on. The
# in-memory implementations back tests and single-process demos; the asyncpg
# implementations in storage/postgres.py are drop-in replacements.
#
# Order mutations that must be idempotent (payment commit, status change) are
# compare-and-set operations: they check the current state and write in one
# atomic step, and return None when the guard does not hold. A payment commit
# and the stock decrements it pays for land together or not at all.
#
# Product updates write only the fields they are given, so an admin edit never
# restores stock that a concurrent payment has already taken.
# ============================================================================

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, NamedTuple, Optional, Tuple

from schemas.store import (
    Category,
    Order,
    OrderStatus,
    Product,
    StockDecrement,
    utcnow,
)

# (product_id, quantity)
StockLine = Tuple[str, int]


class PaymentCommit(NamedTuple):
    """A paid order and the stock decrements applied for it, in item order."""
    order: Order
    decrements: List[Optional[StockDecrement]]


# =============================================================================
# INTERFACES
# =============================================================================

class IProductRepository(ABC):
    """Product catalog storage"""

    @abstractmethod
    async def get(self, id: str) -> Optional[Product]:
        pass

    @abstractmethod
    async def get_many(self, ids: Iterable[str]) -> List[Product]:
        """Batch lookup; unknown ids are simply absent from the result."""
        pass

    @abstractmethod
    async def get_by_slug(self, slug: str) -> Optional[Product]:
        pass

    @abstractmethod
    async def list_active(
        self, featured: bool = False, category_id: Optional[str] = None
    ) -> List[Product]:
        """Active products, newest first."""
        pass

    @abstractmethod
    async def count_by_category(self, category_id: str) -> int:
        pass

    @abstractmethod
    async def create(self, product: Product) -> Product:
        pass

    @abstractmethod
    async def update(self, id: str, changes: Dict[str, Any]) -> Optional[Product]:
        """Write only the given fields. Returns None if the product is gone."""
        pass

    @abstractmethod
    async def delete(self, id: str) -> bool:
        pass

    @abstractmethod
    async def decrement_stock(self, lines: Iterable[StockLine]) -> List[Optional[StockDecrement]]:
        """
        Subtract each quantity from stock, never going below zero.

        All lines are applied in one atomic step. Results follow the input
        order; an unknown product yields None.
        """
        pass


class ICategoryRepository(ABC):
    """Category storage"""

    @abstractmethod
    async def get(self, id: str) -> Optional[Category]:
        pass

    @abstractmethod
    async def get_by_slug(self, slug: str) -> Optional[Category]:
        pass

    @abstractmethod
    async def list(self) -> List[Category]:
        """All categories ordered by name."""
        pass

    @abstractmethod
    async def create(self, category: Category) -> Category:
        pass

    @abstractmethod
    async def update(self, category: Category) -> Category:
        pass

    @abstractmethod
    async def delete(self, id: str) -> bool:
        pass


class IOrderRepository(ABC):
    """Order storage. Orders are never deleted."""

    @abstractmethod
    async def create(self, order: Order) -> Order:
        """Persist an order together with its items."""
        pass

    @abstractmethod
    async def get(self, id: str) -> Optional[Order]:
        pass

    @abstractmethod
    async def list(
        self, user_id: Optional[str] = None, status: Optional[OrderStatus] = None
    ) -> List[Order]:
        """Orders newest first, optionally filtered by owner and status."""
        pass

    @abstractmethod
    async def get_by_session(self, session_id: str) -> Optional[Order]:
        pass

    @abstractmethod
    async def get_by_payment_intent(self, payment_intent_id: str) -> Optional[Order]:
        pass

    @abstractmethod
    async def has_items_for_product(self, product_id: str) -> bool:
        pass

    @abstractmethod
    async def attach_payment_session(self, order_id: str, session_id: str) -> Optional[Order]:
        pass

    @abstractmethod
    async def commit_payment(
        self,
        order_id: str,
        payment_intent_id: Optional[str],
        products: IProductRepository,
    ) -> Optional[PaymentCommit]:
        """
        Mark a paid order as PROCESSING and decrement stock for its items.

        Succeeds once per order: only while stock has not been committed and the
        order is PENDING or PROCESSING. The order update and every decrement
        are one unit, so a failure leaves the order claimable for a redelivery.
        Returns None when the payment was already committed or the order
        cannot be paid.
        """
        pass

    @abstractmethod
    async def transition(
        self,
        order_id: str,
        from_statuses: Iterable[OrderStatus],
        to_status: OrderStatus,
        payment_intent_id: Optional[str] = None,
    ) -> Optional[Order]:
        """Set to_status only if the current status is one of from_statuses."""
        pass


# =============================================================================
# IN-MEMORY IMPLEMENTATIONS
# =============================================================================

class InMemoryProductRepository(IProductRepository):
    """Lock-guarded in-memory product repository"""

    def __init__(self, products: Optional[Iterable[Product]] = None):
        self._products: Dict[str, Product] = {p.id: p for p in products or []}
        self._lock = asyncio.Lock()

    async def get(self, id: str) -> Optional[Product]:
        async with self._lock:
            return self._products.get(id)

    async def get_many(self, ids: Iterable[str]) -> List[Product]:
        async with self._lock:
            return [self._products[i] for i in dict.fromkeys(ids) if i in self._products]

    async def get_by_slug(self, slug: str) -> Optional[Product]:
        async with self._lock:
            for product in self._products.values():
                if product.slug == slug:
                    return product
            return None

    async def list_active(
        self, featured: bool = False, category_id: Optional[str] = None
    ) -> List[Product]:
        async with self._lock:
            products = [
                p for p in self._products.values()
                if p.is_active
                and (not featured or p.is_featured)
                and (category_id is None or p.category_id == category_id)
            ]
        return sorted(products, key=lambda p: p.created_at, reverse=True)

    async def count_by_category(self, category_id: str) -> int:
        async with self._lock:
            return sum(1 for p in self._products.values() if p.category_id == category_id)

    async def create(self, product: Product) -> Product:
        async with self._lock:
            self._products[product.id] = product
            return product

    async def update(self, id: str, changes: Dict[str, Any]) -> Optional[Product]:
        async with self._lock:
            product = self._products.get(id)
            if product is None:
                return None
            product = product.model_copy(update={**changes, "updated_at": utcnow()})
            self._products[id] = product
            return product

    async def delete(self, id: str) -> bool:
        async with self._lock:
            return self._products.pop(id, None) is not None

    async def decrement_stock(self, lines: Iterable[StockLine]) -> List[Optional[StockDecrement]]:
        results: List[Optional[StockDecrement]] = []
        async with self._lock:
            for product_id, quantity in lines:
                product = self._products.get(product_id)
                if product is None:
                    results.append(None)
                    continue
                applied = min(product.stock, quantity)
                remaining = product.stock - applied
                self._products[product_id] = product.model_copy(
                    update={"stock": remaining, "updated_at": utcnow()}
                )
                results.append(StockDecrement(
                    product_id=product_id, requested=quantity,
                    applied=applied, remaining=remaining,
                ))
        return results


class InMemoryCategoryRepository(ICategoryRepository):
    """Lock-guarded in-memory category repository"""

    def __init__(self, categories: Optional[Iterable[Category]] = None):
        self._categories: Dict[str, Category] = {c.id: c for c in categories or []}
        self._lock = asyncio.Lock()

    async def get(self, id: str) -> Optional[Category]:
        async with self._lock:
            return self._categories.get(id)

    async def get_by_slug(self, slug: str) -> Optional[Category]:
        async with self._lock:
            for category in self._categories.values():
                if category.slug == slug:
                    return category
            return None

    async def list(self) -> List[Category]:
        async with self._lock:
            return sorted(self._categories.values(), key=lambda c: c.name)

    async def create(self, category: Category) -> Category:
        async with self._lock:
            self._categories[category.id] = category
            return category

    async def update(self, category: Category) -> Category:
        category = category.model_copy(update={"updated_at": utcnow()})
        async with self._lock:
            self._categories[category.id] = category
            return category

    async def delete(self, id: str) -> bool:
        async with self._lock:
            return self._categories.pop(id, None) is not None


class InMemoryOrderRepository(IOrderRepository):
    """Lock-guarded in-memory order repository"""

    def __init__(self):
        self._orders: Dict[str, Order] = {}
        self._lock = asyncio.Lock()

    async def create(self, order: Order) -> Order:
        async with self._lock:
            self._orders[order.id] = order
            return order

    async def get(self, id: str) -> Optional[Order]:
        async with self._lock:
            return self._orders.get(id)

    async def list(
        self, user_id: Optional[str] = None, status: Optional[OrderStatus] = None
    ) -> List[Order]:
        async with self._lock:
            orders = [
                o for o in self._orders.values()
                if (user_id is None or o.user_id == user_id)
                and (status is None or o.status == status)
            ]
        return sorted(orders, key=lambda o: o.created_at, reverse=True)

    async def get_by_session(self, session_id: str) -> Optional[Order]:
        async with self._lock:
            for order in self._orders.values():
                if order.payment_session_id == session_id:
                    return order
            return None

    async def get_by_payment_intent(self, payment_intent_id: str) -> Optional[Order]:
        async with self._lock:
            for order in self._orders.values():
                if order.payment_intent_id == payment_intent_id:
                    return order
            return None

    async def has_items_for_product(self, product_id: str) -> bool:
        async with self._lock:
            return any(
                item.product_id == product_id
                for order in self._orders.values()
                for item in order.items
            )

    async def attach_payment_session(self, order_id: str, session_id: str) -> Optional[Order]:
        return await self._update(order_id, payment_session_id=session_id)

    async def commit_payment(
        self,
        order_id: str,
        payment_intent_id: Optional[str],
        products: IProductRepository,
    ) -> Optional[PaymentCommit]:
        # Order lock is held across the decrement; the product repository
        # never takes it, so the lock order is always orders -> products
        async with self._lock:
            order = self._orders.get(order_id)
            if order is None or order.stock_committed:
                return None
            if order.status not in (OrderStatus.PENDING, OrderStatus.PROCESSING):
                return None

            # Raises before anything is recorded on the order
            decrements = await products.decrement_stock(
                (item.product_id, item.quantity) for item in order.items
            )

            changes = {
                "status": OrderStatus.PROCESSING,
                "stock_committed": True,
                "updated_at": utcnow(),
            }
            if payment_intent_id:
                changes["payment_intent_id"] = payment_intent_id
            order = order.model_copy(update=changes)
            self._orders[order_id] = order
            return PaymentCommit(order, decrements)

    async def transition(
        self,
        order_id: str,
        from_statuses: Iterable[OrderStatus],
        to_status: OrderStatus,
        payment_intent_id: Optional[str] = None,
    ) -> Optional[Order]:
        allowed = set(from_statuses)
        async with self._lock:
            order = self._orders.get(order_id)
            if order is None or order.status not in allowed:
                return None
            changes = {"status": to_status, "updated_at": utcnow()}
            if payment_intent_id and not order.payment_intent_id:
                changes["payment_intent_id"] = payment_intent_id
            order = order.model_copy(update=changes)
            self._orders[order_id] = order
            return order

    async def _update(self, order_id: str, **changes) -> Optional[Order]:
        async with self._lock:
            order = self._orders.get(order_id)
            if order is None:
                return None
            order = order.model_copy(update={**changes, "updated_at": utcnow()})
            self._orders[order_id] = order
            return order
