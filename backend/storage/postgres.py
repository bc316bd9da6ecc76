# storage/postgres.py
# ============================================================================
# HANDMADE STORE BACKEND — POSTGRESQL REPOSITORIES (asyncpg)
# ============================================================================
# Same contracts as the in-memory repositories. Guarded order mutations are
# single UPDATE ... WHERE <guard> RETURNING statements. A payment commit runs
# its guarded UPDATE and the stock decrements in one transaction, holding the
# product row locks until it commits.
# ============================================================================

import json
from typing import Any, Dict, Iterable, List, Optional

import asyncpg
import structlog

from database import Database
from errors import Conflict
from schemas.store import (
    Address,
    Category,
    Order,
    OrderItem,
    OrderStatus,
    Product,
    StockDecrement,
)
from storage.repositories import (
    ICategoryRepository,
    IOrderRepository,
    IProductRepository,
    PaymentCommit,
    StockLine,
)

logger = structlog.get_logger(component="postgres_storage")


PRODUCT_COLUMNS = (
    "id, name, slug, description, price, compare_at_price, images, category_id, "
    "stock, is_active, is_featured, created_at, updated_at"
)
ORDER_COLUMNS = (
    "id, user_id, subtotal, shipping, tax, total, status, shipping_address, "
    "billing_address, payment_session_id, payment_intent_id, stock_committed, "
    "created_at, updated_at"
)
UPDATABLE_PRODUCT_COLUMNS = frozenset({
    "name", "slug", "description", "price", "compare_at_price", "images",
    "category_id", "stock", "is_active", "is_featured",
})


def _product(row: asyncpg.Record) -> Product:
    data = dict(row)
    data["images"] = list(data.get("images") or [])
    return Product(**data)


def _address(value: Any) -> Optional[Address]:
    if value is None:
        return None
    if isinstance(value, str):
        value = json.loads(value)
    return Address(**value)


def _address_json(address: Optional[Address]) -> Optional[str]:
    return address.model_dump_json() if address else None


async def _decrement_rows(
    conn: asyncpg.Connection, lines: List[StockLine]
) -> List[Optional[StockDecrement]]:
    """Floor-clamped decrements inside the caller's transaction."""
    # Rows are locked in id order so concurrent commits cannot deadlock
    await conn.execute(
        "SELECT id FROM products WHERE id = ANY($1::text[]) ORDER BY id FOR UPDATE",
        sorted({product_id for product_id, _ in lines}),
    )

    results: List[Optional[StockDecrement]] = []
    for product_id, quantity in lines:
        current = await conn.fetchval("SELECT stock FROM products WHERE id = $1", product_id)
        if current is None:
            results.append(None)
            continue
        applied = min(current, quantity)
        remaining = current - applied
        await conn.execute(
            "UPDATE products SET stock = $2, updated_at = NOW() WHERE id = $1",
            product_id, remaining,
        )
        results.append(StockDecrement(
            product_id=product_id, requested=quantity, applied=applied, remaining=remaining
        ))
    return results


# =============================================================================
# PRODUCTS
# =============================================================================

class PostgresProductRepository(IProductRepository):

    async def get(self, id: str) -> Optional[Product]:
        row = await Database.fetch_one(
            f"SELECT {PRODUCT_COLUMNS} FROM products WHERE id = $1", id
        )
        return _product(row) if row else None

    async def get_many(self, ids: Iterable[str]) -> List[Product]:
        rows = await Database.fetch_all(
            f"SELECT {PRODUCT_COLUMNS} FROM products WHERE id = ANY($1::text[])",
            list(dict.fromkeys(ids)),
        )
        return [_product(r) for r in rows]

    async def get_by_slug(self, slug: str) -> Optional[Product]:
        row = await Database.fetch_one(
            f"SELECT {PRODUCT_COLUMNS} FROM products WHERE slug = $1", slug
        )
        return _product(row) if row else None

    async def list_active(
        self, featured: bool = False, category_id: Optional[str] = None
    ) -> List[Product]:
        clauses = ["is_active = TRUE"]
        params: List[Any] = []
        if featured:
            clauses.append("is_featured = TRUE")
        if category_id is not None:
            params.append(category_id)
            clauses.append(f"category_id = ${len(params)}")

        rows = await Database.fetch_all(
            f"SELECT {PRODUCT_COLUMNS} FROM products "
            f"WHERE {' AND '.join(clauses)} ORDER BY created_at DESC",
            *params,
        )
        return [_product(r) for r in rows]

    async def count_by_category(self, category_id: str) -> int:
        return await Database.fetch_value(
            "SELECT COUNT(*) FROM products WHERE category_id = $1", category_id
        )

    async def create(self, product: Product) -> Product:
        try:
            await Database.execute(
                f"""
                INSERT INTO products ({PRODUCT_COLUMNS})
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13)
                """,
                product.id, product.name, product.slug, product.description,
                product.price, product.compare_at_price, product.images,
                product.category_id, product.stock, product.is_active,
                product.is_featured, product.created_at, product.updated_at,
            )
        except asyncpg.UniqueViolationError:
            raise Conflict("Product with this slug already exists")
        return product

    async def update(self, id: str, changes: Dict[str, Any]) -> Optional[Product]:
        unknown = set(changes) - UPDATABLE_PRODUCT_COLUMNS
        if unknown:
            raise ValueError(f"Not updatable: {', '.join(sorted(unknown))}")

        params: List[Any] = [id]
        assignments = []
        for column, value in changes.items():
            params.append(value)
            assignments.append(f"{column} = ${len(params)}")
        assignments.append("updated_at = NOW()")

        try:
            row = await Database.fetch_one(
                f"""
                UPDATE products SET {', '.join(assignments)}
                WHERE id = $1
                RETURNING {PRODUCT_COLUMNS}
                """,
                *params,
            )
        except asyncpg.UniqueViolationError:
            raise Conflict("Product with this slug already exists")
        return _product(row) if row else None

    async def delete(self, id: str) -> bool:
        result = await Database.execute("DELETE FROM products WHERE id = $1", id)
        return result == "DELETE 1"

    async def decrement_stock(self, lines: Iterable[StockLine]) -> List[Optional[StockDecrement]]:
        async with Database.transaction() as conn:
            return await _decrement_rows(conn, list(lines))


# =============================================================================
# CATEGORIES
# =============================================================================

class PostgresCategoryRepository(ICategoryRepository):

    _columns = "id, name, slug, description, image, created_at, updated_at"

    async def get(self, id: str) -> Optional[Category]:
        row = await Database.fetch_one(
            f"SELECT {self._columns} FROM categories WHERE id = $1", id
        )
        return Category(**dict(row)) if row else None

    async def get_by_slug(self, slug: str) -> Optional[Category]:
        row = await Database.fetch_one(
            f"SELECT {self._columns} FROM categories WHERE slug = $1", slug
        )
        return Category(**dict(row)) if row else None

    async def list(self) -> List[Category]:
        rows = await Database.fetch_all(
            f"SELECT {self._columns} FROM categories ORDER BY name ASC"
        )
        return [Category(**dict(r)) for r in rows]

    async def create(self, category: Category) -> Category:
        try:
            await Database.execute(
                f"INSERT INTO categories ({self._columns}) VALUES ($1, $2, $3, $4, $5, $6, $7)",
                category.id, category.name, category.slug, category.description,
                category.image, category.created_at, category.updated_at,
            )
        except asyncpg.UniqueViolationError:
            raise Conflict("Category with this slug already exists")
        return category

    async def update(self, category: Category) -> Category:
        try:
            row = await Database.fetch_one(
                f"""
                UPDATE categories
                SET name = $2, slug = $3, description = $4, image = $5, updated_at = NOW()
                WHERE id = $1
                RETURNING {self._columns}
                """,
                category.id, category.name, category.slug, category.description,
                category.image,
            )
        except asyncpg.UniqueViolationError:
            raise Conflict("Category with this slug already exists")
        return Category(**dict(row)) if row else category

    async def delete(self, id: str) -> bool:
        result = await Database.execute("DELETE FROM categories WHERE id = $1", id)
        return result == "DELETE 1"


# =============================================================================
# ORDERS
# =============================================================================

class PostgresOrderRepository(IOrderRepository):

    async def _hydrate(self, rows: List[asyncpg.Record]) -> List[Order]:
        if not rows:
            return []
        item_rows = await Database.fetch_all(
            """
            SELECT id, order_id, product_id, product_name, quantity, price
            FROM order_items WHERE order_id = ANY($1::text[])
            ORDER BY order_id, id
            """,
            [r["id"] for r in rows],
        )
        items: Dict[str, List[OrderItem]] = {}
        for item in item_rows:
            items.setdefault(item["order_id"], []).append(OrderItem(**dict(item)))

        orders = []
        for row in rows:
            data = dict(row)
            data["shipping_address"] = _address(data["shipping_address"])
            data["billing_address"] = _address(data["billing_address"])
            data["items"] = items.get(data["id"], [])
            orders.append(Order(**data))
        return orders

    async def _one(self, where: str, *args) -> Optional[Order]:
        rows = await Database.fetch_all(
            f"SELECT {ORDER_COLUMNS} FROM orders WHERE {where} "
            "ORDER BY created_at DESC LIMIT 1",
            *args,
        )
        orders = await self._hydrate(rows)
        return orders[0] if orders else None

    async def create(self, order: Order) -> Order:
        async with Database.transaction() as conn:
            await conn.execute(
                f"""
                INSERT INTO orders ({ORDER_COLUMNS})
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8::jsonb, $9::jsonb, $10, $11, $12, $13, $14)
                """,
                order.id, order.user_id, order.subtotal, order.shipping, order.tax,
                order.total, order.status.value, _address_json(order.shipping_address),
                _address_json(order.billing_address), order.payment_session_id,
                order.payment_intent_id, order.stock_committed, order.created_at,
                order.updated_at,
            )
            await conn.executemany(
                """
                INSERT INTO order_items (id, order_id, product_id, product_name, quantity, price)
                VALUES ($1, $2, $3, $4, $5, $6)
                """,
                [
                    (i.id, order.id, i.product_id, i.product_name, i.quantity, i.price)
                    for i in order.items
                ],
            )
        logger.debug("order_inserted", order_id=order.id, items=len(order.items))
        return order

    async def get(self, id: str) -> Optional[Order]:
        return await self._one("id = $1", id)

    async def list(
        self, user_id: Optional[str] = None, status: Optional[OrderStatus] = None
    ) -> List[Order]:
        clauses = []
        params: List[Any] = []
        if user_id is not None:
            params.append(user_id)
            clauses.append(f"user_id = ${len(params)}")
        if status is not None:
            params.append(status.value)
            clauses.append(f"status = ${len(params)}")
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

        rows = await Database.fetch_all(
            f"SELECT {ORDER_COLUMNS} FROM orders {where} ORDER BY created_at DESC",
            *params,
        )
        return await self._hydrate(rows)

    async def get_by_session(self, session_id: str) -> Optional[Order]:
        return await self._one("payment_session_id = $1", session_id)

    async def get_by_payment_intent(self, payment_intent_id: str) -> Optional[Order]:
        return await self._one("payment_intent_id = $1", payment_intent_id)

    async def has_items_for_product(self, product_id: str) -> bool:
        return await Database.fetch_value(
            "SELECT EXISTS (SELECT 1 FROM order_items WHERE product_id = $1)", product_id
        )

    async def attach_payment_session(self, order_id: str, session_id: str) -> Optional[Order]:
        row = await Database.fetch_one(
            """
            UPDATE orders SET payment_session_id = $2, updated_at = NOW()
            WHERE id = $1 RETURNING id
            """,
            order_id, session_id,
        )
        return await self.get(order_id) if row else None

    async def commit_payment(
        self,
        order_id: str,
        payment_intent_id: Optional[str],
        products: IProductRepository,
    ) -> Optional[PaymentCommit]:
        # Stock lives in the same database; products is only used by other backends
        order = await self.get(order_id)
        if order is None:
            return None

        async with Database.transaction() as conn:
            row = await conn.fetchrow(
                """
                UPDATE orders
                SET status = 'PROCESSING',
                    payment_intent_id = COALESCE($2, payment_intent_id),
                    stock_committed = TRUE,
                    updated_at = NOW()
                WHERE id = $1
                  AND stock_committed = FALSE
                  AND status IN ('PENDING', 'PROCESSING')
                RETURNING id
                """,
                order_id, payment_intent_id,
            )
            if row is None:
                return None
            decrements = await _decrement_rows(
                conn, [(item.product_id, item.quantity) for item in order.items]
            )

        return PaymentCommit(await self.get(order_id), decrements)

    async def transition(
        self,
        order_id: str,
        from_statuses: Iterable[OrderStatus],
        to_status: OrderStatus,
        payment_intent_id: Optional[str] = None,
    ) -> Optional[Order]:
        row = await Database.fetch_one(
            """
            UPDATE orders
            SET status = $3,
                payment_intent_id = COALESCE(payment_intent_id, $4),
                updated_at = NOW()
            WHERE id = $1 AND status = ANY($2::text[])
            RETURNING id
            """,
            order_id, [s.value for s in from_statuses], to_status.value, payment_intent_id,
        )
        return await self.get(order_id) if row else None
