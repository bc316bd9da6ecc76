# storage/__init__.py
# ============================================================================
# HANDMADE STORE BACKEND — STORAGE MODULE
# ============================================================================
# Repository interfaces plus in-memory and PostgreSQL implementations
# ============================================================================

from storage.repositories import (
    ICategoryRepository,
    IOrderRepository,
    IProductRepository,
    InMemoryCategoryRepository,
    InMemoryOrderRepository,
    InMemoryProductRepository,
)

__all__ = [
    "ICategoryRepository",
    "IOrderRepository",
    "IProductRepository",
    "InMemoryCategoryRepository",
    "InMemoryOrderRepository",
    "InMemoryProductRepository",
]
