# api/products.py
# ============================================================================
# PRODUCT CATALOG ENDPOINTS
# ============================================================================
# Reads are public (inactive products only visible to admins); writes need the
# ADMIN role. Products referenced by orders are deactivated, not deleted.
# ============================================================================

from typing import Optional

import structlog
from fastapi import APIRouter, Depends

from api.dependencies import Services, get_services, rate_limit
from errors import Conflict, NotFound, ValidationFailed
from schemas.store import Product, ProductCreate, ProductUpdate
from services.auth import Identity, get_identity, require_admin

logger = structlog.get_logger(component="products_api")

router = APIRouter(prefix="/api/products", tags=["products"])

NULLABLE_FIELDS = {"compare_at_price", "category_id"}


async def _ensure_category(services: Services, category_id: Optional[str]):
    if category_id and await services.categories.get(category_id) is None:
        raise ValidationFailed.for_field("categoryId", "Category not found")


async def _ensure_slug_free(services: Services, slug: str):
    if await services.products.get_by_slug(slug) is not None:
        raise Conflict("Product with this slug already exists")


@router.get("", dependencies=[Depends(rate_limit("API_READ"))])
async def list_products(
    featured: bool = False,
    category: Optional[str] = None,
    services: Services = Depends(get_services),
):
    category_id = None
    if category:
        found = await services.categories.get_by_slug(category)
        if found is None:
            return {"products": []}
        category_id = found.id

    products = await services.products.list_active(featured=featured, category_id=category_id)
    return {"products": products}


@router.get("/{product_id}", dependencies=[Depends(rate_limit("API_READ"))])
async def get_product(
    product_id: str,
    identity: Optional[Identity] = Depends(get_identity),
    services: Services = Depends(get_services),
):
    product = await services.products.get(product_id)
    if product is None or (not product.is_active and not (identity and identity.is_admin)):
        raise NotFound("Product not found")
    return {"product": product}


@router.post("", status_code=201, dependencies=[Depends(rate_limit("API_WRITE"))])
async def create_product(
    body: ProductCreate,
    admin: Identity = Depends(require_admin),
    services: Services = Depends(get_services),
):
    await _ensure_slug_free(services, body.slug)
    await _ensure_category(services, body.category_id)

    product = await services.products.create(Product(**body.model_dump()))
    logger.info("product_created", product_id=product.id, slug=product.slug, admin=admin.user_id)
    return {"product": product}


@router.put("/{product_id}", dependencies=[Depends(rate_limit("API_WRITE"))])
async def update_product(
    product_id: str,
    body: ProductUpdate,
    admin: Identity = Depends(require_admin),
    services: Services = Depends(get_services),
):
    product = await services.products.get(product_id)
    if product is None:
        raise NotFound("Product not found")

    changes = {
        k: v for k, v in body.model_dump(exclude_unset=True).items()
        if v is not None or k in NULLABLE_FIELDS
    }
    if "slug" in changes and changes["slug"] != product.slug:
        await _ensure_slug_free(services, changes["slug"])
    if "category_id" in changes:
        await _ensure_category(services, changes["category_id"])

    updated = await services.products.update(product_id, changes)
    if updated is None:
        raise NotFound("Product not found")
    logger.info("product_updated", product_id=product_id, fields=sorted(changes),
                admin=admin.user_id)
    return {"product": updated}


@router.delete("/{product_id}", dependencies=[Depends(rate_limit("API_DELETE"))])
async def delete_product(
    product_id: str,
    admin: Identity = Depends(require_admin),
    services: Services = Depends(get_services),
):
    product = await services.products.get(product_id)
    if product is None:
        raise NotFound("Product not found")

    # Order history keeps its product reference
    if await services.orders.has_items_for_product(product_id):
        product = await services.products.update(product_id, {"is_active": False})
        if product is None:
            raise NotFound("Product not found")
        logger.info("product_deactivated", product_id=product_id, admin=admin.user_id)
        return {"message": "Product deactivated (has existing orders)", "product": product}

    await services.products.delete(product_id)
    logger.info("product_deleted", product_id=product_id, admin=admin.user_id)
    return {"message": "Product deleted successfully"}
