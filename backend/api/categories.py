# api/categories.py
# ============================================================================
# CATEGORY ENDPOINTS
# ============================================================================

import structlog
from fastapi import APIRouter, Depends

from api.dependencies import Services, get_services, rate_limit
from errors import Conflict, NotFound
from schemas.store import Category, CategoryCreate, CategoryUpdate
from services.auth import Identity, require_admin

logger = structlog.get_logger(component="categories_api")

router = APIRouter(prefix="/api/categories", tags=["categories"])


@router.get("", dependencies=[Depends(rate_limit("API_READ"))])
async def list_categories(services: Services = Depends(get_services)):
    categories = []
    for category in await services.categories.list():
        count = await services.products.count_by_category(category.id)
        categories.append(category.model_copy(update={"product_count": count}))
    return {"categories": categories}


@router.post("", status_code=201, dependencies=[Depends(rate_limit("API_WRITE"))])
async def create_category(
    body: CategoryCreate,
    admin: Identity = Depends(require_admin),
    services: Services = Depends(get_services),
):
    if await services.categories.get_by_slug(body.slug) is not None:
        raise Conflict("Category with this slug already exists")

    category = await services.categories.create(Category(**body.model_dump()))
    logger.info("category_created", category_id=category.id, slug=category.slug,
                admin=admin.user_id)
    return {"category": category}


@router.put("/{category_id}", dependencies=[Depends(rate_limit("API_WRITE"))])
async def update_category(
    category_id: str,
    body: CategoryUpdate,
    admin: Identity = Depends(require_admin),
    services: Services = Depends(get_services),
):
    category = await services.categories.get(category_id)
    if category is None:
        raise NotFound("Category not found")

    changes = {
        k: v for k, v in body.model_dump(exclude_unset=True).items()
        if v is not None or k in ("description", "image")
    }
    if "slug" in changes and changes["slug"] != category.slug:
        if await services.categories.get_by_slug(changes["slug"]) is not None:
            raise Conflict("Category with this slug already exists")

    category = await services.categories.update(category.model_copy(update=changes))
    logger.info("category_updated", category_id=category.id, admin=admin.user_id)
    return {"category": category}


@router.delete("/{category_id}", dependencies=[Depends(rate_limit("API_DELETE"))])
async def delete_category(
    category_id: str,
    admin: Identity = Depends(require_admin),
    services: Services = Depends(get_services),
):
    category = await services.categories.get(category_id)
    if category is None:
        raise NotFound("Category not found")

    products = await services.products.count_by_category(category_id)
    if products:
        raise Conflict(
            "Cannot delete category with existing products",
            details={"productCount": products},
        )

    await services.categories.delete(category_id)
    logger.info("category_deleted", category_id=category_id, admin=admin.user_id)
    return {"message": "Category deleted successfully"}
