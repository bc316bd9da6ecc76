# api/orders.py
# ============================================================================
# ORDER TRACKING + FULFILLMENT ENDPOINTS
# ============================================================================
# Customers read their own orders. Admins read all orders and drive
# fulfillment. Leaving PENDING for PROCESSING is reserved for payment
# reconciliation, so admins may only cancel a PENDING order.
# ============================================================================

from typing import Optional

import structlog
from fastapi import APIRouter, Depends

from api.dependencies import Services, get_services, rate_limit
from errors import InvalidTransition, NotFound
from schemas.store import ORDER_TRANSITIONS, OrderStatus, OrderStatusUpdate
from services.auth import Identity, require_admin, require_user

logger = structlog.get_logger(component="orders_api")

router = APIRouter(prefix="/api/orders", tags=["orders"])

ADMIN_TRANSITIONS = {
    status: targets - {OrderStatus.PROCESSING} if status == OrderStatus.PENDING else targets
    for status, targets in ORDER_TRANSITIONS.items()
}


@router.get("", dependencies=[Depends(rate_limit("API_READ"))])
async def list_orders(
    status: Optional[OrderStatus] = None,
    identity: Identity = Depends(require_user),
    services: Services = Depends(get_services),
):
    user_id = None if identity.is_admin else identity.user_id
    orders = await services.orders.list(user_id=user_id, status=status)
    return {"orders": orders}


@router.get("/{order_id}", dependencies=[Depends(rate_limit("API_READ"))])
async def get_order(
    order_id: str,
    identity: Identity = Depends(require_user),
    services: Services = Depends(get_services),
):
    order = await services.orders.get(order_id)
    # Someone else's order is reported as missing
    if order is None or (order.user_id != identity.user_id and not identity.is_admin):
        raise NotFound("Order not found")
    return {"order": order}


@router.patch("/{order_id}/status", dependencies=[Depends(rate_limit("API_WRITE"))])
async def update_order_status(
    order_id: str,
    body: OrderStatusUpdate,
    admin: Identity = Depends(require_admin),
    services: Services = Depends(get_services),
):
    order = await services.orders.get(order_id)
    if order is None:
        raise NotFound("Order not found")

    if body.status not in ADMIN_TRANSITIONS[order.status]:
        raise InvalidTransition(
            f"Cannot move order from {order.status.value} to {body.status.value}"
        )

    updated = await services.orders.transition(order_id, [order.status], body.status)
    if updated is None:
        # Status changed underneath us (e.g. a webhook landed)
        raise InvalidTransition("Order status changed concurrently, reload and retry")

    logger.info("order_status_changed", order_id=order_id, previous=order.status.value,
                status=updated.status.value, admin=admin.user_id)
    return {"order": updated}
