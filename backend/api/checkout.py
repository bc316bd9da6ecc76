# api/checkout.py
# ============================================================================
# CHECKOUT + PAYMENT WEBHOOK ENDPOINTS
# ============================================================================

from typing import Dict

from fastapi import APIRouter, Depends, Request

from api.dependencies import Services, get_services, rate_limit
from schemas.store import CheckoutRequest, CheckoutResult
from services.auth import Identity, require_user

router = APIRouter(tags=["checkout"])


@router.post(
    "/api/checkout",
    response_model=CheckoutResult,
    status_code=201,
    dependencies=[Depends(rate_limit("CHECKOUT"))],
)
async def create_checkout(
    body: CheckoutRequest,
    identity: Identity = Depends(require_user),
    services: Services = Depends(get_services),
):
    """Price the cart server-side, create a PENDING order, open a payment session."""
    return await services.checkout.create_checkout(identity, body)


@router.post("/api/webhooks/stripe")
async def stripe_webhook(
    request: Request,
    services: Services = Depends(get_services),
) -> Dict[str, bool]:
    """
    Stripe webhook handler for payment events.
    Signature is checked against the raw body before anything else.
    """
    payload = await request.body()
    signature = request.headers.get("stripe-signature")
    return await services.reconciler.process_webhook(payload, signature)
