# payments/__init__.py
# ============================================================================
# HANDMADE STORE BACKEND — PAYMENTS MODULE
# ============================================================================
# Checkout, pricing, processor adapter and webhook reconciliation
# ============================================================================

from payments.checkout import CheckoutService
from payments.pricing import PriceBreakdown, calculate_totals
from payments.processor import IPaymentProcessor, PaymentSession, StripePaymentProcessor
from payments.reconciler import PaymentReconciler, WebhookRouter

__all__ = [
    "CheckoutService",
    "PriceBreakdown",
    "calculate_totals",
    "IPaymentProcessor",
    "PaymentSession",
    "StripePaymentProcessor",
    "PaymentReconciler",
    "WebhookRouter",
]
