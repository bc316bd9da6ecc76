# services/__init__.py
# ============================================================================
# HANDMADE STORE BACKEND — SERVICES MODULE
# ============================================================================
# Caller identity and admission control shared by the API routers
# ============================================================================

from services.auth import (
    Identity,
    create_access_token,
    get_identity,
    require_admin,
    require_user,
)

from services.rate_limiter import (
    RateLimiter,
    RateLimitResult,
    get_client_identifier,
    rate_limit_headers,
)

__all__ = [
    # Auth
    "Identity",
    "create_access_token",
    "get_identity",
    "require_admin",
    "require_user",
    # Rate limiting
    "RateLimiter",
    "RateLimitResult",
    "get_client_identifier",
    "rate_limit_headers",
]
