# api/__init__.py
# ============================================================================
# HANDMADE STORE BACKEND — HTTP API
# ============================================================================
# Routers are imported by api.server; import create_app from there.
# ============================================================================
