# (c) Copyright Datacraft, 2026
"""API routers."""
from .auth import router as auth_router
from .oauth import router as oauth_router
from .passkey import router as passkey_router

__all__ = ["auth_router", "oauth_router", "passkey_router"]
