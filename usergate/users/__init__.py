"""User directory and admin endpoints."""

from usergate.users.routes import admin_router, router as users_router

__all__ = ["users_router", "admin_router"]
