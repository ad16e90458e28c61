# API Package - Centralized imports
# Allows easy importing of all routers and the auth dependency

from .auth import router as auth_router, get_current_user
from .admin import router as admin_router
from .children import router as children_router
from .vaccinations import router as vaccinations_router

__all__ = [
    # Auth
    "auth_router",
    "get_current_user",

    # Routers
    "admin_router",
    "children_router",
    "vaccinations_router",
]
