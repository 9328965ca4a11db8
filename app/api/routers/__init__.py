"""
app/api/routers package marker.
"""

from app.api.routers.incremental_admin import router as incremental_admin_router

__all__ = [
    "incremental_admin_router",
]
