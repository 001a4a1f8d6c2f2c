"""API route modules."""

from routes.health_routes import router as health_router
from routes.render_routes import router as render_router

__all__ = [
    "health_router",
    "render_router",
]
