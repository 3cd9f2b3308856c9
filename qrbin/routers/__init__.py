"""
API routers package.
"""
from qrbin.routers.bins import router as bins_router
from qrbin.routers.health import router as health_router
from qrbin.routers.locations import router as locations_router
from qrbin.routers.photos import router as photos_router
from qrbin.routers.portability import router as portability_router

__all__ = ["bins_router", "health_router", "locations_router", "photos_router", "portability_router"]
