"""Routes package."""

from .extract import router as extract_router
from .media import router as media_router
from .health import router as health_router
from .app import router as app_router

__all__ = [
    'extract_router',
    'media_router',
    'health_router',
    'app_router',
]
