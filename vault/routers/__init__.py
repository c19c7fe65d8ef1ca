"""
API routers package.
"""
from vault.routers.health import router as health_router
from vault.routers.photos import router as photos_router
from vault.routers.providers import router as providers_router
from vault.routers.settings import router as settings_router
from vault.routers.sync_jobs import router as sync_jobs_router
from vault.routers.uploads import router as uploads_router

__all__ = [
    "health_router",
    "photos_router",
    "providers_router",
    "settings_router",
    "sync_jobs_router",
    "uploads_router",
]
