"""FastAPI API endpoints under /api.

Endpoint groups: settings (health, app config), templates (CRUD plus AI
drafting), sessions (CRUD plus the turn endpoint that runs the pipeline).
"""

from fastapi import APIRouter

from .sessions import router as sessions_router
from .settings import router as settings_router
from .templates import router as templates_router

router = APIRouter()
router.include_router(settings_router)
router.include_router(templates_router)
router.include_router(sessions_router)
