"""FastAPI API endpoints under /api.

Endpoint groups: settings (health, settings, check-connection, rules),
games (create/list/get/delete, messages, roll, end-scene, concede,
full-defense, fate points) and sheet edits (stress, consequences,
inventory, scene aspects, NPCs), all nested under /api/games/{slug}/.
"""

from fastapi import APIRouter

from .games import router as games_router
from .settings import router as settings_router
from .sheet import router as sheet_router

router = APIRouter()
router.include_router(settings_router)
router.include_router(games_router)
router.include_router(sheet_router)
