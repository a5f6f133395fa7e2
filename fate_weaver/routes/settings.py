"""Health check, settings, connection check and reference data endpoints."""

import httpx
from fastapi import APIRouter, Request

from fate_weaver.config import update_config
from fate_weaver.dice import LADDER
from fate_weaver.models import SKILL_LIST

from .deps import app_config, get_storage
from .models import CheckConnectionBody

router = APIRouter()

_PROBE_PATHS = {
    "openai": "/v1/models",
    "ollama": "/api/tags",
    "koboldcpp": "/api/v1/model",
}


@router.get("/health")
async def health():
    """Health check."""
    return {"status": "ok"}


@router.post("/check-connection")
async def check_connection(body: CheckConnectionBody):
    """Quick health check against a narrator backend URL."""
    path = _PROBE_PATHS.get(body.provider_format, _PROBE_PATHS["openai"])
    url = f"{body.provider_url.rstrip('/')}{path}"
    headers: dict[str, str] = {}
    if body.api_key:
        headers["Authorization"] = f"Bearer {body.api_key}"
    try:
        async with httpx.AsyncClient(timeout=5) as client:
            resp = await client.get(url, headers=headers)
            resp.raise_for_status()
        return {"ok": True}
    except httpx.HTTPError:
        return {"ok": False}


@router.get("/rules")
async def rules():
    """Skill list and the adjective ladder, for sheet building."""
    return {
        "skills": SKILL_LIST,
        "ladder": {f"{value:+d}": label for value, label in sorted(LADDER.items(), reverse=True)},
    }


@router.get("/settings")
async def get_settings(request: Request):
    """Get app settings (narrator connection, game defaults)."""
    return app_config(request)


@router.patch("/settings")
async def update_settings(request: Request, body: dict):
    """Update app settings (partial merge)."""
    return update_config(get_storage(request).base_path, body)
